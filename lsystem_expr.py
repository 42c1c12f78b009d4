"""lsystem_expr.py

Numeric and logic expressions for parametric L-system rules.

Expressions are compiled once and evaluated many times against a plain
name -> value mapping, so a rule can be parsed up front and applied to every
matching symbol of every generation.

Accepted syntax:
  - numbers, names, parentheses
  - arithmetic: + - * / % and power as ^ or **
  - comparison: < <= > >= == !=
  - logic: && || ! (or and / or / not), true, false
  - constants pi, e and the functions listed in FUNCTIONS
"""

from __future__ import annotations

import ast
import math
import re
from collections.abc import Mapping
from dataclasses import dataclass
from types import CodeType
from typing import Any


class ExpressionError(ValueError):
    pass


class EvaluationError(ExpressionError):
    pass


class BracketError(ValueError):
    pass


FUNCTIONS: dict[str, Any] = {
    "sin": math.sin,
    "cos": math.cos,
    "tan": math.tan,
    "asin": math.asin,
    "acos": math.acos,
    "atan": math.atan,
    "atan2": math.atan2,
    "sqrt": math.sqrt,
    "abs": abs,
    "min": min,
    "max": max,
    "floor": lambda x: float(math.floor(x)),
    "ceil": lambda x: float(math.ceil(x)),
    "round": lambda x, n=0: float(round(x, int(n))),
    "log": math.log,
    "exp": math.exp,
    "pow": math.pow,
}

CONSTANTS: dict[str, Any] = {
    "pi": math.pi,
    "e": math.e,
    "true": True,
    "false": False,
}

_GLOBALS: dict[str, Any] = {"__builtins__": {}, **FUNCTIONS, **CONSTANTS}

_SAFE_AST_NODES = {
    ast.Expression,
    ast.BinOp,
    ast.UnaryOp,
    ast.BoolOp,
    ast.Compare,
    ast.Call,
    ast.Name,
    ast.Load,
    ast.Constant,
    ast.Add,
    ast.Sub,
    ast.Mult,
    ast.Div,
    ast.FloorDiv,
    ast.Mod,
    ast.Pow,
    ast.USub,
    ast.UAdd,
    ast.Not,
    ast.And,
    ast.Or,
    ast.Eq,
    ast.NotEq,
    ast.Lt,
    ast.LtE,
    ast.Gt,
    ast.GtE,
}

# C-style operators rewritten to their Python spelling before parsing.
_REWRITES = (
    (re.compile(r"&&"), " and "),
    (re.compile(r"\|\|"), " or "),
    (re.compile(r"!(?!=)"), " not "),
    (re.compile(r"\^"), "**"),
)


# -------------------------
# Compilation
# -------------------------


class _FloatLiterals(ast.NodeTransformer):
    # Integer literals become floats so powers overflow instead of growing
    # without bound.
    def visit_Constant(self, node: ast.Constant) -> ast.Constant:
        if type(node.value) is int:
            return ast.copy_location(ast.Constant(float(node.value)), node)
        return node


def _normalize(text: str) -> str:
    for pattern, repl in _REWRITES:
        text = pattern.sub(repl, text)
    return text.strip()


def _compile(text: str) -> tuple[ast.Expression, CodeType, frozenset[str]]:
    source = _normalize(text)
    if not source:
        raise ExpressionError("Empty expression")
    try:
        tree = ast.parse(source, mode="eval")
    except SyntaxError as e:
        raise ExpressionError(f"Invalid expression: {text.strip()!r}") from e

    names: set[str] = set()
    for node in ast.walk(tree):
        if type(node) not in _SAFE_AST_NODES:
            raise ExpressionError(
                f"Unsupported element {type(node).__name__} in {text.strip()!r}"
            )
        if isinstance(node, ast.Constant) and not isinstance(
            node.value, (int, float)
        ):
            raise ExpressionError(f"Only numeric literals allowed in {text.strip()!r}")
        if isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name) or node.func.id not in FUNCTIONS:
                raise ExpressionError(f"Unknown function in {text.strip()!r}")
            if node.keywords:
                raise ExpressionError(
                    f"Keyword arguments not allowed in {text.strip()!r}"
                )
        elif isinstance(node, ast.Name) and node.id not in _GLOBALS:
            names.add(node.id)

    try:
        tree = ast.fix_missing_locations(_FloatLiterals().visit(tree))
    except OverflowError as e:
        raise ExpressionError(f"Literal out of range in {text.strip()!r}") from e
    code = compile(tree, filename="<expr>", mode="eval")
    return tree, code, frozenset(names)


def _evaluate(code: CodeType, text: str, env: Mapping[str, float]) -> Any:
    try:
        local = {k: float(v) for k, v in env.items()}
        return eval(code, _GLOBALS, local)  # nosec - whitelisted AST only
    except NameError as e:
        raise EvaluationError(f"{e} (in {text.strip()!r})") from e
    except (ArithmeticError, ValueError, TypeError) as e:
        raise EvaluationError(f"Can't evaluate {text.strip()!r}: {e}") from e


# -------------------------
# Expression types
# -------------------------


@dataclass(frozen=True)
class NumberExpression:
    text: str
    code: CodeType
    names: frozenset[str]

    def evaluate(self, env: Mapping[str, float] | None = None) -> float:
        value = _evaluate(self.code, self.text, env or {})
        try:
            return float(value)
        except (ArithmeticError, TypeError) as e:
            # e.g. a negative base raised to a fractional power is complex
            raise EvaluationError(f"{self.text!r} is not a real number: {value}") from e


@dataclass(frozen=True)
class LogicExpression:
    text: str
    code: CodeType
    names: frozenset[str]

    def evaluate(self, env: Mapping[str, float] | None = None) -> bool:
        return bool(_evaluate(self.code, self.text, env or {}))


def _is_logical(node: ast.AST) -> bool:
    if isinstance(node, (ast.Compare, ast.BoolOp)):
        return True
    if isinstance(node, ast.UnaryOp) and isinstance(node.op, ast.Not):
        return True
    return isinstance(node, ast.Name) and node.id in ("true", "false")


def parse_number(text: str, *, constant: bool = False) -> NumberExpression:
    """Compile a numeric expression.

    With constant=True the expression may only use literals and the built-in
    constants and functions, so it can be evaluated without an environment.
    """
    tree, code, names = _compile(text)
    if _is_logical(tree.body):
        raise ExpressionError(f"Expected a numeric expression, got {text.strip()!r}")
    if constant and names:
        raise ExpressionError(
            f"Constant expression {text.strip()!r} references "
            f"{', '.join(sorted(names))}"
        )
    return NumberExpression(text=text.strip(), code=code, names=names)


def parse_logic(text: str) -> LogicExpression:
    _, code, names = _compile(text)
    return LogicExpression(text=text.strip(), code=code, names=names)


# -------------------------
# Bracket matching
# -------------------------


def find_closing_bracket(
    text: str, open_index: int, open_char: str = "(", close_char: str = ")"
) -> int:
    """Return the index of the delimiter closing the one at open_index.

    Nested pairs are skipped.
    """
    if not 0 <= open_index < len(text) or text[open_index] != open_char:
        raise BracketError(f"No '{open_char}' at index {open_index} of {text!r}")
    depth = 0
    for i in range(open_index, len(text)):
        ch = text[i]
        if ch == open_char:
            depth += 1
        elif ch == close_char:
            depth -= 1
            if depth == 0:
                return i
    raise BracketError(
        f"Missing '{close_char}' for '{open_char}' at index {open_index} of {text!r}"
    )
