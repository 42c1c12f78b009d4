#!/usr/bin/env python3
"""param_lsystem.py

A parametric L-system rewriting engine driven by a small text grammar.

Key features:
- Symbols carry numeric parameters, e.g. Fib(1,1).
- Rules match by name and arity, may be guarded by a condition and compute
  the parameters of their replacements from expressions.
- First matching rule wins; unmatched symbols are copied unchanged.
- Text format (one rule per line) or JSON input configuration.
- Global variables usable from every condition and expression.

Text format:

  Axiom: Name[(n1,n2,...)][; Name2[(...)] ...]
  Count: <integer>
  Rules:
  Name[(p1,p2,...)][: condition] --> [R1[(e1,e2,...)]][; R2[(...)] ...]

Run:
  python param_lsystem.py expand example/fibonacci.lsys --count 4
  python param_lsystem.py expand example/decay.json --var ratio=0.25
  python param_lsystem.py validate example/hilbert.lsys
  python param_lsystem.py --help
"""

from __future__ import annotations

import argparse
import json
import keyword
import os
import sys
from collections.abc import Generator, Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, cast

from lsystem_expr import (
    BracketError,
    ExpressionError,
    LogicExpression,
    NumberExpression,
    find_closing_bracket,
    parse_logic,
    parse_number,
)

# -------------------------
# Errors / Validation
# -------------------------


class GrammarError(ValueError):
    kind = "grammar"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class AxiomParameterError(GrammarError):
    kind = "axiom-parameter"


class RuleOperatorError(GrammarError):
    kind = "rule-operator"


class RuleParameterError(GrammarError):
    kind = "rule-parameter"


class RuleConditionError(GrammarError):
    kind = "rule-condition"


class ConfigError(ValueError):
    pass


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ConfigError(msg)


def _as_float(x: Any, path: str) -> float:
    _require(
        isinstance(x, (int, float)) and not isinstance(x, bool),
        f"{path} must be a number",
    )
    return float(x)


def _as_int(x: Any, path: str) -> int:
    _require(
        isinstance(x, int) and not isinstance(x, bool), f"{path} must be an integer"
    )
    return int(x)


def _as_str(x: Any, path: str) -> str:
    _require(isinstance(x, str), f"{path} must be a string")
    return cast(str, x)


def _as_list(x: Any, path: str) -> list[Any]:
    _require(isinstance(x, list), f"{path} must be an array")
    return cast(list[Any], x)


def _as_dict(x: Any, path: str) -> dict[str, Any]:
    _require(isinstance(x, dict), f"{path} must be an object")
    return cast(dict[str, Any], x)


# -------------------------
# Symbol model
# -------------------------


def format_number(x: float) -> str:
    # Integral values print without a fractional part, -0.0 prints as "0".
    if not x:
        return "0"
    if float(x).is_integer():
        return str(int(x))
    return repr(x)


@dataclass(frozen=True)
class Symbol:
    name: str
    parameters: tuple[float, ...] = ()

    def serialize(self) -> str:
        if not self.parameters:
            return self.name
        return f"{self.name}({','.join(format_number(p) for p in self.parameters)})"

    def __str__(self) -> str:
        return self.serialize()


def serialize_symbols(symbols: Iterable[Symbol]) -> str:
    return "; ".join(s.serialize() for s in symbols)


@dataclass(frozen=True)
class ReplacementTemplate:
    """One successor of a rule; its parameters are evaluated per match."""

    name: str
    parameters: tuple[NumberExpression, ...] = ()

    def generate(self, env: Mapping[str, float]) -> Symbol:
        return Symbol(self.name, tuple(p.evaluate(env) for p in self.parameters))


@dataclass(frozen=True)
class RewriteRule:
    """A production `name(params) : condition --> replacement`.

    Every application evaluates against its own environment: the rule's
    global variables overlaid with the matched symbol's parameter values.
    A rule declared without parameter names matches the symbol name at any
    arity and binds nothing.
    """

    name: str
    parameter_names: tuple[str, ...] = ()
    condition: LogicExpression | None = None
    replacement: tuple[ReplacementTemplate, ...] = ()
    variables: Mapping[str, float] = field(default_factory=dict)

    def bind(self, current: Symbol) -> dict[str, float] | None:
        """Return the evaluation environment for `current`, or None when the
        name or arity does not fit this rule."""
        if current.name != self.name:
            return None
        if self.parameter_names and len(self.parameter_names) != len(
            current.parameters
        ):
            return None
        env = dict(self.variables)
        env.update(zip(self.parameter_names, current.parameters))
        return env

    def apply(self, current: Symbol, output: list[Symbol]) -> bool:
        env = self.bind(current)
        if env is None:
            return False
        if self.condition is not None and not self.condition.evaluate(env):
            return False
        output.extend(r.generate(env) for r in self.replacement)
        return True


# -------------------------
# Rewriting
# -------------------------


@dataclass
class LSystem:
    symbols: list[Symbol] = field(default_factory=list)
    rules: list[RewriteRule] = field(default_factory=list)
    generation: int = 0

    def advance_one(self, symbols: Iterable[Symbol]) -> list[Symbol]:
        """Rewrite every symbol once, left to right, into a new list."""
        output: list[Symbol] = []
        for sym in symbols:
            for rule in self.rules:
                if rule.apply(sym, output):
                    break
            else:
                output.append(sym)
        return output

    def advance(self, count: int = 1) -> None:
        if count < 0:
            raise ValueError("count must be >= 0")
        for _ in self.iter_generations(count):
            pass

    def iter_generations(self, count: int) -> Generator[list[Symbol], None, None]:
        """Advance `count` generations, yielding each new one as it is made.

        The sequence may grow exponentially; stopping the generator early
        leaves the system at the last yielded generation.
        """
        if count < 0:
            raise ValueError("count must be >= 0")
        for _ in range(count):
            self.symbols = self.advance_one(self.symbols)
            self.generation += 1
            yield self.symbols

    def serialize(self) -> str:
        return serialize_symbols(self.symbols)

    def __str__(self) -> str:
        return self.serialize()


# -------------------------
# Grammar parsing
# -------------------------

_REPLACEMENT_OPERATOR = "-->"

# Rule-block lines shorter than this cannot hold a rule and are skipped.
_MIN_RULE_LINE = 5


def _split_head(
    token: str, error: type[GrammarError]
) -> tuple[str, str | None]:
    """Split `Name(args)` into the trimmed name and the text between the
    brackets. Anything but whitespace after the closing bracket raises `error`."""
    open_ = token.find("(")
    if open_ < 0:
        return token.strip(), None
    close = find_closing_bracket(token, open_, "(", ")")
    if token[close + 1 :].strip():
        raise error(
            f"Unexpected text '{token[close + 1 :].strip()}' after "
            f"'{token[: close + 1].strip()}'"
        )
    return token[:open_].strip(), token[open_ + 1 : close]


def _split_args(inner: str | None) -> list[str]:
    """Split on commas that are not nested inside brackets."""
    if inner is None or not inner.strip():
        return []
    pieces: list[str] = []
    depth = 0
    start = 0
    for i, ch in enumerate(inner):
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        elif ch == "," and depth == 0:
            pieces.append(inner[start:i])
            start = i + 1
    pieces.append(inner[start:])
    return pieces


def _parse_count(text: str) -> int | None:
    try:
        return int(text.strip())
    except ValueError:
        return None


@dataclass(frozen=True)
class SystemDescription:
    symbols: list[Symbol]
    rules: list[RewriteRule]
    count: int | None


class LSystemParser:
    """Turns axiom, rule and system text into symbols, rules and systems.

    `variables` are global values every parsed rule can reference in its
    condition and replacement expressions.
    """

    def __init__(self, variables: Mapping[str, float] | None = None) -> None:
        self.variables: Mapping[str, float] = MappingProxyType(
            {k: float(v) for k, v in (variables or {}).items()}
        )

    def parse_axiom(self, text: str) -> list[Symbol]:
        result: list[Symbol] = []
        for token in text.split(";"):
            if not token.strip():
                continue
            name, inner = _split_head(token, AxiomParameterError)
            if not name:
                raise AxiomParameterError(
                    f"Axiom module '{token.strip()}' has no name"
                )
            params: list[float] = []
            for p in _split_args(inner):
                try:
                    params.append(parse_number(p, constant=True).evaluate())
                except ExpressionError as e:
                    raise AxiomParameterError(
                        f"Can't parse the parameter '{p.strip()}' of the axiom: {e}"
                    ) from e
            result.append(Symbol(name, tuple(params)))
        return result

    def parse_rule(self, text: str) -> RewriteRule:
        """Parse one rule, e.g. `Seg(l): l > 1 --> Seg(l/2); Seg(l/2)`."""
        parts = text.split(_REPLACEMENT_OPERATOR)
        if len(parts) < 2:
            raise RuleOperatorError(
                f"Missing '{_REPLACEMENT_OPERATOR}' operator "
                f"in {text.strip()!r}"
            )
        if len(parts) > 2:
            raise RuleOperatorError(
                f"Too many '{_REPLACEMENT_OPERATOR}' operators "
                f"found in {text.strip()!r}. There should be only one per rule"
            )
        left, right = parts

        head, colon, condition_text = left.partition(":")
        name, inner = _split_head(head, RuleParameterError)
        if not name:
            raise RuleOperatorError(
                f"Missing module name in front of "
                f"'{_REPLACEMENT_OPERATOR}' in {text.strip()!r}"
            )
        words = name.split()
        if len(words) > 1:
            raise RuleOperatorError(
                f"Expected '{_REPLACEMENT_OPERATOR}' after "
                f"'{words[0]}', found '{' '.join(words[1:])}'"
            )

        parameter_names = tuple(p.strip() for p in _split_args(inner))
        for p in parameter_names:
            if not p.isidentifier() or keyword.iskeyword(p):
                raise RuleParameterError(
                    f"Invalid parameter name '{p}' in rule '{name}'"
                )
        if len(set(parameter_names)) != len(parameter_names):
            raise RuleParameterError(f"Duplicate parameter name in rule '{name}'")

        condition = None
        if colon and condition_text.strip():
            try:
                condition = parse_logic(condition_text)
            except ExpressionError as e:
                raise RuleConditionError(
                    f"Can't parse the condition '{condition_text.strip()}' of rule "
                    f"'{name}': {e}"
                ) from e

        replacement: list[ReplacementTemplate] = []
        for token in right.split(";"):
            rname, rinner = _split_head(token, RuleParameterError)
            if not rname:
                continue
            exprs: list[NumberExpression] = []
            for p in _split_args(rinner):
                try:
                    exprs.append(parse_number(p))
                except ExpressionError as e:
                    raise RuleParameterError(
                        f"Can't parse '{p.strip()}' into a rule expression "
                        f"parameter: {e}"
                    ) from e
            replacement.append(ReplacementTemplate(rname, tuple(exprs)))

        return RewriteRule(
            name=name,
            parameter_names=parameter_names,
            condition=condition,
            replacement=tuple(replacement),
            variables=self.variables,
        )

    def parse_description(self, text: str) -> SystemDescription:
        """Read `Axiom:`, `Count:` and `Rules:` lines without iterating.

        Keywords are matched case-insensitively. Once `Rules:` has been seen,
        every further line is a rule. Blank lines and lines starting with `#`
        are skipped; other lines before `Rules:` are ignored.
        """
        symbols: list[Symbol] = []
        rules: list[RewriteRule] = []
        count: int | None = None
        parse_rules = False
        for raw in text.splitlines():
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            lowered = line.lower()
            if lowered.startswith("axiom:"):
                symbols = self.parse_axiom(line[6:])
            elif lowered.startswith("count:"):
                count = _parse_count(line[6:])
            elif lowered.startswith("rules:"):
                parse_rules = True
                line = line[6:].strip()
            if parse_rules and len(line) >= _MIN_RULE_LINE:
                rules.append(self.parse_rule(line))
        return SystemDescription(symbols=symbols, rules=rules, count=count)

    def parse_system(self, text: str, *, count: int | None = None) -> LSystem:
        """Parse a full system and run its eager iteration count.

        `count`, when given, replaces the `Count:` line of the text.
        """
        desc = self.parse_description(text)
        system = LSystem(symbols=desc.symbols, rules=desc.rules)
        n = desc.count if count is None else count
        if n is not None and n > 0:
            system.advance(n)
        return system


_DEFAULT_PARSER = LSystemParser()


def parse_axiom(text: str) -> list[Symbol]:
    return _DEFAULT_PARSER.parse_axiom(text)


def parse_rule(text: str) -> RewriteRule:
    return _DEFAULT_PARSER.parse_rule(text)


def parse_system(text: str, *, count: int | None = None) -> LSystem:
    return _DEFAULT_PARSER.parse_system(text, count=count)


# -------------------------
# Config loading
# -------------------------


@dataclass(frozen=True)
class SystemConfig:
    name: str
    axiom: str
    count: int
    rules: tuple[str, ...]
    variables: dict[str, float]


def parse_config(obj: dict[str, Any]) -> SystemConfig:
    obj = _as_dict(obj, "root")

    name = _as_str(obj.get("name", "L-System"), "name")
    axiom = _as_str(obj.get("axiom", ""), "axiom")
    _require(len(axiom.strip()) > 0, "axiom must be non-empty")

    count = _as_int(obj.get("count", 0), "count")
    _require(count >= 0, "count must be >= 0")

    rules_obj = _as_list(obj.get("rules", []), "rules")
    rules = tuple(_as_str(r, f"rules[{i}]") for i, r in enumerate(rules_obj))

    variables_obj = _as_dict(obj.get("variables", {}), "variables")
    variables: dict[str, float] = {}
    for k, v in variables_obj.items():
        _require(
            k.isidentifier() and not keyword.iskeyword(k),
            f"variables key '{k}' must be an identifier",
        )
        variables[k] = _as_float(v, f"variables['{k}']")

    return SystemConfig(
        name=name, axiom=axiom, count=count, rules=rules, variables=variables
    )


def load_json(path: str) -> dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        try:
            return cast(dict[str, Any], json.load(f))
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {path}: {e}") from e


def load_system(
    path: str, variables: Mapping[str, float] | None = None
) -> tuple[str, LSystem, int]:
    """Load a JSON config or a text description without iterating it.

    Returns the system name, the system at generation 0 and its configured
    count. `variables` take precedence over variables from the file.
    """
    if path.lower().endswith(".json"):
        cfg = parse_config(load_json(path))
        parser = LSystemParser({**cfg.variables, **(variables or {})})
        system = LSystem(
            symbols=parser.parse_axiom(cfg.axiom),
            rules=[parser.parse_rule(r) for r in cfg.rules],
        )
        return cfg.name, system, cfg.count

    with open(path, encoding="utf-8") as f:
        text = f.read()
    desc = LSystemParser(variables).parse_description(text)
    name = os.path.splitext(os.path.basename(path))[0]
    # Only a positive count means eager iteration.
    count = max(desc.count or 0, 0)
    return name, LSystem(symbols=desc.symbols, rules=desc.rules), count


def symbols_to_json(symbols: Iterable[Symbol]) -> list[dict[str, Any]]:
    return [{"name": s.name, "parameters": list(s.parameters)} for s in symbols]


def dump_json(obj: Any, path: str) -> None:
    os.makedirs(os.path.dirname(os.path.abspath(path)) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, ensure_ascii=False)
        f.write("\n")


# -------------------------
# CLI / Help
# -------------------------

HELP_EPILOG = r"""
SYSTEM INPUT

A system is read from a text description, or from a JSON file when the path
ends in .json.

Text description

  Axiom: Fib(1,1)
  Count: 3
  Rules:
  Fib(a,b): a < 5 --> Fib(a+b,a)

  Axiom: ...   symbols separated by ';', parameters by ','.
  Count: N     generations to run right away (optional).
  Rules: ...   every following line is one rule; the rest of the Rules:
               line may hold the first rule.
  Lines starting with '#' are comments.

Rule syntax

  Name[(p1,p2,...)][: condition] --> [R1[(e1,e2,...)]][; R2[(...)] ...]

  - A rule with parameter names only matches symbols with that many
    parameters; a rule without them matches any symbol of that name.
  - The condition may use the parameter names and global variables, with
    < <= > >= == != && || ! and arithmetic.
  - Replacement parameters are numeric expressions, e.g. Fib(a+b,a).
  - An empty right-hand side deletes the symbol.
  - The first rule that matches wins; unmatched symbols are copied.

JSON config

  {
    "name": "Decay",
    "axiom": "Seg(8)",
    "count": 4,
    "variables": {"ratio": 0.5},
    "rules": ["Seg(l): l > 1 --> Seg(l*ratio); Seg(l*ratio)", "Seg(l) --> Leaf"]
  }
"""


def _parse_var(text: str) -> tuple[str, float]:
    name, sep, value = text.partition("=")
    name = name.strip()
    if not sep or not name.isidentifier():
        raise argparse.ArgumentTypeError(f"expected NAME=VALUE, got {text!r}")
    try:
        return name, float(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"{value!r} is not a number") from e


def build_argparser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="param_lsystem.py",
        description="Parametric L-system rewriting engine.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=HELP_EPILOG,
    )

    sub = p.add_subparsers(dest="cmd", required=True)

    pe = sub.add_parser(
        "expand",
        help="Run a system for a number of generations and print the result.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    pe.add_argument("system", help="Path to the system description or JSON config.")
    pe.add_argument(
        "--count",
        type=int,
        default=None,
        help="Generations to run (default: the count given in the system).",
    )
    pe.add_argument(
        "--json", dest="json_path", default=None, help="Write the result as JSON."
    )
    pe.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Print the symbol count of every generation to stderr.",
    )

    pv = sub.add_parser(
        "validate",
        help="Parse a system and print a brief summary.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    pv.add_argument("system", help="Path to the system description or JSON config.")

    for sp in (pe, pv):
        sp.add_argument(
            "--var",
            dest="variables",
            type=_parse_var,
            action="append",
            default=[],
            metavar="NAME=VALUE",
            help="Global variable available to rules (repeatable).",
        )

    return p


# -------------------------
# Commands
# -------------------------


def cmd_expand(
    system_path: str,
    count: int | None,
    variables: dict[str, float],
    json_path: str | None,
    verbose: bool,
) -> None:
    name, system, configured = load_system(system_path, variables)
    n = configured if count is None else count
    if n < 0:
        raise ConfigError("count must be >= 0")

    for symbols in system.iter_generations(n):
        if verbose:
            print(
                f"generation {system.generation}: {len(symbols)} symbols",
                file=sys.stderr,
            )

    if json_path:
        dump_json(
            {
                "name": name,
                "generation": system.generation,
                "symbols": symbols_to_json(system.symbols),
            },
            json_path,
        )
    else:
        print(system)


_VALIDATE_SYMBOL_LIMIT = 10_000


def cmd_validate(system_path: str, variables: dict[str, float]) -> None:
    name, system, count = load_system(system_path, variables)

    print(f"name: {name}")
    print(f"axiom: {system}")
    print(f"rules: {len(system.rules)}")
    print(f"count: {count}")

    # Run the configured generations, stopping once the sequence outgrows the
    # limit, to catch evaluation failures (unbound names, division by zero).
    truncated = False
    for symbols in system.iter_generations(count):
        if len(symbols) > _VALIDATE_SYMBOL_LIMIT:
            truncated = system.generation < count
            break
    print(f"symbols: {len(system.symbols)} (generation {system.generation})")
    if truncated:
        print(
            f"warning: expansion exceeds {_VALIDATE_SYMBOL_LIMIT} symbols; "
            f"stopped after generation {system.generation} of {count}"
        )


def main(argv: list[str] | None = None) -> int:
    ap = build_argparser()
    args = ap.parse_args(argv)
    variables = dict(args.variables)

    try:
        if args.cmd == "expand":
            cmd_expand(
                args.system, args.count, variables, args.json_path, args.verbose
            )
        elif args.cmd == "validate":
            cmd_validate(args.system, variables)
        else:
            raise AssertionError("unreachable")
    except GrammarError as e:
        print(f"Grammar error ({e.kind}): {e}", file=sys.stderr)
        return 2
    except (ExpressionError, BracketError) as e:
        print(f"Expression error: {e}", file=sys.stderr)
        return 2
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 2
    except OSError as e:
        print(f"File error: {e}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
