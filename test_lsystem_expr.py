#!/usr/bin/env python3
import math

import pytest

from lsystem_expr import (
    BracketError,
    EvaluationError,
    ExpressionError,
    find_closing_bracket,
    parse_logic,
    parse_number,
)


class TestNumberExpression:
    def test_arithmetic(self) -> None:
        assert parse_number("1 + 2 * 3").evaluate() == 7.0
        assert parse_number("(1 + 2) * 3").evaluate() == 9.0
        assert parse_number("7 % 4").evaluate() == 3.0
        assert parse_number("-2").evaluate() == -2.0

    def test_caret_is_power(self) -> None:
        assert parse_number("2^10").evaluate() == 1024.0
        assert parse_number("2**3").evaluate() == 8.0

    def test_variables(self) -> None:
        expr = parse_number("a + b")
        assert expr.names == frozenset({"a", "b"})
        assert expr.evaluate({"a": 2, "b": 3}) == 5.0
        # Compiled once, reusable with other bindings
        assert expr.evaluate({"a": 10, "b": -1}) == 9.0

    def test_functions_and_constants(self) -> None:
        assert parse_number("sqrt(16)").evaluate() == 4.0
        assert parse_number("max(1, 5, 3)").evaluate() == 5.0
        assert parse_number("cos(pi)").evaluate() == pytest.approx(-1.0)
        assert parse_number("e").evaluate() == pytest.approx(math.e)
        assert parse_number("sqrt(16)").names == frozenset()

    def test_result_is_float(self) -> None:
        value = parse_number("3").evaluate()
        assert isinstance(value, float)

    def test_constant_rejects_names(self) -> None:
        assert parse_number("2 * pi", constant=True).evaluate() == pytest.approx(
            2 * math.pi
        )
        with pytest.raises(ExpressionError):
            parse_number("a + 1", constant=True)

    def test_rejects_comparison(self) -> None:
        with pytest.raises(ExpressionError):
            parse_number("a < 5")
        with pytest.raises(ExpressionError):
            parse_number("a && b")

    def test_invalid_syntax(self) -> None:
        for text in ("", "   ", "1 +", "a b", "(1"):
            with pytest.raises(ExpressionError):
                parse_number(text)

    def test_unsafe_elements_rejected(self) -> None:
        for text in ("__import__('os')", "a.b", "x[0]", "'text'", "open(1)"):
            with pytest.raises(ExpressionError):
                parse_number(text)

    def test_unknown_variable_at_evaluation(self) -> None:
        expr = parse_number("x * 2")
        with pytest.raises(EvaluationError, match="x"):
            expr.evaluate({"y": 1})

    def test_division_by_zero(self) -> None:
        with pytest.raises(EvaluationError):
            parse_number("1 / a").evaluate({"a": 0})

    def test_integer_literals_overflow(self) -> None:
        with pytest.raises(EvaluationError):
            parse_number("9^9^9").evaluate()
        with pytest.raises(EvaluationError):
            parse_number("x ** x ** x").evaluate({"x": 9})
        with pytest.raises(ExpressionError):
            parse_number("1" + "0" * 400)

    def test_rounding_functions_return_floats(self) -> None:
        assert parse_number("floor(2.7)").evaluate() == 2.0
        assert parse_number("ceil(2.1) + round(2.5)").evaluate() == 5.0
        assert parse_number("round(1.26, 1)").evaluate() == pytest.approx(1.3)

    def test_complex_result(self) -> None:
        with pytest.raises(EvaluationError):
            parse_number("a ^ 0.5").evaluate({"a": -1})


class TestLogicExpression:
    def test_comparisons(self) -> None:
        cond = parse_logic("a < 5")
        assert cond.evaluate({"a": 4}) is True
        assert cond.evaluate({"a": 5}) is False

    def test_c_style_operators(self) -> None:
        cond = parse_logic("a > 1 && !(b == 2) || c")
        assert cond.evaluate({"a": 2, "b": 3, "c": 0}) is True
        assert cond.evaluate({"a": 2, "b": 2, "c": 0}) is False
        assert cond.evaluate({"a": 0, "b": 2, "c": 1}) is True

    def test_not_equal_survives_rewrite(self) -> None:
        assert parse_logic("a != 1").evaluate({"a": 2}) is True

    def test_word_operators_and_literals(self) -> None:
        assert parse_logic("true and not false").evaluate() is True
        assert parse_logic("a >= 1 or a <= -1").evaluate({"a": 0}) is False

    def test_invalid(self) -> None:
        with pytest.raises(ExpressionError):
            parse_logic("a <")


class TestFindClosingBracket:
    def test_simple(self) -> None:
        assert find_closing_bracket("A(1,2)", 1) == 5

    def test_nested(self) -> None:
        text = "A(max(a,b),(c))"
        assert find_closing_bracket(text, 1) == len(text) - 1
        assert find_closing_bracket(text, 5) == 9

    def test_custom_delimiters(self) -> None:
        assert find_closing_bracket("x[a[b]]y", 1, "[", "]") == 6

    def test_unbalanced(self) -> None:
        with pytest.raises(BracketError):
            find_closing_bracket("A(1,(2)", 1)

    def test_not_an_opening_bracket(self) -> None:
        with pytest.raises(BracketError):
            find_closing_bracket("A(1)", 0)
        with pytest.raises(BracketError):
            find_closing_bracket("A(1)", 10)
