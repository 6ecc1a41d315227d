"""Tests for the sandboxed expression language."""
import math

from workflow.expression import (
    Binary, Call, Literal, Parser, TokenType, Unary, Variable,
    eval_bool, eval_expression, tokenize,
)


class TestTokenize:
    def test_operators_and_literals(self):
        types = [t.type for t in tokenize("a >= 10 && 'x' != \"y\"")]
        assert types == [
            TokenType.IDENT, TokenType.OP, TokenType.NUM, TokenType.OP,
            TokenType.STR, TokenType.OP, TokenType.STR, TokenType.END,
        ]

    def test_negative_number_only_in_prefix_position(self):
        assert [t.value for t in tokenize("-3")][:1] == [-3]
        values = [t.value for t in tokenize("5 -3")]
        assert values[:3] == [5, "-", 3]

    def test_strict_equality_reads_as_loose(self):
        assert [t.value for t in tokenize("1 === 1")][1] == "=="

    def test_unknown_characters_are_skipped(self):
        assert [t.value for t in tokenize("1 @ # 2")][:2] == [1, 2]

    def test_dotted_identifier(self):
        assert tokenize("user.score")[0].value == "user.score"


class TestParser:
    def test_precedence(self):
        tree = Parser(tokenize("1 + 2 * 3")).parse()
        assert tree == Binary("+", Literal(1), Binary("*", Literal(2), Literal(3)))

    def test_builtin_call(self):
        assert Parser(tokenize("len(name)")).parse() == Call("len", Variable("name"))

    def test_unary(self):
        assert Parser(tokenize("!ok")).parse() == Unary("!", Variable("ok"))

    def test_unexpected_token_reads_as_zero(self):
        assert Parser(tokenize("1 +")).parse() == Binary("+", Literal(1), Literal(0))


class TestEvaluate:
    def test_arithmetic(self):
        assert eval_expression("1 + 2 * 3") == 7
        assert eval_expression("(1 + 2) * 3") == 9
        assert eval_expression("10 / 4") == 2.5
        assert eval_expression("10 / 5") == 2
        assert eval_expression("7 % 3") == 1
        assert eval_expression("5 - 3") == 2

    def test_division_by_zero_is_zero(self):
        assert eval_expression("10 / 0") == 0
        assert eval_expression("7 % 0") == 0

    def test_string_concatenation(self):
        assert eval_expression("'lv' + 3") == "lv3"

    def test_variables(self):
        env = {"score": 15, "level": "gold"}
        assert eval_bool("score > 10 && level == 'gold'", env) is True
        assert eval_bool("score > 20 || level == 'silver'", env) is False

    def test_missing_variable_is_zero(self):
        assert eval_expression("missing") == 0
        assert eval_bool("missing == 0") is True

    def test_loose_equality(self):
        assert eval_bool("1 == '1'") is True
        assert eval_bool("'1' === 1") is True
        assert eval_bool("true == 1") is True

    def test_comparisons_are_numeric(self):
        assert eval_bool("'10' > 9") is True
        assert eval_bool("count <= 3", {"count": "3"}) is True

    def test_unary_ops(self):
        assert eval_expression("!true") is False
        assert eval_expression("-x", {"x": 3}) == -3

    def test_builtins(self):
        assert eval_expression("len(name)", {"name": "签到"}) == 2
        assert eval_expression("num('12')") == 12
        assert eval_expression("num('abc')") == 0
        assert eval_expression("str(5) + 1") == "51"
        assert eval_expression("abs(-5)") == 5

    def test_missing_paren_is_tolerated(self):
        assert eval_expression("(1 + 2") == 3

    def test_short_circuit_results_are_booleans(self):
        assert eval_expression("1 && 'x'") is True
        assert eval_expression("0 || ''") is False

    def test_nan_comparisons_are_false(self):
        value = eval_expression("'abc' * 2")
        assert math.isnan(value)
        assert eval_bool("'abc' > 1") is False

    def test_cannot_reach_host_code(self):
        assert eval_expression("__import__('os')") == 0
        assert eval_expression("open('x')") == 0

    def test_truthiness(self):
        assert eval_bool("0") is False
        assert eval_bool("''") is False
        assert eval_bool("'x'") is True
