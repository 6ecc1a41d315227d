"""
Sandboxed expression language for the ``expression`` condition.

Pipeline: ``tokenize`` → ``Parser.parse`` (recursive descent into a small
AST) → ``evaluate`` against a flat variable table. Nothing here executes
host code; identifiers can only read the variable table or call one of the
four builtins (``len``, ``num``, ``str``, ``abs``).

Precedence, low → high:
    ||  →  &&  →  == != > < >= <=  →  + -  →  * / %  →  ! -  →  primary

Malformed input degrades instead of raising: unknown characters are
skipped, an unexpected token reads as 0, a missing ``)`` is tolerated.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from utils.values import loose_equals, parse_float_prefix, text_length, to_number, to_str, truthy

Value = Union[int, float, str, bool]


# ──────────────────────────────────────────────────────────────
#  Tokens
# ──────────────────────────────────────────────────────────────

class TokenType(str, Enum):
    NUM = "num"
    STR = "str"
    BOOL = "bool"
    IDENT = "ident"
    OP = "op"
    LPAREN = "lparen"
    RPAREN = "rparen"
    END = "end"


@dataclass(frozen=True)
class Token:
    type: TokenType
    value: Any


END_TOKEN = Token(TokenType.END, "")

_TWO_CHAR_OPS = ("==", "!=", ">=", "<=", "&&", "||")
_ONE_CHAR_OPS = "+-*/%><!"
_QUOTES = "\"'`"


def _is_ident_start(ch: str) -> bool:
    return ch == "_" or ("a" <= ch <= "z") or ("A" <= ch <= "Z")


def _is_ident_char(ch: str) -> bool:
    return _is_ident_start(ch) or ch.isdigit() or ch == "."


def tokenize(src: str) -> list[Token]:
    tokens: list[Token] = []
    i, n = 0, len(src)
    while i < n:
        ch = src[i]
        if ch.isspace():
            i += 1
            continue

        # a minus directly before a digit belongs to the number in prefix position
        prefix_pos = not tokens or tokens[-1].type in (TokenType.OP, TokenType.LPAREN)
        if ch.isdigit() or (ch == "-" and i + 1 < n and src[i + 1].isdigit() and prefix_pos):
            start = i
            i += 1
            while i < n and (src[i].isdigit() or src[i] == "."):
                i += 1
            tokens.append(Token(TokenType.NUM, parse_float_prefix(src[start:i]) or 0))
            continue

        if ch in _QUOTES:
            i += 1
            chars = []
            while i < n and src[i] != ch:
                if src[i] == "\\":
                    i += 1
                    if i >= n:
                        break
                chars.append(src[i])
                i += 1
            i += 1  # closing quote
            tokens.append(Token(TokenType.STR, "".join(chars)))
            continue

        if ch == "(":
            tokens.append(Token(TokenType.LPAREN, "("))
            i += 1
            continue
        if ch == ")":
            tokens.append(Token(TokenType.RPAREN, ")"))
            i += 1
            continue

        three = src[i:i + 3]
        if three in ("===", "!=="):
            tokens.append(Token(TokenType.OP, three[:2]))
            i += 3
            continue
        two = src[i:i + 2]
        if two in _TWO_CHAR_OPS:
            tokens.append(Token(TokenType.OP, two))
            i += 2
            continue
        if ch in _ONE_CHAR_OPS:
            tokens.append(Token(TokenType.OP, ch))
            i += 1
            continue

        if _is_ident_start(ch):
            start = i
            while i < n and _is_ident_char(src[i]):
                i += 1
            word = src[start:i]
            if word in ("true", "false"):
                tokens.append(Token(TokenType.BOOL, word == "true"))
            else:
                tokens.append(Token(TokenType.IDENT, word))
            continue

        i += 1  # unknown character
    tokens.append(END_TOKEN)
    return tokens


# ──────────────────────────────────────────────────────────────
#  AST
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Literal:
    value: Value


@dataclass(frozen=True)
class Variable:
    name: str


@dataclass(frozen=True)
class Call:
    name: str
    arg: "Node"


@dataclass(frozen=True)
class Unary:
    op: str
    operand: "Node"


@dataclass(frozen=True)
class Binary:
    op: str
    left: "Node"
    right: "Node"


Node = Union[Literal, Variable, Call, Unary, Binary]

BUILTINS = ("len", "num", "str", "abs")
_COMPARISON_OPS = ("==", "!=", ">", "<", ">=", "<=")


class Parser:
    """Recursive-descent parser producing a best-effort tree for any token list."""

    def __init__(self, tokens: list[Token]):
        self.tokens = tokens
        self.pos = 0

    def _peek(self) -> Token:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else END_TOKEN

    def _next(self) -> Token:
        tok = self._peek()
        self.pos += 1
        return tok

    def _at_op(self, *ops: str) -> bool:
        tok = self._peek()
        return tok.type == TokenType.OP and tok.value in ops

    def _close_paren(self):
        if self._peek().type == TokenType.RPAREN:
            self._next()

    def parse(self) -> Node:
        return self._or()

    def _or(self) -> Node:
        left = self._and()
        while self._at_op("||"):
            self._next()
            left = Binary("||", left, self._and())
        return left

    def _and(self) -> Node:
        left = self._comparison()
        while self._at_op("&&"):
            self._next()
            left = Binary("&&", left, self._comparison())
        return left

    def _comparison(self) -> Node:
        left = self._additive()
        while self._at_op(*_COMPARISON_OPS):
            op = self._next().value
            left = Binary(op, left, self._additive())
        return left

    def _additive(self) -> Node:
        left = self._multiplicative()
        while self._at_op("+", "-"):
            op = self._next().value
            left = Binary(op, left, self._multiplicative())
        return left

    def _multiplicative(self) -> Node:
        left = self._unary()
        while self._at_op("*", "/", "%"):
            op = self._next().value
            left = Binary(op, left, self._unary())
        return left

    def _unary(self) -> Node:
        if self._at_op("!"):
            self._next()
            return Unary("!", self._unary())
        if self._at_op("-"):
            self._next()
            return Unary("-", self._primary())
        return self._primary()

    def _primary(self) -> Node:
        tok = self._next()
        if tok.type in (TokenType.NUM, TokenType.STR, TokenType.BOOL):
            return Literal(tok.value)
        if tok.type == TokenType.IDENT:
            if tok.value in BUILTINS and self._peek().type == TokenType.LPAREN:
                self._next()
                arg = self._or()
                self._close_paren()
                return Call(tok.value, arg)
            return Variable(tok.value)
        if tok.type == TokenType.LPAREN:
            inner = self._or()
            self._close_paren()
            return inner
        return Literal(0)


# ──────────────────────────────────────────────────────────────
#  Evaluation
# ──────────────────────────────────────────────────────────────

def _tidy(x: float | int) -> float | int:
    if isinstance(x, float) and x.is_integer() and abs(x) < 2 ** 53:
        return int(x)
    return x


def _call(name: str, value: Value) -> Value:
    if name == "len":
        return text_length(to_str(value))
    if name == "num":
        number = to_number(value)
        return 0 if not truthy(number) else number
    if name == "str":
        return to_str(value)
    return abs(to_number(value))


def _arith(op: str, a: Value, b: Value) -> Value:
    if op == "+":
        if isinstance(a, str) or isinstance(b, str):
            return to_str(a) + to_str(b)
        return to_number(a) + to_number(b)
    x, y = to_number(a), to_number(b)
    if op == "-":
        return x - y
    if op == "*":
        return x * y
    if y == 0:
        return 0
    if op == "/":
        return _tidy(x / y)
    if math.isinf(x):
        return math.nan
    return _tidy(math.fmod(x, y))


def _compare(op: str, a: Value, b: Value) -> bool:
    if op == "==":
        return loose_equals(a, b)
    if op == "!=":
        return not loose_equals(a, b)
    x, y = to_number(a), to_number(b)
    if op == ">":
        return x > y
    if op == "<":
        return x < y
    if op == ">=":
        return x >= y
    return x <= y


def evaluate(node: Node, variables: dict[str, Value]) -> Value:
    if isinstance(node, Literal):
        return node.value
    if isinstance(node, Variable):
        value = variables.get(node.name)
        return 0 if value is None else value
    if isinstance(node, Call):
        return _call(node.name, evaluate(node.arg, variables))
    if isinstance(node, Unary):
        operand = evaluate(node.operand, variables)
        if node.op == "!":
            return not truthy(operand)
        return -to_number(operand)
    if node.op == "||":
        return truthy(evaluate(node.left, variables)) or truthy(evaluate(node.right, variables))
    if node.op == "&&":
        return truthy(evaluate(node.left, variables)) and truthy(evaluate(node.right, variables))
    left = evaluate(node.left, variables)
    right = evaluate(node.right, variables)
    if node.op in _COMPARISON_OPS:
        return _compare(node.op, left, right)
    return _arith(node.op, left, right)


def eval_expression(src: str, variables: dict[str, Value] | None = None) -> Value:
    """Tokenize, parse and evaluate ``src`` in one go."""
    return evaluate(Parser(tokenize(src)).parse(), variables or {})


def eval_bool(src: str, variables: dict[str, Value] | None = None) -> bool:
    return truthy(eval_expression(src, variables))
