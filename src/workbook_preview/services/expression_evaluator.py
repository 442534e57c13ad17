"""Evaluate conditional formatting expressions without ``eval``.

After cell references are replaced by their values, an expression may only
contain digits, whitespace, ``+ - * / ( ) > < = ! & | .``. Anything else,
including identifiers, quotes and function calls, is rejected before parsing.

Grammar (lowest to highest precedence)::

    or      := and (("||" | "|") and)*
    and     := compare (("&&" | "&") compare)*
    compare := sum (("=" | "==" | "===" | "!=" | "!==" | "<>"
                     | "<" | "<=" | ">" | ">=") sum)*
    sum     := product (("+" | "-") product)*
    product := unary (("*" | "/") unary)*
    unary   := ("!" | "-" | "+") unary | primary
    primary := number | "(" or ")"
"""

from __future__ import annotations

import re
from collections.abc import Mapping

from workbook_preview.utils.addressing import column_index
from workbook_preview.workbook import CellValue, is_number

SAFE_EXPRESSION_RE = re.compile(r"^[\d\s+\-*/()><=!&|.]+$")

# A1 references, not followed by "(" so function names are left alone.
REFERENCE_RE = re.compile(r"(?<![A-Za-z_\d])\$?([A-Z]{1,3})\$?(\d+)(?![\w(])")

_TOKEN_RE = re.compile(
    r"\s*(?:(\d+\.?\d*|\.\d+)|(===|!==|==|!=|<>|<=|>=|&&|\|\||[<>=!&|+\-*/()]))"
)

MAX_EXPRESSION_LENGTH = 2048


class ExpressionError(ValueError):
    """Raised for expressions that are unsafe, malformed or undefined."""


def substitute_references(expression: str, values: Mapping[str, CellValue]) -> str:
    """Replace A1 references with literal values.

    Empty cells become ``0`` and booleans ``1``/``0``. Text, errors and rich
    text are left as the reference itself so the whitelist rejects them.
    """

    def replace(match: re.Match[str]) -> str:
        column = match.group(1)
        try:
            column_index(column)
        except ValueError:
            return match.group(0)
        address = f"{column}{match.group(2)}"
        value = values.get(address)
        if value is None or value == "":
            return "0"
        if isinstance(value, bool):
            return "1" if value else "0"
        if is_number(value):
            text = repr(float(value)) if isinstance(value, float) else str(value)
            if "e" in text or "E" in text or "inf" in text or "nan" in text:
                return match.group(0)
            return f"({text})" if text.startswith("-") else text
        return match.group(0)

    return REFERENCE_RE.sub(replace, expression)


def is_safe_expression(expression: str) -> bool:
    return (
        bool(expression.strip())
        and len(expression) <= MAX_EXPRESSION_LENGTH
        and SAFE_EXPRESSION_RE.match(expression) is not None
    )


def _tokenize(expression: str) -> list[str]:
    tokens = []
    position = 0
    while position < len(expression):
        if expression[position:].strip() == "":
            break
        match = _TOKEN_RE.match(expression, position)
        if match is None or match.end() == position:
            raise ExpressionError(f"Unexpected input at {position}")
        tokens.append(match.group(1) or match.group(2))
        position = match.end()
    return tokens


class _Parser:
    def __init__(self, tokens: list[str]) -> None:
        self._tokens = tokens
        self._position = 0

    def _peek(self) -> str | None:
        if self._position < len(self._tokens):
            return self._tokens[self._position]
        return None

    def _take(self) -> str:
        token = self._peek()
        if token is None:
            raise ExpressionError("Unexpected end of expression")
        self._position += 1
        return token

    def parse(self) -> float | bool:
        result = self._or()
        if self._peek() is not None:
            raise ExpressionError(f"Unexpected token {self._peek()!r}")
        return result

    def _or(self) -> float | bool:
        left = self._and()
        while self._peek() in ("||", "|"):
            operator = self._take()
            right = self._and()
            if operator == "||":
                left = left or right
            else:
                left = float(int(_number(left)) | int(_number(right)))
        return left

    def _and(self) -> float | bool:
        left = self._compare()
        while self._peek() in ("&&", "&"):
            operator = self._take()
            right = self._compare()
            if operator == "&&":
                left = left and right
            else:
                left = float(int(_number(left)) & int(_number(right)))
        return left

    def _compare(self) -> float | bool:
        left = self._sum()
        while self._peek() in ("=", "==", "===", "!=", "!==", "<>", "<", "<=", ">", ">="):
            operator = self._take()
            a, b = _number(left), _number(self._sum())
            if operator in ("=", "==", "==="):
                left = a == b
            elif operator in ("!=", "!==", "<>"):
                left = a != b
            elif operator == "<":
                left = a < b
            elif operator == "<=":
                left = a <= b
            elif operator == ">":
                left = a > b
            else:
                left = a >= b
        return left

    def _sum(self) -> float | bool:
        left = self._product()
        while self._peek() in ("+", "-"):
            operator = self._take()
            right = _number(self._product())
            left = _number(left) + right if operator == "+" else _number(left) - right
        return left

    def _product(self) -> float | bool:
        left = self._unary()
        while self._peek() in ("*", "/"):
            operator = self._take()
            right = _number(self._unary())
            if operator == "*":
                left = _number(left) * right
            else:
                if right == 0:
                    raise ExpressionError("Division by zero")
                left = _number(left) / right
        return left

    def _unary(self) -> float | bool:
        token = self._peek()
        if token == "!":
            self._take()
            return not self._unary()
        if token == "-":
            self._take()
            return -_number(self._unary())
        if token == "+":
            self._take()
            return _number(self._unary())
        return self._primary()

    def _primary(self) -> float | bool:
        token = self._take()
        if token == "(":
            value = self._or()
            if self._take() != ")":
                raise ExpressionError("Unbalanced parentheses")
            return value
        try:
            return float(token)
        except ValueError as e:
            raise ExpressionError(f"Unexpected token {token!r}") from e


def _number(value: float | bool) -> float:
    return float(value)


def evaluate_expression(expression: str) -> bool:
    """Evaluate an already substituted expression to a truth value.

    Raises:
        ExpressionError: If the expression fails the character whitelist,
            does not parse, or divides by zero.
    """
    if not is_safe_expression(expression):
        raise ExpressionError("Expression contains disallowed characters")
    try:
        return bool(_Parser(_tokenize(expression)).parse())
    except RecursionError as e:
        raise ExpressionError("Expression nested too deeply") from e
