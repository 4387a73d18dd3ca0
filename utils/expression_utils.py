"""
Whitelisted arithmetic for rule quantity expressions.

Expressions such as ``length * height_ft * 2 / 32`` have their identifiers
replaced by numbers, are checked against ALLOWED_EXPRESSION, and are then
evaluated by a small recursive-descent parser over ``+ - * / ( )`` and numeric
literals. Nothing is ever handed to eval().
"""
import math
import re
from typing import Dict, List, Tuple

from utils.exceptions import ExpressionError

ALLOWED_EXPRESSION = re.compile(r"^[0-9+\-*/.()\s]+$")

_TOKEN = re.compile(r"\s*(?:(\d+\.?\d*|\.\d+)|(.))")


def format_number(value: float) -> str:
    """Render a number without exponent notation so it passes the pre-check."""
    text = repr(float(value))
    if "e" in text or "E" in text:
        text = f"{float(value):.15f}".rstrip("0").rstrip(".") or "0"
    return text


def substitute_identifiers(expression: str, values: Dict[str, float]) -> str:
    """Replace whole-word identifiers, longest name first."""
    result = expression
    for name in sorted(values, key=len, reverse=True):
        result = re.sub(rf"\b{re.escape(name)}\b", format_number(values[name]), result)
    return result


def _tokenize(expression: str) -> List[Tuple[str, str]]:
    tokens = []
    position = 0
    stripped = expression.rstrip()
    while position < len(stripped):
        match = _TOKEN.match(stripped, position)
        if not match:
            raise ExpressionError(f"Unexpected input at position {position}")
        number, symbol = match.groups()
        if number is not None:
            tokens.append(("num", number))
        elif symbol in "+-*/()":
            tokens.append(("op", symbol))
        else:
            raise ExpressionError(f"Unexpected character {symbol!r}")
        position = match.end()
    return tokens


class _Parser:
    def __init__(self, tokens: List[Tuple[str, str]]):
        self.tokens = tokens
        self.pos = 0

    def peek(self):
        return self.tokens[self.pos] if self.pos < len(self.tokens) else (None, None)

    def take(self):
        token = self.peek()
        self.pos += 1
        return token

    def parse(self) -> float:
        if not self.tokens:
            raise ExpressionError("Empty expression")
        value = self.expression()
        if self.pos != len(self.tokens):
            raise ExpressionError(f"Unexpected token {self.peek()[1]!r}")
        return value

    def expression(self) -> float:
        value = self.term()
        while self.peek() in (("op", "+"), ("op", "-")):
            _, op = self.take()
            rhs = self.term()
            value = value + rhs if op == "+" else value - rhs
        return value

    def term(self) -> float:
        value = self.factor()
        while self.peek() in (("op", "*"), ("op", "/")):
            _, op = self.take()
            rhs = self.factor()
            if op == "*":
                value = value * rhs
            else:
                if rhs == 0:
                    raise ExpressionError("Division by zero")
                value = value / rhs
        return value

    def factor(self) -> float:
        kind, text = self.take()
        if kind == "num":
            return float(text)
        if (kind, text) == ("op", "-"):
            return -self.factor()
        if (kind, text) == ("op", "+"):
            return self.factor()
        if (kind, text) == ("op", "("):
            value = self.expression()
            if self.take() != ("op", ")"):
                raise ExpressionError("Unbalanced parentheses")
            return value
        raise ExpressionError(f"Unexpected token {text!r}" if text else "Unexpected end of expression")


def evaluate_arithmetic(expression: str) -> float:
    """Evaluate an already-substituted arithmetic string."""
    if not ALLOWED_EXPRESSION.match(expression):
        raise ExpressionError(
            f"Invalid expression - contains non-numeric or non-operator characters: {expression!r}"
        )
    value = _Parser(_tokenize(expression)).parse()
    if not math.isfinite(value):
        raise ExpressionError(f"Expression did not evaluate to a finite number: {expression!r}")
    return value


def evaluate_expression(expression: str, values: Dict[str, float]) -> float:
    """
    Substitute identifiers from ``values`` into ``expression`` and evaluate it.

    Raises:
        ExpressionError: unknown identifiers remain, the syntax is invalid, or the
            result is not finite
    """
    substituted = substitute_identifiers(str(expression), values)
    try:
        return evaluate_arithmetic(substituted)
    except ExpressionError as e:
        raise ExpressionError(f"Cannot evaluate expression: {expression} - {e}") from e
