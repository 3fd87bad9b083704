"""
Pre-Router
==========

Answers trivial queries directly, before any retrieval or model call:
- Greetings and short acknowledgments
- Arithmetic expressions
- Current time and date (from the injected clock)

Conservative by construction: anything that looks like a real question is
passed through. A wrong direct answer is worse than an unneeded pipeline call.
"""

import ast
import logging
import math
import operator
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Union

from src.knowledge.models import utcnow

logger = logging.getLogger(__name__)

MAX_TRIVIAL_WORDS = 8
MAX_EXPONENT = 100
MAX_RESULT_DIGITS = 1000
MAX_EXPRESSION_CHARS = 64

COMPLEX_QUESTION_PATTERNS = [
    re.compile(p) for p in (
        r"explain.*benefits",
        r"what.*would.*be",
        r"analy[sz]e.*impact",
        r"comprehensive.*overview",
        r"detailed.*explanation",
        r"pros.*and.*cons",
        r"advantages.*disadvantages",
        r"how.*does.*work",
        r"why.*is.*important",
        r"what.*are.*the.*implications",
    )
]

GREETING_PATTERNS = [
    re.compile(p) for p in (
        r"^(hi|hey|hello|yo|sup|wassup|greetings)( there)?$",
        r"^good (morning|afternoon|evening|day)$",
        r"^how are you( doing)?( today)?$",
        r"^what'?s up$",
    )
]

ACKNOWLEDGMENTS = frozenset({
    "ok", "okay", "cool", "nice", "thanks", "thank you", "thx", "got it",
    "sure", "yeah", "yep", "nope", "no", "yes", "alright", "great",
})

TIME_PATTERNS = [
    re.compile(p) for p in (
        r"^what time is it( now)?$",
        r"^what'?s the time( now)?$",
        r"^(current|the) time$",
    )
]

DATE_PATTERNS = [
    re.compile(p) for p in (
        r"^what'?s? (is )?(the )?date( today)?$",
        r"^what'?s? (is )?today'?s? date$",
        r"^what day is (it|today)$",
        r"^(today'?s|the) date$",
    )
]

ARITHMETIC_PATTERN = re.compile(r"^(?:what is |what's |calculate |compute )?([\d\s.+\-*/%()]+)$")

GREETING_REPLY = "Hello! How can I help you today?"
ACKNOWLEDGMENT_REPLY = "Got it! Anything else I can help with?"

BINARY_OPERATORS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

UNARY_OPERATORS = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}

Number = Union[int, float]


@dataclass
class PreRouteResult:
    """Either a direct answer or a pass-through to the full pipeline."""
    handled: bool
    answer: Optional[str] = None
    category: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"handled": self.handled, "answer": self.answer, "category": self.category}


PASS_THROUGH = PreRouteResult(handled=False)


def evaluate_arithmetic(expression: str) -> Number:
    """
    Evaluate a plain arithmetic expression.

    Only numbers, + - * / // % **, unary signs and parentheses are allowed.

    Raises:
        ValueError: If the expression is not plain arithmetic or its result would be too large
        ZeroDivisionError: On division by zero
    """
    if len(expression) > MAX_EXPRESSION_CHARS:
        raise ValueError(f"Expression longer than {MAX_EXPRESSION_CHARS} characters")

    try:
        tree = ast.parse(expression.strip(), mode="eval")
    except SyntaxError as e:
        raise ValueError(f"Not an arithmetic expression: {expression}") from e

    if not any(isinstance(node, ast.BinOp) for node in ast.walk(tree)):
        raise ValueError("No operator in expression")

    return _eval_node(tree.body)


def _eval_node(node: ast.AST) -> Number:
    if isinstance(node, ast.Constant) and type(node.value) in (int, float):
        return node.value

    if isinstance(node, ast.UnaryOp) and type(node.op) in UNARY_OPERATORS:
        return UNARY_OPERATORS[type(node.op)](_eval_node(node.operand))

    if isinstance(node, ast.BinOp) and type(node.op) in BINARY_OPERATORS:
        left = _eval_node(node.left)
        right = _eval_node(node.right)
        if isinstance(node.op, ast.Pow):
            _check_power(left, right)
        return BINARY_OPERATORS[type(node.op)](left, right)

    raise ValueError(f"Unsupported element: {type(node).__name__}")


def _check_power(base: Number, exponent: Number) -> None:
    """Reject powers whose result would not stay small, before computing them."""
    if abs(exponent) > MAX_EXPONENT:
        raise ValueError(f"Exponent {exponent} too large")
    if abs(base) <= 1 or exponent <= 0:
        return
    digits = exponent * math.log10(abs(base))
    if digits > MAX_RESULT_DIGITS:
        raise ValueError(f"Result of {exponent} power would have about {int(digits)} digits")


def _format_number(value: Number) -> str:
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return f"{value:.10g}"
    return str(value)


class PreRouter:
    """Direct answers for greetings, acknowledgments, arithmetic, time and date."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock

    def check_trivial(self, query: str) -> PreRouteResult:
        """
        Check whether a query can be answered without retrieval or a model call.

        Returns:
            PreRouteResult with handled=True and the answer, or a pass-through
        """
        normalized = " ".join(query.lower().split())
        normalized = normalized.rstrip("?!. ")
        if not normalized:
            return PASS_THROUGH

        # Complex questions always go to the full pipeline
        if any(p.search(normalized) for p in COMPLEX_QUESTION_PATTERNS):
            return PASS_THROUGH
        if len(normalized.split()) > MAX_TRIVIAL_WORDS:
            return PASS_THROUGH

        if any(p.match(normalized) for p in GREETING_PATTERNS):
            return self._handled(GREETING_REPLY, "greeting")

        if normalized in ACKNOWLEDGMENTS:
            return self._handled(ACKNOWLEDGMENT_REPLY, "acknowledgment")

        if any(p.match(normalized) for p in TIME_PATTERNS):
            now = self.clock()
            return self._handled(f"Current time: {now.strftime('%H:%M %Z').strip()}", "time")

        if any(p.match(normalized) for p in DATE_PATTERNS):
            now = self.clock()
            return self._handled(f"Today is {now.strftime('%A, %B')} {now.day}, {now.year}", "date")

        match = ARITHMETIC_PATTERN.match(normalized)
        if match:
            expression = match.group(1).strip()
            try:
                value = _format_number(evaluate_arithmetic(expression))
            except (ValueError, ZeroDivisionError, OverflowError) as e:
                logger.debug(f"Arithmetic pass-through for '{expression}': {e}")
                return PASS_THROUGH
            return self._handled(f"{expression} = {value}", "arithmetic")

        return PASS_THROUGH

    @staticmethod
    def _handled(answer: str, category: str) -> PreRouteResult:
        logger.debug(f"Pre-routed as {category}")
        return PreRouteResult(handled=True, answer=answer, category=category)
