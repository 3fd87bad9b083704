"""
Tests for the pre-router (trivial query short-circuit).
"""

from datetime import datetime, timezone

import pytest

from src.routing.pre_router import PreRouter, evaluate_arithmetic

from tests.fakes import FixedClock


class TestTrivialQueries:
    """Queries answered without retrieval."""

    def setup_method(self):
        self.clock = FixedClock(datetime(2026, 6, 15, 14, 5, tzinfo=timezone.utc))
        self.router = PreRouter(self.clock)

    @pytest.mark.parametrize("query", ["hi", "Hello!", "hey there", "good morning", "How are you?"])
    def test_greetings(self, query):
        result = self.router.check_trivial(query)
        assert result.handled
        assert result.category == "greeting"
        assert result.answer

    @pytest.mark.parametrize("query", ["thanks!", "ok", "Got it.", "thank you"])
    def test_acknowledgments(self, query):
        result = self.router.check_trivial(query)
        assert result.handled
        assert result.category == "acknowledgment"

    def test_arithmetic(self):
        result = self.router.check_trivial("5 + 3")
        assert result.handled
        assert result.category == "arithmetic"
        assert result.answer == "5 + 3 = 8"

    def test_arithmetic_with_prefix(self):
        result = self.router.check_trivial("What is (2 + 3) * 4?")
        assert result.answer == "(2 + 3) * 4 = 20"

    def test_arithmetic_division(self):
        assert self.router.check_trivial("7 / 2").answer == "7 / 2 = 3.5"
        assert self.router.check_trivial("8 / 2").answer == "8 / 2 = 4"

    def test_time_reads_clock(self):
        result = self.router.check_trivial("what time is it?")
        assert result.handled
        assert result.category == "time"
        assert result.answer == "Current time: 14:05 UTC"

    def test_date_reads_clock(self):
        result = self.router.check_trivial("What's the date today")
        assert result.handled
        assert result.category == "date"
        assert result.answer == "Today is Monday, June 15, 2026"


class TestPassThrough:
    """Queries that must reach the full pipeline."""

    def setup_method(self):
        self.router = PreRouter(FixedClock())

    @pytest.mark.parametrize("query", [
        "what's the weather in Atlanta",
        "any news about the election",
        "what did I save about Lisbon?",
        "explain the benefits of sourdough fermentation",
        "how does the archive work",
        "hi, can you summarize everything I saved about my trip to Portugal last spring",
        "",
        "   ",
    ])
    def test_passes_through(self, query):
        result = self.router.check_trivial(query)
        assert result.handled is False
        assert result.answer is None

    def test_division_by_zero_passes_through(self):
        assert self.router.check_trivial("10 / 0").handled is False

    def test_huge_exponent_passes_through(self):
        assert self.router.check_trivial("2 ** 100000").handled is False

    def test_nested_powers_pass_through_quickly(self):
        result = self.router.check_trivial("((((9**99)**99)**99)**99)")
        assert result.handled is False

    def test_long_expression_passes_through(self):
        assert self.router.check_trivial("+".join(["1"] * 40)).handled is False

    def test_lone_number_passes_through(self):
        assert self.router.check_trivial("42").handled is False

    def test_to_dict(self):
        assert self.router.check_trivial("weather").to_dict() == {
            "handled": False, "answer": None, "category": None,
        }


class TestEvaluateArithmetic:
    """Tests for the restricted evaluator."""

    def test_operators(self):
        assert evaluate_arithmetic("2 + 3 * 4") == 14
        assert evaluate_arithmetic("17 // 5") == 3
        assert evaluate_arithmetic("17 % 5") == 2
        assert evaluate_arithmetic("2 ** 10") == 1024
        assert evaluate_arithmetic("-3 + 1") == -2

    def test_rejects_names_and_calls(self):
        with pytest.raises(ValueError):
            evaluate_arithmetic("__import__('os').system('ls') + 1")
        with pytest.raises(ValueError):
            evaluate_arithmetic("x + 1")

    def test_rejects_syntax_errors(self):
        with pytest.raises(ValueError):
            evaluate_arithmetic("2 +")

    def test_division_by_zero(self):
        with pytest.raises(ZeroDivisionError):
            evaluate_arithmetic("1 / 0")

    def test_large_base_power_rejected(self):
        assert evaluate_arithmetic("2 ** 64") == 18446744073709551616
        with pytest.raises(ValueError):
            evaluate_arithmetic("(9 ** 99) ** 99")
        with pytest.raises(ValueError):
            evaluate_arithmetic("9 ** 99 ** 99")
