"""Unit tests for permission condition evaluation."""

import pytest

from accessctl.core.conditions import evaluate_condition, evaluate_conditions, values_equal
from accessctl.models.access import Condition, ConditionOperator


def cond(field, operator, value):
    return Condition(field=field, operator=ConditionOperator(operator), value=value)


class TestValuesEqual:
    """Test cases for kind-strict equality."""

    def test_no_cross_kind_coercion(self):
        """Test strings, numbers and booleans never compare equal to each other."""
        assert values_equal(1, 1.0)
        assert values_equal("a", "a")
        assert not values_equal(1, "1")
        assert not values_equal(True, 1)
        assert not values_equal(False, 0)
        assert not values_equal(None, "None")

    def test_lists(self):
        """Test lists compare element-wise."""
        assert values_equal(["a", 1], ["a", 1])
        assert not values_equal(["a", 1], ["a", "1"])
        assert not values_equal(["a"], ["a", "b"])


class TestOperators:
    """Test cases for each condition operator."""

    def test_equals(self):
        """Test equals and not_equals."""
        data = {"status": "open", "count": 3}
        assert evaluate_condition(cond("status", "equals", "open"), data)
        assert not evaluate_condition(cond("count", "equals", "3"), data)
        assert evaluate_condition(cond("status", "not_equals", "closed"), data)

    def test_in(self):
        """Test in and not_in against list values."""
        data = {"region": "eu"}
        assert evaluate_condition(cond("region", "in", ["eu", "us"]), data)
        assert not evaluate_condition(cond("region", "in", ["us"]), data)
        assert evaluate_condition(cond("region", "not_in", ["us"]), data)
        # Scalar right-hand side never matches
        assert not evaluate_condition(cond("region", "in", "eu"), data)
        assert not evaluate_condition(cond("region", "not_in", "us"), data)

    def test_greater_less_than(self):
        """Test numeric ordering refuses non-numbers."""
        data = {"amount": 150, "label": "150", "flag": True}
        assert evaluate_condition(cond("amount", "greater_than", 100), data)
        assert not evaluate_condition(cond("amount", "less_than", 100), data)
        assert not evaluate_condition(cond("label", "greater_than", 100), data)
        assert not evaluate_condition(cond("flag", "greater_than", 0), data)

    def test_contains(self):
        """Test contains is case-insensitive for strings and membership for lists."""
        data = {"title": "Urgent Repair", "tags": ["hvac", "roof"]}
        assert evaluate_condition(cond("title", "contains", "urgent"), data)
        assert evaluate_condition(cond("tags", "contains", "roof"), data)
        assert not evaluate_condition(cond("tags", "contains", "plumbing"), data)


class TestFieldResolution:
    """Test cases for resolving the compared field."""

    def test_missing_field_fails_every_operator(self):
        """Test a missing or null field fails the condition, even negative operators."""
        for operator, value in [
            ("equals", "x"),
            ("not_equals", "x"),
            ("in", ["x"]),
            ("not_in", ["x"]),
            ("greater_than", 1),
            ("less_than", 1),
            ("contains", "x"),
        ]:
            assert not evaluate_condition(cond("missing", operator, value), {}), operator
            assert not evaluate_condition(cond("empty", operator, value), {"empty": None}), operator

    def test_context_fallback(self):
        """Test context is consulted when resource data lacks the field."""
        condition = cond("channel", "equals", "api")
        assert evaluate_condition(condition, {}, {"channel": "api"})
        assert not evaluate_condition(condition, {"channel": "web"}, {"channel": "api"})

    def test_nested_field(self):
        """Test dotted field paths."""
        condition = cond("owner.department", "equals", "ops")
        assert evaluate_condition(condition, {"owner": {"department": "ops"}})

    def test_all_conditions_must_hold(self):
        """Test conditions are ANDed and an empty list holds."""
        data = {"status": "open", "amount": 10}
        assert evaluate_conditions([], data)
        assert evaluate_conditions(
            [cond("status", "equals", "open"), cond("amount", "less_than", 20)], data
        )
        assert not evaluate_conditions(
            [cond("status", "equals", "open"), cond("amount", "greater_than", 20)], data
        )
