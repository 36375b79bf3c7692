"""Unit tests for the security rule expression language."""

from datetime import datetime, timezone

import pytest

from accessctl.core.errors import ExpressionError
from accessctl.core.expressions import (
    MAX_EXPRESSION_LENGTH,
    Expression,
    compile_expression,
    tokenize
)

NOW = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)  # Monday


@pytest.fixture
def bag():
    return {
        "user_id": "u1",
        "resource": "properties",
        "action": "delete",
        "resource_data": {"id": "p1", "amount": 250, "tags": ["vip", "eu"], "owner_id": "u1"},
        "context": {"channel": "API-Gateway", "ip_address": "10.0.0.1"},
        "user": {"id": "u1", "metadata": {"department": "ops"}},
        "roles": ["admin", "user"],
        "permission": {"id": "manage_properties", "scope": "all", "risk_level": "high"},
        "now": NOW,
    }


def run(source, bag):
    return Expression(source).evaluate(bag, NOW)


class TestTokenizer:
    """Test cases for tokenization."""

    def test_tokenize_keywords_and_operators(self):
        """Test keywords are distinguished from identifiers."""
        kinds = [(t.kind, t.value) for t in tokenize('action == "x" and not in_list')]
        assert kinds == [
            ("ident", "action"),
            ("op", "=="),
            ("string", '"x"'),
            ("keyword", "and"),
            ("keyword", "not"),
            ("ident", "in_list"),
            ("eof", ""),
        ]

    def test_tokenize_rejects_unknown_characters(self):
        """Test unsupported characters fail at tokenization."""
        with pytest.raises(ExpressionError):
            tokenize("action == `x`")


class TestParsing:
    """Test cases for parse-time validation."""

    @pytest.mark.parametrize("source", [
        "",
        "action ==",
        "(action == \"x\"",
        "action == \"x\" extra",
        "unknown_fn(action)",
        "hour()",
        "lower(action, resource)",
        "__import__(\"os\")",
        "action.__class__ ==",
    ])
    def test_invalid_expressions(self, source):
        """Test syntax errors and unknown functions raise ExpressionError."""
        with pytest.raises(ExpressionError):
            Expression(source)

    def test_length_limit(self):
        """Test overly long expressions are rejected."""
        source = " or ".join(["true"] * (MAX_EXPRESSION_LENGTH // 4))
        with pytest.raises(ExpressionError):
            Expression(source)

    def test_nesting_limit(self):
        """Test deeply nested expressions are rejected."""
        with pytest.raises(ExpressionError):
            Expression("not " * 40 + "true")

    def test_nested_list_limit(self):
        """Test deeply nested list literals raise ExpressionError."""
        with pytest.raises(ExpressionError, match="nested too deeply"):
            Expression("action in " + "[" * 900 + "1" + "]" * 900)

    def test_shallow_nested_lists(self, bag):
        """Test nested lists within the limit still parse."""
        assert run("[[1, 2], [3]] contains [3]", bag) is True

    def test_compile_expression_caches(self):
        """Test compiled expressions are cached by source."""
        assert compile_expression('action == "x"') is compile_expression('action == "x"')


class TestEvaluation:
    """Test cases for evaluating expressions against a context bag."""

    @pytest.mark.parametrize("source,expected", [
        ('action == "delete"', True),
        ('action != "delete"', False),
        ('resource in ["properties", "tenants"]', True),
        ('resource not in ["properties"]', False),
        ('"vip" in resource_data.tags', True),
        ('resource_data.tags contains "eu"', True),
        ('context.channel contains "gateway"', True),
        ('lower(context.channel) == "api-gateway"', True),
        ('resource_data.amount > 100 and resource_data.amount <= 250', True),
        ('resource_data.amount < -1', False),
        ('user.metadata.department == "ops"', True),
        ('resource_data.owner_id == user_id', True),
        ('permission.risk_level == "critical"', False),
        ('"admin" in roles', True),
        ('len(roles) == 2', True),
        ('not (action == "read")', True),
        ('action == "read" or action == "delete"', True),
        ('true and false', False),
    ])
    def test_operators(self, bag, source, expected):
        """Test comparison and boolean operators."""
        assert run(source, bag) is expected

    def test_time_functions(self, bag):
        """Test now() and the calendar helpers use the evaluation clock."""
        assert run("hour(now()) == 10", bag)
        assert run("minute(now()) == 30", bag)
        assert run("weekday(now()) == 0", bag)
        assert run("hour(now()) < 8 or hour(now()) >= 18", bag) is False
        assert run("hour(now) == 10", bag)

    def test_iso_string_timestamps(self, bag):
        """Test time helpers accept ISO-8601 strings."""
        bag["resource_data"]["created_at"] = "2024-01-13T22:15:00Z"
        assert run("hour(resource_data.created_at) == 22", bag)
        assert run("weekday(resource_data.created_at) == 5", bag)

    def test_missing_paths_are_null(self, bag):
        """Test missing paths resolve to null and ordering with null is false."""
        assert run("resource_data.missing == null", bag)
        assert run("resource_data.missing != \"x\"", bag)
        assert run("resource_data.missing > 1", bag) is False
        assert run("resource_data.missing < 1", bag) is False
        assert run("resource_data.missing", bag) is False

    def test_no_cross_kind_equality(self, bag):
        """Test equality never coerces between kinds."""
        assert run('resource_data.amount == "250"', bag) is False
        assert run("resource_data.amount == 250", bag)

    def test_incompatible_ordering_raises(self, bag):
        """Test ordering a string against a number fails instead of guessing."""
        with pytest.raises(ExpressionError):
            run("action > 3", bag)

    def test_non_boolean_result_raises(self, bag):
        """Test a rule must produce a boolean."""
        with pytest.raises(ExpressionError):
            run("resource_data.amount", bag)

    def test_bad_function_argument_raises(self, bag):
        """Test helper type errors surface as ExpressionError."""
        with pytest.raises(ExpressionError):
            run("hour(action) == 1", bag)
        with pytest.raises(ExpressionError):
            run("lower(resource_data.amount) == \"x\"", bag)

    def test_in_requires_collection(self, bag):
        """Test 'in' against a number raises."""
        with pytest.raises(ExpressionError):
            run("action in resource_data.amount", bag)

    def test_no_attribute_escape(self, bag):
        """Test paths only walk mappings and plain attributes of the bag."""
        assert run("action.upper == null", bag)

    def test_string_escapes(self, bag):
        """Test quoted strings support escapes and single quotes."""
        bag["context"]["note"] = 'say "hi"'
        assert run(r'context.note == "say \"hi\""', bag)
        assert run("action == 'delete'", bag)
