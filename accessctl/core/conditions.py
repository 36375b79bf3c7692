"""
Permission condition evaluation.

Conditions compare a field of the resource data (falling back to the request
context) against a tagged value. Each operator has an explicit comparator;
nothing is coerced between strings, numbers and booleans, and a missing
field fails the condition whatever the operator.
"""

from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from accessctl.models.access import Condition, ConditionOperator
from accessctl.utils.helpers import first_present


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _kind(value: Any) -> str:
    if isinstance(value, bool):
        return "bool"
    if _is_number(value):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple, set, frozenset)):
        return "list"
    return "other"


def values_equal(left: Any, right: Any) -> bool:
    """Equality without cross-kind coercion (``1 != "1"``, ``True != 1``)."""
    if _kind(left) != _kind(right):
        return False
    if _kind(left) == "list":
        left, right = list(left), list(right)
        return len(left) == len(right) and all(values_equal(a, b) for a, b in zip(left, right))
    return left == right


def _member(item: Any, collection: Iterable[Any]) -> bool:
    return any(values_equal(item, candidate) for candidate in collection)


def _equals(actual: Any, expected: Any) -> bool:
    return values_equal(actual, expected)


def _not_equals(actual: Any, expected: Any) -> bool:
    return not values_equal(actual, expected)


def _in(actual: Any, expected: Any) -> bool:
    return isinstance(expected, list) and _member(actual, expected)


def _not_in(actual: Any, expected: Any) -> bool:
    return isinstance(expected, list) and not _member(actual, expected)


def _greater_than(actual: Any, expected: Any) -> bool:
    return _is_number(actual) and _is_number(expected) and actual > expected


def _less_than(actual: Any, expected: Any) -> bool:
    return _is_number(actual) and _is_number(expected) and actual < expected


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str) and isinstance(expected, str):
        return expected.lower() in actual.lower()
    if isinstance(actual, (list, tuple, set, frozenset)):
        return _member(expected, actual)
    return False


COMPARATORS: Dict[ConditionOperator, Callable[[Any, Any], bool]] = {
    ConditionOperator.EQUALS: _equals,
    ConditionOperator.NOT_EQUALS: _not_equals,
    ConditionOperator.IN: _in,
    ConditionOperator.NOT_IN: _not_in,
    ConditionOperator.GREATER_THAN: _greater_than,
    ConditionOperator.LESS_THAN: _less_than,
    ConditionOperator.CONTAINS: _contains,
}


def evaluate_condition(
    condition: Condition,
    resource_data: Optional[Mapping[str, Any]] = None,
    context: Optional[Mapping[str, Any]] = None,
) -> bool:
    """Evaluate a single condition against resource data and context."""
    found, actual = first_present(condition.field, resource_data, context)
    if not found or actual is None:
        return False
    return COMPARATORS[condition.operator](actual, condition.value)


def evaluate_conditions(
    conditions: Iterable[Condition],
    resource_data: Optional[Mapping[str, Any]] = None,
    context: Optional[Mapping[str, Any]] = None,
) -> bool:
    """All conditions must hold; an empty list always holds."""
    return all(evaluate_condition(c, resource_data, context) for c in conditions)
