"""
Utility helper functions for the access-control engine.

This module provides common utility functions used throughout the engine.
"""

import secrets
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Tuple


_MISSING = object()


def utcnow() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalise a datetime to UTC.

    Naive datetimes are assumed to already be in UTC.

    Examples:
        datetime(2024, 1, 1) -> datetime(2024, 1, 1, tzinfo=timezone.utc)
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def generate_id(prefix: str) -> str:
    """
    Generate a unique, prefixed identifier.

    Args:
        prefix: Identifier prefix (e.g. "audit", "role", "req")

    Returns:
        Identifier like "audit_1f2e3d4c5b6a7980a1b2c3d4"
    """
    return f"{prefix}_{secrets.token_hex(12)}"


def lookup_path(data: Any, path: str) -> Tuple[bool, Any]:
    """
    Resolve a dotted path against nested mappings and objects.

    Args:
        data: Mapping or object to search
        path: Dotted path (e.g. "metadata.department")

    Returns:
        Tuple of (found, value)

    Examples:
        ({"a": {"b": 1}}, "a.b") -> (True, 1)
        ({"a": {}}, "a.b") -> (False, None)
    """
    current = data
    for part in path.split('.'):
        if current is None:
            return False, None
        if isinstance(current, Mapping):
            current = current.get(part, _MISSING)
        else:
            current = getattr(current, part, _MISSING)
        if current is _MISSING:
            return False, None
    return True, current


def first_present(path: str, *sources: Any) -> Tuple[bool, Any]:
    """
    Resolve a dotted path against each source in order.

    Returns the first hit; ``(False, None)`` when no source has the path.
    """
    for source in sources:
        if source is None:
            continue
        found, value = lookup_path(source, path)
        if found:
            return True, value
    return False, None
