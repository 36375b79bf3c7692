"""Unit tests for utility helper functions."""

from datetime import datetime, timedelta, timezone

import pytest

from accessctl.utils.helpers import (
    ensure_utc,
    first_present,
    generate_id,
    lookup_path,
    utcnow
)


class TestTimeHelpers:
    """Test cases for UTC time helpers."""

    def test_utcnow_is_aware(self):
        """Test utcnow returns a timezone-aware UTC datetime."""
        now = utcnow()
        assert now.tzinfo is not None
        assert now.utcoffset() == timedelta(0)

    def test_ensure_utc(self):
        """Test normalising naive and offset datetimes."""
        naive = datetime(2024, 1, 1, 12, 0)
        assert ensure_utc(naive) == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

        offset = datetime(2024, 1, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
        converted = ensure_utc(offset)
        assert converted.hour == 12
        assert converted.tzinfo == timezone.utc

        assert ensure_utc(None) is None


class TestIdentifiers:
    """Test cases for identifier generation."""

    def test_generate_id_prefix(self):
        """Test identifiers carry their prefix and are unique."""
        ids = {generate_id("audit") for _ in range(100)}
        assert len(ids) == 100
        for value in ids:
            assert value.startswith("audit_")
            assert len(value) == len("audit_") + 24


class TestPathLookup:
    """Test cases for dotted path resolution."""

    def test_lookup_path(self):
        """Test resolving nested paths."""
        data = {"a": {"b": {"c": 1}}, "flag": False, "empty": None}
        test_cases = [
            ("a.b.c", (True, 1)),
            ("a.b", (True, {"c": 1})),
            ("flag", (True, False)),
            ("empty", (True, None)),
            ("a.x", (False, None)),
            ("empty.x", (False, None)),
            ("missing", (False, None)),
        ]

        for path, expected in test_cases:
            assert lookup_path(data, path) == expected, f"Failed for path: {path}"

    def test_lookup_path_objects(self):
        """Test resolving attributes of objects."""
        class Holder:
            department = "ops"

        assert lookup_path({"user": Holder()}, "user.department") == (True, "ops")

    def test_first_present(self):
        """Test the first source holding a path wins."""
        resource_data = {"status": "open"}
        context = {"status": "closed", "channel": "api"}

        assert first_present("status", resource_data, context) == (True, "open")
        assert first_present("channel", resource_data, context) == (True, "api")
        assert first_present("missing", resource_data, context) == (False, None)
        assert first_present("status", None, context) == (True, "closed")
