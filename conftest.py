"""
Pytest configuration and shared fixtures.

This file contains pytest configuration and fixtures that are available
to all test modules in the project.
"""

import os
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

# Import all fixtures from the fixtures module
from tests.fixtures import *


def pytest_configure(config):
    """Configure pytest settings."""
    # Register custom markers
    config.addinivalue_line(
        "markers", "unit: Unit tests that test individual components in isolation"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests that test component interactions"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take longer than 1 second to run"
    )
    config.addinivalue_line(
        "markers", "config: Configuration-related tests"
    )
    config.addinivalue_line(
        "markers", "auth: Authorization decision tests"
    )
    config.addinivalue_line(
        "markers", "audit: Audit log tests"
    )
    config.addinivalue_line(
        "markers", "policy: Security policy tests"
    )
    config.addinivalue_line(
        "markers", "storage: Storage backend tests"
    )


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location and name."""
    for item in items:
        # Mark tests based on file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)

        # Mark tests based on function name patterns
        if "slow" in item.name or "timeout" in item.name or "concurrent" in item.name:
            item.add_marker(pytest.mark.slow)

        nodeid = item.nodeid.lower()

        if "config" in nodeid:
            item.add_marker(pytest.mark.config)

        if "authorizer" in nodeid or "permission" in nodeid or "denied" in nodeid:
            item.add_marker(pytest.mark.auth)

        if "audit" in nodeid:
            item.add_marker(pytest.mark.audit)

        if "polic" in nodeid or "rule" in nodeid or "expression" in nodeid:
            item.add_marker(pytest.mark.policy)

        if "storage" in nodeid or "wal" in item.name:
            item.add_marker(pytest.mark.storage)


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """Set up the test environment before any tests run."""
    os.environ["ACCESSCTL_ENVIRONMENT"] = "test"
    os.environ["ACCESSCTL_STORAGE_BACKEND"] = "memory"
    os.environ["ACCESSCTL_SWEEP_ENABLED"] = "false"

    yield

    os.environ.pop("ACCESSCTL_ENVIRONMENT", None)
    os.environ.pop("ACCESSCTL_STORAGE_BACKEND", None)
    os.environ.pop("ACCESSCTL_SWEEP_ENABLED", None)


@pytest.fixture(autouse=True)
def isolate_tests():
    """Isolate tests from each other by resetting global state."""
    from accessctl.config.settings import reload_settings
    from accessctl.core.expressions import compile_expression

    reload_settings()
    compile_expression.cache_clear()

    yield


@pytest.fixture
def temp_directory():
    """Provide a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def mock_environment_variables():
    """Provide a context manager for mocking environment variables."""
    def _mock_env(**kwargs):
        return patch.dict(os.environ, kwargs)

    return _mock_env


@pytest.fixture
def capture_logs():
    """Capture log output during tests."""
    import logging
    import io

    log_buffer = io.StringIO()

    handler = logging.StreamHandler(log_buffer)
    handler.setLevel(logging.DEBUG)

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    original_level = root_logger.level
    root_logger.setLevel(logging.DEBUG)

    yield log_buffer

    root_logger.removeHandler(handler)
    root_logger.setLevel(original_level)
