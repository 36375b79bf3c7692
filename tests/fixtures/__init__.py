"""Test fixtures for access-control tests."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

import pytest
from fastapi.testclient import TestClient

from accessctl.config import AccessControlConfig
from accessctl.core.identity import InMemoryIdentityStore
from accessctl.core.service import AccessControlService
from accessctl.models.access import User, UserMetadata, UserStatus
from accessctl.storage.memory import InMemoryStore

# A Monday, inside business hours
START_TIME = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: datetime = START_TIME):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, value: datetime) -> None:
        self.now = value


def make_users() -> List[User]:
    return [
        User(id="u1", email="u1@example.com", metadata=UserMetadata(department="ops")),
        User(id="u2", email="u2@example.com", metadata=UserMetadata(department="ops")),
        User(id="u3", email="u3@example.com", metadata=UserMetadata(department="sales")),
        User(id="u4", email="u4@example.com", status=UserStatus.INACTIVE),
        User(id="admin", email="admin@example.com"),
    ]


def build_service(
    clock: FakeClock,
    config: AccessControlConfig = None,
    store=None,
    identity=None,
    **kwargs: Any
) -> AccessControlService:
    """Construct and initialize a service over in-memory collaborators."""
    service = AccessControlService(
        config or AccessControlConfig(),
        store or InMemoryStore(),
        identity=identity or InMemoryIdentityStore(make_users()),
        clock=clock,
        **kwargs
    )
    return service.init()


@pytest.fixture
def clock():
    """Fake clock starting at a fixed Monday morning."""
    return FakeClock()


@pytest.fixture
def memory_store():
    return InMemoryStore()


@pytest.fixture
def identity():
    """Identity store with u1/u2 (ops), u3 (sales), u4 (inactive) and admin."""
    return InMemoryIdentityStore(make_users())


@pytest.fixture
def service(clock, memory_store, identity):
    """Initialized service with system roles and no policies."""
    service = build_service(clock, store=memory_store, identity=identity)
    yield service
    service.close()


@pytest.fixture
def test_client(service):
    """Create a test client for an app bound to the service fixture."""
    from accessctl.main import create_app

    return TestClient(create_app(service))


@pytest.fixture
def admin_headers() -> Dict[str, str]:
    return {"X-Actor-Id": "admin"}


@pytest.fixture
def sample_permission() -> Dict[str, Any]:
    return {
        "id": "read_invoices",
        "resource": "invoices",
        "action": "read",
        "scope": "all",
        "metadata": {"description": "Read invoices", "risk_level": "medium"},
    }


@pytest.fixture
def deny_delete_policy() -> Dict[str, Any]:
    return {
        "id": "no_deletes",
        "name": "No deletes",
        "enforcement_level": "blocking",
        "rules": [
            {
                "id": "deny_delete",
                "condition": 'action == "delete"',
                "action": "deny",
                "severity": "high",
                "message": "Deletes are frozen",
            }
        ],
    }
