"""Integration tests for concurrent callers of the service."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from accessctl.models.access import AuditAction, User

WORKERS = 32
ROUNDS = 20


def run_concurrently(fn, args_list):
    """Run ``fn`` once per argument tuple, all threads released together."""
    barrier = threading.Barrier(len(args_list))

    def call(args):
        barrier.wait()
        return fn(*args)

    with ThreadPoolExecutor(max_workers=len(args_list)) as executor:
        return list(executor.map(call, args_list))


def persisted_roles(store, user_id):
    record = store.get("role_assignments", user_id) or {"assignments": []}
    return sorted(a["role_id"] for a in record["assignments"] if a["is_active"])


@pytest.fixture
def many_users(identity):
    user_ids = [f"worker{i}" for i in range(WORKERS)]
    for user_id in user_ids:
        identity.upsert_user(User(id=user_id, email=f"{user_id}@example.com"))
    return user_ids


class TestConcurrentAssignments:
    """Test cases for role grants from many threads."""

    def test_grants_to_different_users_are_all_kept(self, service, memory_store, many_users):
        for _ in range(ROUNDS):
            run_concurrently(service.assign_role, [(user_id, "user", "admin") for user_id in many_users])

        for user_id in many_users:
            assert service.get_user_roles(user_id) == ["user"]
            assert persisted_roles(memory_store, user_id) == ["user"]
            assert len(service.get_assignments(user_id, include_inactive=True)) == ROUNDS

    def test_grants_to_one_user_leave_one_active_entry(self, service, memory_store):
        run_concurrently(service.assign_role, [("u1", "manager", f"admin{i}") for i in range(WORKERS)])

        history = service.get_assignments("u1", include_inactive=True)
        assert len(history) == WORKERS
        assert [a.role_id for a in history if a.is_active] == ["manager"]
        assert persisted_roles(memory_store, "u1") == ["manager"]
        assert len(service.query_audit_log(action=AuditAction.ROLE_ASSIGNED)) == WORKERS

    def test_mixed_roles_for_many_users(self, service, memory_store, many_users):
        calls = [(user_id, role_id, "admin") for user_id in many_users[:8] for role_id in ("user", "tenant")]
        run_concurrently(service.assign_role, calls)

        for user_id in many_users[:8]:
            assert sorted(service.get_user_roles(user_id)) == ["tenant", "user"]
            assert persisted_roles(memory_store, user_id) == ["tenant", "user"]


class TestConcurrentWorkflow:
    """Test cases for access requests and policies created in parallel."""

    def test_create_access_requests(self, service, memory_store, many_users):
        created = run_concurrently(
            service.create_access_request,
            [(user_id, user_id, ["manager"]) for user_id in many_users],
        )

        ids = {request.id for request in created}
        assert len(ids) == WORKERS
        assert {r.id for r in service.list_access_requests()} == ids
        assert set(memory_store.list("access_requests")) == ids

    def test_approve_different_requests(self, service, many_users):
        requests = [service.create_access_request(user_id, user_id, ["tenant"]) for user_id in many_users]

        results = run_concurrently(service.approve_access_request, [(r.id, "admin") for r in requests])

        assert all(results)
        assert all(service.get_user_roles(user_id) == ["tenant"] for user_id in many_users)
        assert service.list_access_requests(status="pending") == []

    def test_approve_same_request_once(self, service):
        request = service.create_access_request("u1", "u1", ["manager"])

        results = run_concurrently(service.approve_access_request, [(request.id, f"admin{i}") for i in range(8)])

        assert results.count(True) == 1
        assert len(service.get_assignments("u1", include_inactive=True)) == 1

    def test_create_policies(self, service, memory_store):
        definitions = [
            ({"id": f"policy_{i}", "name": f"Policy {i}", "rules": []}, "admin")
            for i in range(WORKERS)
        ]
        run_concurrently(service.create_policy, definitions)

        assert len(service.list_policies()) == WORKERS
        assert len(memory_store.list("security_policies")) == WORKERS


class TestConcurrentDecisions:
    """Test cases for decisions made while other threads decide."""

    def test_one_audit_entry_per_concurrent_decision(self, service):
        service.assign_role("u1", "user", "admin")

        decisions = run_concurrently(service.check_access, [("u1", "profile", "read")] * WORKERS)

        assert len({d.allowed for d in decisions}) == 1
        assert len(service.query_audit_log(user_id="u1")) == WORKERS

    def test_decisions_during_grants(self, service, many_users):
        calls = [(service.assign_role, (user_id, "user", "admin")) for user_id in many_users[:16]]
        calls += [(service.check_access, ("u2", "profile", "read")) for _ in range(16)]

        run_concurrently(lambda fn, args: fn(*args), calls)

        assert len(service.query_audit_log(user_id="u2")) == 16
        assert all(service.get_user_roles(user_id) == ["user"] for user_id in many_users[:16])
