"""
Security policy engine.

Policies group rules whose conditions are rule expressions evaluated after
the base permission check. Evaluation is first-deny-wins: every active rule
of every active policy is evaluated in a fixed order (policies by id, rules
in list order), and the first matching ``deny`` or ``require_approval`` rule
vetoes the request.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from accessctl.config.logging import engine_logger
from accessctl.core.errors import AlreadyExists, InvalidInput, NotFound
from accessctl.core.expressions import compile_expression
from accessctl.core.locks import KeyedLock
from accessctl.models.access import RuleAction, SecurityPolicy, SecurityRule
from accessctl.storage.base import KeyValueStore
from accessctl.utils.helpers import generate_id, utcnow

logger = logging.getLogger(__name__)

DEFAULT_DENY_MESSAGE = "Access denied by security policy"
UPDATABLE_FIELDS = {"name", "description", "type", "rules", "is_active", "enforcement_level"}


@dataclass(frozen=True)
class RuleMatch:
    """A rule whose condition held for a decision."""
    policy_id: str
    rule_id: str
    action: RuleAction
    enforcement_level: str
    severity: str
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "policy_id": self.policy_id,
            "rule_id": self.rule_id,
            "action": self.action.value,
            "enforcement_level": self.enforcement_level,
            "severity": self.severity,
        }


@dataclass
class PolicyEvaluation:
    """Aggregated outcome of policy evaluation."""
    matches: List[RuleMatch] = field(default_factory=list)
    veto: Optional[RuleMatch] = None
    requires_mfa: bool = False

    @property
    def denied(self) -> bool:
        return self.veto is not None

    @property
    def requires_approval(self) -> bool:
        return self.veto is not None and self.veto.action == RuleAction.REQUIRE_APPROVAL

    @property
    def reason(self) -> Optional[str]:
        if self.veto is None:
            return None
        return self.veto.message or DEFAULT_DENY_MESSAGE


def validate_rules(rules: Iterable[SecurityRule]) -> None:
    """Parse every rule condition and check rule ids are unique."""
    seen = set()
    for rule in rules:
        if rule.id in seen:
            raise InvalidInput(f"Duplicate rule id '{rule.id}'", subject=rule.id)
        seen.add(rule.id)
        compile_expression(rule.condition)


class PolicyEngine:
    """Manages security policies and evaluates their rules."""

    TABLE = "security_policies"

    def __init__(self, store: KeyValueStore, clock: Callable = utcnow):
        self.store = store
        self.clock = clock
        self._policies: Dict[str, SecurityPolicy] = {}
        self._policy_locks = KeyedLock()
        self._swap_lock = threading.Lock()

    def load(self) -> int:
        policies = {}
        for policy_id, data in self.store.list(self.TABLE).items():
            policy = SecurityPolicy.model_validate(data)
            try:
                validate_rules(policy.rules)
            except InvalidInput as e:
                # Stored policies with broken rules stay loaded; they fail decisions closed.
                logger.error(f"Stored policy {policy_id} has an invalid rule: {e}")
            policies[policy_id] = policy
        self._policies = policies
        logger.info(f"Loaded {len(policies)} security policies from storage")
        return len(policies)

    def _save(self, policy: SecurityPolicy) -> None:
        self.store.put(self.TABLE, policy.id, policy.model_dump(mode="json"))
        with self._swap_lock:
            policies = dict(self._policies)
            policies[policy.id] = policy
            self._policies = policies

    def create_policy(self, definition: Mapping[str, Any], created_by: str = "system") -> SecurityPolicy:
        """Create a policy from a mapping of ``SecurityPolicy`` fields.

        Raises:
            AlreadyExists: The policy id is taken.
            InvalidInput: Invalid fields or a rule expression fails to parse.
        """
        data = dict(definition)
        policy_id = data.get("id") or generate_id("policy")
        now = self.clock()
        data.update({"id": policy_id, "created_at": now, "updated_at": now, "created_by": created_by})
        try:
            policy = SecurityPolicy.model_validate(data)
        except ValueError as e:
            raise InvalidInput(f"Invalid policy definition: {e}", subject=policy_id) from e
        validate_rules(policy.rules)

        with self._policy_locks.hold(policy_id):
            if policy_id in self._policies:
                raise AlreadyExists(f"Policy '{policy_id}' already exists", subject=policy_id)
            self._save(policy)

        logger.info(f"Created security policy: {policy_id} ({policy.name})")
        return policy

    def update_policy(self, policy_id: str, changes: Mapping[str, Any], updated_by: str = "system") -> SecurityPolicy:
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise InvalidInput(f"Cannot update policy fields: {', '.join(sorted(unknown))}", subject=policy_id)

        with self._policy_locks.hold(policy_id):
            policy = self._policies.get(policy_id)
            if policy is None:
                raise NotFound(f"Policy '{policy_id}' not found", subject=policy_id)
            data = policy.model_dump()
            data.update(changes)
            data["updated_at"] = self.clock()
            try:
                updated = SecurityPolicy.model_validate(data)
            except ValueError as e:
                raise InvalidInput(f"Invalid policy update: {e}", subject=policy_id) from e
            validate_rules(updated.rules)
            self._save(updated)

        logger.info(f"Updated security policy: {policy_id} by {updated_by}")
        return updated

    def delete_policy(self, policy_id: str) -> SecurityPolicy:
        with self._policy_locks.hold(policy_id):
            policy = self._policies.get(policy_id)
            if policy is None:
                raise NotFound(f"Policy '{policy_id}' not found", subject=policy_id)
            self.store.delete(self.TABLE, policy_id)
            with self._swap_lock:
                policies = dict(self._policies)
                del policies[policy_id]
                self._policies = policies

        logger.info(f"Deleted security policy: {policy_id}")
        return policy

    def get_policy(self, policy_id: str) -> Optional[SecurityPolicy]:
        return self._policies.get(policy_id)

    def list_policies(self, active_only: bool = False) -> List[SecurityPolicy]:
        policies = sorted(self._policies.values(), key=lambda p: p.id)
        if active_only:
            policies = [p for p in policies if p.is_active]
        return policies

    def evaluate(self, bag: Mapping[str, Any], now: Optional[datetime] = None) -> PolicyEvaluation:
        """Evaluate active rules against a decision context bag.

        Raises:
            ExpressionError: A rule could not be evaluated. Callers fail closed.
        """
        now = now or self.clock()
        evaluation = PolicyEvaluation()

        for policy in self.list_policies(active_only=True):
            for rule in policy.rules:
                if not rule.is_active:
                    continue
                if not compile_expression(rule.condition).evaluate(bag, now):
                    continue

                match = RuleMatch(
                    policy_id=policy.id,
                    rule_id=rule.id,
                    action=rule.action,
                    enforcement_level=policy.enforcement_level.value,
                    severity=rule.severity.value,
                    message=rule.message,
                )
                evaluation.matches.append(match)
                engine_logger.log_policy_match(
                    policy.id,
                    rule.id,
                    rule.action.value,
                    policy.enforcement_level.value,
                    user_id=bag.get("user_id"),
                    resource=bag.get("resource"),
                )

                if rule.action in (RuleAction.DENY, RuleAction.REQUIRE_APPROVAL) and evaluation.veto is None:
                    evaluation.veto = match
                elif rule.action == RuleAction.MFA_REQUIRED:
                    evaluation.requires_mfa = True

        return evaluation

    def __len__(self) -> int:
        return len(self._policies)
