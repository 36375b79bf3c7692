"""
Audit log.

Append-only, size-bounded record of every decision and administrative
action, kept newest first. Appends take a dedicated lock that the decision
read path never touches. Each entry is persisted before it becomes visible
and is also emitted through the structured logger. Activity hooks receive a
denormalized copy of every entry on a background worker.
"""

import logging
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from threading import Lock
from typing import Any, Callable, Dict, List, Optional, Union

from accessctl.config.logging import engine_logger
from accessctl.models.access import AuditAction, AuditLogEntry
from accessctl.storage.base import KeyValueStore
from accessctl.utils.helpers import ensure_utc, generate_id, utcnow

logger = logging.getLogger(__name__)

ActivityHook = Callable[[Dict[str, Any]], None]


class AuditLog:
    """Bounded, newest-first audit trail."""

    TABLE = "audit_log"

    def __init__(
        self,
        store: KeyValueStore,
        max_entries: int = 10000,
        clock: Callable = utcnow,
    ):
        self.store = store
        self.max_entries = max_entries
        self.clock = clock
        self._entries: deque = deque()
        self._lock = Lock()
        self._hooks: List[ActivityHook] = []
        self._executor: Optional[ThreadPoolExecutor] = None

    def load(self) -> int:
        """Load persisted entries, trimming anything beyond the cap."""
        entries = [AuditLogEntry.model_validate(data) for data in self.store.list(self.TABLE).values()]
        entries.sort(key=lambda e: (e.timestamp, e.id), reverse=True)
        for stale in entries[self.max_entries:]:
            self.store.delete(self.TABLE, stale.id)
        with self._lock:
            self._entries = deque(entries[:self.max_entries])
        logger.info(f"Loaded {len(self._entries)} audit entries from storage")
        return len(self._entries)

    def add_hook(self, hook: ActivityHook) -> None:
        """Register an activity-tracking callback."""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="audit-activity")
        self._hooks.append(hook)

    def log(
        self,
        user_id: str,
        action: AuditAction,
        success: bool,
        persist: bool = True,
        **fields: Any,
    ) -> AuditLogEntry:
        """Append an entry.

        Args:
            user_id: Acting user
            action: Audit event kind
            success: Whether the audited operation succeeded
            persist: Write the entry to storage before appending
            **fields: Remaining ``AuditLogEntry`` fields

        Raises:
            StorageError: Persisting the entry failed; nothing was appended.
        """
        entry = AuditLogEntry(
            id=generate_id("audit"),
            timestamp=self.clock(),
            user_id=user_id,
            action=action,
            success=success,
            **fields,
        )
        if persist:
            self.store.put(self.TABLE, entry.id, entry.model_dump(mode="json"))

        evicted = []
        with self._lock:
            self._entries.appendleft(entry)
            while len(self._entries) > self.max_entries:
                evicted.append(self._entries.pop())
        for old in evicted:
            try:
                self.store.delete(self.TABLE, old.id)
            except Exception as e:
                logger.warning(f"Failed to delete evicted audit entry {old.id}: {e}")

        self._emit(entry)
        self._dispatch(entry)
        return entry

    def _emit(self, entry: AuditLogEntry) -> None:
        log = engine_logger.info if entry.success else engine_logger.warning
        log(
            "Audit event",
            event="audit",
            audit_id=entry.id,
            audit_action=entry.action.value,
            user_id=entry.user_id,
            resource=entry.resource,
            resource_id=entry.resource_id,
            success=entry.success,
            failure_reason=entry.failure_reason,
            risk_score=entry.risk_score,
        )

    def _dispatch(self, entry: AuditLogEntry) -> None:
        if not self._hooks or self._executor is None:
            return
        payload = entry.model_dump(mode="json")
        payload.update({
            "activity_type": "access_control",
            "entity_type": "security",
            "entity_id": entry.resource or "system",
        })
        for hook in list(self._hooks):
            self._executor.submit(self._run_hook, hook, dict(payload))

    @staticmethod
    def _run_hook(hook: ActivityHook, payload: Dict[str, Any]) -> None:
        try:
            hook(payload)
        except Exception as e:
            logger.error(f"Activity hook {getattr(hook, '__name__', hook)!r} failed: {e}")

    def query(
        self,
        user_id: Optional[str] = None,
        resource: Optional[str] = None,
        action: Optional[Union[AuditAction, str]] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        success: Optional[bool] = None,
        limit: Optional[int] = None,
    ) -> List[AuditLogEntry]:
        """Filter entries, newest first. All filters are ANDed."""
        if action is not None:
            action = AuditAction(action)
        start = ensure_utc(start)
        end = ensure_utc(end)

        results = []
        for entry in self.entries():
            if user_id is not None and entry.user_id != user_id:
                continue
            if resource is not None and entry.resource != resource:
                continue
            if action is not None and entry.action != action:
                continue
            if success is not None and entry.success != success:
                continue
            if start is not None and entry.timestamp < start:
                continue
            if end is not None and entry.timestamp > end:
                continue
            results.append(entry)
            if limit is not None and len(results) >= limit:
                break
        return results

    def entries(self) -> List[AuditLogEntry]:
        """Snapshot of all entries, newest first."""
        with self._lock:
            return list(self._entries)

    def purge_older_than(self, retention_days: int, now: Optional[datetime] = None) -> int:
        """Drop entries older than the retention window. Returns the count removed."""
        cutoff = (now or self.clock()) - timedelta(days=retention_days)
        with self._lock:
            kept = deque(e for e in self._entries if e.timestamp >= cutoff)
            purged = [e for e in self._entries if e.timestamp < cutoff]
            self._entries = kept
        for entry in purged:
            self.store.delete(self.TABLE, entry.id)
        if purged:
            logger.info(f"Purged {len(purged)} audit entries older than {retention_days} days")
        return len(purged)

    def flush(self, timeout: Optional[float] = None) -> None:
        """Wait for pending activity hooks."""
        if self._executor is not None:
            self._executor.submit(lambda: None).result(timeout=timeout)

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __len__(self) -> int:
        return len(self._entries)
