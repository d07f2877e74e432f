"""In-memory registry of chat-originated executions that are still running.

Chat platforms require an answer within seconds, so the handler acknowledges
immediately and the result is delivered later. The tracker keeps the context
needed for that follow-up. It is not durable; the session store is the
record of results.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_MS = 2 * 60 * 60 * 1000
TRACKER_SWEEP_INTERVAL_SEC = 30 * 60


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PendingOperation:
    operation_id: str
    user_id: str
    channel_id: str
    command: str
    interaction_id: str
    start_time: datetime
    username: str = ""
    guild_id: Optional[str] = None
    repository: Optional[str] = None
    message_id: Optional[str] = None
    full_prompt: Optional[str] = None
    session_id: Optional[str] = None


@dataclass(frozen=True)
class TrackerStats:
    total: int
    by_repository: Dict[str, int]
    by_user: Dict[str, int]
    average_age_ms: float


class OperationTracker:
    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._operations: Dict[str, PendingOperation] = {}

    def start(self, operation: PendingOperation) -> None:
        with self._lock:
            self._operations[operation.operation_id] = operation
        logger.info(
            "Started operation tracking: id=%s user=%s repo=%s command_len=%d",
            operation.operation_id,
            operation.user_id,
            operation.repository or "general",
            len(operation.command or ""),
        )

    def get(self, operation_id: str) -> Optional[PendingOperation]:
        with self._lock:
            return self._operations.get(operation_id)

    def complete(self, operation_id: str) -> Optional[PendingOperation]:
        with self._lock:
            operation = self._operations.pop(operation_id, None)
        if operation is None:
            logger.warning("Attempted to complete unknown operation: %s", operation_id)
            return None
        duration_ms = self._age_ms(operation)
        logger.info("Completed operation %s in %.1f min", operation_id, duration_ms / 60000)
        return operation

    def list_pending(self) -> List[PendingOperation]:
        with self._lock:
            return list(self._operations.values())

    def list_for_user(self, user_id: str) -> List[PendingOperation]:
        return [op for op in self.list_pending() if op.user_id == user_id]

    def list_for_channel(self, channel_id: str) -> List[PendingOperation]:
        return [op for op in self.list_pending() if op.channel_id == channel_id]

    def cleanup(self, max_age_ms: int = DEFAULT_MAX_AGE_MS) -> int:
        stale: List[PendingOperation] = []
        with self._lock:
            for operation_id, operation in list(self._operations.items()):
                if self._age_ms(operation) > max_age_ms:
                    stale.append(self._operations.pop(operation_id))
            remaining = len(self._operations)
        for operation in stale:
            logger.warning(
                "Cleaned up stale operation: id=%s age_ms=%d repo=%s",
                operation.operation_id,
                self._age_ms(operation),
                operation.repository or "general",
            )
        if stale:
            logger.info("Operation cleanup removed %d, %d remaining", len(stale), remaining)
        return len(stale)

    def stats(self) -> TrackerStats:
        operations = self.list_pending()
        by_repository: Dict[str, int] = {}
        by_user: Dict[str, int] = {}
        total_age = 0.0
        for op in operations:
            repo_key = op.repository or "general"
            by_repository[repo_key] = by_repository.get(repo_key, 0) + 1
            by_user[op.user_id] = by_user.get(op.user_id, 0) + 1
            total_age += self._age_ms(op)
        return TrackerStats(
            total=len(operations),
            by_repository=by_repository,
            by_user=by_user,
            average_age_ms=(total_age / len(operations)) if operations else 0.0,
        )

    def _age_ms(self, operation: PendingOperation) -> int:
        return int((self._clock() - operation.start_time).total_seconds() * 1000)
