"""Session retention sweep.

Each ``apply()`` removes every stored session whose metadata timestamp is
older than the store's retention window. Sessions with unreadable metadata
are skipped (and logged by the store) so one bad entry never blocks the
sweep.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from agent_gateway.observability.structured_log import log_json

if TYPE_CHECKING:
    from agent_gateway.persistence.session_store import SessionStore

logger = logging.getLogger(__name__)

SESSION_SWEEP_INTERVAL_SEC = 60 * 60


@dataclass
class RetentionResult:
    pruned_old: int
    elapsed_ms: float


class SessionRetentionPolicy:
    """Applies the age-based retention rule to the session store."""

    def __init__(self, store: "SessionStore") -> None:
        self._store = store

    @property
    def retention_days(self) -> int:
        return self._store.retention_days

    def apply(self) -> RetentionResult:
        """Run the retention sweep and return the number of sessions removed."""
        t0 = datetime.now(timezone.utc).timestamp()
        pruned = self._store.cleanup()
        elapsed_ms = (datetime.now(timezone.utc).timestamp() - t0) * 1000
        if pruned:
            log_json(
                logger,
                "sessions.retention_sweep",
                pruned=pruned,
                retention_days=self.retention_days,
                elapsed_ms=round(elapsed_ms, 2),
            )
        return RetentionResult(pruned_old=pruned, elapsed_ms=elapsed_ms)
