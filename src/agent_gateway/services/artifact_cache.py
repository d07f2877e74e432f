from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_SEC = 30 * 60
CACHE_SWEEP_INTERVAL_SEC = 5 * 60


@dataclass(frozen=True)
class CachedArtifact:
    content: str
    operation_id: str
    stored_at: float


class ArtifactCache:
    """Short-lived prompt/response copies for links handed out before a session exists."""

    def __init__(
        self,
        name: str,
        max_age_sec: int = DEFAULT_MAX_AGE_SEC,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._name = name
        self._max_age_sec = max(1, int(max_age_sec))
        self._clock = clock
        self._lock = threading.Lock()
        self._items: Dict[str, CachedArtifact] = {}

    @property
    def max_age_sec(self) -> int:
        return self._max_age_sec

    def put(self, key: str, content: str, operation_id: str = "") -> CachedArtifact:
        item = CachedArtifact(content=content or "", operation_id=operation_id or key, stored_at=self._clock())
        with self._lock:
            self._items[key] = item
        logger.debug("Cached %s %s (%d chars)", self._name, key, len(item.content))
        return item

    def get(self, key: str) -> Optional[CachedArtifact]:
        with self._lock:
            return self._items.get(key)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._items.pop(key, None) is not None

    def cleanup(self) -> int:
        cutoff = self._clock() - self._max_age_sec
        with self._lock:
            expired = [key for key, item in self._items.items() if item.stored_at < cutoff]
            for key in expired:
                del self._items[key]
            remaining = len(self._items)
        if expired:
            logger.info("Cleaned up %d cached %s entries, %d remaining", len(expired), self._name, remaining)
        return len(expired)

    def size(self) -> int:
        with self._lock:
            return len(self._items)
