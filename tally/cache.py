"""In-memory TTL cache for per-group balance results."""

import logging
import threading
import time
from typing import Any, Callable

logger = logging.getLogger("tally")

DEFAULT_TTL_SECONDS = 5 * 60


class ResultCache:
    """Keys are (kind, group_id) tuples so a whole group can be dropped at once.

    Reads within the TTL may be stale by up to one write; callers invalidate a
    group synchronously whenever its settlements or expenses change.
    """

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[tuple[str, str], tuple[Any, float]] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, kind: str, group_id: str) -> Any | None:
        key = (kind, group_id)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return value

    def set(self, kind: str, group_id: str, value: Any, ttl_seconds: float | None = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            self._entries[(kind, group_id)] = (value, self._clock() + ttl)

    def delete(self, kind: str, group_id: str) -> bool:
        with self._lock:
            return self._entries.pop((kind, group_id), None) is not None

    def invalidate_group(self, group_id: str) -> int:
        with self._lock:
            stale = [key for key in self._entries if key[1] == group_id]
            for key in stale:
                del self._entries[key]
        if stale:
            logger.debug(
                "Cache invalidated",
                extra={"extra_data": {"group_id": group_id, "entries": len(stale)}},
            )
        return len(stale)

    def cleanup(self) -> int:
        """Drop expired entries; returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, (_, expires_at) in self._entries.items() if now >= expires_at]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> dict:
        total = self.hits + self.misses
        return {
            "size": len(self),
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hits / total, 3) if total else 0.0,
        }
