"""
Time-boxed result cache for ranking queries.

Two kinds of entries share one TTL clock:
- a single top-investors slot
- per-stock investor lists keyed by lower-cased stock name

Every invalidation bumps the key's version. A recompute captures the version
before it queries and its result is discarded if the key was invalidated in
the meantime, so a slow recompute never resurrects stale data.
"""
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Hashable, Optional

from tradebook.core.metrics import metrics

logger = logging.getLogger(__name__)

TOP_INVESTORS = ("top-investors",)


def symbol_key(stock_name: str) -> tuple[str, str]:
    return ("stock", stock_name.strip().lower())


@dataclass
class CacheEntry:
    value: Any
    stored_at: float


class ResultCache:
    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[Hashable, CacheEntry] = {}
        self._versions: dict[Hashable, int] = {}
        # Bumped by invalidate_all so keys never read before are covered too
        self._epoch = 0

    def get(self, key: Hashable) -> Optional[Any]:
        """Cached value, or None if absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.stored_at >= self.ttl_seconds:
            self._entries.pop(key, None)
            return None
        return entry.value

    def version(self, key: Hashable) -> tuple[int, int]:
        return (self._epoch, self._versions.get(key, 0))

    def store(self, key: Hashable, value: Any, version: Optional[tuple[int, int]] = None) -> bool:
        """
        Replace the entry for key.

        Returns False (and stores nothing) when version is given and the key
        has been invalidated since it was read.
        """
        if version is not None and version != self.version(key):
            logger.info("Discarding stale cache result for %s", key)
            return False
        self._entries[key] = CacheEntry(value=value, stored_at=self._clock())
        return True

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)
        self._versions[key] = self._versions.get(key, 0) + 1
        metrics.cache_event("invalidated", str(key))

    def invalidate_all(self) -> None:
        self._epoch += 1
        self._entries.clear()
        metrics.cache_event("invalidated", "*")

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)
