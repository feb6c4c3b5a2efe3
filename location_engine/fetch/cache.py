"""In-memory TTL cache for resolved locations."""
from __future__ import annotations

import time
from typing import Callable, Dict, Optional

import structlog

from location_engine.observability.metrics import MetricsRegistry
from location_engine.storage.models import CacheEntry, LocationRecord

LOGGER = structlog.get_logger(__name__)

DEFAULT_TTL_SECONDS = 300.0


def cache_key(city: str, state: Optional[str] = None, country: Optional[str] = None) -> str:
    """Build the normalised lookup key, scoped by state and country when given."""
    parts = [city, state, country]
    return "|".join(part.strip().lower() for part in parts if part and part.strip())


class ResponseCache:
    """Memoise city -> location records, expiring entries lazily on read.

    One instance is shared by every field group of an engine session. Writes
    are last-write-wins and reads never block.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional[MetricsRegistry] = None,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._metrics = metrics or MetricsRegistry()
        self._index: Dict[str, CacheEntry] = {}

    def get(self, key: str) -> Optional[LocationRecord]:
        entry = self._index.get(key)
        if entry is None:
            self._metrics.incr("cache_misses")
            return None
        if self._clock() - entry.inserted_at >= self._ttl:
            del self._index[key]
            self._metrics.incr("cache_expired")
            self._metrics.incr("cache_misses")
            LOGGER.debug("cache_expired", key=key)
            return None
        self._metrics.incr("cache_hits")
        return entry.value

    def put(self, key: str, value: LocationRecord) -> None:
        self._index[key] = CacheEntry(key=key, value=value, inserted_at=self._clock())

    def clear(self) -> None:
        self._index.clear()

    def __len__(self) -> int:
        return len(self._index)

    def __contains__(self, key: str) -> bool:
        return key in self._index
