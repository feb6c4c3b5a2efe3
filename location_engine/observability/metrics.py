"""Lightweight in-process metrics suitable for exporting later."""
from __future__ import annotations

import contextlib
import time
from collections import defaultdict
from pathlib import Path
from typing import Dict

import orjson
import structlog

LOGGER = structlog.get_logger(__name__)


class MetricsRegistry:
    """Holds mutable counters for the current engine session."""

    def __init__(self) -> None:
        self._counters: Dict[str, int] = defaultdict(int)
        self._register_defaults()

    def _register_defaults(self) -> None:
        defaults = [
            "search_calls",
            "resolve_calls",
            "cache_hits",
            "cache_misses",
            "cache_expired",
            "stale_drops",
            "search_failures",
            "resolve_failures",
            "timeouts",
            "suggestions_opened",
            "locations_applied",
            "locations_cleared",
            "task_failures",
        ]
        for key in defaults:
            self._counters[key] = 0

    def incr(self, name: str, value: int = 1) -> None:
        """Increment the named counter by the supplied value."""
        self._counters[name] += value

    def get(self, name: str) -> int:
        """Return the current value for the counter, defaulting to zero."""
        return self._counters.get(name, 0)

    def snapshot(self) -> Dict[str, int]:
        """Return a shallow copy of all counters for reporting."""
        return dict(self._counters)

    def export(self, *, path: Path, session_id: str) -> Path:
        """Write counters to a JSON file at the provided path."""
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "session_id": session_id,
            "counters": self.snapshot(),
            "generated_at": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        }
        path.write_bytes(orjson.dumps(payload, option=orjson.OPT_INDENT_2))
        return path


@contextlib.contextmanager
def record_duration(registry: MetricsRegistry, metric_name: str):
    """Measure elapsed time for a block and emit it when done."""
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        registry.incr(metric_name, int(elapsed * 1000))
        LOGGER.info("timer_stop", metric=metric_name, duration_ms=int(elapsed * 1000))
