"""Tracing helpers for search and resolve calls."""
from __future__ import annotations

import contextlib
import time
from typing import Iterator, Optional

import structlog
from structlog.contextvars import bind_contextvars, unbind_contextvars


def _logger():
    return structlog.get_logger("location_engine.trace")


def set_context(*, group: str, form: Optional[str] = None) -> None:
    bind_contextvars(group=group, form=form)
    _logger().debug("trace_context", group=group, form=form)


def clear_context() -> None:
    unbind_contextvars("group", "form")


@contextlib.contextmanager
def span(*, name: str, query: Optional[str] = None, token: Optional[int] = None) -> Iterator[None]:
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        _logger().info("trace_span", span=name, query=query, token=token, elapsed_ms=elapsed_ms)


def log_stale_drop(*, slot: str, token: int, latest: int) -> None:
    _logger().info("stale_completion_dropped", slot=slot, token=token, latest=latest)


def log_call_result(*, endpoint: str, status: int, bytes_read: int, elapsed_ms: int) -> None:
    _logger().info(
        "call_result",
        endpoint=endpoint,
        status=status,
        bytes=bytes_read,
        elapsed_ms=elapsed_ms,
    )
