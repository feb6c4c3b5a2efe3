"""Resolve confirmed cities to canonical location records."""
from __future__ import annotations

from typing import Optional

import structlog

from location_engine.errors import LocationError, RequestTimeoutError
from location_engine.fetch.cache import ResponseCache, cache_key
from location_engine.fetch.session import LocationSession
from location_engine.observability.metrics import MetricsRegistry
from location_engine.observability.tracing import log_stale_drop, span
from location_engine.orchestrator.tokens import RESOLVE, SlotTokens
from location_engine.parse.envelopes import parse_location
from location_engine.storage.models import LocationRecord

LOGGER = structlog.get_logger(__name__)


class LocationResolver:
    """Cache-first resolver bound to one field group's resolve slot."""

    def __init__(
        self,
        session: LocationSession,
        cache: ResponseCache,
        tokens: SlotTokens,
        *,
        metrics: Optional[MetricsRegistry] = None,
        default_country: str = "IN",
    ) -> None:
        self._session = session
        self._cache = cache
        self._tokens = tokens
        self._metrics = metrics or MetricsRegistry()
        self._default_country = default_country

    async def resolve(
        self,
        city: str,
        *,
        state: Optional[str] = None,
        country: Optional[str] = None,
        token: Optional[int] = None,
    ) -> Optional[LocationRecord]:
        """Return the record for ``city`` or ``None`` if a newer resolve superseded it.

        ``token`` lets the caller issue the resolve token up front, when the
        call is scheduled; otherwise one is issued here. Cache hits skip the
        network but are still subject to the token check. Failures of the
        current resolve raise a :class:`LocationError`.
        """
        if token is None:
            token = self._tokens.issue(RESOLVE)
        city = city.strip()
        country = country or self._default_country
        key = cache_key(city, state, country)
        cached = self._cache.get(key)
        if cached is not None:
            LOGGER.debug("resolve_cache_hit", key=key)
            if not self._tokens.is_current(RESOLVE, token):
                self._drop(token)
                return None
            return cached

        self._metrics.incr("resolve_calls")
        try:
            with span(name="resolve", query=city, token=token):
                payload = await self._session.resolve(city, state=state, country=country)
            record = parse_location(payload)
        except LocationError as exc:
            if not self._tokens.is_current(RESOLVE, token):
                self._drop(token)
                return None
            self._metrics.incr("resolve_failures")
            if isinstance(exc, RequestTimeoutError):
                self._metrics.incr("timeouts")
            LOGGER.warning("resolve_failed", city=city, state=state, error=type(exc).__name__, reason=exc.message)
            raise
        self._cache.put(key, record)
        if not self._tokens.is_current(RESOLVE, token):
            self._drop(token)
            return None
        LOGGER.info("resolve_completed", city=record.city, state=record.state, candidates=len(record.candidates))
        return record

    def _drop(self, token: int) -> None:
        self._metrics.incr("stale_drops")
        log_stale_drop(slot=RESOLVE, token=token, latest=self._tokens.latest(RESOLVE))
