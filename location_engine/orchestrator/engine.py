"""Session-wide wiring shared by every form and field group."""
from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Dict, Optional

import structlog

from location_engine.fetch.cache import ResponseCache
from location_engine.fetch.resolver import LocationResolver
from location_engine.fetch.session import LocationSession
from location_engine.fetch.suggestions import SuggestionFetcher
from location_engine.forms.sync import FieldSynchronizer
from location_engine.observability.metrics import MetricsRegistry
from location_engine.orchestrator.arbiter import SelectionArbiter
from location_engine.orchestrator.tokens import SlotTokens
from location_engine.settings import EngineSettings

LOGGER = structlog.get_logger(__name__)


class LocationEngine:
    """Owns the backend session, the shared cache and metrics for one client session.

    Each address block on a form gets its own arbiter, token slots, fetcher
    and resolver; only the cache and the HTTP session are shared.
    """

    def __init__(
        self,
        session: LocationSession,
        *,
        settings: Optional[EngineSettings] = None,
        metrics: Optional[MetricsRegistry] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or EngineSettings()
        self.session = session
        self.metrics = metrics or MetricsRegistry()
        self.cache = ResponseCache(ttl_seconds=self.settings.cache.ttl_seconds, clock=clock, metrics=self.metrics)
        self._sleep = sleep
        self._arbiters: Dict[str, SelectionArbiter] = {}

    def arbiter_for(self, group: str, synchronizer: FieldSynchronizer) -> SelectionArbiter:
        """Create (or return the existing) arbiter for the named field group.

        Passing a different synchronizer for a live group, as when a form is
        mounted again under the same name, releases the old arbiter so nothing
        is written into the form that went away.
        """
        existing = self._arbiters.get(group)
        if existing is not None:
            if existing.synchronizer is synchronizer:
                return existing
            LOGGER.info("arbiter_rebound", group=group)
            self.release(group)
        options = self.settings.engine
        tokens = SlotTokens(group=group)
        fetcher = SuggestionFetcher(
            self.session,
            tokens,
            metrics=self.metrics,
            country=options.search_country,
            limit=options.suggestion_limit,
        )
        resolver = LocationResolver(
            self.session,
            self.cache,
            tokens,
            metrics=self.metrics,
            default_country=options.default_country,
        )
        arbiter = SelectionArbiter(
            fetcher=fetcher,
            resolver=resolver,
            synchronizer=synchronizer,
            tokens=tokens,
            metrics=self.metrics,
            debounce_delay=options.debounce_ms / 1000,
            min_length=options.min_query_length,
            cancel_superseded=options.cancel_superseded,
            sleep=self._sleep,
        )
        self._arbiters[group] = arbiter
        LOGGER.debug("arbiter_created", group=group)
        return arbiter

    def release(self, group: str) -> None:
        """Forget a field group when its form goes away."""
        arbiter = self._arbiters.pop(group, None)
        if arbiter is not None:
            arbiter.close()

    async def wait_idle(self) -> None:
        for arbiter in list(self._arbiters.values()):
            await arbiter.wait_idle()
