"""City autocomplete searches bound to the search token slot."""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

import structlog

from location_engine.errors import LocationError, RequestTimeoutError
from location_engine.fetch.session import LocationSession
from location_engine.observability.metrics import MetricsRegistry
from location_engine.observability.tracing import log_stale_drop, span
from location_engine.orchestrator.tokens import SEARCH, SlotTokens
from location_engine.parse.envelopes import parse_suggestions
from location_engine.storage.models import CitySuggestion

LOGGER = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SearchResult:
    """Suggestions for one query, tagged with the token that produced them."""

    query: str
    token: int
    suggestions: List[CitySuggestion]

    @property
    def no_matches(self) -> bool:
        return not self.suggestions


class SuggestionFetcher:
    """Issue searches for one field group and drop superseded answers."""

    def __init__(
        self,
        session: LocationSession,
        tokens: SlotTokens,
        *,
        metrics: Optional[MetricsRegistry] = None,
        country: Optional[str] = None,
        limit: int = 20,
    ) -> None:
        self._session = session
        self._tokens = tokens
        self._metrics = metrics or MetricsRegistry()
        self._country = country
        self._limit = limit

    async def search(
        self,
        text: str,
        *,
        country: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Optional[SearchResult]:
        """Search for ``text``; return ``None`` when a newer search superseded this one.

        Raises a :class:`LocationError` subclass when the current search fails.
        """
        token = self._tokens.issue(SEARCH)
        self._metrics.incr("search_calls")
        try:
            with span(name="search", query=text, token=token):
                payload = await self._session.search(
                    text,
                    country=country or self._country,
                    limit=limit or self._limit,
                )
            suggestions = parse_suggestions(payload)
        except LocationError as exc:
            if not self._tokens.is_current(SEARCH, token):
                self._drop(token)
                return None
            self._metrics.incr("search_failures")
            if isinstance(exc, RequestTimeoutError):
                self._metrics.incr("timeouts")
            LOGGER.warning("search_failed", query=text, error=type(exc).__name__, reason=exc.message)
            raise
        if not self._tokens.is_current(SEARCH, token):
            self._drop(token)
            return None
        LOGGER.debug("search_completed", query=text, count=len(suggestions))
        return SearchResult(query=text, token=token, suggestions=suggestions)

    def _drop(self, token: int) -> None:
        self._metrics.incr("stale_drops")
        log_stale_drop(slot=SEARCH, token=token, latest=self._tokens.latest(SEARCH))
