"""State machine arbitrating searches, selections and resolves for one field group.

Every asynchronous completion is checked against the latest token of its
slot before it may touch suggestions or fields, so responses that arrive out
of order can never overwrite a more recent user action. Superseded tasks are
also cancelled, but only as transport hygiene; the token check is what keeps
the group consistent.
"""
from __future__ import annotations

import asyncio
import enum
import functools
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

import structlog

from location_engine.errors import LocationError, NotFoundError, user_hint
from location_engine.fetch.resolver import LocationResolver
from location_engine.fetch.suggestions import SuggestionFetcher
from location_engine.forms.sync import FieldSynchronizer
from location_engine.observability.metrics import MetricsRegistry
from location_engine.observability.tracing import clear_context, set_context
from location_engine.orchestrator.debounce import DEFAULT_DELAY_SECONDS, MIN_QUERY_LENGTH, QueryDebouncer
from location_engine.orchestrator.tokens import RESOLVE, SEARCH, SlotTokens
from location_engine.storage.models import CityQuery, CitySuggestion, LocationRecord

LOGGER = structlog.get_logger(__name__)

NO_MATCHES_MESSAGE = "No cities found. Try the full city name or press Enter to search."
UNEXPECTED_FAILURE_MESSAGE = "Location lookup failed unexpectedly. Please try again."


class ArbiterState(str, enum.Enum):
    IDLE = "idle"
    TYPING = "typing"
    SEARCHING = "searching"
    SUGGESTIONS_OPEN = "suggestions_open"
    RESOLVING = "resolving"
    RESOLVED = "resolved"
    ERROR = "error"


_TYPED_RESOLVE_FROM = (ArbiterState.TYPING, ArbiterState.SEARCHING, ArbiterState.SUGGESTIONS_OPEN)


@dataclass(frozen=True)
class ArbiterView:
    """Immutable snapshot handed to subscribers after every transition."""

    state: ArbiterState
    text: str
    suggestions: Tuple[CitySuggestion, ...]
    highlighted: int
    record: Optional[LocationRecord]
    pincode: Optional[str]
    pincode_candidates: Tuple[str, ...]
    message: Optional[str]


class SelectionArbiter:
    """Coordinate debounced search, explicit selection and resolve outcomes."""

    def __init__(
        self,
        *,
        fetcher: SuggestionFetcher,
        resolver: LocationResolver,
        synchronizer: FieldSynchronizer,
        tokens: SlotTokens,
        metrics: Optional[MetricsRegistry] = None,
        debounce_delay: float = DEFAULT_DELAY_SECONDS,
        min_length: int = MIN_QUERY_LENGTH,
        cancel_superseded: bool = True,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._fetcher = fetcher
        self._resolver = resolver
        self._sync = synchronizer
        self._tokens = tokens
        self._metrics = metrics or MetricsRegistry()
        self._min_length = min_length
        self._cancel_superseded = cancel_superseded
        self._debouncer = QueryDebouncer(self._on_query_ready, delay=debounce_delay, min_length=min_length, sleep=sleep)
        self._tasks: Dict[str, asyncio.Task[None]] = {}
        self._inflight: Set[asyncio.Task[None]] = set()
        self._subscribers: List[Callable[[ArbiterView], None]] = []

        self.state = ArbiterState.IDLE
        self._text = ""
        self._suggestions: List[CitySuggestion] = []
        self._highlighted = -1
        self._record: Optional[LocationRecord] = None
        self._pincode: Optional[str] = None
        self._message: Optional[str] = None

    @property
    def group(self) -> str:
        return self._tokens.group

    @property
    def record(self) -> Optional[LocationRecord]:
        return self._record

    @property
    def synchronizer(self) -> FieldSynchronizer:
        return self._sync

    def view(self) -> ArbiterView:
        is_open = self.state is ArbiterState.SUGGESTIONS_OPEN
        return ArbiterView(
            state=self.state,
            text=self._text,
            suggestions=tuple(self._suggestions) if is_open else (),
            highlighted=self._highlighted if is_open else -1,
            record=self._record,
            pincode=self._pincode,
            pincode_candidates=tuple(self._record.candidates) if self._record else (),
            message=self._message,
        )

    def subscribe(self, callback: Callable[[ArbiterView], None]) -> None:
        self._subscribers.append(callback)

    async def wait_idle(self) -> None:
        """Wait until no debounce timer or network task remains outstanding."""
        while True:
            await self._debouncer.settled()
            pending = [task for task in self._inflight if not task.done()]
            if not pending:
                if not self._debouncer.pending:
                    return
                continue
            await asyncio.wait(pending)

    # -- user events ---------------------------------------------------------

    def on_city_text_changed(self, text: str) -> None:
        """Handle a raw keystroke in the city input."""
        if not text.strip():
            self.on_city_cleared()
            return
        self._text = text
        self._tokens.invalidate()
        self._cancel(SEARCH, RESOLVE)
        self._record = None
        self._pincode = None
        self._suggestions = []
        self._highlighted = -1
        self._message = None
        self._transition(ArbiterState.TYPING)
        self._debouncer.push(text)

    def on_suggestion_selected(self, suggestion: CitySuggestion) -> None:
        """Resolve an explicitly chosen suggestion, bypassing the debouncer."""
        self._debouncer.cancel()
        self._tokens.invalidate(SEARCH)
        self._cancel(SEARCH)
        self._suggestions = []
        self._highlighted = -1
        self._text = suggestion.city
        self._sync.commit_city(suggestion.city)
        LOGGER.info("suggestion_selected", group=self.group, city=suggestion.city, state=suggestion.state)
        self._start_resolve(suggestion.city, suggestion.state)

    def on_city_blurred(self) -> None:
        """Fall back to resolving the typed text when focus leaves the input."""
        self._resolve_typed()

    def on_enter(self) -> None:
        if self.state is ArbiterState.SUGGESTIONS_OPEN and 0 <= self._highlighted < len(self._suggestions):
            self.on_suggestion_selected(self._suggestions[self._highlighted])
            return
        self._resolve_typed()

    def on_key(self, key: str) -> None:
        """Keyboard navigation inside the suggestion list."""
        if key == "Enter":
            self.on_enter()
            return
        if self.state is not ArbiterState.SUGGESTIONS_OPEN:
            return
        if key == "ArrowDown":
            self._highlighted = min(self._highlighted + 1, len(self._suggestions) - 1)
            self._notify()
        elif key == "ArrowUp":
            self._highlighted = max(self._highlighted - 1, -1)
            self._notify()
        elif key == "Escape":
            self._highlighted = -1
            self._transition(ArbiterState.TYPING)

    def on_city_focused(self) -> None:
        """Re-open retained suggestions, or search right away for the current text."""
        if self.state is not ArbiterState.TYPING:
            return
        if self._suggestions:
            self._transition(ArbiterState.SUGGESTIONS_OPEN)
            return
        query = self._debouncer.flush()
        if query is not None:
            self._on_query_ready(query)

    def on_city_cleared(self) -> None:
        """Reset the group: clear dependent fields now and drop everything in flight."""
        self._debouncer.cancel()
        self._tokens.invalidate()
        self._cancel(SEARCH, RESOLVE)
        self._text = ""
        self._suggestions = []
        self._highlighted = -1
        self._record = None
        self._pincode = None
        self._message = None
        self._sync.clear_location()
        self._metrics.incr("locations_cleared")
        self._transition(ArbiterState.IDLE)

    def close(self) -> None:
        """Drop pending work without touching the form."""
        self._debouncer.cancel()
        self._tokens.invalidate()
        self._cancel(SEARCH, RESOLVE)

    def choose_pincode(self, pincode: str) -> None:
        """Apply one of the resolved record's candidate pincodes."""
        if self.state is not ArbiterState.RESOLVED or self._record is None:
            raise ValueError("No resolved location to choose a pincode for")
        if pincode not in self._record.candidates:
            raise ValueError(f"{pincode} is not a candidate for {self._record.city}")
        self._pincode = pincode
        self._sync.apply_location(self._record, pincode=pincode)
        self._notify()

    # -- search --------------------------------------------------------------

    def _on_query_ready(self, query: CityQuery) -> None:
        if self.state is not ArbiterState.TYPING:
            return
        self._transition(ArbiterState.SEARCHING)
        self._spawn(SEARCH, self._run_search, query)

    async def _run_search(self, query: CityQuery) -> None:
        try:
            result = await self._fetcher.search(query.text)
        except NotFoundError as exc:
            if self.state is ArbiterState.SEARCHING:
                self._search_settled([], exc.message)
            return
        except LocationError as exc:
            if self.state is ArbiterState.SEARCHING:
                self._search_settled([], user_hint(exc))
            return
        if result is None or self.state is not ArbiterState.SEARCHING:
            return
        self._search_settled(result.suggestions, NO_MATCHES_MESSAGE if result.no_matches else None)

    def _search_settled(self, suggestions: List[CitySuggestion], message: Optional[str]) -> None:
        self._suggestions = list(suggestions)
        self._highlighted = -1
        self._message = message
        if suggestions:
            self._metrics.incr("suggestions_opened")
            self._transition(ArbiterState.SUGGESTIONS_OPEN)
        else:
            self._transition(ArbiterState.TYPING)

    # -- resolve -------------------------------------------------------------

    def _resolve_typed(self) -> None:
        if self.state not in _TYPED_RESOLVE_FROM:
            return
        query = self._debouncer.flush()
        self._tokens.invalidate(SEARCH)
        self._cancel(SEARCH)
        self._suggestions = []
        self._highlighted = -1
        if query is None:
            self._transition(ArbiterState.TYPING)
            return
        self._start_resolve(query.text, None)

    def _start_resolve(self, city: str, state: Optional[str]) -> None:
        self._record = None
        self._pincode = None
        self._message = None
        token = self._tokens.issue(RESOLVE)
        self._cancel(RESOLVE)
        self._transition(ArbiterState.RESOLVING)
        self._spawn(RESOLVE, self._run_resolve, city, state, token)

    async def _run_resolve(self, city: str, state: Optional[str], token: int) -> None:
        try:
            record = await self._resolver.resolve(city, state=state, token=token)
        except LocationError as exc:
            if not self._tokens.is_current(RESOLVE, token):
                return
            self._sync.clear_location()
            self._metrics.incr("locations_cleared")
            self._message = user_hint(exc)
            self._transition(ArbiterState.ERROR)
            return
        if record is None or not self._tokens.is_current(RESOLVE, token):
            return
        self._record = record
        self._pincode = None if record.is_ambiguous else record.primary_pincode
        self._sync.apply_location(record)
        self._metrics.incr("locations_applied")
        self._transition(ArbiterState.RESOLVED)

    # -- plumbing ------------------------------------------------------------

    def _spawn(self, slot: str, run: Callable[..., Awaitable[None]], *args: Any) -> None:
        task = asyncio.get_running_loop().create_task(self._traced(run, *args))
        self._tasks[slot] = task
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        task.add_done_callback(functools.partial(self._task_finished, slot))

    def _task_finished(self, slot: str, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        LOGGER.error("arbiter_task_failed", group=self.group, slot=slot, error=type(exc).__name__, exc_info=exc)
        self._metrics.incr("task_failures")
        if self._tasks.get(slot) is not task:
            return
        del self._tasks[slot]
        self._tokens.invalidate(slot)
        self._suggestions = []
        self._highlighted = -1
        if slot == RESOLVE:
            self._record = None
            self._pincode = None
            self._sync.clear_location()
        self._message = UNEXPECTED_FAILURE_MESSAGE
        self._transition(ArbiterState.ERROR)

    async def _traced(self, run: Callable[..., Awaitable[None]], *args: Any) -> None:
        set_context(group=self.group)
        try:
            await run(*args)
        finally:
            clear_context()

    def _cancel(self, *slots: str) -> None:
        for slot in slots:
            task = self._tasks.pop(slot, None)
            if task is not None and self._cancel_superseded and not task.done():
                task.cancel()

    def _transition(self, state: ArbiterState) -> None:
        if state is not self.state:
            LOGGER.debug("arbiter_transition", group=self.group, source=self.state.value, target=state.value)
        self.state = state
        self._notify()

    def _notify(self) -> None:
        if not self._subscribers:
            return
        snapshot = self.view()
        for callback in self._subscribers:
            callback(snapshot)
