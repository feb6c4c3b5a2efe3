"""Coalesce keystrokes into a single settled search query."""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from location_engine.storage.models import CityQuery

DEFAULT_DELAY_SECONDS = 0.3
MIN_QUERY_LENGTH = 2


class QueryDebouncer:
    """Emit one :class:`CityQuery` after the input has been quiet for ``delay``.

    Every ``push`` cancels the pending timer and starts a new one. Only text
    whose trimmed length reaches ``min_length`` is ever emitted.
    """

    def __init__(
        self,
        on_ready: Callable[[CityQuery], None],
        *,
        delay: float = DEFAULT_DELAY_SECONDS,
        min_length: int = MIN_QUERY_LENGTH,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._on_ready = on_ready
        self._delay = delay
        self._min_length = min_length
        self._sleep = sleep
        self._seq = 0
        self._text = ""
        self._timer: Optional[asyncio.Task[None]] = None

    @property
    def pending(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def push(self, text: str) -> None:
        """Record a text change and restart the quiet-period timer."""
        self._seq += 1
        self._text = text
        self.cancel()
        self._timer = asyncio.get_running_loop().create_task(self._fire(self._seq))

    def flush(self) -> Optional[CityQuery]:
        """Cancel the timer and return the settled query immediately."""
        self.cancel()
        return self._query()

    async def settled(self) -> None:
        """Wait for the pending timer, if any, to fire or be cancelled."""
        if self._timer is not None and not self._timer.done():
            await asyncio.wait({self._timer})

    def cancel(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    def _query(self) -> Optional[CityQuery]:
        text = self._text.strip()
        if len(text) < self._min_length:
            return None
        return CityQuery(text=text, issued_seq=self._seq)

    async def _fire(self, seq: int) -> None:
        await self._sleep(self._delay)
        if seq != self._seq:
            return
        self._timer = None
        query = self._query()
        if query is not None:
            self._on_ready(query)
