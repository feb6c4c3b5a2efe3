"""Per-slot request tokens used to discard stale completions."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

SEARCH = "search"
RESOLVE = "resolve"
SLOTS = (SEARCH, RESOLVE)


@dataclass
class SlotTokens:
    """Monotonic token counters for one field group.

    A completion may be applied only while its token is still the latest
    issued for its slot. Invalidating a slot bumps the counter without handing
    the new value to anyone, so every outstanding token goes stale.
    """

    group: str = "address"
    _latest: Dict[str, int] = field(default_factory=lambda: {slot: 0 for slot in SLOTS})

    def issue(self, slot: str) -> int:
        """Return a fresh token for ``slot``, superseding any earlier one."""
        self._latest[slot] += 1
        return self._latest[slot]

    def latest(self, slot: str) -> int:
        return self._latest[slot]

    def is_current(self, slot: str, token: int) -> bool:
        return self._latest[slot] == token

    def invalidate(self, slot: Optional[str] = None) -> None:
        """Make every outstanding token stale for ``slot``, or for all slots."""
        for name in (slot,) if slot else SLOTS:
            self._latest[name] += 1
