"""Shared fakes for driving the engine without a live backend."""
import asyncio

import pytest

from location_engine.fetch.session import LocationSession
from location_engine.forms.sync import FormFieldSynchronizer, FormState
from location_engine.orchestrator.engine import LocationEngine
from location_engine.settings import ArbiterSettings, EngineSettings


class ScriptedSession(LocationSession):
    """Answers search/resolve calls from canned payloads, optionally held behind a gate."""

    def __init__(self):
        super().__init__(client=None)
        self.search_payloads = {}
        self.resolve_payloads = {}
        self.gates = {}
        self.search_calls = []
        self.resolve_calls = []

    def hold(self, kind, key):
        gate = asyncio.Event()
        self.gates[(kind, key)] = gate
        return gate

    async def _answer(self, kind, key, payloads):
        gate = self.gates.get((kind, key))
        if gate is not None:
            await gate.wait()
        outcome = payloads.get(key, [] if kind == "search" else {"success": False})
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def search(self, query, *, country=None, limit=20):  # type: ignore[override]
        self.search_calls.append(query)
        return await self._answer("search", query, self.search_payloads)

    async def resolve(self, city, *, state=None, country=None):  # type: ignore[override]
        self.resolve_calls.append((city, state, country))
        return await self._answer("resolve", city, self.resolve_payloads)


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


async def instant_sleep(_delay):
    await asyncio.sleep(0)


def make_engine(session, *, debounce_ms=0, cancel_superseded=True, clock=None, sleep=instant_sleep):
    settings = EngineSettings(engine=ArbiterSettings(debounce_ms=debounce_ms, cancel_superseded=cancel_superseded))
    kwargs = {"settings": settings, "sleep": sleep}
    if clock is not None:
        kwargs["clock"] = clock
    return LocationEngine(session, **kwargs)


def make_group(engine, *, prefix="address", revalidated=None):
    form = FormState()
    for name in ("city", "state", "country", "pincode"):
        form.set(f"{prefix}.{name}", "")
    callback = revalidated.append if revalidated is not None else None
    sync = FormFieldSynchronizer(form, prefix=prefix, revalidate=callback)
    return engine.arbiter_for(prefix, sync), form


@pytest.fixture()
def session():
    return ScriptedSession()


@pytest.fixture()
def clock():
    return FakeClock()
