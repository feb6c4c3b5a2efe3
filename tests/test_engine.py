import asyncio

from location_engine.forms.sync import FormFieldSynchronizer, FormState
from location_engine.orchestrator.arbiter import ArbiterState
from location_engine.storage.models import CitySuggestion

from conftest import make_engine

AHMEDABAD = {"success": True, "data": {"city": "Ahmedabad", "state": "Gujarat", "country": "India", "pincode": "380001"}}


def test_same_synchronizer_returns_the_live_arbiter(session):
    engine = make_engine(session)
    sync = FormFieldSynchronizer(FormState())
    assert engine.arbiter_for("address", sync) is engine.arbiter_for("address", sync)


def test_remounted_form_gets_a_fresh_arbiter_and_old_form_is_left_alone(session):
    session.resolve_payloads["Ahmedabad"] = AHMEDABAD

    async def _run():
        engine = make_engine(session, cancel_superseded=False)
        old_form, new_form = FormState(), FormState()
        old = engine.arbiter_for("address", FormFieldSynchronizer(old_form))
        gate = session.hold("resolve", "Ahmedabad")
        old.on_suggestion_selected(CitySuggestion(city="Ahmedabad", state="Gujarat"))
        await asyncio.sleep(0)

        new = engine.arbiter_for("address", FormFieldSynchronizer(new_form))
        gate.set()
        await old.wait_idle()
        assert old_form.get("address.state") == ""

        new.on_suggestion_selected(CitySuggestion(city="Ahmedabad", state="Gujarat"))
        await engine.wait_idle()
        return old, new, new_form

    old, new, new_form = asyncio.run(_run())
    assert new is not old
    assert old.state is ArbiterState.RESOLVING
    assert new.state is ArbiterState.RESOLVED
    assert new_form.get("address.state") == "Gujarat"
    assert new_form.get("address.pincode") == "380001"
