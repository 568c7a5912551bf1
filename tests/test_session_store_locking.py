from __future__ import annotations

import asyncio

from checkin.models import PatientInfo
from checkin.session_store import InMemorySessionStore, SessionNotFound
from tests.harness.call_harness import CallHarness, GatedLLMClient


def test_get_or_create_is_idempotent() -> None:
    store = InMemorySessionStore()
    a = store.get_or_create("c-1", patient=PatientInfo(subject_id="p-1", name="A"), created_at="t0")
    a.turn_count = 3
    b = store.get_or_create("c-1", patient=PatientInfo(subject_id="p-9", name="B"), created_at="t1")
    assert b is a
    assert b.patient.subject_id == "p-1"
    assert b.turn_count == 3
    assert len(store) == 1
    assert "c-1" in store


def test_get_unknown_raises_keyerror_subclass() -> None:
    store = InMemorySessionStore()
    try:
        store.get("missing")
    except KeyError as e:
        assert isinstance(e, SessionNotFound)
        assert "missing" in str(e)
    else:
        raise AssertionError("expected SessionNotFound")
    assert store.find("missing") is None


def test_distinct_sessions_run_in_parallel() -> None:
    async def _run() -> None:
        llm = GatedLLMClient()
        h = CallHarness.build(llm=llm)
        await h.confirmed("a")
        await h.confirmed("b")

        ta = asyncio.create_task(h.say("sore", session_id="a"))
        tb = asyncio.create_task(h.say("sore", session_id="b"))
        for _ in range(50):
            await asyncio.sleep(0)
        # Both turns are inside the oracle call at the same time.
        assert llm.in_flight == 2

        llm.gate.set()
        await asyncio.gather(ta, tb)
        assert llm.max_in_flight == 2

    asyncio.run(_run())


def test_same_session_turns_are_serialised() -> None:
    async def _run() -> None:
        llm = GatedLLMClient()
        h = CallHarness.build(llm=llm)
        await h.confirmed("a")

        t1 = asyncio.create_task(h.say("sore", session_id="a"))
        t2 = asyncio.create_task(h.say("still sore", session_id="a"))
        for _ in range(50):
            await asyncio.sleep(0)
        assert llm.in_flight == 1
        assert len(h.session("a").transcript) == 4

        llm.gate.set()
        await asyncio.gather(t1, t2)
        assert llm.max_in_flight == 1
        assert h.session("a").followup_count == 2
        texts = [e.text for e in h.session("a").transcript]
        assert texts.index("sore") < texts.index("still sore")

    asyncio.run(_run())


def test_blocked_session_does_not_stall_identity_turn_elsewhere() -> None:
    async def _run() -> None:
        llm = GatedLLMClient()
        h = CallHarness.build(llm=llm)
        await h.confirmed("a")
        ta = asyncio.create_task(h.say("sore", session_id="a"))
        for _ in range(50):
            await asyncio.sleep(0)

        await h.start("b")
        out = await h.say("yes this is me", session_id="b")
        assert out.should_terminate is False
        assert not ta.done()

        llm.gate.set()
        await ta

    asyncio.run(_run())
