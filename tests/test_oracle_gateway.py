from __future__ import annotations

import asyncio
import json

from checkin.clock import FakeClock
from checkin.config import CheckinConfig
from checkin.llm_client import FakeLLMClient
from checkin.metrics import Metrics, TRIAGE
from checkin.models import PatientInfo, ReferenceContext, Session
from checkin.oracle import OracleFailure, OracleGateway, OracleMalformed, OracleOk, extract_envelope, parse_oracle_text
from checkin.records import PatientRecords
from tests.harness.call_harness import HangingLLMClient, RaisingLLMClient


def _session() -> Session:
    return Session(session_id="s-1", patient=PatientInfo(subject_id="p-1", name="Jordan Lee"))


def test_parse_plain_object() -> None:
    reply = parse_oracle_text('{"needs_followup": true, "next_question": "When did it start?"}')
    assert isinstance(reply, OracleOk)
    assert reply.fields["needs_followup"] is True


def test_parse_strips_markdown_fence() -> None:
    reply = parse_oracle_text('```json\n{"end_call": true, "triage_level": "green"}\n```')
    assert isinstance(reply, OracleOk)
    assert reply.fields["triage_level"] == "green"


def test_parse_takes_object_out_of_prose() -> None:
    reply = parse_oracle_text('Here is my assessment: {"end_call": false} hope that helps')
    assert isinstance(reply, OracleOk)
    assert reply.fields == {"end_call": False}


def test_parse_rejects_non_json_and_non_objects() -> None:
    assert parse_oracle_text("") == OracleMalformed(raw_text="", reason="empty")
    assert isinstance(parse_oracle_text("I think you are fine"), OracleMalformed)
    bad = parse_oracle_text("[1, 2, 3]")
    assert isinstance(bad, OracleMalformed)
    assert bad.reason == "not_an_object"


def test_envelopes_are_unwrapped() -> None:
    inner = {"needs_followup": True, "next_question": "Any fever?"}
    assert extract_envelope({"output": inner}) == inner
    assert extract_envelope({"result": json.dumps(inner)}) == inner
    assert extract_envelope({"response": json.dumps(inner)}) == inner
    assert extract_envelope({"response": {"message": json.dumps(inner)}}) == inner
    assert extract_envelope({"messages": [{"content": "hi"}, {"content": json.dumps(inner)}]}) == inner
    assert extract_envelope(inner) == inner


def test_unconfigured_gateway_fails_without_raising() -> None:
    async def _run() -> None:
        metrics = Metrics()
        gw = OracleGateway(config=CheckinConfig(), clock=FakeClock(), metrics=metrics)
        reply = await gw.query(_session(), "a little sore")
        assert reply == OracleFailure(reason="oracle_unconfigured")
        assert metrics.get(TRIAGE["oracle_requests_total"]) == 0

    asyncio.run(_run())


def test_transport_error_becomes_failure() -> None:
    async def _run() -> None:
        metrics = Metrics()
        gw = OracleGateway(config=CheckinConfig(), clock=FakeClock(), metrics=metrics, llm=RaisingLLMClient())
        reply = await gw.query(_session(), "a little sore")
        assert isinstance(reply, OracleFailure)
        assert reply.reason == "error:ConnectionError"
        assert metrics.get(TRIAGE["oracle_failures_total"]) == 1

    asyncio.run(_run())


def test_timeout_becomes_failure() -> None:
    async def _run() -> None:
        clock = FakeClock()
        metrics = Metrics()
        llm = HangingLLMClient()
        gw = OracleGateway(config=CheckinConfig(oracle_timeout_ms=500), clock=clock, metrics=metrics, llm=llm)
        task = asyncio.create_task(gw.query(_session(), "a little sore"))
        await llm.entered.wait()
        await clock.advance(499)
        assert not task.done()
        await clock.advance(1)
        reply = await task
        assert reply == OracleFailure(reason="timeout")
        assert metrics.get(TRIAGE["oracle_timeouts_total"]) == 1

    asyncio.run(_run())


def test_malformed_reply_is_counted() -> None:
    async def _run() -> None:
        metrics = Metrics()
        gw = OracleGateway(
            config=CheckinConfig(), clock=FakeClock(), metrics=metrics, llm=FakeLLMClient(["not json at all"])
        )
        reply = await gw.query(_session(), "ok")
        assert isinstance(reply, OracleMalformed)
        assert metrics.get(TRIAGE["oracle_malformed_total"]) == 1

    asyncio.run(_run())


def test_context_is_fetched_once_and_sent_with_every_query() -> None:
    async def _run() -> None:
        records = PatientRecords({"p-1": "Expect mild swelling for two weeks."})
        llm = FakeLLMClient(['{"needs_followup": true}'])
        gw = OracleGateway(
            config=CheckinConfig(), clock=FakeClock(), metrics=Metrics(), llm=llm, context_store=records
        )
        s = _session()
        await gw.query(s, "swollen")
        await gw.query(s, "still swollen")
        assert records.fetch_count == 1
        assert s.context_cache == ReferenceContext(recovery_expectations="Expect mild swelling for two weeks.")
        for system, prompt in llm.prompts:
            assert "Expect mild swelling for two weeks." in system
            payload = json.loads(prompt)
            assert payload["input"]["patient"]["subject_id"] == "p-1"
            assert payload["input"]["max_followups"] == 2
        assert json.loads(llm.prompts[1][1])["input"]["latest_patient_utterance"] == "still swollen"

    asyncio.run(_run())


class _BrokenStore:
    def __init__(self) -> None:
        self.calls = 0

    async def fetch(self, subject_id: str) -> ReferenceContext:
        self.calls += 1
        raise OSError("records offline")


def test_broken_context_store_is_memoised_as_empty() -> None:
    async def _run() -> None:
        store = _BrokenStore()
        gw = OracleGateway(
            config=CheckinConfig(),
            clock=FakeClock(),
            metrics=Metrics(),
            llm=FakeLLMClient(['{"needs_followup": true}']),
            context_store=store,
        )
        s = _session()
        assert isinstance(await gw.query(s, "sore"), OracleOk)
        assert isinstance(await gw.query(s, "sore"), OracleOk)
        assert store.calls == 1
        assert s.context_cache == ReferenceContext()

    asyncio.run(_run())


def test_identity_classification_reads_oracle_verdict() -> None:
    async def _run() -> None:
        llm = FakeLLMClient(['{"classification": "YES"}', '{"classification": "UNCLEAR"}', "garbled"])
        gw = OracleGateway(config=CheckinConfig(), clock=FakeClock(), metrics=Metrics(), llm=llm)
        s = _session()
        assert await gw.classify_identity(s, "mhm, go ahead") == "YES"
        assert await gw.classify_identity(s, "who is asking") is None
        assert await gw.classify_identity(s, "hmm") is None
        assert await gw.classify_identity(s, "   ") is None
        assert len(llm.prompts) == 3

    asyncio.run(_run())
