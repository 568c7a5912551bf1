from __future__ import annotations

import asyncio
import json

from checkin.metrics import TRIAGE
from checkin.models import Stage
from checkin.records import FanoutSummarySink, JsonlSummarySink, PatientRecords, SessionSummary
from tests.harness.call_harness import CallHarness


class _FailingSink:
    def __init__(self) -> None:
        self.calls = 0

    async def emit(self, summary: SessionSummary) -> None:
        self.calls += 1
        raise OSError("disk full")


class _SlowSink:
    def __init__(self) -> None:
        self.release = asyncio.Event()
        self.received: list[SessionSummary] = []

    async def emit(self, summary: SessionSummary) -> None:
        await self.release.wait()
        self.received.append(summary)


def test_sink_failure_does_not_affect_call_completion(capsys) -> None:
    async def _run() -> None:
        sink = _FailingSink()
        h = CallHarness.build(summary_sink=sink, structured_logging=True)
        await h.start()
        out = await h.say("wrong person")
        assert out.should_terminate is True
        await h.orch.drain()
        assert sink.calls == 1
        assert h.session().stage is Stage.COMPLETE
        assert h.metrics.get(TRIAGE["summary_sink_errors_total"]) == 1

    asyncio.run(_run())
    assert '"event":"summary_sink_error"' in capsys.readouterr().out


def test_reply_is_returned_before_sink_finishes() -> None:
    async def _run() -> None:
        sink = _SlowSink()
        h = CallHarness.build(summary_sink=sink)
        await h.start()
        out = await h.say("no")
        assert out.should_terminate is True
        assert sink.received == []
        sink.release.set()
        await h.orch.drain()
        assert [s.session_id for s in sink.received] == ["call-1"]
        assert sink.received[0].identity_confirmed is False

    asyncio.run(_run())


def test_fanout_delivers_to_every_sink_then_raises() -> None:
    async def _run() -> None:
        records = PatientRecords()
        failing = _FailingSink()
        fan = FanoutSummarySink([failing, records])
        summary = SessionSummary(
            session_id="c",
            subject_id="p-1",
            transcript=[],
            triage_level="yellow",
            recommended_action="Follow up.",
            matched_complications=[],
        )
        try:
            await fan.emit(summary)
        except OSError:
            pass
        else:
            raise AssertionError("expected the sink error to surface")
        assert failing.calls == 1
        assert records.history("p-1") == [summary]

    asyncio.run(_run())


def test_jsonl_sink_appends_one_line_per_call(tmp_path) -> None:
    async def _run() -> None:
        path = tmp_path / "out" / "summaries.jsonl"
        sink = JsonlSummarySink(path)
        h = CallHarness.build(summary_sink=sink)
        for sid in ("c-1", "c-2"):
            await h.confirmed(sid)
            await h.say("I passed out this morning", session_id=sid)
        await h.orch.drain()

        lines = path.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 2
        rows = [json.loads(line) for line in lines]
        assert {r["session_id"] for r in rows} == {"c-1", "c-2"}
        assert all(r["triage_level"] == "red" for r in rows)
        assert all(r["subject_id"] == "p-1" for r in rows)

    asyncio.run(_run())


def test_prior_call_digest_keeps_last_three() -> None:
    async def _run() -> None:
        records = PatientRecords()
        for i, level in enumerate(["green", "yellow", "red", "green"]):
            await records.emit(
                SessionSummary(
                    session_id=f"c-{i}",
                    subject_id="p-1",
                    transcript=[],
                    triage_level=level,
                    recommended_action=f"action {i}",
                    matched_complications=["wound infection"] if level == "red" else [],
                    completed_at=f"2026-02-0{i + 1}T10:00:00+00:00",
                )
            )
        ctx = await records.fetch("p-1")
        lines = ctx.prior_calls_digest.splitlines()
        assert lines == [
            "2026-02-02: YELLOW - action 1",
            "2026-02-03: RED - action 2 (wound infection)",
            "2026-02-04: GREEN - action 3",
        ]

    asyncio.run(_run())
