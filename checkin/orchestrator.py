from __future__ import annotations

import asyncio
from typing import Any, Optional

from .clock import Clock
from .config import CheckinConfig
from .identity import IdentityProtocol
from .llm_client import LLMClient
from .metrics import Metrics, TRIAGE
from .models import PatientInfo, Session, Stage, TurnOutcome
from .oracle import OracleGateway
from .prompts import greeting
from .records import ReferenceContextStore, SessionSummary, SummarySink
from .session_store import InMemorySessionStore, SessionStore
from .symptoms import SymptomProtocol
from .trace import TraceSink, log_event


class CallOrchestrator:
    """
    Entry point for one phone check-in per session id.

    - start_call() opens the call and returns the greeting.
    - handle_turn() feeds one subject utterance through the current stage and
      returns the next line to speak plus whether the call should hang up.

    Turns for the same session are serialized by the store lock. A completed
    session replays its final line instead of mutating again.
    """

    def __init__(
        self,
        *,
        config: CheckinConfig,
        clock: Clock,
        store: Optional[SessionStore] = None,
        llm: Optional[LLMClient] = None,
        context_store: Optional[ReferenceContextStore] = None,
        summary_sink: Optional[SummarySink] = None,
        metrics: Optional[Metrics] = None,
        trace: Optional[TraceSink] = None,
    ) -> None:
        self.config = config
        self.clock = clock
        self.store: SessionStore = store if store is not None else InMemorySessionStore()
        self.metrics = metrics if metrics is not None else Metrics()
        self.trace = trace if trace is not None else TraceSink()
        self._llm = llm
        self._summary_sink = summary_sink
        self._pending: set[asyncio.Task[None]] = set()
        self._active = 0

        self.gateway = OracleGateway(
            config=config,
            clock=clock,
            metrics=self.metrics,
            llm=llm,
            context_store=context_store,
        )
        self._identity = IdentityProtocol(config=config, clock=clock, gateway=self.gateway, metrics=self.metrics)
        self._symptoms = SymptomProtocol(config=config, clock=clock, gateway=self.gateway, metrics=self.metrics)

    def _log(self, event: str, **payload: object) -> None:
        log_event(self.config.structured_logging, component="orchestrator", event=event, **payload)

    def _trace(self, session: Session, event_type: str, payload: Any) -> None:
        self.trace.emit(
            t_ms=self.clock.now_ms(),
            session_id=session.session_id,
            turn=session.turn_count,
            stage=session.stage.value,
            event_type=event_type,
            payload_obj=payload,
        )

    async def start_call(self, session_id: str, patient: PatientInfo) -> TurnOutcome:
        session = self.store.get_or_create(session_id, patient=patient, created_at=self.clock.wall_iso())
        async with self.store.lock(session_id):
            if len(session.transcript) or session.is_terminal:
                return TurnOutcome(session.last_prompt, should_terminate=session.is_terminal, replayed=True)

            text = session.say(greeting(self.config.care_team_name, session.patient), now_iso=self.clock.wall_iso())
            self.metrics.inc(TRIAGE["sessions_started_total"])
            self._active += 1
            self.metrics.set(TRIAGE["sessions_active"], self._active)
            self._log("session_created", session_id=session_id, subject_id=session.subject_id)
            self._trace(session, "call_started", {"prompt": text})
            return TurnOutcome(text, should_terminate=False)

    async def handle_turn(
        self,
        session_id: str,
        utterance: Optional[str],
        *,
        stage_hint: Optional[str] = None,
    ) -> TurnOutcome:
        session = self.store.get(session_id)
        async with self.store.lock(session_id):
            started_ms = self.clock.now_ms()
            if session.is_terminal:
                self._log("terminal_replay", session_id=session_id)
                return TurnOutcome(session.last_prompt, should_terminate=True, replayed=True)

            if stage_hint and stage_hint.strip().upper() != session.stage.value:
                # Advisory only; the session's own stage wins.
                self._log(
                    "stage_hint_mismatch",
                    session_id=session_id,
                    hint=stage_hint,
                    stage=session.stage.value,
                )

            text = (utterance or "").strip()
            self._log("turn_received", session_id=session_id, stage=session.stage.value, empty=not text)
            if text:
                session.heard(text, now_iso=self.clock.wall_iso())

            if session.stage is Stage.IDENTITY:
                outcome = await self._identity.handle(session, text)
            else:
                outcome = await self._symptoms.handle(session, text)

            self._trace(
                session,
                "turn_completed",
                {
                    "utterance": text,
                    "prompt": outcome.prompt_text,
                    "terminate": outcome.should_terminate,
                    "decision": outcome.decision.to_payload() if outcome.decision else None,
                },
            )
            self.metrics.observe(TRIAGE["turn_latency_ms"], self.clock.now_ms() - started_ms)
            if outcome.should_terminate:
                self._complete(session)
            return outcome

    def _complete(self, session: Session) -> None:
        self.metrics.inc(TRIAGE["sessions_completed_total"])
        self._active = max(0, self._active - 1)
        self.metrics.set(TRIAGE["sessions_active"], self._active)
        self._log(
            "session_completed",
            session_id=session.session_id,
            triage_level=session.triage_level.value,
            identity_confirmed=session.identity_confirmed,
            followups=session.followup_count,
            turns=session.turn_count,
        )
        if self._summary_sink is None:
            return
        task = asyncio.create_task(self._emit_summary(SessionSummary.from_session(session)))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _emit_summary(self, summary: SessionSummary) -> None:
        assert self._summary_sink is not None
        try:
            await self._summary_sink.emit(summary)
        except Exception as e:
            # Sink failures never reach the caller.
            self.metrics.inc(TRIAGE["summary_sink_errors_total"])
            self._log("summary_sink_error", session_id=summary.session_id, error=type(e).__name__)

    def snapshot(self, session_id: str) -> dict[str, Any]:
        return self.store.get(session_id).to_payload()

    async def drain(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        if self._llm is not None:
            await self._llm.aclose()
