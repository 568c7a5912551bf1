from __future__ import annotations

from . import fallback
from .clock import Clock
from .coercion import coerce_with_report
from .config import CheckinConfig
from .metrics import Metrics, TRIAGE
from .models import Decision, Session, Stage, TriageLevel, TurnOutcome
from .oracle import OracleGateway
from .prompts import FAREWELL, SYMPTOM_REPROMPT_EMPTY, closing_for, default_action_for
from .safety_policy import matches_hard_stop
from .trace import log_event


def _join(*parts: str) -> str:
    return " ".join(p.strip() for p in parts if p and p.strip())


class SymptomProtocol:
    """
    Turn handler for the triage phase: bounded follow-ups, then a verdict.

    The oracle is consulted on every turn below the turn cap; whatever it returns
    goes through the coercion layer before it can touch the session.
    """

    def __init__(
        self,
        *,
        config: CheckinConfig,
        clock: Clock,
        gateway: OracleGateway,
        metrics: Metrics,
    ) -> None:
        self._config = config
        self._clock = clock
        self._gateway = gateway
        self._metrics = metrics

    async def handle(self, session: Session, answer: str) -> TurnOutcome:
        if not answer:
            return TurnOutcome(
                session.say(SYMPTOM_REPROMPT_EMPTY, now_iso=self._clock.wall_iso()),
                should_terminate=False,
            )

        session.turn_count += 1
        if session.turn_count >= self._config.max_turns:
            self._metrics.inc(TRIAGE["turn_cap_total"])
            decision = self._turn_cap_decision(session, answer)
        else:
            reply = await self._gateway.query(session, answer)
            coerced = coerce_with_report(reply, session, answer, config=self._config)
            decision = coerced.decision
            if coerced.used_fallback:
                self._metrics.inc(TRIAGE["fallback_decisions_total"])
            if coerced.overrides:
                self._metrics.inc(TRIAGE["decision_overrides_total"], len(coerced.overrides))
                log_event(
                    self._config.structured_logging,
                    component="coercion",
                    event="decision_override",
                    session_id=session.session_id,
                    overrides=coerced.overrides,
                )

        if matches_hard_stop(answer):
            self._metrics.inc(TRIAGE["hard_stop_total"])
        self._record(session, decision)
        now = self._clock.wall_iso()

        if decision.ask_followup:
            session.followup_count += 1
            if decision.question_id:
                session.asked_question_ids.add(decision.question_id)
            text = session.say(_join(decision.acknowledgement, decision.next_question), now_iso=now)
            return TurnOutcome(text, should_terminate=False, decision=decision)

        text = session.say(
            _join(decision.acknowledgement, closing_for(decision.triage_level), FAREWELL),
            now_iso=now,
        )
        session.advance_stage(Stage.COMPLETE, now_iso=now)
        return TurnOutcome(text, should_terminate=True, decision=decision)

    def _turn_cap_decision(self, session: Session, answer: str) -> Decision:
        fb = fallback.decide(session, answer, max_followups=self._config.max_followups)
        if fb.triage_level is TriageLevel.RED:
            return fb
        level = session.triage_level if session.triage_assigned else TriageLevel.YELLOW
        return Decision(
            ask_followup=False,
            end_call=True,
            triage_level=level,
            rationale=session.rationale or "Turn limit reached; closing with the last assessment.",
            matched_complications=list(session.matched_complications) or fb.matched_complications,
            recommended_action=default_action_for(level),
            acknowledgement=fb.acknowledgement,
            confidence=session.confidence if session.confidence is not None else fb.confidence,
            reported_symptoms=list(session.reported_symptoms),
            from_fallback=True,
        )

    @staticmethod
    def _record(session: Session, decision: Decision) -> None:
        session.triage_level = decision.triage_level
        session.triage_assigned = True
        session.rationale = decision.rationale
        session.matched_complications = list(decision.matched_complications)
        session.reported_symptoms = list(decision.reported_symptoms)
        session.recommended_action = decision.recommended_action
        session.confidence = decision.confidence
