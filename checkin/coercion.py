from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from typing import Any, Optional

from . import fallback
from .config import CheckinConfig
from .models import Decision, Session, TriageLevel
from .oracle import OracleOk, OracleReply
from .prompts import default_action_for
from .safety_policy import matched_hard_stops


CONTROL_FIELDS = ("next_question", "end_call", "needs_followup")


@dataclass(slots=True)
class Coerced:
    decision: Decision
    used_fallback: bool
    overrides: list[str] = field(default_factory=list)


def _bool_field(raw: dict[str, Any], key: str, default: bool) -> bool:
    v = raw.get(key)
    return v if isinstance(v, bool) else default


def _text_field(raw: dict[str, Any], keys: tuple[str, ...]) -> str:
    for key in keys:
        v = raw.get(key)
        if isinstance(v, str) and v.strip():
            return v.strip()
    return ""


def _list_field(raw: dict[str, Any], key: str, default: list[str], limit: int) -> list[str]:
    v = raw.get(key)
    if not isinstance(v, list):
        return list(default)[:limit]
    out: list[str] = []
    for item in v:
        if isinstance(item, bool) or not isinstance(item, (str, int, float)):
            continue
        s = str(item).strip()
        if s:
            out.append(s)
    return out[:limit]


def _confidence_field(raw: dict[str, Any], default: float) -> float:
    for key in ("triage_confidence", "confidence"):
        v = raw.get(key)
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            continue
        if math.isnan(float(v)):
            continue
        return max(0.0, min(1.0, float(v)))
    return default


def _merge(raw: dict[str, Any], fb: Decision, limit: int) -> Decision:
    level = TriageLevel.parse(raw.get("triage_level"))
    # An explicit end_call: true without needs_followup means no further question.
    ask_default = False if raw.get("end_call") is True else fb.ask_followup
    return Decision(
        ask_followup=_bool_field(raw, "needs_followup", ask_default),
        end_call=_bool_field(raw, "end_call", fb.end_call),
        triage_level=level or fb.triage_level,
        rationale=_text_field(raw, ("reasoning_summary", "rationale")) or fb.rationale,
        matched_complications=_list_field(raw, "matched_complications", fb.matched_complications, limit),
        recommended_action=_text_field(raw, ("recommended_action",)),
        next_question=_text_field(raw, ("next_question",)),
        acknowledgement=_text_field(raw, ("patient_facing_ack", "acknowledgement")) or fb.acknowledgement,
        confidence=_confidence_field(raw, fb.confidence),
        reported_symptoms=_list_field(raw, "reported_symptoms", fb.reported_symptoms, limit),
    )


def _catalog_id(question: str) -> Optional[str]:
    for q in fallback.QUESTION_CATALOG:
        if fallback.echoes(q.text, question):
            return q.id
    return None


def _use_catalog_question(d: Decision, q: Optional[fallback.ClarifyingQuestion]) -> None:
    if q is None:
        d.ask_followup = False
        d.end_call = True
        d.next_question = ""
        d.question_id = None
        return
    d.next_question = q.text
    d.question_id = q.id


def coerce_with_report(
    reply: OracleReply,
    session: Session,
    utterance: str,
    *,
    config: CheckinConfig,
) -> Coerced:
    limit = config.max_list_items
    fb = fallback.decide(session, utterance, max_followups=config.max_followups)

    raw = reply.fields if isinstance(reply, OracleOk) else None
    has_control = raw is not None and any(k in raw for k in CONTROL_FIELDS)
    if raw is None or not (has_control or config.oracle_partial_merge):
        return Coerced(
            decision=replace(
                fb,
                matched_complications=fb.matched_complications[:limit],
                reported_symptoms=fb.reported_symptoms[:limit],
            ),
            used_fallback=True,
        )

    d = _merge(raw, fb, limit)
    overrides: list[str] = []

    hits = matched_hard_stops(utterance)
    if hits:
        if d.triage_level is not TriageLevel.RED:
            # Oracle's action was written for a lower level.
            d.recommended_action = ""
        if d.triage_level is not TriageLevel.RED or d.ask_followup or not d.end_call:
            overrides.append("hard_stop")
        d.triage_level = TriageLevel.RED
        d.ask_followup = False
        d.end_call = True
        d.reported_symptoms = list(dict.fromkeys(d.reported_symptoms + hits))[:limit]

    if session.followup_count >= config.max_followups and d.ask_followup:
        d.ask_followup = False
        overrides.append("followup_cap")

    if d.triage_level is TriageLevel.RED and d.ask_followup:
        d.ask_followup = False
        overrides.append("red_terminates")

    if not d.ask_followup and not d.end_call:
        d.end_call = True
        overrides.append("no_question_ends_call")
    elif d.ask_followup and d.end_call:
        d.end_call = False
        overrides.append("question_keeps_call_open")

    # Only a confirmed red flag may end turn one.
    if session.followup_count == 0 and d.end_call and not hits:
        d.ask_followup = True
        d.end_call = False
        if d.triage_level is TriageLevel.RED:
            d.triage_level = TriageLevel.YELLOW
            d.recommended_action = ""
        overrides.append("first_turn_needs_followup")

    if d.ask_followup:
        if d.next_question:
            d.question_id = _catalog_id(d.next_question)
        elif fb.next_question:
            d.next_question = fb.next_question
            d.question_id = fb.question_id
            overrides.append("missing_question")
        else:
            _use_catalog_question(d, fallback.pick_unasked_question(session))
            overrides.append("missing_question")

        last_ai = session.transcript.last_ai_text()
        if d.ask_followup and last_ai and fallback.echoes(d.next_question, last_ai):
            _use_catalog_question(d, fallback.pick_unasked_question(session, avoid=last_ai))
            overrides.append("repeated_question")

        if not d.ask_followup:
            overrides.append("questions_exhausted")
    else:
        d.next_question = ""
        d.question_id = None

    if not d.recommended_action:
        d.recommended_action = default_action_for(d.triage_level)

    return Coerced(decision=d, used_fallback=False, overrides=overrides)


def coerce(reply: OracleReply, session: Session, utterance: str, *, config: CheckinConfig) -> Decision:
    return coerce_with_report(reply, session, utterance, config=config).decision
