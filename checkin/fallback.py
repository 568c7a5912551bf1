from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Optional

from .models import Decision, Session, TriageLevel
from .prompts import default_action_for
from .safety_policy import matched_hard_stops


@dataclass(frozen=True, slots=True)
class ClarifyingQuestion:
    id: str
    text: str


# Priority order. Each question is asked at most once per call.
QUESTION_CATALOG: tuple[ClarifyingQuestion, ...] = (
    ClarifyingQuestion("onset", "Can you tell me when this first started?"),
    ClarifyingQuestion("trend", "Is it getting better, worse, or staying about the same?"),
    ClarifyingQuestion("severity", "On a scale of 1 to 10, how would you rate it right now?"),
    ClarifyingQuestion("location", "Where exactly do you feel it, and has it moved anywhere?"),
    ClarifyingQuestion(
        "anything_else",
        "Is there anything else about your recovery you'd like your care team to know?",
    ),
)

QUESTION_PREFIX_CHARS = 24

_NON_WORD = re.compile(r"[^a-z0-9 ]+")
_SPACES = re.compile(r"\s+")


def normalize_question(text: str) -> str:
    t = _NON_WORD.sub(" ", (text or "").lower().replace("’", "'").replace("'", ""))
    return _SPACES.sub(" ", t).strip()


def question_prefix(text: str) -> str:
    return normalize_question(text)[:QUESTION_PREFIX_CHARS].strip()


def echoes(question: str, spoken: str) -> bool:
    """True when `spoken` already contains the opening words of `question`."""
    p = question_prefix(question)
    if not p:
        return False
    return p in normalize_question(spoken)


def already_asked(question: str, ai_texts: Iterable[str]) -> bool:
    return any(echoes(question, t) for t in ai_texts)


def pick_unasked_question(session: Session, *, avoid: str = "") -> Optional[ClarifyingQuestion]:
    ai_texts = session.transcript.ai_texts()
    for q in QUESTION_CATALOG:
        if q.id in session.asked_question_ids:
            continue
        if already_asked(q.text, ai_texts):
            continue
        if avoid and echoes(q.text, avoid):
            continue
        return q
    return None


def decide(session: Session, utterance: str, *, max_followups: int) -> Decision:
    """Conservative decision used when the oracle is absent or unusable."""
    hits = matched_hard_stops(utterance)
    if hits:
        return Decision(
            ask_followup=False,
            end_call=True,
            triage_level=TriageLevel.RED,
            rationale="Red-flag symptom detected: " + ", ".join(hits) + ".",
            matched_complications=["possible acute post-op complication"],
            recommended_action=default_action_for(TriageLevel.RED),
            acknowledgement="Thank you for sharing that. Your care team should follow up urgently.",
            confidence=0.88,
            reported_symptoms=list(hits),
            from_fallback=True,
        )

    q = pick_unasked_question(session) if session.followup_count < max_followups else None
    if q is not None:
        return Decision(
            ask_followup=True,
            end_call=False,
            triage_level=TriageLevel.YELLOW,
            rationale="More detail needed for confident triage.",
            matched_complications=["nonspecific post-op symptom"],
            recommended_action="Gathering more information before recommending action.",
            next_question=q.text,
            question_id=q.id,
            acknowledgement="Thanks for explaining that.",
            confidence=0.55,
            from_fallback=True,
        )

    return Decision(
        ask_followup=False,
        end_call=True,
        triage_level=TriageLevel.YELLOW,
        rationale="No clarifying questions left without a clear picture; refer for outpatient follow-up.",
        matched_complications=["nonspecific post-op symptom"],
        recommended_action=default_action_for(TriageLevel.YELLOW),
        acknowledgement="Thanks for explaining that.",
        confidence=0.55,
        from_fallback=True,
    )
