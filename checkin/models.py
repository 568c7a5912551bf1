from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Iterator, Optional


class Stage(str, Enum):
    IDENTITY = "IDENTITY"
    SYMPTOMS = "SYMPTOMS"
    COMPLETE = "COMPLETE"


class Speaker(str, Enum):
    AI = "ai"
    SUBJECT = "patient"


class TriageLevel(str, Enum):
    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"

    @classmethod
    def parse(cls, raw: Any) -> Optional["TriageLevel"]:
        if isinstance(raw, TriageLevel):
            return raw
        if not isinstance(raw, str):
            return None
        try:
            return cls(raw.strip().lower())
        except ValueError:
            return None


# Allowed stage edges. COMPLETE is terminal.
_STAGE_EDGES = {
    Stage.IDENTITY: {Stage.SYMPTOMS, Stage.COMPLETE},
    Stage.SYMPTOMS: {Stage.COMPLETE},
    Stage.COMPLETE: set(),
}


class StageTransitionError(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class TranscriptEntry:
    speaker: Speaker
    text: str
    timestamp: str

    def to_payload(self) -> dict[str, str]:
        return {"speaker": self.speaker.value, "text": self.text, "timestamp": self.timestamp}


class TranscriptLog:
    """Append-only, chronologically ordered utterances for one call."""

    def __init__(self) -> None:
        self._entries: list[TranscriptEntry] = []

    def append(self, speaker: Speaker, text: str, timestamp: str) -> TranscriptEntry:
        entry = TranscriptEntry(speaker=speaker, text=text, timestamp=timestamp)
        self._entries.append(entry)
        return entry

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[TranscriptEntry]:
        return iter(tuple(self._entries))

    def ai_texts(self) -> list[str]:
        return [e.text for e in self._entries if e.speaker is Speaker.AI]

    def last_ai_text(self) -> str:
        for e in reversed(self._entries):
            if e.speaker is Speaker.AI:
                return e.text
        return ""

    def to_payload(self) -> list[dict[str, str]]:
        return [e.to_payload() for e in self._entries]


@dataclass(frozen=True, slots=True)
class PatientInfo:
    subject_id: str
    name: str = ""
    surgery_type: str = ""
    days_post_surgery: Optional[int] = None

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class ReferenceContext:
    recovery_expectations: str = ""
    prior_calls_digest: str = ""

    def to_payload(self) -> dict[str, str]:
        return asdict(self)


@dataclass(slots=True)
class Decision:
    ask_followup: bool
    end_call: bool
    triage_level: TriageLevel
    rationale: str = ""
    matched_complications: list[str] = field(default_factory=list)
    recommended_action: str = ""
    next_question: str = ""
    question_id: Optional[str] = None
    acknowledgement: str = ""
    confidence: float = 0.5
    reported_symptoms: list[str] = field(default_factory=list)
    from_fallback: bool = False

    def to_payload(self) -> dict[str, Any]:
        out = asdict(self)
        out["triage_level"] = self.triage_level.value
        return out


@dataclass(slots=True)
class Session:
    session_id: str
    patient: PatientInfo
    stage: Stage = Stage.IDENTITY
    transcript: TranscriptLog = field(default_factory=TranscriptLog)
    followup_count: int = 0
    turn_count: int = 0
    identity_attempts: int = 0
    identity_confirmed: bool = False
    triage_level: TriageLevel = TriageLevel.GREEN
    triage_assigned: bool = False
    rationale: str = ""
    matched_complications: list[str] = field(default_factory=list)
    reported_symptoms: list[str] = field(default_factory=list)
    recommended_action: str = ""
    confidence: Optional[float] = None
    asked_question_ids: set[str] = field(default_factory=set)
    context_cache: Optional[ReferenceContext] = None
    last_prompt: str = ""
    created_at: str = ""
    completed_at: Optional[str] = None

    @property
    def subject_id(self) -> str:
        return self.patient.subject_id

    @property
    def is_terminal(self) -> bool:
        return self.stage is Stage.COMPLETE

    def advance_stage(self, target: Stage, *, now_iso: str) -> None:
        if target is self.stage:
            return
        if target not in _STAGE_EDGES[self.stage]:
            raise StageTransitionError(f"illegal stage transition {self.stage.value} -> {target.value}")
        self.stage = target
        if target is Stage.COMPLETE and self.completed_at is None:
            self.completed_at = now_iso

    def say(self, text: str, *, now_iso: str) -> str:
        self.transcript.append(Speaker.AI, text, now_iso)
        self.last_prompt = text
        return text

    def heard(self, text: str, *, now_iso: str) -> None:
        self.transcript.append(Speaker.SUBJECT, text, now_iso)

    def to_payload(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "patient": self.patient.to_payload(),
            "stage": self.stage.value,
            "transcript": self.transcript.to_payload(),
            "followup_count": self.followup_count,
            "turn_count": self.turn_count,
            "identity_attempts": self.identity_attempts,
            "identity_confirmed": self.identity_confirmed,
            "triage_level": self.triage_level.value,
            "rationale": self.rationale,
            "matched_complications": list(self.matched_complications),
            "reported_symptoms": list(self.reported_symptoms),
            "recommended_action": self.recommended_action,
            "confidence": self.confidence,
            "asked_question_ids": sorted(self.asked_question_ids),
            "created_at": self.created_at,
            "completed_at": self.completed_at,
        }


@dataclass(frozen=True, slots=True)
class TurnOutcome:
    prompt_text: str
    should_terminate: bool
    decision: Optional[Decision] = None
    replayed: bool = False
