from __future__ import annotations

import asyncio
import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Optional, Protocol

from .models import ReferenceContext, Session


PRIOR_CALLS_IN_DIGEST = 3


@dataclass(frozen=True, slots=True)
class SessionSummary:
    session_id: str
    subject_id: str
    transcript: list[dict[str, str]]
    triage_level: str
    recommended_action: str
    matched_complications: list[str]
    rationale: str = ""
    identity_confirmed: bool = False
    completed_at: Optional[str] = None

    @staticmethod
    def from_session(session: Session) -> "SessionSummary":
        return SessionSummary(
            session_id=session.session_id,
            subject_id=session.subject_id,
            transcript=session.transcript.to_payload(),
            triage_level=session.triage_level.value,
            recommended_action=session.recommended_action,
            matched_complications=list(session.matched_complications),
            rationale=session.rationale,
            identity_confirmed=session.identity_confirmed,
            completed_at=session.completed_at,
        )

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)


class ReferenceContextStore(Protocol):
    async def fetch(self, subject_id: str) -> ReferenceContext: ...


class SummarySink(Protocol):
    async def emit(self, summary: SessionSummary) -> None: ...


class PatientRecords:
    """
    In-memory patient records: expected-recovery text per subject plus the history
    of completed check-ins. Serves as both context store and summary sink.
    """

    def __init__(self, recovery_expectations: Optional[dict[str, str]] = None) -> None:
        self._recovery: dict[str, str] = dict(recovery_expectations or {})
        self._history: dict[str, list[SessionSummary]] = {}
        self.fetch_count = 0

    def history(self, subject_id: str) -> list[SessionSummary]:
        return list(self._history.get(subject_id, []))

    async def fetch(self, subject_id: str) -> ReferenceContext:
        self.fetch_count += 1
        return ReferenceContext(
            recovery_expectations=self._recovery.get(subject_id, ""),
            prior_calls_digest=self._digest(subject_id),
        )

    async def emit(self, summary: SessionSummary) -> None:
        self._history.setdefault(summary.subject_id, []).append(summary)

    def _digest(self, subject_id: str) -> str:
        past = self._history.get(subject_id, [])[-PRIOR_CALLS_IN_DIGEST:]
        lines: list[str] = []
        for s in past:
            day = (s.completed_at or "")[:10] or "unknown date"
            line = f"{day}: {s.triage_level.upper()} - {s.recommended_action}"
            if s.matched_complications:
                line += " (" + ", ".join(s.matched_complications) + ")"
            lines.append(line)
        return "\n".join(lines)


class JsonlSummarySink:
    """Appends one JSON object per completed call."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    def _append(self, line: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")

    async def emit(self, summary: SessionSummary) -> None:
        line = json.dumps(summary.to_payload(), sort_keys=True, separators=(",", ":"))
        await asyncio.to_thread(self._append, line)


@dataclass
class FanoutSummarySink:
    sinks: list[Any] = field(default_factory=list)

    async def emit(self, summary: SessionSummary) -> None:
        # Every sink gets the summary; the first failure is re-raised afterwards.
        first_err: Optional[BaseException] = None
        for s in self.sinks:
            try:
                await s.emit(summary)
            except Exception as e:
                if first_err is None:
                    first_err = e
        if first_err is not None:
            raise first_err
