from __future__ import annotations

import hashlib
import json
from collections import deque
from dataclasses import dataclass
from typing import Any


def _sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def hash_payload(obj: Any) -> str:
    # Canonical JSON to make hashing stable for replay.
    blob = json.dumps(obj, separators=(",", ":"), sort_keys=True, ensure_ascii=True, default=str).encode(
        "utf-8"
    )
    return _sha256_hex(blob)


def log_event(enabled: bool, *, component: str, event: str, **payload: object) -> None:
    """One-line JSON event on stdout; no-op unless structured logging is on."""
    if not enabled:
        return
    base: dict[str, object] = {"component": component, "event": event}
    base.update(payload)
    print(json.dumps(base, sort_keys=True, separators=(",", ":"), default=str))


@dataclass(frozen=True, slots=True)
class TraceEvent:
    seq: int
    t_ms: int
    session_id: str
    turn: int
    stage: str
    event_type: str
    payload_hash: str


class TraceSink:
    def __init__(self, *, max_events: int = 20000) -> None:
        self._seq = 0
        self._events: deque[TraceEvent] = deque(maxlen=int(max_events))
        self.schema_violations_total = 0

    @property
    def events(self) -> list[TraceEvent]:
        return list(self._events)

    def emit(
        self,
        *,
        t_ms: int,
        session_id: str,
        turn: int,
        stage: str,
        event_type: str,
        payload_obj: Any,
    ) -> TraceEvent:
        self._seq += 1
        ev = TraceEvent(
            seq=self._seq,
            t_ms=int(t_ms),
            session_id=session_id,
            turn=int(turn),
            stage=stage,
            event_type=event_type,
            payload_hash=hash_payload(payload_obj),
        )
        if not self._validate(ev):
            self.schema_violations_total += 1
        self._events.append(ev)
        return ev

    def for_session(self, session_id: str) -> list[TraceEvent]:
        return [e for e in self._events if e.session_id == session_id]

    def replay_digest(self) -> str:
        blob = "|".join(
            f"{e.seq}:{e.t_ms}:{e.session_id}:{e.turn}:{e.stage}:{e.event_type}:{e.payload_hash}"
            for e in self._events
        ).encode("utf-8")
        return _sha256_hex(blob)

    def _validate(self, ev: TraceEvent) -> bool:
        if ev.seq <= 0 or ev.t_ms < 0 or ev.turn < 0:
            return False
        if not ev.session_id or not ev.stage or not ev.event_type:
            return False
        return bool(ev.payload_hash)
