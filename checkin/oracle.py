from __future__ import annotations

import asyncio
import json
import re
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from .clock import Clock
from .config import CheckinConfig
from .llm_client import LLMClient
from .metrics import Metrics, TRIAGE
from .models import ReferenceContext, Session
from .prompts import IDENTITY_SYSTEM, build_identity_payload, build_triage_payload, build_triage_system
from .records import ReferenceContextStore
from .trace import log_event


@dataclass(frozen=True, slots=True)
class OracleOk:
    fields: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class OracleMalformed:
    raw_text: str
    reason: str


@dataclass(frozen=True, slots=True)
class OracleFailure:
    reason: str


OracleReply = Union[OracleOk, OracleMalformed, OracleFailure]

_FENCE_OPEN = re.compile(r"^```[a-zA-Z]*\s*")
_FENCE_CLOSE = re.compile(r"\s*```\s*$")
_DIRECT_KEYS = ("triage_level", "next_question", "needs_followup", "end_call", "classification")


def _try_json(text: str) -> Any:
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return None


def extract_envelope(data: Any) -> Any:
    """Unwrap the envelope shapes agent endpoints put around the structured reply."""
    if not isinstance(data, dict):
        return data
    if any(k in data for k in _DIRECT_KEYS):
        return data

    for key in ("output", "result"):
        inner = data.get(key)
        if isinstance(inner, dict):
            return inner
        if isinstance(inner, str):
            parsed = _try_json(inner)
            if parsed is not None:
                return parsed

    response = data.get("response")
    if isinstance(response, str):
        parsed = _try_json(response)
        if parsed is not None:
            return parsed
    if isinstance(response, dict):
        msg = response.get("message")
        if isinstance(msg, str):
            parsed = _try_json(msg)
            if parsed is not None:
                return parsed

    messages = data.get("messages")
    if isinstance(messages, list) and messages:
        last = messages[-1]
        content = last.get("content") if isinstance(last, dict) else None
        if isinstance(content, str):
            parsed = _try_json(content)
            if parsed is not None:
                return parsed
    return data


def parse_oracle_text(text: str) -> Union[OracleOk, OracleMalformed]:
    raw = text or ""
    cleaned = raw.strip()
    if not cleaned:
        return OracleMalformed(raw_text=raw, reason="empty")
    if cleaned.startswith("```"):
        cleaned = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", cleaned))

    data = _try_json(cleaned)
    if data is None:
        # Prose around a JSON object: take the outermost braces.
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start != -1 and end > start:
            data = _try_json(cleaned[start : end + 1])
    if data is None:
        return OracleMalformed(raw_text=raw, reason="not_json")

    data = extract_envelope(data)
    if not isinstance(data, dict):
        return OracleMalformed(raw_text=raw, reason="not_an_object")
    return OracleOk(fields=data)


class OracleGateway:
    """
    Sends call context to the reasoning oracle and returns its reply as a value.

    Nothing raised by the transport escapes: timeouts, SDK errors and a missing
    client all come back as OracleFailure.
    """

    def __init__(
        self,
        *,
        config: CheckinConfig,
        clock: Clock,
        metrics: Metrics,
        llm: Optional[LLMClient] = None,
        context_store: Optional[ReferenceContextStore] = None,
    ) -> None:
        self._config = config
        self._clock = clock
        self._metrics = metrics
        self._llm = llm
        self._context_store = context_store

    @property
    def configured(self) -> bool:
        return self._llm is not None

    def _log(self, event: str, **payload: object) -> None:
        log_event(self._config.structured_logging, component="oracle", event=event, **payload)

    async def ensure_context(self, session: Session) -> ReferenceContext:
        if session.context_cache is not None:
            return session.context_cache

        ctx = ReferenceContext()
        if self._context_store is not None:
            self._metrics.inc(TRIAGE["context_fetch_total"])
            try:
                ctx = await self._clock.run_with_timeout(
                    self._context_store.fetch(session.subject_id),
                    self._config.context_timeout_ms,
                )
            except (TimeoutError, asyncio.TimeoutError):
                self._log("context_fetch_failed", session_id=session.session_id, reason="timeout")
            except Exception as e:
                self._log("context_fetch_failed", session_id=session.session_id, reason=type(e).__name__)
        # Memoised even when empty.
        session.context_cache = ctx
        return ctx

    async def _complete(self, *, system: str, prompt: str) -> str:
        assert self._llm is not None
        llm = self._llm

        async def _collect() -> str:
            parts: list[str] = []
            async for delta in llm.stream_text(system=system, prompt=prompt):
                parts.append(delta)
            return "".join(parts)

        return await self._clock.run_with_timeout(_collect(), self._config.oracle_timeout_ms)

    async def _ask(self, *, session_id: str, system: str, prompt: str) -> OracleReply:
        if self._llm is None:
            return OracleFailure(reason="oracle_unconfigured")

        self._metrics.inc(TRIAGE["oracle_requests_total"])
        try:
            text = await self._complete(system=system, prompt=prompt)
        except (TimeoutError, asyncio.TimeoutError):
            self._metrics.inc(TRIAGE["oracle_failures_total"])
            self._metrics.inc(TRIAGE["oracle_timeouts_total"])
            self._log("oracle_failure", session_id=session_id, reason="timeout")
            return OracleFailure(reason="timeout")
        except Exception as e:
            self._metrics.inc(TRIAGE["oracle_failures_total"])
            self._log("oracle_failure", session_id=session_id, reason=type(e).__name__)
            return OracleFailure(reason=f"error:{type(e).__name__}")

        reply = parse_oracle_text(text)
        if isinstance(reply, OracleMalformed):
            self._metrics.inc(TRIAGE["oracle_malformed_total"])
            self._log("oracle_malformed", session_id=session_id, reason=reply.reason)
        return reply

    async def query(self, session: Session, utterance: str) -> OracleReply:
        ctx = await self.ensure_context(session)
        prompt = build_triage_payload(
            patient=session.patient,
            utterance=utterance,
            transcript=session.transcript.to_payload(),
            followup_count=session.followup_count,
            max_followups=self._config.max_followups,
            context=ctx,
        )
        return await self._ask(session_id=session.session_id, system=build_triage_system(ctx), prompt=prompt)

    async def classify_identity(self, session: Session, answer: str) -> Optional[str]:
        """Return "YES" or "NO" when the oracle commits; None defers to the keyword classifier."""
        if not (answer or "").strip():
            return None
        reply = await self._ask(
            session_id=session.session_id,
            system=IDENTITY_SYSTEM,
            prompt=build_identity_payload(answer),
        )
        if not isinstance(reply, OracleOk):
            return None
        raw = reply.fields.get("classification") or reply.fields.get("answer") or ""
        cls = str(raw).strip().upper()
        if cls.startswith("YES"):
            return "YES"
        if cls.startswith("NO"):
            return "NO"
        return None
