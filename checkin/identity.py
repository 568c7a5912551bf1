from __future__ import annotations

import re
from enum import Enum

from .clock import Clock
from .config import CheckinConfig
from .metrics import Metrics, TRIAGE
from .models import Session, Stage, TurnOutcome
from .oracle import OracleGateway
from .prompts import (
    IDENTITY_DECLINED,
    IDENTITY_REPROMPT_EMPTY,
    IDENTITY_REPROMPT_UNCLEAR,
    IDENTITY_UNCONFIRMED,
    identity_confirmed_prompt,
)


class IdentityClass(str, Enum):
    YES = "YES"
    NO = "NO"
    UNCLEAR = "UNCLEAR"


_DENY_PAT = re.compile(
    r"\b(wrong (number|person)|not me|not the patient|not (him|her|them)|(isn't|is not|not) (here|home|available)"
    r"|no one by that name|nobody by that name)\b",
    re.I,
)
_RELATION = r"(daughter|son|wife|husband|partner|mother|mom|father|dad|sister|brother|caregiver|carer|nurse|friend|neighbou?r)"
# Someone answering on the patient's behalf.
_PROXY_PAT = re.compile(
    r"\b(his|her|their|the patient's)( \w+)? " + _RELATION + r"\b"
    r"|\b(i'm|i am|this is) (a |the |his |her |their )?" + _RELATION + r"\b",
    re.I,
)
_CONFIRM_PAT = re.compile(
    r"\b(yes|yeah|yea|yep|yup|correct|speaking|that's me|that is me|this is (me|him|her|he|she)(?! \w)"
    r"|it's me|it is me|i am the patient|i'm the patient|sure is)\b",
    re.I,
)
_NO_PAT = re.compile(r"\b(no|nope|nah|negative)\b", re.I)


def classify_identity_keywords(answer: str) -> IdentityClass:
    """Deterministic yes/no reading of an identity answer; DTMF 1 = yes, 2 = no."""
    t = (answer or "").strip().lower().replace("’", "'")
    if not t:
        return IdentityClass.UNCLEAR
    if t == "1":
        return IdentityClass.YES
    if t == "2":
        return IdentityClass.NO
    if _DENY_PAT.search(t) or _PROXY_PAT.search(t):
        return IdentityClass.NO
    if _CONFIRM_PAT.search(t):
        return IdentityClass.YES
    if _NO_PAT.search(t):
        return IdentityClass.NO
    return IdentityClass.UNCLEAR


class IdentityProtocol:
    """Turn handler for the privacy check at the start of every call."""

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

    async def classify(self, session: Session, answer: str) -> IdentityClass:
        by_keyword = classify_identity_keywords(answer)
        if by_keyword is not IdentityClass.UNCLEAR:
            return by_keyword
        by_oracle = await self._gateway.classify_identity(session, answer)
        if by_oracle is None:
            return IdentityClass.UNCLEAR
        return IdentityClass(by_oracle)

    async def handle(self, session: Session, answer: str) -> TurnOutcome:
        now = self._clock.wall_iso()
        if not answer:
            return TurnOutcome(session.say(IDENTITY_REPROMPT_EMPTY, now_iso=now), should_terminate=False)

        result = await self.classify(session, answer)
        session.identity_attempts += 1
        self._metrics.inc(TRIAGE["identity_attempts_total"])
        now = self._clock.wall_iso()

        if result is IdentityClass.YES:
            session.identity_confirmed = True
            session.advance_stage(Stage.SYMPTOMS, now_iso=now)
            return TurnOutcome(session.say(identity_confirmed_prompt(), now_iso=now), should_terminate=False)

        if result is IdentityClass.NO:
            text = session.say(IDENTITY_DECLINED, now_iso=now)
            session.advance_stage(Stage.COMPLETE, now_iso=now)
            return TurnOutcome(text, should_terminate=True)

        if session.identity_attempts < self._config.max_identity_attempts:
            return TurnOutcome(session.say(IDENTITY_REPROMPT_UNCLEAR, now_iso=now), should_terminate=False)

        text = session.say(IDENTITY_UNCONFIRMED, now_iso=now)
        session.advance_stage(Stage.COMPLETE, now_iso=now)
        return TurnOutcome(text, should_terminate=True)
