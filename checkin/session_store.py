from __future__ import annotations

import asyncio
import contextlib
from typing import AsyncIterator, Optional, Protocol

from .models import PatientInfo, Session


class SessionNotFound(KeyError):
    """A turn arrived for a call this process never started."""

    def __init__(self, session_id: str) -> None:
        super().__init__(session_id)
        self.session_id = session_id

    def __str__(self) -> str:
        return f"unknown session: {self.session_id}"


class SessionStore(Protocol):
    def get_or_create(self, session_id: str, *, patient: PatientInfo, created_at: str = "") -> Session: ...

    def get(self, session_id: str) -> Session: ...

    def lock(self, session_id: str) -> contextlib.AbstractAsyncContextManager[None]: ...


class InMemorySessionStore:
    """
    Process-lifetime session map.

    One asyncio.Lock per session id: turns for the same call are serialized while
    distinct calls proceed independently. No eviction.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def get_or_create(self, session_id: str, *, patient: PatientInfo, created_at: str = "") -> Session:
        existing = self._sessions.get(session_id)
        if existing is not None:
            return existing
        session = Session(session_id=session_id, patient=patient, created_at=created_at)
        self._sessions[session_id] = session
        return session

    def get(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def find(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    @contextlib.asynccontextmanager
    async def lock(self, session_id: str) -> AsyncIterator[None]:
        # No await between lookup and insert.
        lk = self._locks.setdefault(session_id, asyncio.Lock())
        async with lk:
            yield
