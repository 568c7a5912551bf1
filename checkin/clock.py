from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Protocol, TypeVar


T = TypeVar("T")

_FAKE_EPOCH = datetime(2026, 1, 1, tzinfo=timezone.utc)


class Clock(Protocol):
    def now_ms(self) -> int: ...

    def wall_iso(self) -> str: ...

    async def run_with_timeout(self, awaitable: Awaitable[T], timeout_ms: int) -> T: ...


@dataclass(frozen=True, slots=True)
class RealClock(Clock):
    def now_ms(self) -> int:
        return int(time.monotonic() * 1000)

    def wall_iso(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    async def run_with_timeout(self, awaitable: Awaitable[T], timeout_ms: int) -> T:
        if timeout_ms <= 0:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout=timeout_ms / 1000.0)


class FakeClock(Clock):
    """
    Deterministic clock for tests.

    - now_ms() and wall_iso() only move when advance() is called.
    - run_with_timeout() expires once advance() passes the deadline.
    """

    def __init__(self, start_ms: int = 0) -> None:
        self._now_ms = start_ms
        self._waiters: list[tuple[int, asyncio.Future[None]]] = []

    def now_ms(self) -> int:
        return self._now_ms

    def wall_iso(self) -> str:
        return (_FAKE_EPOCH + timedelta(milliseconds=self._now_ms)).isoformat()

    async def _sleep_ms(self, ms: int) -> None:
        fut: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append((self._now_ms + ms, fut))
        await fut

    async def run_with_timeout(self, awaitable: Awaitable[T], timeout_ms: int) -> T:
        if timeout_ms <= 0:
            return await awaitable

        main_task = asyncio.ensure_future(awaitable)
        timeout_task = asyncio.ensure_future(self._sleep_ms(timeout_ms))
        try:
            done, _ = await asyncio.wait(
                {main_task, timeout_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
            if timeout_task in done and not main_task.done():
                main_task.cancel()
                await asyncio.gather(main_task, return_exceptions=True)
                raise TimeoutError(f"operation timed out after {timeout_ms}ms")

            timeout_task.cancel()
            await asyncio.gather(timeout_task, return_exceptions=True)
            return await main_task
        except asyncio.CancelledError:
            main_task.cancel()
            timeout_task.cancel()
            await asyncio.gather(main_task, timeout_task, return_exceptions=True)
            raise

    async def advance(self, ms: int) -> None:
        if ms < 0:
            raise ValueError("FakeClock.advance(ms): ms must be >= 0")

        # Let tasks scheduled in this tick register their deadlines first.
        await asyncio.sleep(0)
        self._now_ms += ms
        remaining: list[tuple[int, asyncio.Future[None]]] = []
        for wake_at, fut in self._waiters:
            if fut.done():
                continue
            if wake_at <= self._now_ms:
                fut.set_result(None)
            else:
                remaining.append((wake_at, fut))
        self._waiters = remaining
        await asyncio.sleep(0)
