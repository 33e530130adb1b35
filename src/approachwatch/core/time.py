"""Clock abstraction shared by the poller, retry policy and lifecycle store.

Production code uses :class:`RealTimeSource`; tests drive
:class:`SimTimeSource` so that poll intervals, retry backoff and fallback
cooldowns can be stepped deterministically.

Simulated time usage:
    ts = SimTimeSource(start=0.0)
    task = asyncio.create_task(ts.sleep(5.0))
    ts.advance(5.0)  # wakes the sleeper
    await task
"""

from __future__ import annotations

import asyncio
import heapq
import time
from datetime import datetime, timezone
from typing import Protocol

__all__ = [
    "TimeSource",
    "RealTimeSource",
    "SimTimeSource",
    "utc_now",
]


class TimeSource(Protocol):
    """Monotonic time for intervals, wall time for record timestamps."""

    def monotonic(self) -> float:
        ...

    def wall_time(self) -> float:
        ...

    async def sleep(self, seconds: float) -> None:
        ...


def utc_now(ts: TimeSource) -> datetime:
    """Wall time of *ts* as an aware UTC datetime."""
    return datetime.fromtimestamp(ts.wall_time(), tz=timezone.utc)


class RealTimeSource:
    """System clocks and asyncio.sleep."""

    def monotonic(self) -> float:
        return time.monotonic()

    def wall_time(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class SimTimeSource:
    """Deterministic simulated clock.

    ``advance(dt)`` steps time forward and resolves every sleeper whose due
    time has passed. Wall time is anchored at ``wall_start`` (defaults to the
    real time at creation) plus elapsed simulated seconds.
    """

    def __init__(self, *, start: float = 0.0, wall_start: float | None = None) -> None:
        self._now: float = float(start)
        self._wall0: float = time.time() if wall_start is None else float(wall_start)
        self._start = self._now
        # (due_time, seq, future)
        self._sleepers: list[tuple[float, int, asyncio.Future[None]]] = []
        self._seq: int = 0

    def monotonic(self) -> float:
        return self._now

    def wall_time(self) -> float:
        return self._wall0 + (self._now - self._start)

    def advance(self, dt: float) -> None:
        """Advance simulated time by *dt* seconds (must be >= 0)."""
        if dt < 0:
            raise ValueError(f"Cannot advance time backwards: dt={dt}")
        self._now += dt
        self._wake_due()

    async def sleep(self, seconds: float) -> None:
        if seconds < 0:
            raise ValueError(f"Sleep duration must be non-negative: {seconds}")
        if seconds == 0:
            await asyncio.sleep(0)
            return

        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._seq += 1
        heapq.heappush(self._sleepers, (self._now + seconds, self._seq, future))
        await future

    def pending_sleeps(self) -> list[float]:
        """Remaining durations of outstanding sleeps, soonest first."""
        return [due - self._now for due, _, fut in sorted(self._sleepers) if not fut.done()]

    def next_due_monotonic(self) -> float | None:
        """Monotonic time of the next scheduled sleeper, if any."""
        while self._sleepers and self._sleepers[0][2].done():
            heapq.heappop(self._sleepers)
        if not self._sleepers:
            return None
        return self._sleepers[0][0]

    def _wake_due(self) -> None:
        while self._sleepers and self._sleepers[0][0] <= self._now:
            _, _, future = heapq.heappop(self._sleepers)
            # Cancelled sleepers are already done
            if not future.done():
                future.set_result(None)
