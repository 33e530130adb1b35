"""Tests for the clock abstraction."""

import asyncio
from datetime import timezone

import pytest

from approachwatch.core.time import RealTimeSource, SimTimeSource, TimeSource, utc_now


class TestRealTimeSource:
    def test_implements_protocol(self) -> None:
        ts: TimeSource = RealTimeSource()
        assert ts.monotonic() > 0
        assert ts.wall_time() > 0

    @pytest.mark.asyncio
    async def test_sleep_waits(self) -> None:
        ts = RealTimeSource()
        start = ts.monotonic()
        await ts.sleep(0.01)
        assert ts.monotonic() - start >= 0.005


class TestSimTimeSource:
    def test_wall_time_tracks_advance(self) -> None:
        ts = SimTimeSource(start=10.0, wall_start=1_000_000.0)
        assert ts.wall_time() == 1_000_000.0
        ts.advance(5.0)
        assert ts.monotonic() == 15.0
        assert ts.wall_time() == 1_000_005.0

    def test_utc_now_is_aware(self) -> None:
        ts = SimTimeSource(wall_start=1_714_765_200.0)
        now = utc_now(ts)
        assert now.tzinfo is timezone.utc
        assert now.timestamp() == 1_714_765_200.0

    def test_advance_negative_raises(self) -> None:
        ts = SimTimeSource()
        with pytest.raises(ValueError, match="Cannot advance time backwards"):
            ts.advance(-1.0)

    @pytest.mark.asyncio
    async def test_sleep_resolves_on_advance(self) -> None:
        ts = SimTimeSource()
        task = asyncio.create_task(ts.sleep(5.0))
        await asyncio.sleep(0)
        assert not task.done()
        assert ts.pending_sleeps() == [5.0]

        ts.advance(4.0)
        await asyncio.sleep(0)
        assert not task.done()

        ts.advance(1.0)
        await asyncio.wait_for(task, timeout=1.0)
        assert ts.next_due_monotonic() is None

    @pytest.mark.asyncio
    async def test_sleep_zero_yields(self) -> None:
        ts = SimTimeSource()
        await asyncio.wait_for(ts.sleep(0), timeout=1.0)

    @pytest.mark.asyncio
    async def test_cancelled_sleeper_is_skipped(self) -> None:
        ts = SimTimeSource()
        task = asyncio.create_task(ts.sleep(1.0))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert ts.next_due_monotonic() is None
        ts.advance(2.0)
