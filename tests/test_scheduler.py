import asyncio
from datetime import datetime, timedelta, timezone

from scheduler import Scheduler
from services.background import current_settlement_period

UTC = timezone.utc


def test_due_jobs_start_and_overlapping_runs_are_skipped():
    calls = []

    async def scenario():
        gate = asyncio.Event()

        async def slow():
            calls.append("slow")
            await gate.wait()

        async def fast():
            calls.append("fast")

        sched = Scheduler()
        sched.every(60, "slow", slow)
        sched.every(60, "fast", fast)

        t0 = datetime(2025, 3, 28, 12, 0, tzinfo=UTC)
        first = sched.tick(t0)
        await asyncio.sleep(0)
        not_due = sched.tick(t0 + timedelta(seconds=30))
        overlap = sched.tick(t0 + timedelta(seconds=61))
        gate.set()
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        after = sched.tick(t0 + timedelta(seconds=62))
        await asyncio.sleep(0)
        return first, not_due, overlap, after

    first, not_due, overlap, after = asyncio.run(scenario())
    assert first == ["slow", "fast"]
    assert not_due == []
    assert overlap == ["fast"]
    assert after == ["slow"]
    assert calls.count("slow") == 2


def test_failing_job_is_contained():
    async def boom():
        raise RuntimeError("nope")

    async def scenario():
        sched = Scheduler()
        sched.every(60, "boom", boom)
        sched.tick()
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        return sched.jobs[0][6]

    task = asyncio.run(scenario())
    assert task.done() and task.exception() is None


def test_current_settlement_period_uses_london_time():
    # 23:15 UTC on a BST day is 00:15 London time the next day
    assert current_settlement_period(datetime(2025, 6, 1, 23, 15, tzinfo=UTC)) == (datetime(2025, 6, 2).date(), 1)
    # GMT in winter: 12:45 UTC -> period 26
    assert current_settlement_period(datetime(2025, 1, 15, 12, 45, tzinfo=UTC)) == (datetime(2025, 1, 15).date(), 26)
