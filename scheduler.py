import asyncio
import logging
from datetime import datetime, timezone

UTC = timezone.utc
logger = logging.getLogger("uvicorn")


class Scheduler:
    """
    Minimal in-process scheduler (cron-like).
    Usage:
        sched = Scheduler()
        sched.every(300, "update", coro, arg1, arg2=...)
        await sched.run_forever()

    A job whose previous run is still in flight is skipped for that tick.
    """
    def __init__(self, tick_seconds: float = 1.0):
        self.jobs = []  # list[[name, seconds, coro, args, kwargs, last_run, task]]
        self.tick_seconds = tick_seconds

    def every(self, seconds: int, name: str, coro, *args, **kwargs):
        self.jobs.append([name, seconds, coro, args, kwargs, None, None])

    async def _run(self, name: str, coro, args, kwargs):
        try:
            res = await coro(*args, **kwargs)
            logger.info(f"[scheduler] {name} done: {res if isinstance(res, dict) else type(res).__name__}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"[scheduler] {name} failed: {e}")

    def tick(self, now: datetime | None = None) -> list[str]:
        """Start every due job; returns the names started."""
        now = now or datetime.now(tz=UTC)
        started = []
        for job in self.jobs:
            name, seconds, coro, args, kwargs, last_run, task = job
            should_run = (last_run is None) or ((now - last_run).total_seconds() >= seconds)
            if not should_run:
                continue
            if task is not None and not task.done():
                logger.info(f"[scheduler] {name} still running, skipping")
                continue
            job[6] = asyncio.create_task(self._run(name, coro, args, kwargs))
            job[5] = now
            started.append(name)
        return started

    async def run_forever(self):
        try:
            while True:
                self.tick()
                await asyncio.sleep(self.tick_seconds)
        finally:
            for job in self.jobs:
                task = job[6]
                if task is not None and not task.done():
                    task.cancel()
