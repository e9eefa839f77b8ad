"""
In-process timer wheel for delayed work.

Lifecycle transitions and webhook retries are both registered here as
ScheduledTask entries keyed by transaction id and fire time. When a timer
fires, its callback runs as an independent asyncio task; nothing blocks
while waiting.

The schedule lives only in memory. Pending tasks are lost when the process
stops (shutdown() drops them explicitly) and nothing is recovered on restart.
"""
import asyncio
import itertools
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Set

from app.logging import get_logger

logger = get_logger("scheduler")

TaskCallback = Callable[[], Awaitable[None]]


@dataclass
class ScheduledTask:
    key: str
    name: str
    delay: float
    fire_at: float  # event-loop clock
    callback: TaskCallback = field(repr=False)
    seq: int = 0
    handle: Optional[asyncio.TimerHandle] = field(default=None, repr=False)

    def fires_in(self, now: float) -> float:
        return max(0.0, self.fire_at - now)


class Scheduler:
    def __init__(self):
        self._pending: Dict[int, ScheduledTask] = {}
        self._running: Set[asyncio.Task] = set()
        self._seq = itertools.count(1)

    def schedule(self, key: str, delay: float, callback: TaskCallback, name: str = "task") -> ScheduledTask:
        """Run ``callback`` after ``delay`` seconds. Negative delays run at once."""
        loop = asyncio.get_running_loop()
        delay = max(0.0, delay)
        task = ScheduledTask(
            key=key,
            name=name,
            delay=delay,
            fire_at=loop.time() + delay,
            callback=callback,
            seq=next(self._seq),
        )
        task.handle = loop.call_later(delay, self._fire, task)
        self._pending[task.seq] = task
        logger.debug("task_scheduled", key=key, task=name, delay=delay)
        return task

    def pending(self, key: Optional[str] = None) -> List[ScheduledTask]:
        """Tasks waiting on their timer, soonest first."""
        tasks = [t for t in self._pending.values() if key is None or t.key == key]
        return sorted(tasks, key=lambda t: (t.fire_at, t.seq))

    def _fire(self, task: ScheduledTask) -> None:
        self._pending.pop(task.seq, None)
        running = asyncio.ensure_future(self._run(task))
        self._running.add(running)
        running.add_done_callback(self._running.discard)

    async def _run(self, task: ScheduledTask) -> None:
        try:
            await task.callback()
        except asyncio.CancelledError:
            logger.info("task_cancelled", key=task.key, task=task.name)
            raise
        except Exception:
            # Scheduled work never reaches an external caller
            logger.exception("task_failed", key=task.key, task=task.name)

    async def wait_idle(self, timeout: Optional[float] = None) -> None:
        """Wait until no timers are pending and no fired task is still running."""

        async def _drain():
            while self._pending or self._running:
                if self._running:
                    await asyncio.gather(*list(self._running), return_exceptions=True)
                else:
                    soonest = self.pending()[0]
                    await asyncio.sleep(soonest.fires_in(asyncio.get_running_loop().time()) + 0.001)

        await asyncio.wait_for(_drain(), timeout)

    def shutdown(self) -> int:
        """Drop every pending timer and cancel running tasks. Returns how many were dropped."""
        dropped = len(self._pending) + len(self._running)
        for task in self._pending.values():
            if task.handle is not None:
                task.handle.cancel()
        self._pending.clear()
        for running in list(self._running):
            running.cancel()
        if dropped:
            logger.warning("scheduled_work_dropped", count=dropped)
        return dropped
