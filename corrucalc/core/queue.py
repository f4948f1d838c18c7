"""Fire-and-forget background job dispatch.

`NotificationDispatcher` decouples slow side effects (Slack, email, outbound
messages) from the request path: `submit()` never blocks and never raises.
Jobs run on a single worker task that the app lifespan starts and stops.
Failures are logged, not retried.

Deployments with Redis can instead hand jobs to the arq worker
(`corrucalc.worker`) through `get_queue()`.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from arq.connections import ArqRedis, RedisSettings, create_pool

logger = logging.getLogger(__name__)

Job = Callable[..., Awaitable[Any]]


def get_redis_settings() -> RedisSettings:
    """Get Redis settings from environment variables."""
    return RedisSettings.from_dsn(os.environ.get("REDIS_URL", "redis://redis:6379"))


async def get_queue() -> ArqRedis:
    """Create a connection pool to the Redis queue."""
    return await create_pool(get_redis_settings())


@dataclass
class _QueuedJob:
    name: str
    func: Job
    args: tuple[Any, ...] = ()
    kwargs: dict[str, Any] = field(default_factory=dict)


class NotificationDispatcher:
    """Bounded in-process job queue drained by one worker task.

    Args:
        maxsize: Queue capacity; submissions beyond it are dropped and logged
    """

    def __init__(self, maxsize: int = 100):
        self._queue: asyncio.Queue[_QueuedJob | None] = asyncio.Queue(maxsize=maxsize)
        self._worker: asyncio.Task | None = None
        self.processed = 0
        self.failed = 0
        self.dropped = 0

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        if not self.running:
            self._worker = asyncio.create_task(self._run(), name="notification-dispatcher")
            logger.info("notification_dispatcher_started")

    def submit(self, name: str, func: Job, *args: Any, **kwargs: Any) -> bool:
        """Enqueue a job without waiting. Returns False if it was dropped."""
        try:
            self._queue.put_nowait(_QueuedJob(name, func, args, kwargs))
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("notification_dropped job=%s reason=queue_full", name)
            return False
        return True

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                if job is None:
                    return
                await job.func(*job.args, **job.kwargs)
                self.processed += 1
            except Exception as e:
                self.failed += 1
                logger.error("notification_job_failed job=%s error=%s", job.name, e)
            finally:
                self._queue.task_done()

    async def drain(self) -> None:
        """Wait until every submitted job has run (used by tests and shutdown)."""
        await self._queue.join()

    async def stop(self, timeout: float = 5.0) -> None:
        """Finish queued jobs, then stop the worker."""
        if self._worker is None:
            return
        try:
            await asyncio.wait_for(self._queue.put(None), timeout)
            await asyncio.wait_for(self._worker, timeout)
        except asyncio.TimeoutError:
            logger.warning("notification_dispatcher_stop_timeout pending=%s", self._queue.qsize())
            self._worker.cancel()
        self._worker = None
        logger.info(
            "notification_dispatcher_stopped processed=%s failed=%s dropped=%s",
            self.processed, self.failed, self.dropped,
        )
