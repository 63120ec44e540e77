"""In-process job queue using asyncio.

Work units are (task name, job id) pairs. Each task name maps to an async
handler registered at startup; worker coroutines pull units off an
asyncio.Queue and run them. A failing handler is logged and reported to
Sentry, never re-raised into the request that submitted it.
No external dependencies (Redis, Celery) needed.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from coloringbook.jobs.dispatcher import JobDispatcher
from coloringbook.observability import capture_exception

logger = logging.getLogger(__name__)

# handler(job_id) -> awaitable; job_id is None for queue-wide tasks
TaskHandler = Callable[[Optional[str]], Awaitable[object]]


class InProcessQueue(JobDispatcher):
    """Local async job queue. Runs submitted work on background asyncio tasks."""

    def __init__(self, handlers: Dict[str, TaskHandler], workers: int = 1):
        self._queue: asyncio.Queue[Tuple[str, Optional[str]]] = asyncio.Queue()
        self._handlers = dict(handlers)
        self._workers = max(1, workers)
        self._tasks: List[asyncio.Task] = []
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def submit(self, task: str, job_id: Optional[str] = None) -> None:
        if task not in self._handlers:
            raise KeyError(f"No handler registered for task '{task}'")
        await self._queue.put((task, job_id))

    async def start(self) -> None:
        self._running = True
        self._tasks = [
            asyncio.create_task(self._worker_loop(), name=f"job-worker-{index}")
            for index in range(self._workers)
        ]

    async def stop(self) -> None:
        self._running = False
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []

    async def join(self) -> None:
        """Wait until every submitted unit has been handled."""
        await self._queue.join()

    async def _worker_loop(self) -> None:
        """Process work units one at a time from the queue."""
        while self._running:
            try:
                task, job_id = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break

            try:
                await self._handlers[task](job_id)
            except asyncio.CancelledError:
                self._queue.task_done()
                raise
            except Exception as exc:
                logger.error("Background task %s failed for job %s: %s", task, job_id, exc, exc_info=True)
                capture_exception(exc)
            self._queue.task_done()
