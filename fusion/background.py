"""Background work that must not hold up the caller's response."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[object]]


class BackgroundQueue:
    """Single worker draining an in-process job queue.

    Jobs are zero-argument coroutine factories. A failing job is logged and
    never reaches whoever submitted it.
    """

    def __init__(self, maxsize: int = 100) -> None:
        self._queue: asyncio.Queue[tuple[str, Job]] = asyncio.Queue(maxsize=maxsize)
        self._worker: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        if not self.running:
            self._worker = asyncio.create_task(self._drain())

    def submit(self, name: str, job: Job) -> bool:
        """Enqueue a job; False when the queue is full."""
        try:
            self._queue.put_nowait((name, job))
        except asyncio.QueueFull:
            logger.warning("Background queue full, dropping job %s", name)
            return False
        logger.debug("Queued background job %s", name)
        return True

    async def join(self) -> None:
        """Wait until every queued job has finished."""
        await self._queue.join()

    async def stop(self) -> None:
        """Finish queued jobs, then stop the worker."""
        if self._worker is None:
            return
        await self._queue.join()
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None

    async def _drain(self) -> None:
        while True:
            name, job = await self._queue.get()
            try:
                await job()
                logger.info("Background job %s done", name)
            except Exception as exc:
                logger.error("Background job %s failed: %s", name, exc)
            finally:
                self._queue.task_done()
