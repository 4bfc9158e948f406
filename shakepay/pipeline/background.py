"""Background job queue for payment execution.

Instant ACK + background queue: the model peer gets its ``executeTransaction``
response as soon as the state machine accepts, and the payment itself runs as
an ``asyncio.Task`` here.  The queue is process-wide, so a client disconnect
does not cancel an in-flight payment.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Coroutine

logger = logging.getLogger(__name__)

OnComplete = Callable[[str, Any, "BaseException | None"], Awaitable[None]]


class BackgroundJobQueue:
    """Runs coroutines as tasks and fires an optional callback when each ends."""

    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task] = {}
        self._failure_count: int = 0

    def submit(
        self,
        job_id: str,
        coro: Coroutine[Any, Any, Any],
        on_complete: OnComplete | None = None,
    ) -> asyncio.Task:
        """Schedule *coro* as a background task.

        Args:
            job_id:      Unique identifier, used in log lines.
            coro:        The coroutine to execute.
            on_complete: Called as ``on_complete(job_id, result, error)`` after
                         *coro* finishes, fails or is cancelled.
        """
        if job_id in self._tasks:
            coro.close()
            raise KeyError(f"job {job_id} already running")
        task = asyncio.create_task(self._run(job_id, coro, on_complete))
        self._tasks[job_id] = task
        task.add_done_callback(lambda t: self._tasks.pop(job_id, None))
        logger.info("[BackgroundQueue] Job %s submitted. Active jobs: %d", job_id, len(self._tasks))
        return task

    def active_count(self) -> int:
        return len(self._tasks)

    @property
    def failure_count(self) -> int:
        """Total number of jobs whose coroutine raised."""
        return self._failure_count

    async def drain(self, timeout: float) -> None:
        """Wait up to *timeout* seconds for running jobs, then cancel the rest."""
        pending = list(self._tasks.values())
        if not pending:
            return
        logger.info("[BackgroundQueue] Draining %d job(s)", len(pending))
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
            logger.warning("[BackgroundQueue] %d job(s) cancelled at shutdown", len(still_running))

    def cancel_all(self) -> None:
        for task in list(self._tasks.values()):
            task.cancel()
        logger.info("[BackgroundQueue] All background jobs cancelled.")

    async def _run(
        self,
        job_id: str,
        coro: Coroutine[Any, Any, Any],
        on_complete: OnComplete | None,
    ) -> Any:
        result: Any = None
        error: BaseException | None = None
        try:
            result = await coro
            logger.info("[BackgroundQueue] Job %s completed.", job_id)
        except asyncio.CancelledError as exc:
            logger.warning("[BackgroundQueue] Job %s was cancelled.", job_id)
            error = exc
        except Exception as exc:
            self._failure_count += 1
            logger.error("[BackgroundQueue] Job %s failed: %s", job_id, exc, exc_info=True)
            error = exc

        if on_complete is not None:
            try:
                await on_complete(job_id, result, error)
            except Exception as exc:
                logger.error("[BackgroundQueue] on_complete for %s failed: %s", job_id, exc)
        return result
