import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Optional, Set

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EvaluationTask:
    """Queue payload: identifiers only, never document bytes."""
    job_id: str
    job_title: str
    cv_document_id: str
    report_document_id: str
    attempt: int = 1
    # set once the job has failed for good but the FAILED write did not land
    failure_message: Optional[str] = None
    finalize_attempts: int = 0

    def next_attempt(self) -> "EvaluationTask":
        return replace(self, attempt=self.attempt + 1)

    def pending_failure(self, message: str) -> "EvaluationTask":
        return replace(self, failure_message=message, finalize_attempts=self.finalize_attempts + 1)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 5.0

    def delay_for(self, attempt: int) -> float:
        """Backoff before the attempt that follows ``attempt``."""
        return self.base_delay * (2 ** (attempt - 1))

    def can_retry(self, attempt: int) -> bool:
        return attempt < self.max_attempts


class EvaluationQueue:
    """In-process FIFO with delayed re-delivery.

    A task counts as outstanding from ``enqueue``/``enqueue_later`` until the
    consumer calls ``task_done`` for it, so ``join`` also waits for retries
    that are still sleeping.
    """

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._timers: Set[asyncio.TimerHandle] = set()
        self._outstanding = 0
        self._idle = asyncio.Event()
        self._idle.set()

    def _track(self) -> None:
        self._outstanding += 1
        self._idle.clear()

    def enqueue(self, task: EvaluationTask) -> None:
        self._track()
        self._queue.put_nowait(task)
        logger.info("Queued job %s (attempt %d)", task.job_id, task.attempt)

    def enqueue_later(self, task: EvaluationTask, delay: float) -> None:
        self._track()
        loop = asyncio.get_running_loop()
        handle: Optional[asyncio.TimerHandle] = None

        def _release():
            self._timers.discard(handle)
            self._queue.put_nowait(task)

        handle = loop.call_later(delay, _release)
        self._timers.add(handle)
        logger.info("Job %s rescheduled in %.1fs (attempt %d)", task.job_id, delay, task.attempt)

    async def get(self) -> EvaluationTask:
        return await self._queue.get()

    def _untrack(self) -> None:
        self._outstanding = max(self._outstanding - 1, 0)
        if self._outstanding == 0:
            self._idle.set()

    def task_done(self) -> None:
        self._queue.task_done()
        self._untrack()

    async def join(self) -> None:
        await self._idle.wait()

    @property
    def ready(self) -> int:
        return self._queue.qsize()

    @property
    def delayed(self) -> int:
        return len(self._timers)

    @property
    def outstanding(self) -> int:
        return self._outstanding

    def close(self) -> None:
        for handle in list(self._timers):
            handle.cancel()
            self._untrack()
        self._timers.clear()
