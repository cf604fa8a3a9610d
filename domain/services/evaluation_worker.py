import asyncio
import logging
from typing import Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from domain.errors import ErrorKind, EvaluationError, JobStateError, classify
from domain.evaluation import EvaluationOutput
from domain.services.evaluation_pipeline import EvaluationPipeline
from infra.db.models import JobStatus
from infra.pdf.parser import extract_text
from infra.queue.evaluation_queue import EvaluationQueue, EvaluationTask, RetryPolicy
from infra.repositories.files_repository import FilesRepository
from infra.repositories.jobs_repository import JobsRepository

logger = logging.getLogger(__name__)

MAX_INIT_BACKOFF = 60.0


class EvaluationWorker:
    """Single consumer of the evaluation queue.

    Exactly one task is in flight at a time: the model provider's rate limit
    is the bottleneck, so tasks are serialized and retried individually.
    The document store is initialized and the reference corpus ingested once
    per worker instance, before the first task is taken off the queue.
    """

    def __init__(
        self,
        queue: EvaluationQueue,
        jobs: JobsRepository,
        files: FilesRepository,
        documents,
        pipeline: EvaluationPipeline,
        *,
        documents_dir: str,
        retry_policy: RetryPolicy = RetryPolicy(),
        stall_timeout: float = 300.0,
        min_document_chars: int = 200,
    ):
        self._queue = queue
        self._jobs = jobs
        self._files = files
        self._documents = documents
        self._pipeline = pipeline
        self._documents_dir = documents_dir
        self.retry_policy = retry_policy
        self._stall_timeout = stall_timeout
        self._min_document_chars = min_document_chars
        self._ready = False
        self._init_lock = asyncio.Lock()
        self._runner: Optional[asyncio.Task] = None
        self.current_job_id: Optional[str] = None

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def running(self) -> bool:
        return self._runner is not None and not self._runner.done()

    async def ensure_ready(self) -> None:
        if self._ready:
            return
        async with self._init_lock:
            if self._ready:
                return
            logger.info("Initializing document store")
            await self._documents.initialize()
            report = await self._documents.ingest_directory(self._documents_dir)
            if not report.already_populated:
                logger.info("Reference corpus ingested: %d documents, %d skipped",
                            len(report.ingested), len(report.skipped))
            self._ready = True
            logger.info("Evaluation worker ready")

    def start(self) -> None:
        if self.running:
            return
        self._runner = asyncio.create_task(self._run(), name="evaluation-worker")

    async def stop(self) -> None:
        self._queue.close()
        if self._runner is None:
            return
        self._runner.cancel()
        try:
            await self._runner
        except asyncio.CancelledError:
            pass
        self._runner = None
        logger.info("Evaluation worker stopped")

    async def _run(self) -> None:
        init_delay = self.retry_policy.base_delay
        while True:
            try:
                await self.ensure_ready()
            except Exception:
                logger.exception("Worker initialization failed, retrying in %.1fs", init_delay)
                await asyncio.sleep(init_delay)
                init_delay = min(init_delay * 2, MAX_INIT_BACKOFF)
                continue

            task = await self._queue.get()
            try:
                await self.process(task)
            except Exception:
                # process() already recorded the outcome; keep consuming
                logger.exception("Unexpected error while handling job %s", task.job_id)
            finally:
                self._queue.task_done()

    async def process(self, task: EvaluationTask) -> Optional[JobStatus]:
        """Run one attempt of ``task``; returns the job's status afterwards, or None if dropped."""
        self.current_job_id = task.job_id
        try:
            return await self._attempt(task)
        finally:
            self.current_job_id = None

    async def _attempt(self, task: EvaluationTask) -> Optional[JobStatus]:
        if task.failure_message is not None:
            return self._record_failure(task, task.failure_message)
        logger.info("Processing job %s (attempt %d/%d)", task.job_id, task.attempt,
                    self.retry_policy.max_attempts)
        try:
            await self.ensure_ready()
            try:
                if not self._jobs.transition(task.job_id, JobStatus.PROCESSING):
                    logger.warning("Job %s no longer exists, dropping task", task.job_id)
                    return None
            except JobStateError as exc:
                logger.warning("Dropping task for job %s: %s", task.job_id, exc)
                return None

            cv_text, report_text = await self._load_candidate_texts(task)
            output = await self._run_guarded(task, cv_text, report_text)
            if not self._jobs.attach_result(task.job_id, output.to_result_record()):
                return None
            logger.info("Job %s completed", task.job_id)
            return JobStatus.COMPLETED
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            return self._handle_failure(task, classify(exc))

    def _handle_failure(self, task: EvaluationTask, error: EvaluationError) -> Optional[JobStatus]:
        logger.warning("Job %s attempt %d failed: %s", task.job_id, task.attempt, error)
        if error.retryable and self.retry_policy.can_retry(task.attempt):
            delay = self.retry_policy.delay_for(task.attempt)
            self._queue.enqueue_later(task.next_attempt(), delay)
            try:
                self._jobs.record_retry(task.job_id)
            except SQLAlchemyError:
                # the retry is already scheduled; only the counter is lost
                logger.exception("Could not record retry for job %s", task.job_id)
            return JobStatus.PROCESSING

        logger.error("Job %s failed permanently (%s) after %d attempt(s)",
                     task.job_id, error.kind.value, task.attempt)
        return self._record_failure(task, error.user_message)

    def _record_failure(self, task: EvaluationTask, message: str) -> Optional[JobStatus]:
        """Persist FAILED; a database error re-delivers the write, never the pipeline."""
        try:
            # failures before pickup (e.g. store init) still go through processing
            self._jobs.transition(task.job_id, JobStatus.PROCESSING)
            self._jobs.transition(task.job_id, JobStatus.FAILED, message)
        except JobStateError:
            logger.exception("Could not mark job %s as failed", task.job_id)
        except SQLAlchemyError as exc:
            pending = task.pending_failure(message)
            if not self.retry_policy.can_retry(pending.finalize_attempts):
                logger.error("Giving up on marking job %s as failed: %s", task.job_id, classify(exc))
                return None
            delay = self.retry_policy.delay_for(pending.finalize_attempts)
            logger.warning("Could not mark job %s as failed, retrying in %.1fs: %s",
                           task.job_id, delay, classify(exc))
            self._queue.enqueue_later(pending, delay)
            return JobStatus.PROCESSING
        return JobStatus.FAILED

    async def _load_candidate_texts(self, task: EvaluationTask) -> Tuple[str, str]:
        cv_text, report_text = await asyncio.gather(
            self._load_text(task.cv_document_id, "CV"),
            self._load_text(task.report_document_id, "project report"),
        )
        logger.info("Job %s: CV %d chars, report %d chars", task.job_id, len(cv_text), len(report_text))
        return cv_text, report_text

    async def _load_text(self, file_id: str, label: str) -> str:
        try:
            path = self._files.get_path(file_id)
        except KeyError as exc:
            raise EvaluationError(ErrorKind.INVALID_INPUT, f"{label} document {file_id} not found",
                                  context={"file_id": file_id}) from exc
        try:
            text = await asyncio.to_thread(extract_text, path)
        except Exception as exc:
            raise EvaluationError(ErrorKind.INVALID_INPUT, f"could not read {label} document: {exc}",
                                  context={"file_id": file_id}) from exc
        if len(text.strip()) < self._min_document_chars:
            raise EvaluationError(ErrorKind.INVALID_INPUT,
                                  f"{label} document is too short ({len(text.strip())} chars)",
                                  context={"file_id": file_id})
        return text

    async def _run_guarded(self, task: EvaluationTask, cv_text: str, report_text: str) -> EvaluationOutput:
        """Run the pipeline, cancelling it if no stage starts within the stall window."""
        loop = asyncio.get_running_loop()
        last_progress = loop.time()

        def on_stage(stage_name: str) -> None:
            nonlocal last_progress
            last_progress = loop.time()
            logger.debug("Job %s entered stage %s", task.job_id, stage_name)

        run = asyncio.create_task(
            self._pipeline.run(task.job_title, cv_text, report_text, on_stage=on_stage))
        try:
            while True:
                remaining = self._stall_timeout - (loop.time() - last_progress)
                if remaining <= 0:
                    raise EvaluationError(ErrorKind.STALLED,
                                          f"no progress for {self._stall_timeout:.0f}s")
                done, _ = await asyncio.wait({run}, timeout=remaining)
                if run in done:
                    return run.result()
        finally:
            if not run.done():
                run.cancel()
                await asyncio.gather(run, return_exceptions=True)
