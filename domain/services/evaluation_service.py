import logging
from typing import Dict, Optional

from domain.errors import UnknownDocumentError
from infra.queue.evaluation_queue import EvaluationQueue, EvaluationTask
from infra.repositories.files_repository import FilesRepository
from infra.repositories.jobs_repository import JobsRepository

logger = logging.getLogger(__name__)


class EvaluationService:
    """Entry points used by the HTTP layer: submit a job, read its status."""

    def __init__(self, jobs: JobsRepository, files: FilesRepository, queue: EvaluationQueue):
        self._jobs = jobs
        self._files = files
        self._queue = queue

    def submit(self, job_title: str, cv_id: str, report_id: str) -> str:
        missing = [fid for fid in (cv_id, report_id) if not (fid and self._files.exists(fid))]
        if missing:
            raise UnknownDocumentError(f"documents not found: {', '.join(missing)}")

        job_id = self._jobs.create_job(job_title, cv_id, report_id)
        self._queue.enqueue(EvaluationTask(
            job_id=job_id,
            job_title=job_title,
            cv_document_id=cv_id,
            report_document_id=report_id,
        ))
        logger.info("Submitted job %s for '%s'", job_id, job_title)
        return job_id

    def get_status(self, job_id: str) -> Optional[Dict]:
        job = self._jobs.get(job_id)
        if job is None:
            return None
        return {"id": job["id"], "status": job["status"],
                "result": job["result"], "error": job["error"]}
