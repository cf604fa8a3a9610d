import uuid
import json
import logging
from typing import Optional, Dict, Any
from sqlalchemy.orm import sessionmaker
from domain.errors import JobStateError
from infra.db.session import SessionLocal
from infra.db.models import JobRecord, JobResultRecord, JobStatus

logger = logging.getLogger(__name__)

# visible lifecycle: queued -> processing -> completed | failed
ALLOWED_TRANSITIONS = {
    JobStatus.QUEUED: {JobStatus.PROCESSING},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


def _to_text(val: Any) -> Optional[str]:
    if val is None:
        return None
    if isinstance(val, list):
        return "\n".join(f"- {str(x)}" for x in val)
    if isinstance(val, dict):
        return json.dumps(val, ensure_ascii=False)
    return str(val)


def _check_transition(job: JobRecord, status: JobStatus) -> None:
    current = JobStatus(job.status)
    if status not in ALLOWED_TRANSITIONS[current]:
        raise JobStateError(
            f"job {job.id}: illegal transition {current.value} -> {status.value}")


class JobsRepository:
    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self._sessions = session_factory

    def create_job(self, job_title: str, cv_id: str, report_id: str) -> str:
        if not (job_title and job_title.strip() and cv_id and report_id):
            raise ValueError("job_title, cv_id and report_id must be non-empty")
        jid = f"job_{uuid.uuid4().hex}"
        with self._sessions() as s:
            s.add(JobRecord(id=jid, status=JobStatus.QUEUED.value, job_title=job_title,
                            cv_file_id=cv_id, report_file_id=report_id))
            s.commit()
        return jid

    def transition(self, job_id: str, status: JobStatus, error: Optional[str] = None) -> bool:
        """Move a job to ``status``.

        Returns False when the row no longer exists. Re-applying the current
        status is a no-op; anything outside ALLOWED_TRANSITIONS raises
        JobStateError.
        """
        if status is JobStatus.COMPLETED:
            raise JobStateError("use attach_result() to complete a job")
        if status is JobStatus.FAILED and not (error and error.strip()):
            raise ValueError("a failed job needs an error message")
        with self._sessions() as s:
            job = s.get(JobRecord, job_id)
            if not job:
                logger.warning("Job %s not found, cannot set status %s", job_id, status.value)
                return False
            if job.status == status.value:
                logger.debug("Job %s already %s", job_id, status.value)
                return True
            _check_transition(job, status)
            job.status = status.value
            job.error_message = error if status is JobStatus.FAILED else None
            s.commit()
        logger.info("Job %s -> %s", job_id, status.value)
        return True

    def attach_result(self, job_id: str, result: Dict) -> bool:
        """Store the evaluation result and mark the job completed in one commit."""
        with self._sessions() as s:
            job = s.get(JobRecord, job_id)
            if not job:
                logger.warning("Job %s not found, dropping its result", job_id)
                return False
            if job.status != JobStatus.PROCESSING.value:
                raise JobStateError(
                    f"job {job_id}: results can only be attached while processing (is {job.status})")
            job.status = JobStatus.COMPLETED.value
            job.error_message = None
            s.add(JobResultRecord(
                job_id=job_id,
                cv_match_rate=float(result["cv_match_rate"]),
                cv_feedback=_to_text(result["cv_feedback"]),
                project_score=float(result["project_score"]),
                project_feedback=_to_text(result["project_feedback"]),
                overall_summary=_to_text(result["overall_summary"]),
                parsed_cv=_to_text(result.get("parsed_cv")),
                parsed_project=_to_text(result.get("parsed_project")),
                resolved_job_title=result.get("resolved_job_title"),
            ))
            s.commit()
        logger.info("Job %s -> completed", job_id)
        return True

    def record_retry(self, job_id: str) -> int:
        with self._sessions() as s:
            job = s.get(JobRecord, job_id)
            if not job:
                return 0
            job.retry_count = (job.retry_count or 0) + 1
            s.commit()
            return job.retry_count

    def get(self, job_id: str) -> Optional[Dict]:
        with self._sessions() as s:
            job = s.get(JobRecord, job_id)
            if not job:
                return None
            jr = s.get(JobResultRecord, job_id)
            out = {"id": job.id, "status": job.status, "job_title": job.job_title,
                   "retry_count": job.retry_count or 0,
                   "result": None, "error": None}
            if jr and job.status == JobStatus.COMPLETED.value:
                out["result"] = {
                    "cv_match_rate": jr.cv_match_rate,
                    "cv_feedback": jr.cv_feedback,
                    "project_score": jr.project_score,
                    "project_feedback": jr.project_feedback,
                    "overall_summary": jr.overall_summary,
                }
            if job.status == JobStatus.FAILED.value:
                out["error"] = job.error_message
            return out

    def get_result_record(self, job_id: str) -> Optional[Dict]:
        """Full result row including the parsed intermediate documents."""
        with self._sessions() as s:
            jr = s.get(JobResultRecord, job_id)
            if not jr:
                return None
            return {
                "cv_match_rate": jr.cv_match_rate,
                "cv_feedback": jr.cv_feedback,
                "project_score": jr.project_score,
                "project_feedback": jr.project_feedback,
                "overall_summary": jr.overall_summary,
                "parsed_cv": jr.parsed_cv,
                "parsed_project": jr.parsed_project,
                "resolved_job_title": jr.resolved_job_title,
            }
