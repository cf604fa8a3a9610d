from pydantic import BaseModel, Field
from typing import Optional

class UploadResponse(BaseModel):
    cv_id: Optional[str] = None
    report_id: Optional[str] = None

class EvaluateRequest(BaseModel):
    job_title: str = Field(..., min_length=1)
    cv_id: str = Field(..., min_length=1)
    report_id: str = Field(..., min_length=1)

class EvaluationResultPayload(BaseModel):
    cv_match_rate: float
    cv_feedback: str
    project_score: float
    project_feedback: str
    overall_summary: str

class JobStatusResponse(BaseModel):
    id: str
    status: str
    result: Optional[EvaluationResultPayload] = None
    error: Optional[str] = None

class WorkerHealthResponse(BaseModel):
    running: bool
    ready: bool
    queued: int
    delayed: int
    current_job_id: Optional[str] = None
