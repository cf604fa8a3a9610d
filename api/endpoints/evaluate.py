from fastapi import APIRouter, Depends, status
from app.runtime import get_evaluation_service
from domain.schemas import EvaluateRequest, JobStatusResponse
from domain.services.evaluation_service import EvaluationService

router = APIRouter()


@router.post("/evaluate", response_model=JobStatusResponse, status_code=status.HTTP_202_ACCEPTED)
async def evaluate(body: EvaluateRequest,
                   service: EvaluationService = Depends(get_evaluation_service)) -> JobStatusResponse:
    # UnknownDocumentError is mapped to 404 by the app's error handlers
    job_id = service.submit(body.job_title, body.cv_id, body.report_id)
    return JobStatusResponse(id=job_id, status="queued")
