from fastapi import APIRouter, Depends, HTTPException
from app.runtime import get_evaluation_service
from domain.schemas import JobStatusResponse
from domain.services.evaluation_service import EvaluationService

router = APIRouter()


@router.get("/result/{job_id}", response_model=JobStatusResponse, response_model_exclude_none=True)
async def get_result(job_id: str,
                     service: EvaluationService = Depends(get_evaluation_service)) -> JobStatusResponse:
    job = service.get_status(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="job not found")
    return JobStatusResponse(id=job["id"], status=job["status"], result=job.get("result"), error=job.get("error"))
