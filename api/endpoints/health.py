from fastapi import APIRouter, Depends, HTTPException
from app.runtime import Runtime, get_runtime
from domain.errors import EvaluationError
from domain.schemas import WorkerHealthResponse

router = APIRouter()


@router.get("/vector-db/health")
async def vector_db_health(runtime: Runtime = Depends(get_runtime)):
    documents = runtime.documents
    try:
        collections = await documents.client.get_collections()
        count = await documents.count()
    except EvaluationError as exc:
        raise HTTPException(status_code=503, detail=exc.detail)
    except Exception as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return {
        "status": "ok",
        "collections": [col.name for col in collections.collections],
        "collection_count": len(collections.collections),
        "reference_documents": count,
    }


@router.get("/worker/health", response_model=WorkerHealthResponse)
async def worker_health(runtime: Runtime = Depends(get_runtime)) -> WorkerHealthResponse:
    return WorkerHealthResponse(
        running=runtime.worker.running,
        ready=runtime.worker.ready,
        queued=runtime.queue.ready,
        delayed=runtime.queue.delayed,
        current_job_id=runtime.worker.current_job_id,
    )
