from dataclasses import dataclass

from fastapi import Request

from app.settings import Settings
from domain.services.evaluation_pipeline import EvaluationPipeline
from domain.services.evaluation_service import EvaluationService
from domain.services.evaluation_worker import EvaluationWorker
from infra.db.session import SessionLocal
from infra.llm.client import ModelGateway
from infra.queue.evaluation_queue import EvaluationQueue, RetryPolicy
from infra.rag.document_store import DocumentStoreGateway
from infra.rag.embeddings import OpenAIEmbedder
from infra.repositories.files_repository import FilesRepository
from infra.repositories.jobs_repository import JobsRepository


@dataclass
class Runtime:
    service: EvaluationService
    worker: EvaluationWorker
    queue: EvaluationQueue
    documents: DocumentStoreGateway
    files: FilesRepository


def build_runtime(settings: Settings, session_factory=SessionLocal) -> Runtime:
    jobs = JobsRepository(session_factory)
    files = FilesRepository(session_factory)
    queue = EvaluationQueue()
    documents = DocumentStoreGateway.from_settings(settings, OpenAIEmbedder(settings))
    pipeline = EvaluationPipeline(documents, ModelGateway(settings))
    worker = EvaluationWorker(
        queue, jobs, files, documents, pipeline,
        documents_dir=settings.DOCUMENTS_DIR,
        retry_policy=RetryPolicy(max_attempts=settings.QUEUE_MAX_ATTEMPTS,
                                 base_delay=settings.QUEUE_BACKOFF_SECONDS),
        stall_timeout=settings.STALL_TIMEOUT_SECONDS,
        min_document_chars=settings.MIN_DOCUMENT_CHARS,
    )
    return Runtime(
        service=EvaluationService(jobs, files, queue),
        worker=worker,
        queue=queue,
        documents=documents,
        files=files,
    )


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


def get_evaluation_service(request: Request) -> EvaluationService:
    return get_runtime(request).service


def get_files_repository(request: Request) -> FilesRepository:
    return get_runtime(request).files
