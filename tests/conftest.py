import asyncio
import copy
import inspect
import re
from pathlib import Path

import pytest
from qdrant_client import AsyncQdrantClient

from domain.errors import EvaluationError
from domain.services.evaluation_pipeline import EvaluationPipeline
from domain.services.evaluation_service import EvaluationService
from domain.services.evaluation_worker import EvaluationWorker
from infra.db.session import init_db, make_engine, make_session_factory
from infra.queue.evaluation_queue import EvaluationQueue, RetryPolicy
from infra.rag.document_store import DocumentStoreGateway
from infra.repositories.files_repository import FilesRepository
from infra.repositories.jobs_repository import JobsRepository

VOCAB = ("backend", "frontend", "analyst", "data", "engineer", "python", "react", "sql")

REFERENCE_DOCUMENTS = {
    "backend_engineer_2025": {
        "job_description.txt": (
            "Backend Engineer. Our backend team ships Python services. The backend engineer "
            "owns api endpoints, database schemas and queue workers. "
            'Example output: {"cv_match_rate": 0.9, "cv_feedback": "great"}'
        ),
        "case_study_brief.txt": (
            "Backend case study brief: build a backend evaluation service in Python with an "
            "api, a job queue and retries."
        ),
        "scoring_rubric.md": (
            "# Backend Scoring Rubric\n"
            "Technical skills match (weight 40%): backend Python and api experience.\n"
            "Correctness (weight 30%): prompt design, chaining and retrieval."
        ),
    },
    "frontend_engineer_2025": {
        "job_description.txt": (
            "Frontend Engineer. The frontend team builds React interfaces with CSS and "
            "TypeScript for the frontend of our product."
        ),
        "case_study_brief.txt": "Frontend case study brief: build a frontend dashboard in React.",
        "scoring_rubric.md": "# Frontend Scoring Rubric\nFrontend craft (weight 50%): React and CSS.",
    },
    "data_analyst_2025": {
        "job_description.txt": "Data Analyst. The analyst turns raw data into reports with SQL.",
        "case_study_brief.txt": "Data analyst case study brief: analyse the sales data with SQL.",
    },
}

CV_TEXT = (
    "Jane Doe\njane@example.com\n\n"
    "Experience\nAcme Corp, Senior Backend Engineer, 2019-2025\n"
    "- Designed REST APIs in Python and FastAPI serving two million requests a day\n"
    "- Led the migration of a monolith to queue-based workers with retries\n\n"
    "Education\nState University, BSc Computer Science, 2018\n\n"
    "Skills\nPython, FastAPI, PostgreSQL, Redis, Docker, vector databases, LLM prompting\n"
)

REPORT_TEXT = (
    "Project Report: AI CV Evaluator\n\n"
    "The service accepts a CV and a project report, queues an evaluation job and runs a "
    "chain of LLM calls grounded in retrieved job documents. Failures are retried with "
    "exponential backoff and every stage output is validated against a JSON schema.\n\n"
    "Technologies: FastAPI, Qdrant, SQLite, httpx.\n"
    "Trade-offs: a single worker keeps provider rate limits predictable.\n"
)

PARSED_CV = {
    "personal_info": {"name": "Jane Doe", "email": "jane@example.com"},
    "skills": [{"skill": "Python", "proficiency": "expert", "category": "language"}],
    "work_experience": [{
        "company": "Acme Corp",
        "position": "Senior Backend Engineer",
        "responsibilities": ["Designed REST APIs"],
    }],
    "education": [{"institution": "State University", "degree": "BSc Computer Science",
                   "graduation_year": 2018}],
    "total_years_experience": 6,
}

CV_EVALUATION = {
    "cv_match_rate": 0.82,
    "cv_feedback": ["Strong Python backend experience", "Limited exposure to AI tooling"],
}

PARSED_PROJECT = {
    "project_overview": {"title": "AI CV Evaluator", "description": "Queued LLM evaluation service"},
    "technical_implementation": {"technologies": ["FastAPI", "Qdrant"]},
    "features": [{"feature": "Async evaluation", "description": "Jobs run on a background worker"}],
}

PROJECT_EVALUATION = {
    "project_score": 4.5,
    "project_feedback": "Solid chaining, validation and retry handling.",
}

SUMMARY = ("Hire. Jane shows strong backend fundamentals and delivered a robust project. "
           "Main gap is limited AI tooling exposure. Next step: technical interview.")

DEFAULT_RESPONSES = {
    "parse_cv": [PARSED_CV],
    "evaluate_cv": [CV_EVALUATION],
    "parse_project": [PARSED_PROJECT],
    "evaluate_project": [PROJECT_EVALUATION],
    "synthesize_summary": [SUMMARY],
}


def fail(kind, detail="scripted failure"):
    def _raise():
        raise EvaluationError(kind, detail)
    return _raise


async def hang():
    await asyncio.sleep(3600)


class KeywordEmbedder:
    """Counts vocabulary words; the trailing constant keeps vectors non-zero."""

    dimension = len(VOCAB) + 1

    def __init__(self):
        self.calls = 0

    async def embed(self, texts):
        self.calls += 1
        return [self._vector(t) for t in texts]

    @staticmethod
    def _vector(text):
        words = re.findall(r"[a-z]+", text.lower())
        return [float(words.count(w)) for w in VOCAB] + [0.1]


class FakeModelGateway:
    """Scripted stand-in for ModelGateway.

    Each method pops its next scripted response; the last one sticks. A
    callable response is invoked (and awaited if needed) so it can raise.
    """

    def __init__(self, **scripts):
        self.calls = []
        self.requests = []
        self._scripts = {name: list(items) for name, items in DEFAULT_RESPONSES.items()}
        for name, items in scripts.items():
            self._scripts[name] = list(items)

    async def _respond(self, name, **request):
        self.calls.append(name)
        self.requests.append((name, request))
        script = self._scripts[name]
        item = script.pop(0) if len(script) > 1 else script[0]
        if callable(item):
            item = item()
            if inspect.isawaitable(item):
                item = await item
        return copy.deepcopy(item)

    async def parse_cv(self, cv_text):
        return await self._respond("parse_cv", cv_text=cv_text)

    async def evaluate_cv(self, cv_text, job_description, scoring_rubric):
        return await self._respond("evaluate_cv", cv_text=cv_text,
                                   job_description=job_description, scoring_rubric=scoring_rubric)

    async def parse_project(self, report_text):
        return await self._respond("parse_project", report_text=report_text)

    async def evaluate_project(self, report_text, case_study_brief, scoring_rubric):
        return await self._respond("evaluate_project", report_text=report_text,
                                   case_study_brief=case_study_brief, scoring_rubric=scoring_rubric)

    async def synthesize_summary(self, job_title, cv_match_rate, cv_feedback,
                                 project_score, project_feedback):
        return await self._respond("synthesize_summary", job_title=job_title,
                                   cv_match_rate=cv_match_rate, project_score=project_score)


def write_tree(root: Path, tree: dict) -> str:
    for job_dir, files in tree.items():
        (root / job_dir).mkdir(parents=True, exist_ok=True)
        for filename, text in files.items():
            (root / job_dir / filename).write_text(text, encoding="utf-8")
    return str(root)


@pytest.fixture
def session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'test.sqlite3'}")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def jobs(session_factory):
    return JobsRepository(session_factory)


@pytest.fixture
def files(session_factory):
    return FilesRepository(session_factory)


@pytest.fixture
def reference_dir(tmp_path):
    return write_tree(tmp_path / "documents", REFERENCE_DOCUMENTS)


@pytest.fixture
def embedder():
    return KeywordEmbedder()


@pytest.fixture
async def store(embedder):
    client = AsyncQdrantClient(location=":memory:")
    gateway = DocumentStoreGateway(client, embedder, "test_documents")
    await gateway.initialize()
    yield gateway
    await client.close()


@pytest.fixture
async def populated_store(store, reference_dir):
    await store.ingest_directory(reference_dir)
    return store


@pytest.fixture
def model():
    return FakeModelGateway()


@pytest.fixture
def candidate_files(tmp_path, files):
    cv_path = tmp_path / "cv.txt"
    report_path = tmp_path / "report.txt"
    cv_path.write_text(CV_TEXT, encoding="utf-8")
    report_path.write_text(REPORT_TEXT, encoding="utf-8")
    cv_id = files.save(ftype="cv", path=str(cv_path), name="cv.txt")
    report_id = files.save(ftype="report", path=str(report_path), name="report.txt")
    return cv_id, report_id


@pytest.fixture
def queue():
    q = EvaluationQueue()
    yield q
    q.close()


@pytest.fixture
def service(jobs, files, queue):
    return EvaluationService(jobs, files, queue)


@pytest.fixture
def make_worker(queue, jobs, files, reference_dir):
    def _make(documents, model, *, max_attempts=3, stall_timeout=5.0, min_document_chars=200):
        return EvaluationWorker(
            queue, jobs, files, documents, EvaluationPipeline(documents, model),
            documents_dir=reference_dir,
            retry_policy=RetryPolicy(max_attempts=max_attempts, base_delay=0.01),
            stall_timeout=stall_timeout,
            min_document_chars=min_document_chars,
        )
    return _make
