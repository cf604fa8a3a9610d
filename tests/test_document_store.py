from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from domain.errors import ErrorKind, EvaluationError
from infra.rag.document_store import (
    DocumentKind,
    DocumentStoreGateway,
    detect_document_kind,
    normalize_job_title,
    point_id,
)

from tests.conftest import write_tree


@pytest.mark.parametrize("raw, expected", [
    ("Backend Engineer 2025", "backend_engineer_2025"),
    ("backend-engineer_2025", "backend_engineer_2025"),
    ("  Data   Analyst - 2025 ", "data_analyst_2025"),
])
def test_normalize_job_title(raw, expected):
    assert normalize_job_title(raw) == expected


def test_detect_document_kind():
    assert detect_document_kind("Job_Description.pdf") is DocumentKind.JOB_DESCRIPTION
    assert detect_document_kind("2025_case_study_brief.pdf") is DocumentKind.CASE_STUDY_BRIEF
    assert detect_document_kind("scoring_rubric.md") is DocumentKind.SCORING_RUBRIC
    assert detect_document_kind("notes.pdf") is None


def test_point_id_is_stable_per_title_and_kind():
    a = point_id("backend_engineer_2025", DocumentKind.SCORING_RUBRIC)
    assert a == point_id("backend_engineer_2025", DocumentKind.SCORING_RUBRIC)
    assert a != point_id("backend_engineer_2025", DocumentKind.JOB_DESCRIPTION)


async def test_resolves_free_form_titles(populated_store):
    assert await populated_store.find_relevant_job_title("Backend Engineer") == "backend_engineer_2025"
    assert await populated_store.find_relevant_job_title("frontend engineer") == "frontend_engineer_2025"
    assert await populated_store.find_relevant_job_title("Data Analyst") == "data_analyst_2025"


async def test_empty_query_or_store_resolves_to_none(populated_store, embedder):
    assert await populated_store.find_relevant_job_title("   ") is None

    empty = DocumentStoreGateway(populated_store.client, embedder, "empty_documents")
    await empty.initialize()
    assert await empty.find_relevant_job_title("Backend Engineer") is None


async def test_grounding_is_scoped_to_one_job(populated_store):
    grounding = await populated_store.fetch_grounding("backend_engineer_2025")
    assert grounding.job_title == "backend_engineer_2025"
    for text in (grounding.job_description, grounding.case_study_brief, grounding.scoring_rubric):
        assert "backend" in text.lower()
        assert "frontend" not in text.lower()


async def test_missing_kind_is_document_missing(populated_store):
    with pytest.raises(EvaluationError) as info:
        await populated_store.fetch_grounding("data_analyst_2025")
    assert info.value.kind is ErrorKind.DOCUMENT_MISSING
    assert info.value.context["document_kind"] == "scoring_rubric"


async def test_every_missing_kind_is_reported(store, tmp_path):
    root = write_tree(tmp_path / "docs", {
        "qa_engineer_2025": {"job_description.txt": "QA engineer automating regression suites."},
    })
    await store.ingest_directory(root)

    with pytest.raises(EvaluationError) as info:
        await store.fetch_grounding("qa_engineer_2025")
    assert info.value.kind is ErrorKind.DOCUMENT_MISSING
    assert info.value.context["document_kinds"] == ["scoring_rubric", "case_study_brief"]
    assert info.value.user_message.endswith("(missing scoring_rubric, case_study_brief)")


async def test_unknown_title_is_job_not_found(populated_store):
    with pytest.raises(EvaluationError) as info:
        await populated_store.fetch_reference_document("chef_2025", DocumentKind.JOB_DESCRIPTION)
    assert info.value.kind is ErrorKind.JOB_NOT_FOUND


async def test_ingestion_skips_populated_store(populated_store, reference_dir, embedder):
    count = await populated_store.count()
    assert count == 8
    calls = embedder.calls

    report = await populated_store.ingest_directory(reference_dir)
    assert report.already_populated
    assert embedder.calls == calls

    forced = await populated_store.ingest_directory(reference_dir, force=True)
    assert len(forced.ingested) == 8
    # deterministic ids: re-ingesting overwrites
    assert await populated_store.count() == count


async def test_bad_files_are_skipped(store, tmp_path):
    root = write_tree(tmp_path / "docs", {
        "backend_engineer_2025": {
            "job_description.txt": "Backend engineer writing Python services.",
            "README.txt": "not a reference document",
            "scoring_rubric.docx": "unsupported format",
        },
    })
    (tmp_path / "docs" / "backend_engineer_2025" / "case_study_brief.pdf").write_bytes(b"not a pdf")

    report = await store.ingest_directory(root)
    assert report.ingested == ["backend_engineer_2025/job_description"]
    assert len(report.skipped) == 3
    assert await store.count() == 1


async def test_missing_directory_ingests_nothing(store, tmp_path):
    report = await store.ingest_directory(str(tmp_path / "nope"))
    assert report.ingested == []
    assert await store.count() == 0


async def test_clear_drops_documents(populated_store):
    await populated_store.clear()
    assert await populated_store.count() == 0


async def test_unreachable_store_is_tagged(embedder):
    client = MagicMock()
    client.count = AsyncMock(side_effect=httpx.ConnectError("connection refused"))
    gateway = DocumentStoreGateway(client, embedder, "job_documents")
    with pytest.raises(EvaluationError) as info:
        await gateway.has_documents()
    assert info.value.kind is ErrorKind.STORE_UNAVAILABLE
    assert info.value.retryable
