"""Reference-document store backed by a Qdrant collection.

Retrieval is two-stage. A free-form job title is resolved with a top-1
similarity search; the three grounding documents are then fetched by exact
(job_title, document_kind) metadata match so they always belong to the same
job. Each reference document is stored as a single point: rubrics only make
sense read whole.
"""
import asyncio
import enum
import logging
import os
import re
import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

import httpx
from qdrant_client import AsyncQdrantClient
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    MatchValue,
    PayloadSchemaType,
    PointStruct,
    VectorParams,
)

from app.settings import Settings
from domain.errors import ErrorKind, EvaluationError
from domain.evaluation import GroundingDocuments
from infra.pdf.parser import extract_rubric_text, extract_text

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = (".pdf", ".txt", ".md")
STORE_ERRORS = (UnexpectedResponse, ResponseHandlingException, httpx.TransportError, OSError)


class DocumentKind(str, enum.Enum):
    JOB_DESCRIPTION = "job_description"
    CASE_STUDY_BRIEF = "case_study_brief"
    SCORING_RUBRIC = "scoring_rubric"


class Embedder(Protocol):
    dimension: int

    async def embed(self, texts: List[str]) -> List[List[float]]: ...


@dataclass
class IngestReport:
    ingested: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    already_populated: bool = False


def normalize_job_title(title: str) -> str:
    return re.sub(r"[\s_-]+", "_", title.strip().lower()).strip("_")


def detect_document_kind(filename: str) -> Optional[DocumentKind]:
    name = filename.lower()
    for kind in DocumentKind:
        if kind.value in name:
            return kind
    return None


def point_id(job_title: str, kind: DocumentKind) -> str:
    # one point per (title, kind): re-ingesting overwrites instead of duplicating
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{job_title}::{kind.value}"))


def _store_error(action: str, exc: Exception) -> EvaluationError:
    error = EvaluationError(ErrorKind.STORE_UNAVAILABLE, f"document store {action} failed: {exc}")
    error.__cause__ = exc
    return error


class DocumentStoreGateway:
    def __init__(self, client: AsyncQdrantClient, embedder: Embedder, collection: str):
        self.client = client
        self._embedder = embedder
        self.collection = collection

    @classmethod
    def from_settings(cls, settings: Settings, embedder: Embedder) -> "DocumentStoreGateway":
        if settings.QDRANT_URL == ":memory:":
            client = AsyncQdrantClient(location=":memory:")
        else:
            client = AsyncQdrantClient(url=settings.QDRANT_URL, api_key=settings.QDRANT_API_KEY or None)
        return cls(client, embedder, settings.QDRANT_COLLECTION)

    async def initialize(self) -> None:
        try:
            if not await self.client.collection_exists(self.collection):
                await self.client.create_collection(
                    collection_name=self.collection,
                    vectors_config=VectorParams(size=self._embedder.dimension, distance=Distance.COSINE),
                )
                logger.info("Created collection %s", self.collection)
            for field_name in ("job_title", "document_kind"):
                await self.client.create_payload_index(
                    collection_name=self.collection,
                    field_name=field_name,
                    field_schema=PayloadSchemaType.KEYWORD,
                )
        except STORE_ERRORS as exc:
            raise _store_error("initialization", exc) from exc

    async def count(self) -> int:
        try:
            result = await self.client.count(collection_name=self.collection, exact=True)
        except STORE_ERRORS as exc:
            raise _store_error("count", exc) from exc
        return result.count

    async def has_documents(self) -> bool:
        return await self.count() > 0

    async def clear(self) -> None:
        try:
            await self.client.delete_collection(collection_name=self.collection)
        except STORE_ERRORS as exc:
            raise _store_error("clear", exc) from exc
        logger.warning("Cleared collection %s", self.collection)
        await self.initialize()

    async def find_relevant_job_title(self, query: str) -> Optional[str]:
        if not query or not query.strip():
            return None
        [qvec] = await self._embedder.embed([query.strip()])
        try:
            response = await self.client.query_points(
                collection_name=self.collection, query=qvec, limit=1, with_payload=True)
        except STORE_ERRORS as exc:
            raise _store_error("search", exc) from exc
        if not response.points:
            logger.warning("No reference document matches '%s'", query)
            return None
        top = response.points[0]
        title = (top.payload or {}).get("job_title")
        if not isinstance(title, str) or not title:
            logger.warning("Top hit for '%s' carries no job_title", query)
            return None
        logger.info("Resolved '%s' -> %s (score=%.3f)", query, title, top.score)
        return title

    async def _scroll_one(self, conditions: List[FieldCondition]):
        try:
            records, _ = await self.client.scroll(
                collection_name=self.collection,
                scroll_filter=Filter(must=conditions),
                limit=1,
                with_payload=True,
                with_vectors=False,
            )
        except STORE_ERRORS as exc:
            raise _store_error("lookup", exc) from exc
        return records[0] if records else None

    async def fetch_reference_document(self, job_title: str, kind: DocumentKind) -> str:
        title_cond = FieldCondition(key="job_title", match=MatchValue(value=job_title))
        kind_cond = FieldCondition(key="document_kind", match=MatchValue(value=kind.value))
        record = await self._scroll_one([title_cond, kind_cond])
        if record is not None:
            return record.payload.get("text", "")

        if await self._scroll_one([title_cond]) is None:
            raise EvaluationError(ErrorKind.JOB_NOT_FOUND,
                                  f"no reference documents for job title '{job_title}'",
                                  context={"job_title": job_title})
        raise EvaluationError(ErrorKind.DOCUMENT_MISSING,
                              f"no {kind.value} found for job title '{job_title}'",
                              context={"job_title": job_title, "document_kind": kind.value})

    async def fetch_grounding(self, job_title: str) -> GroundingDocuments:
        """Fetch all three grounding documents; a DOCUMENT_MISSING error names every absent kind."""
        kinds = (DocumentKind.JOB_DESCRIPTION, DocumentKind.SCORING_RUBRIC, DocumentKind.CASE_STUDY_BRIEF)
        results = await asyncio.gather(
            *(self.fetch_reference_document(job_title, kind) for kind in kinds),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, BaseException)]
        for err in errors:
            if not isinstance(err, Exception):
                raise err
        for err in errors:
            if not (isinstance(err, EvaluationError) and err.kind is ErrorKind.DOCUMENT_MISSING):
                raise err
        if errors:
            missing = [kind.value for kind, r in zip(kinds, results) if isinstance(r, BaseException)]
            raise EvaluationError(ErrorKind.DOCUMENT_MISSING,
                                  f"no {', '.join(missing)} found for job title '{job_title}'",
                                  context={"job_title": job_title, "document_kind": ", ".join(missing),
                                           "document_kinds": missing}) from errors[0]
        job_description, scoring_rubric, case_study_brief = results
        return GroundingDocuments(
            job_title=job_title,
            job_description=job_description,
            scoring_rubric=scoring_rubric,
            case_study_brief=case_study_brief,
        )

    async def upsert_documents(self, job_title: str, documents: List[tuple]) -> None:
        """Embed and store ``(kind, text, source)`` tuples for one job title."""
        if not documents:
            return
        vectors = await self._embedder.embed([text for _, text, _ in documents])
        points = [
            PointStruct(
                id=point_id(job_title, kind),
                vector=vec,
                payload={
                    "job_title": job_title,
                    "document_kind": kind.value,
                    "text": text,
                    "source": source,
                },
            )
            for (kind, text, source), vec in zip(documents, vectors)
        ]
        try:
            await self.client.upsert(collection_name=self.collection, points=points)
        except STORE_ERRORS as exc:
            raise _store_error("upsert", exc) from exc

    async def ingest_directory(self, root: str, force: bool = False) -> IngestReport:
        report = IngestReport()
        if not force and await self.has_documents():
            logger.info("Documents already ingested, skipping ingestion")
            report.already_populated = True
            return report
        if not os.path.isdir(root):
            logger.warning("Documents directory %s does not exist, nothing to ingest", root)
            return report

        for entry in sorted(os.listdir(root)):
            job_dir = os.path.join(root, entry)
            if not os.path.isdir(job_dir):
                continue
            job_title = normalize_job_title(entry)
            by_kind = {}
            for filename in sorted(os.listdir(job_dir)):
                path = os.path.join(job_dir, filename)
                text = self._read_reference_file(path, filename)
                if text is None:
                    report.skipped.append(path)
                    continue
                kind = detect_document_kind(filename)
                if kind in by_kind:
                    logger.warning("Job %s has more than one %s, keeping %s",
                                   job_title, kind.value, filename)
                by_kind[kind] = (kind, text, filename)
            documents = list(by_kind.values())
            await self.upsert_documents(job_title, documents)
            report.ingested.extend(f"{job_title}/{kind.value}" for kind, _, _ in documents)
            kinds = {kind for kind, _, _ in documents}
            missing = [k.value for k in DocumentKind if k not in kinds]
            if missing:
                logger.warning("Job %s is missing reference documents: %s", job_title, ", ".join(missing))
            logger.info("Ingested %d reference documents for %s", len(documents), job_title)

        logger.info("Ingestion finished: %d ingested, %d skipped", len(report.ingested), len(report.skipped))
        return report

    def _read_reference_file(self, path: str, filename: str) -> Optional[str]:
        if not os.path.isfile(path) or not filename.lower().endswith(SUPPORTED_SUFFIXES):
            logger.warning("Skipping %s: unsupported file", path)
            return None
        kind = detect_document_kind(filename)
        if kind is None:
            logger.warning("Skipping %s: unknown document kind", path)
            return None
        try:
            if kind is DocumentKind.SCORING_RUBRIC:
                text = extract_rubric_text(path)
            else:
                text = extract_text(path)
        except Exception:
            logger.exception("Skipping %s: could not read file", path)
            return None
        if not text.strip():
            logger.warning("Skipping %s: no text extracted", path)
            return None
        return text
