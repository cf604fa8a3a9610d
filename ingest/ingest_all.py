"""Load the reference corpus into the document store.

Expected layout, one directory per job title:

    documents/
      backend_engineer_2025/
        job_description.pdf
        case_study_brief.pdf
        scoring_rubric.pdf

The worker ingests the same directory on first start when the store is
empty; this command is for seeding ahead of time or re-ingesting after the
documents change.
"""
import argparse
import asyncio
import logging

from app.logging import configure_logging
from app.settings import settings
from infra.rag.document_store import DocumentStoreGateway
from infra.rag.embeddings import OpenAIEmbedder

log = logging.getLogger("ingest_all")


async def main(root: str, clear: bool = False) -> int:
    store = DocumentStoreGateway.from_settings(settings, OpenAIEmbedder(settings))
    await store.initialize()
    if clear:
        log.info("Clearing collection %s", store.collection)
        await store.clear()

    report = await store.ingest_directory(root, force=True)
    for item in report.ingested:
        log.info("  + %s", item)
    for path in report.skipped:
        log.warning("  - skipped %s", path)
    total = await store.count()
    log.info("Ingestion completed: %d documents in %s", total, store.collection)
    return 0 if report.ingested else 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Ingest job descriptions, case study briefs and scoring rubrics per job title")
    parser.add_argument("--dir", default=settings.DOCUMENTS_DIR,
                        help="Root directory with one sub-directory per job title")
    parser.add_argument("--clear", action="store_true",
                        help="Drop the collection before ingesting")
    args = parser.parse_args()
    configure_logging()
    raise SystemExit(asyncio.run(main(args.dir, clear=args.clear)))
