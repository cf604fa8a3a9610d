import os
import uuid
from fastapi import APIRouter, Depends, UploadFile, File, HTTPException
from typing import Optional
from app.runtime import get_files_repository
from app.settings import settings
from domain.schemas import UploadResponse
from infra.repositories.files_repository import FilesRepository

router = APIRouter()

PDF_CONTENT_TYPES = {"application/pdf", "application/x-pdf"}
PDF_MAGIC = b"%PDF"


def _check_pdf(f: UploadFile, content: bytes, field: str) -> None:
    name = (f.filename or "").lower()
    if not name.endswith(".pdf") and f.content_type not in PDF_CONTENT_TYPES:
        raise HTTPException(status_code=400, detail=f"'{field}' must be a PDF file")
    if not content.startswith(PDF_MAGIC):
        raise HTTPException(status_code=400, detail=f"'{field}' is not a valid PDF document")
    if len(content) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413,
                            detail=f"'{field}' exceeds the {settings.MAX_UPLOAD_BYTES} byte upload limit")


@router.post("/upload", response_model=UploadResponse)
async def upload(cv: Optional[UploadFile] = File(default=None),
                 report: Optional[UploadFile] = File(default=None),
                 files_repo: FilesRepository = Depends(get_files_repository)) -> UploadResponse:
    if not cv and not report:
        raise HTTPException(
            status_code=400, detail="Upload at least one file: 'cv' or 'report'")
    os.makedirs(settings.STORAGE_DIR, exist_ok=True)
    resp = UploadResponse()

    async def save_one(f: UploadFile, ftype: str) -> str:
        content = await f.read()
        _check_pdf(f, content, ftype)
        name = f.filename or f"{ftype}.pdf"
        # prefix keeps two uploads with the same filename apart
        stored = f"{uuid.uuid4().hex[:8]}_{os.path.basename(name).replace(' ', '_')}"
        path = os.path.join(settings.STORAGE_DIR, stored)
        with open(path, "wb") as out:
            out.write(content)
        return files_repo.save(ftype=ftype, path=path, name=name)

    if cv:
        resp.cv_id = await save_one(cv, "cv")
    if report:
        resp.report_id = await save_one(report, "report")
    return resp
