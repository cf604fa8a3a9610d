import uuid
import logging
from typing import Optional, Dict, Any
from sqlalchemy.orm import sessionmaker
from infra.db.session import SessionLocal
from infra.db.models import FileRecord

logger = logging.getLogger(__name__)

FILE_TYPES = ("cv", "report")


class FilesRepository:
    """Metadata for uploaded candidate documents; the bytes live under STORAGE_DIR."""

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self._sessions = session_factory

    def save(self, ftype: str, path: str, name: str) -> str:
        if ftype not in FILE_TYPES:
            raise ValueError(f"unsupported file type: {ftype}")
        fid = f"file_{uuid.uuid4().hex}"
        with self._sessions() as s:
            s.add(FileRecord(id=fid, type=ftype, path=path, name=name))
            s.commit()
        logger.info("Stored %s upload %s as %s", ftype, name, fid)
        return fid

    def exists(self, file_id: str) -> bool:
        with self._sessions() as s:
            return s.get(FileRecord, file_id) is not None

    def get(self, file_id: str) -> Optional[Dict[str, Any]]:
        with self._sessions() as s:
            rec = s.get(FileRecord, file_id)
            if not rec:
                return None
            return {"id": rec.id, "type": rec.type, "path": rec.path, "name": rec.name,
                    "created_at": rec.created_at}

    def get_path(self, file_id: str) -> str:
        rec = self.get(file_id)
        if rec is None:
            raise KeyError(f"file not found: {file_id}")
        return rec["path"]
