import os
from pydantic import BaseModel
from functools import lru_cache
from dotenv import load_dotenv
load_dotenv()

class Settings(BaseModel):
    APP_NAME: str = os.getenv("APP_NAME", "AI Job Reviewer")
    ENV: str = os.getenv("ENV", "development")
    STORAGE_DIR: str = os.getenv("STORAGE_DIR", "storage")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    EVALUATION_LOG_FILE: str | None = os.getenv("EVALUATION_LOG_FILE") or None
    SQLITE_PATH: str = os.getenv("SQLITE_PATH", "app.sqlite3")
    QDRANT_URL: str = os.getenv("QDRANT_URL", "http://localhost:6333")
    QDRANT_API_KEY: str | None = os.getenv("QDRANT_API_KEY") or None
    QDRANT_COLLECTION: str = os.getenv("QDRANT_COLLECTION", "job_documents")
    DOCUMENTS_DIR: str = os.getenv("DOCUMENTS_DIR", "documents")
    EMBEDDING_VECTOR_SIZE: int = int(os.getenv("EMBEDDING_VECTOR_SIZE", "1536"))
    EMBEDDING_MAX_CHARS: int = int(os.getenv("EMBEDDING_MAX_CHARS", "24000"))
    OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY") or None
    OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    OPENAI_EMBEDDING_MODEL: str = os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small")
    OPENROUTER_API_KEY: str | None = os.getenv("OPENROUTER_API_KEY") or None
    OPENROUTER_MODEL: str = os.getenv("OPENROUTER_MODEL", "openai/gpt-4o-mini")
    LLM_TIMEOUT_SECONDS: float = float(os.getenv("LLM_TIMEOUT_SECONDS", "60"))
    MAX_CANDIDATE_CHARS: int = int(os.getenv("MAX_CANDIDATE_CHARS", "12000"))
    # real CVs and reports run to several hundred words
    MIN_DOCUMENT_CHARS: int = int(os.getenv("MIN_DOCUMENT_CHARS", "200"))
    QUEUE_MAX_ATTEMPTS: int = int(os.getenv("QUEUE_MAX_ATTEMPTS", "3"))
    QUEUE_BACKOFF_SECONDS: float = float(os.getenv("QUEUE_BACKOFF_SECONDS", "5"))
    STALL_TIMEOUT_SECONDS: float = float(os.getenv("STALL_TIMEOUT_SECONDS", "300"))
    MAX_UPLOAD_BYTES: int = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))

@lru_cache
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
