from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from app.settings import settings


def make_engine(url: str) -> Engine:
    return create_engine(
        url, echo=False, future=True,
        connect_args={"check_same_thread": False} if url.startswith("sqlite") else {})


def make_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(
        bind=bind, autoflush=False, autocommit=False, future=True,
        expire_on_commit=False)


engine = make_engine(f"sqlite:///{settings.SQLITE_PATH}")
SessionLocal = make_session_factory(engine)


class Base(DeclarativeBase):
    pass


def init_db(bind: Engine = engine):
    from infra.db.models import FileRecord, JobRecord, JobResultRecord
    Base.metadata.create_all(bind=bind)
