import enum
from sqlalchemy import Column, String, Float, Integer, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from infra.db.session import Base


class JobStatus(str, enum.Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class FileRecord(Base):
    __tablename__ = "files"
    id = Column(String, primary_key=True)
    type = Column(String, nullable=False)   # 'cv' | 'report'
    path = Column(String, nullable=False)
    name = Column(String, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

class JobRecord(Base):
    __tablename__ = "jobs"
    id = Column(String, primary_key=True)
    status = Column(String, nullable=False, default=JobStatus.QUEUED.value)
    job_title = Column(String, nullable=False)
    cv_file_id = Column(String, ForeignKey("files.id"), nullable=False)
    report_file_id = Column(String, ForeignKey("files.id"), nullable=False)
    error_message = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
    result = relationship("JobResultRecord", back_populates="job", uselist=False)

class JobResultRecord(Base):
    __tablename__ = "job_results"
    job_id = Column(String, ForeignKey("jobs.id"), primary_key=True)
    cv_match_rate = Column(Float, nullable=False)
    cv_feedback = Column(Text, nullable=False)
    project_score = Column(Float, nullable=False)
    project_feedback = Column(Text, nullable=False)
    overall_summary = Column(Text, nullable=False)
    # intermediate artifacts kept for audit
    parsed_cv = Column(Text, nullable=True)
    parsed_project = Column(Text, nullable=True)
    resolved_job_title = Column(String, nullable=True)
    job = relationship("JobRecord", back_populates="result")
