"""Tagged failures for the evaluation pipeline.

Gateways and stages raise :class:`EvaluationError` at the point of failure,
tagged with an :class:`ErrorKind`. The worker decides retry vs. fail and picks
the user-facing message from the tag alone; error text is never inspected.
"""
import asyncio
import enum
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError


class ErrorKind(str, enum.Enum):
    # retrieval
    JOB_NOT_FOUND = "job_not_found"
    DOCUMENT_MISSING = "document_missing"
    # transient upstream
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    OVERLOADED = "overloaded"
    STORE_UNAVAILABLE = "store_unavailable"
    STALLED = "stalled"
    # model returned something outside its declared shape
    MALFORMED_OUTPUT = "malformed_output"
    # candidate documents
    INVALID_INPUT = "invalid_input"
    PERSISTENCE = "persistence"
    PROVIDER_ERROR = "provider_error"
    UNKNOWN = "unknown"


RETRYABLE_KINDS = frozenset({
    ErrorKind.TIMEOUT,
    ErrorKind.RATE_LIMITED,
    ErrorKind.OVERLOADED,
    ErrorKind.STORE_UNAVAILABLE,
    ErrorKind.STALLED,
    ErrorKind.MALFORMED_OUTPUT,
    ErrorKind.PERSISTENCE,
    ErrorKind.UNKNOWN,
})

USER_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.JOB_NOT_FOUND: "No reference materials found for this job title",
    ErrorKind.DOCUMENT_MISSING: "Reference materials incomplete for this job title",
    ErrorKind.TIMEOUT: "Evaluation timed out, please try again",
    ErrorKind.RATE_LIMITED: "Provider rate limit reached, try again later",
    ErrorKind.OVERLOADED: "Model provider is overloaded, try again later",
    ErrorKind.STORE_UNAVAILABLE: "Reference document store is unavailable, try again later",
    ErrorKind.STALLED: "Evaluation stalled, please try again",
    ErrorKind.MALFORMED_OUTPUT: "Model returned an invalid evaluation, please try again",
    ErrorKind.INVALID_INPUT: "Candidate document is missing, empty or unreadable",
    ErrorKind.PERSISTENCE: "Could not save the evaluation, please try again",
    ErrorKind.PROVIDER_ERROR: "Model provider rejected the request",
    ErrorKind.UNKNOWN: "Evaluation failed due to an unexpected error",
}


class EvaluationError(Exception):
    def __init__(
        self,
        kind: ErrorKind,
        detail: str,
        *,
        stage: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(detail)
        self.kind = kind
        self.detail = detail
        self.stage = stage
        self.context = dict(context or {})

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    @property
    def user_message(self) -> str:
        message = USER_MESSAGES[self.kind]
        if self.kind is ErrorKind.DOCUMENT_MISSING and self.context.get("document_kind"):
            message = f"{message} (missing {self.context['document_kind']})"
        return message

    def __str__(self) -> str:
        where = f"[{self.stage}] " if self.stage else ""
        return f"{where}{self.kind.value}: {self.detail}"


class JobStateError(Exception):
    """Raised on an illegal job status transition."""


class UnknownDocumentError(LookupError):
    """A submission referenced a candidate document that does not exist."""


def classify(exc: BaseException) -> EvaluationError:
    if isinstance(exc, EvaluationError):
        return exc
    if isinstance(exc, SQLAlchemyError):
        error = EvaluationError(ErrorKind.PERSISTENCE, f"database error: {exc}")
    elif isinstance(exc, asyncio.TimeoutError):
        error = EvaluationError(ErrorKind.TIMEOUT, "operation timed out")
    else:
        error = EvaluationError(ErrorKind.UNKNOWN, f"{type(exc).__name__}: {exc}")
    error.__cause__ = exc
    return error
