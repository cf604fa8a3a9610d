from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import logging

from domain.errors import UnknownDocumentError

logger = logging.getLogger(__name__)

def attach_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(UnknownDocumentError)
    async def _unknown_document(request: Request, exc: UnknownDocumentError):
        logger.info("Rejected request to %s: %s", request.url.path, exc)
        return JSONResponse(status_code=404, content={"detail": "cv_id or report_id not found"})

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        logger.exception("Unhandled: %s", exc)
        return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})
