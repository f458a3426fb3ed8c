# box_tracker/errors.py
"""
Error taxonomy for the scanning service.

Services raise these; ``install_error_handlers`` turns them into JSON
responses with the matching HTTP status.
"""
from __future__ import annotations
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class TrackerError(Exception):
    status_code = 500
    code = "tracker_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(TrackerError):
    """Empty or malformed input (box id, manifest file, export format)."""
    status_code = 400
    code = "validation_error"


class NotFound(TrackerError):
    status_code = 404
    code = "not_found"


class ConcurrencyConflict(TrackerError):
    """A key lock could not be acquired within the configured timeout."""
    status_code = 409
    code = "concurrency_conflict"


class StorageError(TrackerError):
    """Persistence I/O failed; nothing was written."""
    status_code = 503
    code = "storage_error"


async def _tracker_error_handler(request: Request, exc: TrackerError) -> JSONResponse:
    if isinstance(exc, StorageError):
        logger.error("storage failure on %s %s: %s", request.method, request.url.path, exc.message,
                     exc_info=exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.code},
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TrackerError, _tracker_error_handler)
