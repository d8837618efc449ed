"""
HTTP error mapping for domain exceptions

Every DlqIntelError is rendered as {error, message, errorType, timestamp}
with a status derived from its ErrorType.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from dlq_intel.errors import DlqIntelError, ErrorCode, ErrorType

logger = structlog.get_logger(__name__)

STATUS_BY_ERROR_TYPE: Dict[ErrorType, int] = {
    ErrorType.VALIDATION: 400,
    ErrorType.NOT_FOUND: 404,
    ErrorType.CONFLICT: 409,
    ErrorType.EXTERNAL_SERVICE: 502,
    ErrorType.INTERNAL: 500,
}


def error_body(
    code: str,
    message: str,
    error_type: ErrorType,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    body = {
        "error": code,
        "message": message,
        "errorType": error_type.value,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if details:
        body["details"] = details
    return body


async def dlq_error_handler(request: Request, exc: DlqIntelError) -> JSONResponse:
    """Handle DlqIntelError and subclasses"""
    status_code = STATUS_BY_ERROR_TYPE.get(exc.error_type, 500)

    log = logger.error if status_code >= 500 else logger.info
    log(
        "Request failed",
        path=request.url.path,
        status_code=status_code,
        error_code=exc.code,
        error=exc.message,
    )

    return JSONResponse(
        status_code=status_code,
        content=error_body(exc.code, exc.message, exc.error_type, exc.details),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions without leaking internals"""
    logger.exception("Unhandled error", path=request.url.path, error_class=type(exc).__name__)
    return JSONResponse(
        status_code=500,
        content=error_body(
            ErrorCode.INTERNAL, "An unexpected error occurred", ErrorType.INTERNAL
        ),
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """
    Register exception handlers with the FastAPI app

    Request-schema violations keep FastAPI's default 422 handling.
    """
    app.add_exception_handler(DlqIntelError, dlq_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
