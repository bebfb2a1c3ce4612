"""
Unified Error Governance

Classifies exceptions raised by route handlers, logs them with a correlation
id and returns the standard error body:
`{"error": <message>, "code": <code>, "errorId": <id>, "details": {...}}`.
"""

from typing import Any, Dict, Optional
from uuid import uuid4

import structlog
from fastapi import Request
from fastapi.responses import JSONResponse

from resgrid.shared.core.config import ENV_PRODUCTION, ENV_STAGING, get_settings
from resgrid.shared.core.exceptions import ResgridException

logger = structlog.get_logger()

SAFE_CODES = {"not_found", "validation_error", "value_error"}


def handle_exception(
    request: Request, exc: Exception, error_id: Optional[str] = None
) -> JSONResponse:
    """Classify and record an exception, returning a standardized JSON response."""
    error_id = error_id or str(uuid4())
    settings = get_settings()
    is_prod = settings.ENVIRONMENT.lower() in (ENV_PRODUCTION, ENV_STAGING)

    if isinstance(exc, ResgridException):
        app_exc = exc
    elif isinstance(exc, ValueError):
        app_exc = ResgridException(
            message="Invalid request parameters" if is_prod else str(exc),
            code="value_error",
            status_code=400,
        )
        logger.warning(
            "business_validation_error",
            error=str(exc),
            error_id=error_id,
            path=request.url.path,
        )
    else:
        app_exc = ResgridException(
            message="An unexpected internal error occurred",
            code="internal_error",
            status_code=500,
        )
        logger.exception(
            "unhandled_raw_exception",
            error=str(exc),
            error_id=error_id,
            path=request.url.path,
        )

    message = app_exc.message
    details: Optional[Dict[str, Any]] = app_exc.details or None
    if is_prod and app_exc.code not in SAFE_CODES:
        message = "An error occurred while processing your request"
        details = None

    log = logger.error if app_exc.status_code >= 500 else logger.warning
    log(
        "api_error",
        error_id=error_id,
        code=app_exc.code,
        message=app_exc.message,
        status_code=app_exc.status_code,
        path=request.url.path,
    )

    return JSONResponse(
        status_code=app_exc.status_code,
        content={
            "error": message,
            "code": app_exc.code,
            "errorId": error_id,
            "details": details,
        },
    )
