import json
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, List, Sequence

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from resgrid.shared.core.app_routes import register_api_routers, register_lifecycle_routes
from resgrid.shared.core.config import get_settings, reload_settings_from_environment
from resgrid.shared.core.error_governance import handle_exception
from resgrid.shared.core.exceptions import ResgridException
from resgrid.shared.core.logging import setup_logging
from resgrid.shared.core.middleware import RequestIDMiddleware
from resgrid.shared.db.session import dispose_engine, init_models

setup_logging()
settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    global settings
    settings = reload_settings_from_environment()
    logger.info("app_starting", app_name=settings.APP_NAME, environment=settings.ENVIRONMENT)

    if settings.TESTING or settings.ENVIRONMENT == "local":
        await init_models()

    yield

    logger.info("app_shutting_down")
    await dispose_engine()


resgrid_app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    lifespan=lifespan,
)
# Uvicorn looks for `app` by default.
app: FastAPI = resgrid_app

__all__ = ["app", "resgrid_app", "lifespan"]


@resgrid_app.exception_handler(ResgridException)
async def resgrid_exception_handler(request: Request, exc: ResgridException) -> JSONResponse:
    """Handle custom application exceptions."""
    return handle_exception(request, exc)


@resgrid_app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle FastAPI HTTP exceptions with the standard error body."""
    detail_text = str(exc.detail) if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": detail_text, "code": f"http_{exc.status_code}"},
        headers=getattr(exc, "headers", None),
    )


@resgrid_app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle Pydantic validation errors with per-field messages."""

    def _json_safe(value: Any) -> Any:
        if isinstance(value, Exception):
            return str(value)
        try:
            json.dumps(value)
            return value
        except (TypeError, ValueError):
            return str(value)

    def _field_errors(errors: Sequence[Any]) -> Dict[str, List[str]]:
        fields: Dict[str, List[str]] = {}
        for err in errors:
            loc = [str(part) for part in err.get("loc", ()) if part != "body"]
            key = ".".join(loc) or "__root__"
            fields.setdefault(key, []).append(_json_safe(err.get("msg", "Invalid value")))
        return fields

    logger.warning("request_validation_failed", path=request.url.path)
    return JSONResponse(
        status_code=422,
        content={
            "error": "Validation failed",
            "code": "validation_error",
            "details": {"fields": _field_errors(exc.errors())},
        },
    )


@resgrid_app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    """Handle business logic ValueErrors via central governance."""
    return handle_exception(request, exc)


resgrid_app.add_middleware(GZipMiddleware, minimum_size=1000)
resgrid_app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
)
resgrid_app.add_middleware(RequestIDMiddleware)

register_lifecycle_routes(resgrid_app, app_name=settings.APP_NAME, version=settings.VERSION)
register_api_routers(resgrid_app)
