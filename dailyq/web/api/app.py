"""FastAPI application for the Daily Question service.

Creates the application, wires lifespan management of the database engine,
maps the operation exception taxonomy onto HTTP responses and mounts the
resource routers.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dailyq import __version__
from dailyq.shared.config import get_settings
from dailyq.shared.database import close_database, create_tables, init_database
from dailyq.shared.log_config import configure_logging
from dailyq.web.api.routers.admin import router as admin_router
from dailyq.web.api.routers.answers import router as answers_router
from dailyq.web.api.routers.push_tokens import router as push_tokens_router
from dailyq.web.api.routers.questions import router as questions_router
from dailyq.web.api.routers.reactions import router as reactions_router
from dailyq.web.api.routers.timeline import router as timeline_router
from dailyq.web.api.routers.users import router as users_router
from dailyq.web.api.schemas import ErrorDetail, ErrorResponse, ValidationErrorResponse
from dailyq.web.crud import (
    ConflictError,
    DatabaseOperationError,
    ForbiddenError,
    InputValidationError,
    NotFoundError,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Initialise logging and the database engine; dispose of it on shutdown."""
    settings = get_settings()
    configure_logging(settings)

    try:
        await init_database(settings)
        if settings.is_development:
            await create_tables()

        app.state.settings = settings
        logger.info(f"Daily Question API started ({settings.environment})")

        yield

    finally:
        await close_database()


settings = get_settings()

docs_enabled = settings.api_docs_enabled and not settings.is_production

api = FastAPI(
    title="Daily Question API",
    description="One question a day, answered once, shared with the people you follow",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs" if docs_enabled else None,
    redoc_url="/redoc" if docs_enabled else None,
    openapi_url="/openapi.json" if docs_enabled else None,
)


@api.middleware("http")
async def add_request_id_middleware(request: Request, call_next):
    """Add request ID to request state for tracking."""
    request_id = request.headers.get("x-request-id", str(uuid.uuid4()))
    request.state.request_id = request_id

    response = await call_next(request)

    response.headers["x-request-id"] = request_id
    return response


if settings.is_development:
    api.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", str(uuid.uuid4()))


def _error_response(
    request: Request,
    status_code: int,
    detail: str,
    error_type: str,
) -> JSONResponse:
    response = ErrorResponse(
        detail=detail,
        type=error_type,
        timestamp=datetime.now(timezone.utc),
        request_id=_request_id(request),
    )
    return JSONResponse(status_code=status_code, content=response.model_dump(mode="json"))


def _log_extra(request: Request, exc: Exception) -> dict:
    return {
        "request_id": _request_id(request),
        "url": str(request.url),
        "method": request.method,
        "error": str(exc),
    }


@api.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle Pydantic validation errors."""
    request_id = _request_id(request)

    errors = []
    for error in exc.errors():
        field_path = " -> ".join(str(loc) for loc in error["loc"])
        errors.append(
            ErrorDetail(code=error["type"], message=error["msg"], field=field_path)
        )

    logger.warning(
        "Validation error",
        extra={
            "request_id": request_id,
            "url": str(request.url),
            "method": request.method,
            "errors": [error.model_dump() for error in errors],
        },
    )

    response = ValidationErrorResponse(
        detail="Request validation failed",
        errors=errors,
        timestamp=datetime.now(timezone.utc),
        request_id=request_id,
    )

    return JSONResponse(status_code=422, content=response.model_dump(mode="json"))


@api.exception_handler(InputValidationError)
async def input_validation_exception_handler(
    request: Request, exc: InputValidationError
) -> JSONResponse:
    """Handle rejected input (400). The message is returned verbatim."""
    logger.info("Input rejected", extra=_log_extra(request, exc))
    return _error_response(request, 400, str(exc), exc.code)


@api.exception_handler(ForbiddenError)
async def forbidden_exception_handler(
    request: Request, exc: ForbiddenError
) -> JSONResponse:
    logger.info("Forbidden", extra=_log_extra(request, exc))
    return _error_response(request, 403, str(exc), exc.code)


@api.exception_handler(NotFoundError)
async def not_found_exception_handler(
    request: Request, exc: NotFoundError
) -> JSONResponse:
    logger.info("Resource not found", extra=_log_extra(request, exc))
    return _error_response(request, 404, str(exc), exc.code)


@api.exception_handler(ConflictError)
async def conflict_exception_handler(
    request: Request, exc: ConflictError
) -> JSONResponse:
    logger.warning("Conflict error", extra=_log_extra(request, exc))
    return _error_response(request, 409, str(exc), exc.code)


@api.exception_handler(DatabaseOperationError)
async def database_exception_handler(
    request: Request, exc: DatabaseOperationError
) -> JSONResponse:
    """Handle store failures (500)."""
    logger.error(f"Database operation error: {exc}", extra=_log_extra(request, exc))

    # Don't expose internal database errors in production
    if settings.verbose_errors_enabled and settings.is_development:
        detail = f"Database error: {exc}"
    else:
        detail = "Internal server error"

    return _error_response(request, 500, detail, exc.code)


@api.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions globally."""
    logger.exception(
        "Unhandled exception",
        extra={
            "request_id": _request_id(request),
            "url": str(request.url),
            "method": request.method,
            "exception_type": type(exc).__name__,
        },
    )

    if settings.verbose_errors_enabled and settings.is_development:
        detail = f"Internal server error: {exc}"
    else:
        detail = "Internal server error"

    return _error_response(request, 500, detail, "internal_error")


api.include_router(questions_router, tags=["Questions"])

api.include_router(answers_router, tags=["Answers"])

api.include_router(reactions_router, tags=["Reactions"])

api.include_router(timeline_router, tags=["Timeline"])

api.include_router(users_router, tags=["Users"])

api.include_router(push_tokens_router, tags=["Push Tokens"])

api.include_router(admin_router, tags=["Admin"])


@api.get("/health", tags=["Health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint for monitoring."""
    return {"status": "healthy", "version": __version__}
