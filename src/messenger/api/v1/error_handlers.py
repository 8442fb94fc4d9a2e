# src/messenger/api/v1/error_handlers.py
"""
FastAPI exception handlers that map store-level exceptions to HTTP responses.

The store raises messenger.exceptions.base.* exceptions (NotFoundError,
InvalidInputError, DuplicateError, ...). These handlers produce stable JSON
payloads (via .to_payload()) and status codes (via .http_status()).
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from messenger.exceptions.base import (
    DuplicateError,
    InvalidFieldError,
    InvalidInputError,
    NotFoundError,
    RepositoryError,
    UnauthenticatedError,
)

logger = logging.getLogger(__name__)


async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    logger.info("api.not_found", extra={"method": request.method, "path": request.url.path, "fields": exc.fields})
    return JSONResponse(status_code=exc.http_status(), content=exc.to_payload())


async def duplicate_error_handler(request: Request, exc: DuplicateError) -> JSONResponse:
    """
    409 Conflict. The constraint name stays in the logs, never in the payload.
    """
    logger.info(
        "api.duplicate",
        extra={"method": request.method, "path": request.url.path, "fields": exc.fields, "constraint": exc.constraint},
    )
    return JSONResponse(status_code=exc.http_status(), content=exc.to_payload())


async def invalid_input_handler(request: Request, exc: InvalidInputError | InvalidFieldError) -> JSONResponse:
    logger.info("api.invalid_input", extra={"method": request.method, "path": request.url.path, "fields": exc.fields})
    return JSONResponse(status_code=exc.http_status(), content=exc.to_payload())


async def unauthenticated_handler(request: Request, exc: UnauthenticatedError) -> JSONResponse:
    return JSONResponse(status_code=exc.http_status(), content=exc.to_payload())


async def repository_error_handler(request: Request, exc: RepositoryError) -> JSONResponse:
    """Fallback for other store errors: 400 unless the error code says otherwise."""
    logger.warning("api.repository_error", extra={"method": request.method, "path": request.url.path, "error": str(exc)})
    return JSONResponse(status_code=exc.http_status(), content=exc.to_payload())


def register_exception_handlers(app) -> None:
    app.add_exception_handler(NotFoundError, not_found_handler)
    app.add_exception_handler(DuplicateError, duplicate_error_handler)
    app.add_exception_handler(InvalidInputError, invalid_input_handler)
    app.add_exception_handler(InvalidFieldError, invalid_input_handler)
    app.add_exception_handler(UnauthenticatedError, unauthenticated_handler)
    app.add_exception_handler(RepositoryError, repository_error_handler)
