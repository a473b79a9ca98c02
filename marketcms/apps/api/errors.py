from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from marketcms.apps.api.response import error_response, get_request_id
from marketcms.core.errors import (
    BadRequestError,
    DuplicateSlugError,
    ForbiddenError,
    InternalError,
    InvalidTransitionError,
    MarketCMSError,
    NotFoundError,
    RateLimitedError,
    StorageError,
    UnauthorizedError,
    UpstreamError,
)


logger = logging.getLogger(__name__)

GENERIC_SERVER_ERROR = "Internal server error"

# Ordered most-specific first; the first isinstance match wins.
_STATUS_BY_ERROR: tuple[tuple[type[MarketCMSError], int], ...] = (
    (BadRequestError, 400),
    (UnauthorizedError, 401),
    (ForbiddenError, 403),
    (NotFoundError, 404),
    (DuplicateSlugError, 409),
    (InvalidTransitionError, 400),
    (RateLimitedError, 429),
    (UpstreamError, 502),
    (StorageError, 500),
    (InternalError, 500),
)


def status_for_error(exc: MarketCMSError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


def _message_from_detail(detail: Any) -> str:
    # Extract the user-facing message from FastAPI HTTPException detail payloads.
    if isinstance(detail, dict):
        return str(detail.get("message") or "Request failed")
    if isinstance(detail, str):
        return detail
    return "Request failed"


async def core_error_handler(request: Request, exc: MarketCMSError) -> JSONResponse:
    status_code = status_for_error(exc)
    headers: dict[str, str] | None = None
    if isinstance(exc, RateLimitedError):
        headers = {**exc.headers, "Retry-After": str(exc.retry_after_s)}
    if status_code >= 500:
        # Internal detail stays in the logs; the client gets a generic message.
        logger.error(
            "request_failed error=%s path=%s request_id=%s",
            type(exc).__name__,
            request.url.path,
            get_request_id(request),
            exc_info=exc,
        )
        message = "Image service unavailable" if isinstance(exc, UpstreamError) else GENERIC_SERVER_ERROR
        return JSONResponse(content=error_response(message), status_code=status_code)
    return JSONResponse(content=error_response(exc.message or "Request failed"), status_code=status_code, headers=headers)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    payload = error_response(_message_from_detail(exc.detail))
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def starlette_http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Ensure Starlette-raised exceptions (404 routes, 405 methods) share the envelope.
    payload = error_response(_message_from_detail(exc.detail))
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Report the first offending field; clients only render one message.
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
        message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
    else:
        message = "Invalid request"
    return JSONResponse(content=error_response(message), status_code=400)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; return a stable internal error envelope.
    logger.error(
        "request_unhandled_error path=%s request_id=%s",
        request.url.path,
        get_request_id(request),
        exc_info=exc,
    )
    return JSONResponse(content=error_response(GENERIC_SERVER_ERROR), status_code=500)
