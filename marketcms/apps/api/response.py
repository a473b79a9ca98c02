from __future__ import annotations

from typing import Any, Generic, TypeVar
from uuid import uuid4

from fastapi import Request
from pydantic import BaseModel

from marketcms.domain.pagination import total_pages


API_PREFIX = "/api/v1"

T = TypeVar("T")


class PaginationMeta(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class SuccessEnvelope(BaseModel, Generic[T]):
    # Documented shape of every successful response body.
    success: bool = True
    data: T | None = None
    message: str | None = None
    meta: PaginationMeta | None = None


class ErrorEnvelope(BaseModel):
    success: bool = False
    error: str
    message: str | None = None


def get_request_id(request: Request) -> str:
    # Use existing request IDs when provided to preserve traceability.
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    header_request_id = request.headers.get("X-Request-Id")
    if header_request_id:
        request.state.request_id = header_request_id
        return header_request_id
    generated = str(uuid4())
    request.state.request_id = generated
    return generated


def success_response(
    data: Any = None,
    *,
    message: str | None = None,
    meta: PaginationMeta | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {"success": True}
    if data is not None:
        payload["data"] = data
    if message is not None:
        payload["message"] = message
    if meta is not None:
        payload["meta"] = meta.model_dump()
    return payload


def paginated_response(items: list[Any], *, page: int, limit: int, total: int) -> dict[str, Any]:
    meta = PaginationMeta(page=page, limit=limit, total=total, total_pages=total_pages(total, limit))
    return success_response(items, meta=meta)


def error_response(message: str) -> dict[str, Any]:
    return ErrorEnvelope(error=message).model_dump(exclude_none=True)
