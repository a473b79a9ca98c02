from __future__ import annotations

from fastapi import APIRouter, Depends, File, Request, UploadFile, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from marketcms.apps.api.deps import (
    Pagination,
    Principal,
    get_current_principal,
    get_db,
    get_pagination,
    require_roles,
)
from marketcms.apps.api.response import paginated_response, success_response
from marketcms.services import authors as authors_service
from marketcms.services import reports as reports_service
from marketcms.services.authz import ROLE_ADMIN, ROLE_EDITOR


router = APIRouter(prefix="/authors", tags=["authors"])

editor_access = require_roles(ROLE_ADMIN, ROLE_EDITOR)


class AuthorPayload(BaseModel):
    name: str | None = None
    role: str | None = None
    bio: str | None = None
    image_url: str | None = None
    linkedin_url: str | None = None


@router.get("")
async def list_authors(
    search: str | None = None,
    pagination: Pagination = Depends(get_pagination),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    items, total = await authors_service.list_authors(
        db,
        search=search.strip() if search and search.strip() else None,
        page=pagination.page,
        limit=pagination.limit,
    )
    return paginated_response(items, page=pagination.page, limit=pagination.limit, total=total)


@router.get("/{author_id}")
async def get_author(
    author_id: int,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    author = await authors_service.get_author(db, author_id=author_id)
    return success_response(authors_service.serialize_author(author))


@router.get("/{author_id}/reports")
async def list_author_reports(
    author_id: int,
    pagination: Pagination = Depends(get_pagination),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await authors_service.get_author(db, author_id=author_id)
    items, total = await reports_service.list_reports_by_author(
        db, author_id=author_id, page=pagination.page, limit=pagination.limit
    )
    return paginated_response(items, page=pagination.page, limit=pagination.limit, total=total)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_author(
    body: AuthorPayload,
    request: Request,
    principal: Principal = Depends(editor_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    author = await authors_service.create_author(
        db,
        values=body.model_dump(exclude_unset=True),
        actor=principal.audit_actor(),
        request=request,
    )
    return success_response(author, message="Author created successfully")


@router.put("/{author_id}")
async def update_author(
    author_id: int,
    body: AuthorPayload,
    request: Request,
    principal: Principal = Depends(editor_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    author = await authors_service.update_author(
        db,
        author_id=author_id,
        patch=body.model_dump(exclude_unset=True),
        actor=principal.audit_actor(),
        request=request,
    )
    return success_response(author, message="Author updated successfully")


@router.delete("/{author_id}")
async def delete_author(
    author_id: int,
    request: Request,
    principal: Principal = Depends(require_roles(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await authors_service.delete_author(db, author_id=author_id, actor=principal.audit_actor(), request=request)
    return success_response(message="Author deleted successfully")


@router.post("/{author_id}/image")
async def upload_author_image(
    author_id: int,
    request: Request,
    image: UploadFile = File(...),
    principal: Principal = Depends(editor_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    content = await image.read()
    author = await authors_service.upload_author_image(
        db,
        author_id=author_id,
        content=content,
        filename=image.filename or "upload",
        content_type=image.content_type or "",
        actor=principal.audit_actor(),
        request=request,
    )
    return success_response(author, message="Author image uploaded successfully")


@router.delete("/{author_id}/image")
async def delete_author_image(
    author_id: int,
    request: Request,
    principal: Principal = Depends(editor_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    author = await authors_service.delete_author_image(
        db, author_id=author_id, actor=principal.audit_actor(), request=request
    )
    return success_response(author, message="Author image deleted successfully")
