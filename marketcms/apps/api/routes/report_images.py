from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from marketcms.apps.api.deps import Principal, get_current_principal, get_db, require_roles
from marketcms.apps.api.response import success_response
from marketcms.services import report_images as images_service
from marketcms.services.authz import ROLE_ADMIN, ROLE_EDITOR


router = APIRouter(tags=["report-images"])

editor_access = require_roles(ROLE_ADMIN, ROLE_EDITOR)


class UpdateImageRequest(BaseModel):
    title: str | None = None
    is_active: bool | None = None


@router.post("/reports/{report_id}/images", status_code=status.HTTP_201_CREATED)
async def upload_report_image(
    report_id: int,
    request: Request,
    image: UploadFile = File(...),
    title: str | None = Form(default=None),
    principal: Principal = Depends(editor_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    content = await image.read()
    result = await images_service.upload_image(
        db,
        report_id=report_id,
        content=content,
        filename=image.filename or "upload",
        content_type=image.content_type or "",
        title=title,
        actor=principal.audit_actor(),
        request=request,
    )
    return success_response(result, message="Image uploaded successfully")


@router.get("/reports/{report_id}/images")
async def list_report_images(
    report_id: int,
    active_only: bool = True,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    images = await images_service.list_report_images(db, report_id=report_id, active_only=active_only)
    return success_response(images)


@router.get("/images/{image_id}")
async def get_image(
    image_id: int,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    image = await images_service.get_image(db, image_id=image_id)
    return success_response(images_service.serialize_image(image))


@router.patch("/images/{image_id}")
async def update_image(
    image_id: int,
    body: UpdateImageRequest,
    request: Request,
    principal: Principal = Depends(editor_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    patch = {key: value for key, value in body.model_dump(exclude_unset=True).items() if value is not None}
    image = await images_service.update_image(
        db, image_id=image_id, patch=patch, actor=principal.audit_actor(), request=request
    )
    return success_response(image, message="Image updated successfully")


@router.delete("/images/{image_id}")
async def delete_image(
    image_id: int,
    request: Request,
    principal: Principal = Depends(editor_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await images_service.soft_delete_image(db, image_id=image_id, actor=principal.audit_actor(), request=request)
    return success_response(message="Image deleted successfully")
