from __future__ import annotations

from typing import Any, Callable

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from marketcms.apps.api.deps import Principal, get_db, require_roles
from marketcms.apps.api.response import success_response
from marketcms.core.clock import parse_datetime
from marketcms.services.authz import ROLE_ADMIN, ROLE_EDITOR
from marketcms.services.workflow import TRANSITIONS, WorkflowEngine


class ScheduleRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    publish_date: str = Field(alias="publishDate")


_ACTION_MESSAGES = {
    "submit_review": "submitted for review",
    "approve": "approved and published",
    "publish": "published",
    "reject": "rejected and returned to draft",
    "unpublish": "unpublished",
}


def add_workflow_routes(
    router: APIRouter,
    *,
    label: str,
    engine_factory: Callable[[], WorkflowEngine],
    serialize: Callable[[Any], dict[str, Any]],
) -> None:
    """Register the lifecycle actions shared by every publishable kind.

    Each action answers to both PATCH and POST on ``/{content_id}/<action>``.
    """
    editor = require_roles(ROLE_ADMIN, ROLE_EDITOR)
    methods = ["PATCH", "POST"]

    def _transition(action: str):
        async def endpoint(
            content_id: int,
            request: Request,
            principal: Principal = Depends(editor),
            db: AsyncSession = Depends(get_db),
        ) -> dict:
            row = await engine_factory().apply_transition(
                db, content_id, action, actor=principal.audit_actor(), request=request
            )
            return success_response(serialize(row), message=f"{label} {_ACTION_MESSAGES[action]} successfully")

        endpoint.__name__ = f"{action}_{label.lower().replace(' ', '_')}"
        return endpoint

    for action in TRANSITIONS:
        router.add_api_route(
            f"/{{content_id}}/{action.replace('_', '-')}",
            _transition(action),
            methods=methods,
        )

    async def soft_delete(
        content_id: int,
        request: Request,
        principal: Principal = Depends(editor),
        db: AsyncSession = Depends(get_db),
    ) -> dict:
        row = await engine_factory().soft_delete(db, content_id, actor=principal.audit_actor(), request=request)
        return success_response(serialize(row), message=f"{label} soft deleted successfully")

    async def restore(
        content_id: int,
        request: Request,
        principal: Principal = Depends(editor),
        db: AsyncSession = Depends(get_db),
    ) -> dict:
        row = await engine_factory().restore(db, content_id, actor=principal.audit_actor(), request=request)
        return success_response(serialize(row), message=f"{label} restored successfully")

    async def schedule(
        content_id: int,
        body: ScheduleRequest,
        request: Request,
        principal: Principal = Depends(editor),
        db: AsyncSession = Depends(get_db),
    ) -> dict:
        publish_at = parse_datetime(body.publish_date)
        row = await engine_factory().schedule(
            db, content_id, publish_at, actor=principal.audit_actor(), request=request
        )
        return success_response(serialize(row), message=f"{label} scheduled for publishing")

    async def cancel_schedule(
        content_id: int,
        request: Request,
        principal: Principal = Depends(editor),
        db: AsyncSession = Depends(get_db),
    ) -> dict:
        row = await engine_factory().cancel_schedule(db, content_id, actor=principal.audit_actor(), request=request)
        return success_response(serialize(row), message=f"{label} schedule cancelled")

    router.add_api_route("/{content_id}/soft-delete", soft_delete, methods=methods)
    router.add_api_route("/{content_id}/restore", restore, methods=methods)
    router.add_api_route("/{content_id}/schedule", schedule, methods=methods)
    router.add_api_route("/{content_id}/cancel-schedule", cancel_schedule, methods=methods)
