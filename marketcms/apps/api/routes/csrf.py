from __future__ import annotations

from fastapi import APIRouter, Response

from marketcms.apps.api.csrf import get_csrf_guard
from marketcms.apps.api.response import success_response


router = APIRouter(tags=["csrf"])


@router.get("/csrf-token")
async def issue_csrf_token(response: Response) -> dict:
    # The same token goes in the cookie, the response header and the body.
    guard = get_csrf_guard()
    token = await guard.issue()
    guard.attach(response, token)
    return success_response({"csrf_token": token})
