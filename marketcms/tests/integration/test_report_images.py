from __future__ import annotations

import pytest

from marketcms.tests.utils.auth import create_user_with_headers
from marketcms.tests.utils.content import create_category, report_payload


CDN_DELIVERY_URL = "https://imagedelivery.net/test-hash"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


async def _report_id(client, headers) -> int:
    category = await create_category()
    response = await client.post("/api/v1/reports", json=report_payload(category.id), headers=headers)
    return response.json()["data"]["id"]


async def _upload(client, headers, report_id: int, *, content_type: str = "image/png", title: str = "Market share"):
    return await client.post(
        f"/api/v1/reports/{report_id}/images",
        files={"image": ("share.png", PNG_BYTES, content_type)},
        data={"title": title},
        headers=headers,
    )


@pytest.mark.asyncio
async def test_upload_list_update_and_soft_delete(client, cdn) -> None:
    editor, headers = await create_user_with_headers("editor")
    report_id = await _report_id(client, headers)

    uploaded = await _upload(client, headers, report_id)
    assert uploaded.status_code == 201, uploaded.text
    assert uploaded.json()["message"] == "Image uploaded successfully"
    image = uploaded.json()["data"]
    assert image["image_url"] == f"{CDN_DELIVERY_URL}/img-1/public"
    assert image["uploaded_by"] == editor.id
    assert image["title"] == "Market share"

    patched = await client.patch(f"/api/v1/images/{image['id']}", json={"title": "Share by region"}, headers=headers)
    assert patched.json()["data"]["title"] == "Share by region"

    deleted = await client.delete(f"/api/v1/images/{image['id']}", headers=headers)
    assert deleted.json()["message"] == "Image deleted successfully"
    # Soft delete keeps the CDN asset.
    assert cdn.deleted_ids() == []

    active = await client.get(f"/api/v1/reports/{report_id}/images", headers=headers)
    assert active.json()["data"] == []
    everything = await client.get(f"/api/v1/reports/{report_id}/images?active_only=false", headers=headers)
    assert [item["is_active"] for item in everything.json()["data"]] == [False]


@pytest.mark.asyncio
async def test_upload_rejects_bad_type_and_missing_report(client, cdn) -> None:
    _, headers = await create_user_with_headers("editor")
    report_id = await _report_id(client, headers)

    wrong_type = await _upload(client, headers, report_id, content_type="application/pdf")
    assert wrong_type.status_code == 400
    assert wrong_type.json()["error"] == "Invalid file type. Only JPEG, PNG, GIF, and WebP images are allowed"

    missing = await _upload(client, headers, 9999)
    assert missing.status_code == 404
    assert cdn.requests == []


@pytest.mark.asyncio
async def test_cdn_failure_maps_to_bad_gateway(client, cdn) -> None:
    _, headers = await create_user_with_headers("editor")
    report_id = await _report_id(client, headers)
    cdn.fail_uploads = True

    response = await _upload(client, headers, report_id)
    assert response.status_code == 502
    assert response.json() == {"success": False, "error": "Image service unavailable"}
    listed = await client.get(f"/api/v1/reports/{report_id}/images?active_only=false", headers=headers)
    assert listed.json()["data"] == []


@pytest.mark.asyncio
async def test_viewers_cannot_upload_and_anonymous_cannot_read(client, cdn) -> None:
    _, editor_headers = await create_user_with_headers("editor")
    _, viewer_headers = await create_user_with_headers("viewer")
    report_id = await _report_id(client, editor_headers)

    assert (await _upload(client, viewer_headers, report_id)).status_code == 403
    assert (await client.get(f"/api/v1/reports/{report_id}/images")).status_code == 401
    assert (await client.get(f"/api/v1/reports/{report_id}/images", headers=viewer_headers)).status_code == 200


@pytest.mark.asyncio
async def test_hard_deleting_report_purges_cdn_assets(client, cdn) -> None:
    _, editor_headers = await create_user_with_headers("editor")
    _, admin_headers = await create_user_with_headers("admin")
    report_id = await _report_id(client, editor_headers)
    await _upload(client, editor_headers, report_id)
    await _upload(client, editor_headers, report_id, title="Pipeline")

    response = await client.delete(f"/api/v1/reports/{report_id}", headers=admin_headers)
    assert response.status_code == 200
    assert sorted(cdn.deleted_ids()) == ["img-1", "img-2"]
