from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from typing import Any

import httpx

from marketcms.core.config import get_settings
from marketcms.core.errors import UpstreamError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadedImage:
    image_id: str
    url: str


class ImageCDN:
    """Thin client for the Cloudflare Images API."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        account_id: str | None = None,
        api_token: str | None = None,
        delivery_url: str | None = None,
        api_base_url: str | None = None,
    ) -> None:
        settings = get_settings()
        self._client = client
        self._timeout_s = settings.cdn_timeout_s
        self._account_id = account_id if account_id is not None else settings.cloudflare_account_id
        self._api_token = api_token if api_token is not None else settings.cloudflare_images_api_token
        self._delivery_url = (
            delivery_url if delivery_url is not None else settings.cloudflare_delivery_url
        ).rstrip("/")
        self._api_base_url = (
            api_base_url if api_base_url is not None else settings.cloudflare_api_base_url
        ).rstrip("/")

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        # Reuse a single client for connection pooling.
        self._client = httpx.AsyncClient(timeout=self._timeout_s)
        return self._client

    @property
    def _images_url(self) -> str:
        return f"{self._api_base_url}/accounts/{self._account_id}/images/v1"

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_token}"}

    def public_url(self, image_id: str) -> str:
        return f"{self._delivery_url}/{image_id}/public"

    def extract_image_id(self, url: str) -> str | None:
        # Delivery URLs look like {delivery}/{image_id}/{variant}.
        if not url or not self._delivery_url or not url.startswith(self._delivery_url):
            return None
        remainder = url[len(self._delivery_url):].strip("/")
        image_id = remainder.split("/", 1)[0]
        return image_id or None

    async def upload(
        self,
        *,
        content: bytes,
        filename: str,
        content_type: str,
        metadata: dict[str, Any],
    ) -> UploadedImage:
        if not self._account_id or not self._api_token:
            raise UpstreamError("Image CDN is not configured")
        client = self._get_client()
        try:
            response = await client.post(
                self._images_url,
                headers=self._headers(),
                files={"file": (filename, content, content_type)},
                data={"metadata": json.dumps(metadata)},
            )
        except httpx.HTTPError as exc:
            logger.warning("cdn_upload_failed error=%s", exc)
            raise UpstreamError("Failed to upload image") from exc
        body = _json_body(response)
        if response.status_code >= 400 or not body.get("success"):
            logger.warning(
                "cdn_upload_rejected status=%s errors=%s",
                response.status_code,
                body.get("errors"),
            )
            raise UpstreamError("Failed to upload image")
        image_id = str((body.get("result") or {}).get("id") or "")
        if not image_id:
            raise UpstreamError("Image CDN response missing image id")
        return UploadedImage(image_id=image_id, url=self.public_url(image_id))

    async def delete(self, image_id: str) -> None:
        client = self._get_client()
        try:
            response = await client.delete(f"{self._images_url}/{image_id}", headers=self._headers())
        except httpx.HTTPError as exc:
            logger.warning("cdn_delete_failed image_id=%s error=%s", image_id, exc)
            raise UpstreamError("Failed to delete image") from exc
        body = _json_body(response)
        if response.status_code >= 400 or not body.get("success"):
            logger.warning("cdn_delete_rejected image_id=%s status=%s", image_id, response.status_code)
            raise UpstreamError("Failed to delete image")

    async def delete_by_url(self, url: str) -> bool:
        """Best-effort purge; returns whether the CDN acknowledged the delete."""
        image_id = self.extract_image_id(url)
        if image_id is None:
            logger.info("cdn_delete_skipped reason=foreign_url url=%s", url)
            return False
        try:
            await self.delete(image_id)
        except UpstreamError:
            return False
        return True


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


_cdn: ImageCDN | None = None


def get_image_cdn() -> ImageCDN:
    global _cdn
    if _cdn is None:
        _cdn = ImageCDN()
    return _cdn


def set_image_cdn(cdn: ImageCDN | None) -> None:
    # Swap the process-wide client, e.g. for a mock transport in tests.
    global _cdn
    _cdn = cdn
