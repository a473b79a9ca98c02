from __future__ import annotations

import os
import tempfile

# Settings and the engine are read at import time; pin the test environment first.
_TEST_DB_PATH = os.path.join(tempfile.gettempdir(), f"marketcms-tests-{os.getpid()}.sqlite3")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DB_PATH}"
os.environ["CSRF_COOKIE_SECURE"] = "false"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["JWT_SECRET"] = "test-jwt-secret"

import httpx  # noqa: E402
import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from marketcms.apps.api import rate_limit  # noqa: E402
from marketcms.apps.api.main import create_app  # noqa: E402
from marketcms.core.config import get_settings  # noqa: E402
from marketcms.domain.models import Base  # noqa: E402
from marketcms.persistence.db import engine  # noqa: E402
from marketcms.services import audit as audit_module  # noqa: E402
from marketcms.services import cache as cache_module  # noqa: E402
from marketcms.services.auth.tokens import reset_token_minter_state  # noqa: E402
from marketcms.services.cdn import ImageCDN, set_image_cdn  # noqa: E402
from marketcms.tests.utils.fake_redis import FakeRedis  # noqa: E402


CDN_DELIVERY_URL = "https://imagedelivery.net/test-hash"


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch) -> FakeRedis:
    # Every test gets an empty in-memory store behind the shared cache.
    get_settings.cache_clear()
    fake = FakeRedis()
    cache_module.reset_cache_state()
    monkeypatch.setattr(cache_module, "_cache", cache_module.Cache(redis=fake))
    rate_limit.reset_rate_limiter_state()
    reset_token_minter_state()
    audit_module.reset_audit_sink_state()
    set_image_cdn(None)
    yield fake
    rate_limit.reset_rate_limiter_state()
    audit_module.reset_audit_sink_state()
    set_image_cdn(None)


@pytest.fixture
async def database():
    # Rebuild the schema per test so rows never leak between cases.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    # Dispose so pooled connections never outlive the per-test event loop.
    await engine.dispose()


@pytest.fixture
async def audit_sink(database):
    # ASGITransport skips the lifespan, so the drainer is driven here.
    sink = audit_module.get_audit_sink()
    sink.start()
    yield sink
    await sink.stop()


class CDNRecorder:
    """Collects requests sent to the mocked Cloudflare Images API."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.fail_uploads = False
        self._counter = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "POST":
            if self.fail_uploads:
                return httpx.Response(500, json={"success": False, "errors": [{"message": "boom"}]})
            self._counter += 1
            return httpx.Response(200, json={"success": True, "result": {"id": f"img-{self._counter}"}})
        if request.method == "DELETE":
            return httpx.Response(200, json={"success": True, "result": {}})
        return httpx.Response(404, json={"success": False})

    def deleted_ids(self) -> list[str]:
        return [request.url.path.rsplit("/", 1)[-1] for request in self.requests if request.method == "DELETE"]


@pytest.fixture
def cdn() -> CDNRecorder:
    recorder = CDNRecorder()
    client = httpx.AsyncClient(transport=httpx.MockTransport(recorder.handler))
    set_image_cdn(
        ImageCDN(
            client=client,
            account_id="test-account",
            api_token="test-token",
            delivery_url=CDN_DELIVERY_URL,
            api_base_url="https://api.cloudflare.test/client/v4",
        )
    )
    return recorder


@pytest.fixture
async def client(audit_sink):
    app = create_app()
    # base_url keeps cookies scoped so the CSRF cookie round-trips.
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as http_client:
        yield http_client
