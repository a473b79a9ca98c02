from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import time
from uuid import uuid4

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from marketcms.apps.api.errors import (
    core_error_handler,
    http_exception_handler,
    starlette_http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from marketcms.apps.api.rate_limit import api_rate_limit
from marketcms.apps.api.response import API_PREFIX
from marketcms.apps.api.routes.audit_logs import router as audit_logs_router
from marketcms.apps.api.routes.auth import router as auth_router
from marketcms.apps.api.routes.authors import router as authors_router
from marketcms.apps.api.routes.categories import router as categories_router
from marketcms.apps.api.routes.csrf import router as csrf_router
from marketcms.apps.api.routes.dashboard import router as dashboard_router
from marketcms.apps.api.routes.forms import router as forms_router
from marketcms.apps.api.routes.health import router as health_router
from marketcms.apps.api.routes.posts import blogs_router, press_releases_router
from marketcms.apps.api.routes.report_images import router as report_images_router
from marketcms.apps.api.routes.reports import router as reports_router
from marketcms.apps.api.routes.reports import search_router as report_search_router
from marketcms.apps.api.routes.roles import router as roles_router
from marketcms.apps.api.routes.users import router as users_router
from marketcms.core.config import get_settings
from marketcms.core.errors import MarketCMSError
from marketcms.core.logging import configure_logging
from marketcms.services.audit import get_audit_sink
from marketcms.workers.scheduler import PublishScheduler


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    sink = get_audit_sink()
    sink.start()
    scheduler: PublishScheduler | None = None
    if settings.scheduler_enabled:
        scheduler = PublishScheduler(interval_s=settings.scheduler_interval_s)
        scheduler.start()
    logger.info("api_started environment=%s scheduler=%s", settings.environment, scheduler is not None)
    try:
        yield
    finally:
        if scheduler is not None:
            await scheduler.stop()
        # Drain queued audit records before the process exits.
        await sink.stop()
        logger.info("api_stopped")


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials="*" not in settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-Id", "X-CSRF-Token", "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
    )

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        response.headers.setdefault("X-Request-Id", request_id)
        logger.info(
            "request_completed method=%s path=%s status=%s latency_ms=%.1f request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
            request_id,
        )
        return response

    @app.exception_handler(MarketCMSError)
    async def _core_error_handler(request: Request, exc: MarketCMSError):
        return await core_error_handler(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    app.include_router(health_router)
    app.include_router(health_router, prefix=API_PREFIX, include_in_schema=False)

    # Auth routes carry their own limits so login is counted once.
    app.include_router(auth_router, prefix=API_PREFIX)

    limited = [Depends(api_rate_limit)]
    app.include_router(csrf_router, prefix=API_PREFIX, dependencies=limited)
    app.include_router(users_router, prefix=API_PREFIX, dependencies=limited)
    app.include_router(roles_router, prefix=API_PREFIX, dependencies=limited)
    app.include_router(report_search_router, prefix=API_PREFIX, dependencies=limited)
    app.include_router(reports_router, prefix=API_PREFIX, dependencies=limited)
    app.include_router(report_images_router, prefix=API_PREFIX, dependencies=limited)
    app.include_router(blogs_router, prefix=API_PREFIX, dependencies=limited)
    app.include_router(press_releases_router, prefix=API_PREFIX, dependencies=limited)
    app.include_router(categories_router, prefix=API_PREFIX, dependencies=limited)
    app.include_router(authors_router, prefix=API_PREFIX, dependencies=limited)
    app.include_router(forms_router, prefix=API_PREFIX, dependencies=limited)
    app.include_router(audit_logs_router, prefix=API_PREFIX, dependencies=limited)
    app.include_router(dashboard_router, prefix=API_PREFIX, dependencies=limited)

    return app


app = create_app()
