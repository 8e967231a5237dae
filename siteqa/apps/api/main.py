from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from siteqa.apps.api.errors import (
    http_exception_handler,
    siteqa_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from siteqa.apps.api.routes.activities import router as activities_router
from siteqa.apps.api.routes.auth import router as auth_router
from siteqa.apps.api.routes.billing import router as billing_router
from siteqa.apps.api.routes.comments import router as comments_router
from siteqa.apps.api.routes.health import router as health_router
from siteqa.apps.api.routes.notifications import router as notifications_router
from siteqa.apps.api.routes.reports import router as reports_router
from siteqa.apps.api.routes.sites import router as sites_router
from siteqa.apps.api.routes.stats import router as stats_router
from siteqa.apps.api.routes.teams import router as teams_router
from siteqa.core.config import get_settings
from siteqa.core.errors import SiteQAError
from siteqa.core.logging import configure_logging
from siteqa.services.presence import drain_background_tasks, schedule_last_active_touch


logger = logging.getLogger(__name__)

API_PREFIX = "/api"


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Let in-flight last-active touches finish before the engine goes away.
    await drain_background_tasks()


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(title="SiteQA API", lifespan=lifespan)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        # Successful authenticated calls refresh the user's last-active time.
        user_id = getattr(request.state, "user_id", None)
        if settings.last_active_touch_enabled and user_id and response.status_code < 400:
            schedule_last_active_touch(user_id)
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(SiteQAError)
    async def _siteqa_exception_handler(request: Request, exc: SiteQAError):
        return await siteqa_exception_handler(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    app.include_router(health_router, prefix=API_PREFIX)
    app.include_router(auth_router, prefix=API_PREFIX)
    app.include_router(reports_router, prefix=API_PREFIX)
    app.include_router(comments_router, prefix=API_PREFIX)
    app.include_router(sites_router, prefix=API_PREFIX)
    app.include_router(teams_router, prefix=API_PREFIX)
    # Feeds for the signed-in user.
    app.include_router(activities_router, prefix=API_PREFIX)
    app.include_router(notifications_router, prefix=API_PREFIX)
    app.include_router(stats_router, prefix=API_PREFIX)
    app.include_router(billing_router, prefix=API_PREFIX)
    return app


app = create_app()
