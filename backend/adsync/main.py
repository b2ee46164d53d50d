"""FastAPI application entrypoint.

Configures CORS, exception rendering, routers, and exposes a healthcheck
endpoint. `create_app(settings)` is the only place configuration enters
the service; everything downstream reads it from `app.state`.
"""

import logging
import time
from typing import Callable, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response as StarletteResponse

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from . import schemas
from .config import Settings, get_settings
from .database import build_engine, build_session_factory
from .errors import AdSyncError
from .models import Base
from .routers import alerts as alerts_router
from .routers import oauth as oauth_router
from .routers import sync as sync_router
from .routers import webhooks as webhooks_router
from .services.platforms import build_adapters
from .telemetry import capture_exception, init_sentry

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}


class IntegrationCORSMiddleware(BaseHTTPMiddleware):
    """Answer preflights directly and stamp CORS headers on every response.

    Browser callers (the integration UI) hit these endpoints from another
    origin without credentials, so a wildcard origin is sufficient.
    """

    async def dispatch(self, request, call_next):
        if request.method == "OPTIONS":
            return StarletteResponse(status_code=200, headers=CORS_HEADERS)

        response = await call_next(request)
        for key, value in CORS_HEADERS.items():
            response.headers[key] = value
        return response


def _validation_message(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()) if item != "body")
        parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "Invalid request: " + "; ".join(parts)


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    http_client_factory: Optional[Callable[[], httpx.Client]] = None,
    adapter_factory: Optional[Callable] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> FastAPI:
    """Build the FastAPI app.

    Args:
        settings:            Explicit settings; defaults to the cached env settings.
        session_factory:     SQLAlchemy sessionmaker; defaults to one built from DATABASE_URL.
        http_client_factory: Builds the per-request outbound httpx.Client.
        adapter_factory:     (settings, http_client) -> {PlatformEnum: PlatformAdapter}.
        sleep:               Backoff sleep used by the retry helper.
    """
    settings = settings or get_settings()
    init_sentry(settings)

    app = FastAPI(
        title="adsync",
        description="Integration sync and OAuth credential lifecycle for marketing platforms",
        version="1.0.0",
    )

    if session_factory is None:
        engine = build_engine(settings.DATABASE_URL)
        session_factory = build_session_factory(engine)

    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.http_client_factory = http_client_factory or (
        lambda: httpx.Client(timeout=settings.HTTP_TIMEOUT_SECONDS)
    )
    app.state.adapter_factory = adapter_factory or build_adapters
    app.state.sleep = sleep
    app.state.cipher = None

    app.add_middleware(IntegrationCORSMiddleware)

    @app.exception_handler(AdSyncError)
    async def adsync_error_handler(request: Request, exc: AdSyncError):
        logger.error("[API] %s %s failed: %s: %s", request.method, request.url.path, type(exc).__name__, exc.message)
        capture_exception(exc, extra={"path": request.url.path, "platform": exc.platform})
        return JSONResponse(status_code=500, content=schemas.error_body(exc.message))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        message = _validation_message(exc)
        logger.warning("[API] %s %s rejected: %s", request.method, request.url.path, message)
        return JSONResponse(status_code=500, content=schemas.error_body(message))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("[API] Unhandled error on %s %s", request.method, request.url.path)
        capture_exception(exc, extra={"path": request.url.path})
        return JSONResponse(
            status_code=500,
            content=schemas.error_body(str(exc) or "Internal server error"),
            headers=CORS_HEADERS,
        )

    app.include_router(oauth_router.router)
    app.include_router(sync_router.router)
    app.include_router(webhooks_router.router)
    app.include_router(alerts_router.router)

    @app.get(
        "/health",
        response_model=schemas.HealthResponse,
        tags=["Health"],
        summary="Health check",
    )
    def health():
        return schemas.HealthResponse(status="ok")

    @app.on_event("startup")
    def create_tables():
        bind = app.state.session_factory.kw.get("bind")
        if bind is not None:
            Base.metadata.create_all(bind=bind)
            logger.info("[API] Database schema ensured")

    return app


app = create_app()
