"""FastAPI application factory."""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, FastAPI, Request, status
from fastapi.responses import JSONResponse

from visreg.api.routes import baselines, health, pixel, projects, tests
from visreg.errors import CaptureError, ImageError, NotFoundError, PayloadTooLargeError, VisregError
from visreg.models.config import Settings, get_settings
from visreg.orchestrator import Platform

logger = logging.getLogger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"status": "error", "message": message})


def create_app(platform: Optional[Platform] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Build the API around ``platform`` (created from settings when omitted)."""
    settings = settings or (platform.settings if platform else get_settings())
    platform = platform or Platform(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await platform.start()
        try:
            yield
        finally:
            await platform.stop()

    app = FastAPI(
        title="visreg",
        description="Visual regression testing engine",
        version=health.VERSION,
        openapi_url=f"{settings.api_prefix}/openapi.json",
        docs_url=f"{settings.api_prefix}/docs",
        lifespan=lifespan,
    )
    app.state.platform = platform

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.monotonic()
        response = await call_next(request)
        logger.info("%s %s -> %d (%.0fms)", request.method, request.url.path,
                    response.status_code, (time.monotonic() - start) * 1000)
        return response

    @app.exception_handler(NotFoundError)
    async def not_found(request: Request, exc: NotFoundError):
        return _error(status.HTTP_404_NOT_FOUND, str(exc))

    @app.exception_handler(PayloadTooLargeError)
    async def too_large(request: Request, exc: PayloadTooLargeError):
        return _error(status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, str(exc))

    @app.exception_handler(ImageError)
    async def bad_image(request: Request, exc: ImageError):
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))

    @app.exception_handler(CaptureError)
    async def capture_failed(request: Request, exc: CaptureError):
        return _error(status.HTTP_502_BAD_GATEWAY, str(exc))

    @app.exception_handler(VisregError)
    async def engine_error(request: Request, exc: VisregError):
        logger.error("Unhandled engine error on %s: %s", request.url.path, exc)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))

    @app.exception_handler(Exception)
    async def unexpected(request: Request, exc: Exception):
        logger.exception("Unexpected error on %s", request.url.path)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")

    api = APIRouter(prefix=settings.api_prefix)
    for module in (health, projects, baselines, tests, pixel):
        api.include_router(module.router)
    app.include_router(api)
    return app
