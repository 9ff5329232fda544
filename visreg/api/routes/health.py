from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from visreg.ai.providers.chain import PROVIDER_NAMES, build_provider
from visreg.api.dependencies import get_platform
from visreg.api.schemas import HealthResponse
from visreg.orchestrator import Platform

router = APIRouter(tags=["health"])

VERSION = "0.1.0"


@router.get("/health", response_model=HealthResponse)
async def health_check(platform: Platform = Depends(get_platform)):
    """Liveness plus which AI providers have credentials."""
    settings = platform.settings
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        version=VERSION,
        ai_provider=settings.ai_provider,
        providers={name: build_provider(name, settings).is_configured for name in PROVIDER_NAMES},
        browser_running=platform.browser.is_running,
    )
