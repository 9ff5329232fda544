"""FastAPI dependency providers."""

from __future__ import annotations

from fastapi import Request

from visreg.models.config import Settings
from visreg.orchestrator import Platform


def get_platform(request: Request) -> Platform:
    return request.app.state.platform


def get_settings(request: Request) -> Settings:
    return request.app.state.platform.settings
