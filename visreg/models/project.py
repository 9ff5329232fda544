"""Project and baseline records."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from pydantic import Field

from visreg.models.config import CamelModel, MaskConfig, ViewportConfig


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProjectConfig(CamelModel):
    diff_threshold: float = Field(default=95, ge=0, le=100)
    ai_enabled: bool = True


class Project(CamelModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    base_url: str
    config: ProjectConfig = Field(default_factory=ProjectConfig)
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def deactivate(self) -> "Project":
        return self.model_copy(update={"is_active": False, "updated_at": utcnow()})


class BaselineMetadata(CamelModel):
    viewport: ViewportConfig = Field(default_factory=ViewportConfig)
    url: str
    timestamp: datetime = Field(default_factory=utcnow)


class Baseline(CamelModel):
    """Reference screenshot for a (project, name) pair. Never edited in place."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    project_id: str
    name: str
    image: str  # base64 PNG
    dom_snapshot: Optional[str] = None
    metadata: BaselineMetadata
    version: int = 1
    is_active: bool = True
    mask_config: Optional[MaskConfig] = None
    tags: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def deactivate(self) -> "Baseline":
        return self.model_copy(update={"is_active": False, "updated_at": utcnow()})
