"""Request and response bodies for the HTTP API (camelCase on the wire)."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import Field

from visreg.models.config import CamelModel, DynamicContentConfig, MaskConfig, Region, ViewportConfig
from visreg.models.project import ProjectConfig
from visreg.models.test_run import Priority


class ProjectCreate(CamelModel):
    name: str = Field(min_length=1)
    base_url: str
    config: ProjectConfig = Field(default_factory=ProjectConfig)


class BaselineCreate(CamelModel):
    project_id: str
    name: str = Field(min_length=1)
    image: str
    url: str
    viewport: ViewportConfig = Field(default_factory=ViewportConfig)
    dom_snapshot: Optional[str] = None
    mask_config: Optional[MaskConfig] = None
    tags: list[str] = Field(default_factory=list)


class RunTestRequest(CamelModel):
    project_id: str
    baseline_id: Optional[str] = None
    url: str
    viewport: ViewportConfig = Field(default_factory=ViewportConfig)
    priority: Priority = Priority.NORMAL
    wait_conditions: list[str] = Field(default_factory=list)
    dynamic_content: Optional[DynamicContentConfig] = None


class RunTestResponse(CamelModel):
    test_id: str
    status: str
    priority: Priority
    queue_position: Optional[int] = None


class PixelCompareRequest(CamelModel):
    project_id: str
    baseline_id: str
    current_image: Optional[str] = None
    url: Optional[str] = None
    viewport: Optional[ViewportConfig] = None
    wait_time: Optional[int] = Field(default=None, gt=0)
    threshold: float = Field(default=0.1, ge=0, le=100)
    mask_regions: list[Region] = Field(default_factory=list)


class QuickCompareRequest(CamelModel):
    baseline_image: str
    current_image: str
    threshold: float = Field(default=0.1, ge=0, le=100)
    mask_regions: list[Region] = Field(default_factory=list)


class BaselineRef(CamelModel):
    id: str
    name: str
    version: int


class PixelCompareMetadata(CamelModel):
    processing_time_ms: int
    threshold: float
    method: str = "pixel-only"
    resized: bool = False
    file_paths: dict[str, str] = Field(default_factory=dict)


class PixelCompareResponse(CamelModel):
    id: str
    method: str = "pixel"
    is_different: bool
    similarity_score: float
    confidence: float
    mismatch_percentage: float
    diff_pixels: int
    total_pixels: int
    diff_image: str
    baseline: Optional[BaselineRef] = None
    metadata: PixelCompareMetadata


class HealthResponse(CamelModel):
    status: str
    timestamp: datetime
    version: str
    ai_provider: str
    providers: dict[str, bool]
    browser_running: bool
