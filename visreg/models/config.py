"""Configuration models for the visual regression engine."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

AIProviderName = Literal["openai", "groq", "openai_router", "anthropic", "hybrid"]

MAX_IMAGE_BYTES = 20 * 1024 * 1024


class CamelModel(BaseModel):
    """Base model that speaks camelCase on the wire and snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ViewportConfig(CamelModel):
    width: int = Field(default=1920, gt=0)
    height: int = Field(default=1080, gt=0)


class Region(CamelModel):
    """Axis-aligned pixel rectangle; x/y inclusive, right/bottom edges exclusive."""

    x: int
    y: int
    width: int = Field(ge=0)
    height: int = Field(ge=0)

    def contains(self, px: int, py: int) -> bool:
        return self.x <= px < self.x + self.width and self.y <= py < self.y + self.height


MaskRegion = Region


class DynamicContentConfig(CamelModel):
    disable_animations: bool = False
    block_ads: bool = False
    scroll_to_trigger_lazy_load: bool = False
    multiple_screenshots: bool = False
    stability_check: bool = False
    mask_selectors: list[str] = Field(default_factory=list)


class MaskConfig(CamelModel):
    """Per-baseline redaction and normalization settings."""

    ignore_css_selectors: list[str] = Field(default_factory=list)
    ignore_regions: list[MaskRegion] = Field(default_factory=list)
    disable_animations: bool = False
    block_ads: bool = False
    scroll_to_trigger_lazy_load: bool = False
    stability_check: bool = False
    wait_time_ms: Optional[int] = None


class Settings(BaseSettings):
    """Environment-driven settings. Every field maps to an upper-case env var."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 3000
    api_prefix: str = "/api/v1"
    log_level: str = "INFO"

    # Storage
    data_dir: str = "./.visreg"
    save_to_filesystem: bool = False
    screenshots_dir: str = "./screenshots"
    screenshot_retention_days: int = 7

    # Queue
    default_diff_threshold: float = 95
    max_retries: int = 3
    queue_concurrency: int = Field(default=5, ge=1)
    queue_tick_seconds: float = 1.0
    job_timeout_seconds: float = 300

    # Browser
    playwright_headless: bool = True
    playwright_timeout_ms: int = 30000
    max_image_bytes: int = MAX_IMAGE_BYTES

    # AI selection
    ai_provider: AIProviderName = "openai"
    hybrid_provider_chain: str = "groq,openai_router,openai"
    force_ai: bool = False
    pixel_mismatch_percentage: float = 5
    ai_threshold: float = 70
    ai_request_timeout_seconds: float = 60

    # OpenAI
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o"
    openai_max_tokens: int = 1000

    # Groq (OpenAI-compatible endpoint)
    groq_api_key: Optional[str] = None
    groq_base_url: str = "https://api.groq.com/openai/v1"
    groq_model: str = "llama-3.2-11b-vision-preview"
    groq_max_tokens: int = 1000
    groq_explanation_model: str = "llama3-70b-8192"

    # OpenRouter
    openai_router_api_key: Optional[str] = None
    openai_router_base_url: str = "https://openrouter.ai/api/v1"
    openai_router_model: str = "anthropic/claude-3.5-sonnet"
    openai_router_max_tokens: int = 1000

    # Anthropic
    anthropic_api_key: Optional[str] = None
    anthropic_model: str = "claude-sonnet-4-20250514"
    anthropic_max_tokens: int = 1000

    # Dynamic content defaults
    disable_animations: bool = False
    block_ads: bool = False
    scroll_to_trigger_lazy_load: bool = False
    multiple_screenshots_count: int = Field(default=1, ge=1)
    multiple_screenshots_interval_ms: int = 1000
    stability_check_timeout_ms: int = 5000
    network_idle_timeout_ms: int = 2000

    @property
    def provider_chain(self) -> list[str]:
        """Provider names tried in order when ai_provider is "hybrid"."""
        return [p.strip() for p in self.hybrid_provider_chain.split(",") if p.strip()]

    def default_dynamic_content(self) -> DynamicContentConfig:
        return DynamicContentConfig(
            disable_animations=self.disable_animations,
            block_ads=self.block_ads,
            scroll_to_trigger_lazy_load=self.scroll_to_trigger_lazy_load,
            multiple_screenshots=self.multiple_screenshots_count > 1,
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()
