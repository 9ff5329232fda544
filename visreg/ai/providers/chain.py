"""Ordered fallback across vision diff providers, and the provider factory."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from visreg.ai.providers.base import VisionDiffProvider
from visreg.ai.providers.claude import AnthropicVisionProvider
from visreg.ai.providers.openai_compat import OpenAICompatibleVisionProvider
from visreg.diff.imaging import ImagePayload
from visreg.errors import ProviderError
from visreg.models.config import Settings
from visreg.models.diff import AIDiffResult, DiffContext

logger = logging.getLogger(__name__)

PROVIDER_NAMES = ("openai", "groq", "openai_router", "anthropic")


class ProviderChain:
    """Tries each provider in order; the first successful answer wins.

    ``compare`` returns None when every provider fails, meaning "no AI result".
    """

    def __init__(self, providers: Sequence[VisionDiffProvider]):
        self.providers = list(providers)

    @property
    def names(self) -> list[str]:
        return [p.name for p in self.providers]

    async def compare(
        self,
        baseline: ImagePayload,
        current: ImagePayload,
        context: Optional[DiffContext] = None,
    ) -> Optional[AIDiffResult]:
        for provider in self.providers:
            try:
                return await provider.compare(baseline, current, context)
            except ProviderError as e:
                logger.warning("AI provider %s failed, trying next: %s", provider.name, e)
            except Exception as e:
                logger.warning(
                    "AI provider %s raised %s, trying next: %s",
                    provider.name, type(e).__name__, e,
                )
        if self.providers:
            logger.warning("All AI providers failed (%s)", ", ".join(self.names))
        return None


def build_provider(name: str, settings: Settings) -> VisionDiffProvider:
    """Create a single provider from settings."""
    timeout = settings.ai_request_timeout_seconds
    if name == "openai":
        return OpenAICompatibleVisionProvider(
            name="openai",
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            max_tokens=settings.openai_max_tokens,
            timeout_seconds=timeout,
        )
    if name == "groq":
        return OpenAICompatibleVisionProvider(
            name="groq",
            api_key=settings.groq_api_key,
            model=settings.groq_model,
            base_url=settings.groq_base_url,
            max_tokens=settings.groq_max_tokens,
            timeout_seconds=timeout,
        )
    if name == "openai_router":
        return OpenAICompatibleVisionProvider(
            name="openai_router",
            api_key=settings.openai_router_api_key,
            model=settings.openai_router_model,
            base_url=settings.openai_router_base_url,
            max_tokens=settings.openai_router_max_tokens,
            timeout_seconds=timeout,
            json_mode=False,
        )
    if name == "anthropic":
        return AnthropicVisionProvider(
            api_key=settings.anthropic_api_key,
            model=settings.anthropic_model,
            max_tokens=settings.anthropic_max_tokens,
            timeout_seconds=timeout,
        )
    raise ValueError(f"Unknown AI provider: {name!r} (expected one of {', '.join(PROVIDER_NAMES)})")


def build_chain(provider: str, settings: Settings) -> ProviderChain:
    """Chain for a configured provider name; "hybrid" expands to the configured order."""
    names = settings.provider_chain if provider == "hybrid" else [provider]
    return ProviderChain([build_provider(n, settings) for n in names])
