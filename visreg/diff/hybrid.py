"""Hybrid diff: cheap pixel comparison first, AI vision only when it adds value.

The final verdict is fused in three tiers:

1. pixel mismatch above twice the pixel threshold is always "different";
2. pixel mismatch below the 0.1% noise floor is always "same";
3. otherwise a confident AI verdict wins, falling back to the pixel threshold.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Callable, Optional, Sequence

from pydantic import BaseModel, Field

from visreg.ai.explanation import ExplanationService
from visreg.ai.providers.chain import ProviderChain, build_chain
from visreg.diff.imaging import ImagePayload
from visreg.diff.pixel import PixelDiffEngine
from visreg.models.config import AIProviderName, Region, Settings
from visreg.models.diff import (
    AIAnalysis,
    AIDiffResult,
    Change,
    DiffContext,
    HybridDiffMetadata,
    HybridDiffResult,
    PixelAnalysis,
    PixelDiffResult,
)

logger = logging.getLogger(__name__)

NOISE_FLOOR_PERCENT = 0.1


class HybridOptions(BaseModel):
    pixel_threshold: float = Field(default=5, ge=0)
    ai_threshold: float = Field(default=70, ge=0, le=100)
    force_ai: bool = False
    ai_enabled: bool = True
    ai_provider: Optional[AIProviderName] = None
    context: Optional[DiffContext] = None
    mask_regions: list[Region] = Field(default_factory=list)
    # Per-pixel tolerance handed to the pixel engine
    pixel_diff_threshold: float = 0.01


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def pixel_confidence(mismatch: float, pixel_threshold: float) -> int:
    return 90 if mismatch > pixel_threshold else 95


def decide_final_result(
    pixel: PixelDiffResult, ai: AIDiffResult, pixel_threshold: float, ai_threshold: float
) -> bool:
    mismatch = pixel.mismatch_percentage
    if mismatch > pixel_threshold * 2:
        return True
    if mismatch < NOISE_FLOOR_PERCENT:
        return False
    if ai.confidence >= ai_threshold:
        return ai.is_different
    return mismatch > pixel_threshold


def calculate_combined_confidence(
    pixel: PixelDiffResult, ai: AIDiffResult, pixel_threshold: float
) -> int:
    if ai.confidence >= 80:
        return _round_half_up(ai.confidence * 0.8 + 20)
    pixel_conf = pixel_confidence(pixel.mismatch_percentage, pixel_threshold)
    return _round_half_up((pixel_conf + ai.confidence) / 2)


def generate_pixel_changes(pixel: PixelDiffResult) -> list[Change]:
    """Synthesize a single color change from pixel statistics."""
    if not pixel.is_different:
        return []
    mismatch = pixel.mismatch_percentage
    if mismatch > 10:
        severity = "high"
    elif mismatch > 2:
        severity = "medium"
    else:
        severity = "low"
    return [Change(
        type="color",
        description=f"{pixel.diff_pixels} pixels differ ({mismatch:.2f}%)",
        severity=severity,
    )]


class HybridDiffEngine:
    """Runs pixel diff, conditionally AI diff, and fuses both into one verdict."""

    def __init__(
        self,
        pixel_engine: PixelDiffEngine,
        settings: Settings,
        explanation_service: Optional[ExplanationService] = None,
        chain_builder: Optional[Callable[[str], ProviderChain]] = None,
    ):
        self.pixel_engine = pixel_engine
        self.settings = settings
        self.explanation_service = explanation_service
        self._chain_builder = chain_builder or (lambda name: build_chain(name, settings))
        self._chains: dict[str, ProviderChain] = {}

    def default_options(self, **overrides) -> HybridOptions:
        """Options populated from settings, with keyword overrides."""
        values = {
            "pixel_threshold": self.settings.pixel_mismatch_percentage,
            "ai_threshold": self.settings.ai_threshold,
            "force_ai": self.settings.force_ai,
            "ai_provider": self.settings.ai_provider,
        }
        values.update(overrides)
        return HybridOptions(**values)

    def _chain(self, provider: str) -> ProviderChain:
        if provider not in self._chains:
            self._chains[provider] = self._chain_builder(provider)
        return self._chains[provider]

    async def compare_images(
        self,
        baseline: ImagePayload,
        current: ImagePayload,
        options: Optional[HybridOptions] = None,
    ) -> HybridDiffResult:
        options = options or HybridOptions()
        provider_name = options.ai_provider or self.settings.ai_provider
        start = time.monotonic()

        pixel = await self.pixel_engine.compare_async(
            baseline, current, options.pixel_diff_threshold, options.mask_regions
        )

        needs_ai = options.ai_enabled and (
            options.force_ai or pixel.mismatch_percentage > options.pixel_threshold
        )
        ai: Optional[AIDiffResult] = None
        if needs_ai:
            logger.info(
                "Running AI diff (provider=%s, mismatch=%.2f%%, reason=%s)",
                provider_name, pixel.mismatch_percentage,
                "forced" if options.force_ai else "pixel_threshold_exceeded",
            )
            ai = await self._run_ai(provider_name, baseline, current, options.context)
        else:
            logger.info(
                "AI diff skipped (mismatch=%.2f%% <= threshold=%.2f%%, ai_enabled=%s)",
                pixel.mismatch_percentage, options.pixel_threshold, options.ai_enabled,
            )

        elapsed_ms = int((time.monotonic() - start) * 1000)
        result = self.combine_results(pixel, ai, options, elapsed_ms)

        if self.explanation_service is not None:
            try:
                result.ai_explanation = await self.explanation_service.generate_explanation(
                    similarity_score=result.pixel_analysis.similarity_score,
                    is_different=result.is_different,
                    changes=result.changes,
                    method=result.method,
                    url=options.context.url if options.context else None,
                )
            except Exception as e:
                logger.warning("Failed to generate explanation: %s", e)

        logger.info(
            "Hybrid diff completed (method=%s, different=%s, confidence=%s, %dms)",
            result.method, result.is_different, result.confidence,
            result.metadata.processing_time_ms,
        )
        return result

    async def _run_ai(
        self,
        provider_name: str,
        baseline: ImagePayload,
        current: ImagePayload,
        context: Optional[DiffContext],
    ) -> Optional[AIDiffResult]:
        try:
            chain = self._chain(provider_name)
        except ValueError as e:
            logger.error("Cannot build AI provider chain: %s", e)
            return None
        return await chain.compare(baseline, current, context)

    @staticmethod
    def combine_results(
        pixel: PixelDiffResult,
        ai: Optional[AIDiffResult],
        options: HybridOptions,
        processing_time_ms: int = 0,
    ) -> HybridDiffResult:
        mismatch = pixel.mismatch_percentage
        pixel_conf = pixel_confidence(mismatch, options.pixel_threshold)
        pixel_analysis = PixelAnalysis(
            mismatch_percentage=mismatch,
            similarity_score=pixel.similarity_score,
            confidence=pixel_conf,
        )

        if ai is None:
            return HybridDiffResult(
                is_different=mismatch > options.pixel_threshold,
                confidence=pixel_conf,
                method="pixel",
                diff_image=pixel.diff_image,
                changes=generate_pixel_changes(pixel),
                explanation=f"Pixel comparison: {mismatch:.2f}% difference",
                pixel_analysis=pixel_analysis,
                pixel_diff=pixel,
                metadata=HybridDiffMetadata(
                    pixel_threshold=options.pixel_threshold,
                    ai_threshold=options.ai_threshold,
                    processing_time_ms=processing_time_ms,
                    tokens_used=0,
                ),
            )

        changes: Sequence[Change] = ai.changes or generate_pixel_changes(pixel)
        return HybridDiffResult(
            is_different=decide_final_result(
                pixel, ai, options.pixel_threshold, options.ai_threshold
            ),
            confidence=calculate_combined_confidence(pixel, ai, options.pixel_threshold),
            method=ai.provider or "openai",
            diff_image=pixel.diff_image,
            changes=list(changes),
            explanation=ai.explanation or f"Hybrid analysis: {mismatch:.2f}% pixel difference",
            pixel_analysis=pixel_analysis,
            ai_analysis=AIAnalysis(
                similarity_score=(100 - ai.confidence) if ai.is_different else ai.confidence,
                confidence=ai.confidence,
            ),
            pixel_diff=pixel,
            ai_diff=ai,
            metadata=HybridDiffMetadata(
                pixel_threshold=options.pixel_threshold,
                ai_threshold=options.ai_threshold,
                processing_time_ms=processing_time_ms,
                tokens_used=ai.tokens_used,
                ai_provider=ai.provider or None,
            ),
        )
