"""Diff result data structures produced by the pixel, AI and hybrid engines."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import Field

from visreg.models.config import CamelModel, Region, ViewportConfig

ChangeType = Literal["layout", "color", "content", "missing", "added"]
Severity = Literal["low", "medium", "high"]
DiffMethod = Literal["pixel", "openai", "groq", "openai_router", "anthropic"]

CHANGE_TYPES: tuple[str, ...] = ("layout", "color", "content", "missing", "added")
SEVERITIES: tuple[str, ...] = ("low", "medium", "high")


class DiffContext(CamelModel):
    """Page details passed to AI providers alongside the images."""

    url: Optional[str] = None
    viewport: Optional[ViewportConfig] = None
    project_name: Optional[str] = None


class Change(CamelModel):
    type: ChangeType
    description: str = ""
    severity: Severity = "medium"
    region: Optional[Region] = None


class PixelDiffResult(CamelModel):
    mismatch_percentage: float
    diff_pixels: int
    total_pixels: int
    diff_image: str  # data:image/png;base64,...
    is_different: bool
    width: int = 0
    height: int = 0
    resized: bool = False  # inputs had different sizes and were resampled

    @property
    def similarity_score(self) -> float:
        return max(0.0, 100.0 - self.mismatch_percentage)


class AIDiffResult(CamelModel):
    is_different: bool = False
    confidence: float = 0
    changes: list[Change] = Field(default_factory=list)
    explanation: str = ""
    tokens_used: int = 0
    processing_time_ms: int = 0
    provider: str = ""
    model: str = ""


class Explanation(CamelModel):
    summary: str
    details: str
    recommendations: list[str] = Field(default_factory=list)
    severity: Severity = "medium"


class PixelAnalysis(CamelModel):
    mismatch_percentage: float
    similarity_score: float
    confidence: float


class AIAnalysis(CamelModel):
    similarity_score: float
    confidence: float


class HybridDiffMetadata(CamelModel):
    pixel_threshold: float
    ai_threshold: float
    processing_time_ms: int = 0
    tokens_used: int = 0
    ai_provider: Optional[str] = None


class HybridDiffResult(CamelModel):
    is_different: bool
    confidence: float
    method: DiffMethod
    diff_image: str
    changes: list[Change] = Field(default_factory=list)
    explanation: str = ""
    pixel_analysis: PixelAnalysis
    ai_analysis: Optional[AIAnalysis] = None
    pixel_diff: PixelDiffResult
    ai_diff: Optional[AIDiffResult] = None
    ai_explanation: Optional[Explanation] = None
    metadata: HybridDiffMetadata

    @property
    def similarity_score(self) -> float:
        return self.pixel_analysis.similarity_score


class DiffSummary(CamelModel):
    """Slim copy of a hybrid result stored on the run record (no image payloads)."""

    is_different: bool
    confidence: float
    method: DiffMethod
    explanation: str = ""
    pixel_analysis: PixelAnalysis
    ai_analysis: Optional[AIAnalysis] = None
    ai_explanation: Optional[Explanation] = None
    diff_image: Optional[str] = None  # "STORED_IN_FILESYSTEM" or None

    @classmethod
    def from_hybrid(cls, result: HybridDiffResult, stored: bool = False) -> "DiffSummary":
        return cls(
            is_different=result.is_different,
            confidence=result.confidence,
            method=result.method,
            explanation=result.explanation,
            pixel_analysis=result.pixel_analysis,
            ai_analysis=result.ai_analysis,
            ai_explanation=result.ai_explanation,
            diff_image="STORED_IN_FILESYSTEM" if stored else None,
        )
