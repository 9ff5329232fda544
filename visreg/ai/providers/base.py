"""Abstract vision diff provider and response parsing shared by all backends."""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

from pydantic import ValidationError

from visreg.ai.client import parse_json_response
from visreg.diff.imaging import ImagePayload, to_base64
from visreg.errors import ProviderError, ProviderNotConfiguredError, ProviderTimeoutError
from visreg.models.config import Region
from visreg.models.diff import CHANGE_TYPES, SEVERITIES, AIDiffResult, Change, DiffContext

logger = logging.getLogger(__name__)

PARSE_FAILED = "parse failed"


def _parse_change(raw: Any) -> Optional[Change]:
    if not isinstance(raw, dict):
        return None
    change_type = str(raw.get("type", "")).lower()
    severity = str(raw.get("severity", "medium")).lower()
    if change_type not in CHANGE_TYPES or severity not in SEVERITIES:
        logger.debug("Dropping change with unknown type/severity: %s", raw)
        return None
    region = None
    if isinstance(raw.get("region"), dict):
        try:
            region = Region.model_validate(raw["region"])
        except ValidationError:
            region = None
    return Change(
        type=change_type,
        description=str(raw.get("description", "")),
        severity=severity,
        region=region,
    )


def parse_diff_response(text: str) -> AIDiffResult:
    """Turn raw model output into an ``AIDiffResult``.

    Output that is not JSON, or lacks a boolean ``isDifferent``, degrades to a
    "not different, zero confidence" result instead of raising.
    """
    try:
        data = parse_json_response(text)
    except ValueError as e:
        logger.warning("Vision diff response was not valid JSON: %s", e)
        return AIDiffResult(explanation=PARSE_FAILED)

    is_different = data.get("isDifferent", data.get("is_different"))
    if not isinstance(is_different, bool):
        logger.warning("Vision diff response missing boolean isDifferent")
        return AIDiffResult(explanation=PARSE_FAILED)

    try:
        confidence = float(data.get("confidence", 0) or 0)
    except (TypeError, ValueError):
        confidence = 0.0
    confidence = min(100.0, max(0.0, confidence))

    raw_changes = data.get("changes")
    changes = []
    if isinstance(raw_changes, list):
        changes = [c for c in (_parse_change(r) for r in raw_changes) if c is not None]

    return AIDiffResult(
        is_different=is_different,
        confidence=confidence,
        changes=changes,
        explanation=str(data.get("explanation") or "No explanation provided"),
    )


class VisionDiffProvider(ABC):
    """A vision-capable LLM backend that compares a baseline and a current screenshot."""

    name: str = "base"

    def __init__(self, model: str, max_tokens: int = 1000, timeout_seconds: float = 60):
        self.model = model
        self.max_tokens = max_tokens
        self.timeout_seconds = timeout_seconds

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """True when credentials are available."""

    @abstractmethod
    async def _request(
        self, baseline_b64: str, current_b64: str, context: Optional[DiffContext]
    ) -> tuple[str, int]:
        """Send both images to the backend; return (response text, tokens used)."""

    async def compare(
        self,
        baseline: ImagePayload,
        current: ImagePayload,
        context: Optional[DiffContext] = None,
    ) -> AIDiffResult:
        if not self.is_configured:
            raise ProviderNotConfiguredError(self.name, "API key not configured")

        start = time.monotonic()
        try:
            text, tokens = await asyncio.wait_for(
                self._request(to_base64(baseline), to_base64(current), context),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise ProviderTimeoutError(
                self.name, f"no response within {self.timeout_seconds:.0f}s"
            ) from e
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(self.name, str(e)) from e

        elapsed_ms = int((time.monotonic() - start) * 1000)
        result = parse_diff_response(text)
        result = result.model_copy(update={
            "tokens_used": tokens,
            "processing_time_ms": elapsed_ms,
            "provider": self.name,
            "model": self.model,
        })
        logger.info(
            "%s diff completed (model=%s, tokens=%d, %dms, different=%s, confidence=%.0f)",
            self.name, self.model, tokens, elapsed_ms, result.is_different, result.confidence,
        )
        return result
