"""Synchronous pixel-only comparisons that bypass the queue and the AI path."""

from __future__ import annotations

import logging
import time
import uuid

from fastapi import APIRouter, Depends, HTTPException, status

from visreg.api.dependencies import get_platform
from visreg.api.schemas import (
    BaselineRef,
    PixelCompareMetadata,
    PixelCompareRequest,
    PixelCompareResponse,
    QuickCompareRequest,
)
from visreg.capture.screenshot import CaptureOptions
from visreg.models.config import ViewportConfig
from visreg.models.diff import PixelDiffResult
from visreg.orchestrator import Platform

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pixel", tags=["pixel"])


def _response(
    result: PixelDiffResult,
    started: float,
    threshold: float,
    baseline: BaselineRef | None = None,
    file_paths: dict[str, str] | None = None,
) -> PixelCompareResponse:
    return PixelCompareResponse(
        id=str(uuid.uuid4()),
        is_different=result.is_different,
        similarity_score=result.similarity_score,
        confidence=95 if result.is_different else 98,
        mismatch_percentage=result.mismatch_percentage,
        diff_pixels=result.diff_pixels,
        total_pixels=result.total_pixels,
        diff_image=result.diff_image,
        baseline=baseline,
        metadata=PixelCompareMetadata(
            processing_time_ms=int((time.monotonic() - started) * 1000),
            threshold=threshold,
            resized=result.resized,
            file_paths=file_paths or {},
        ),
    )


@router.post("/compare", response_model=PixelCompareResponse)
async def compare(body: PixelCompareRequest, platform: Platform = Depends(get_platform)):
    """Compare a stored baseline against a supplied image or a fresh capture of ``url``."""
    started = time.monotonic()
    platform.projects.require(body.project_id)
    baseline = platform.baselines.require(body.baseline_id)

    current = body.current_image
    if body.url:
        capture = await platform.capturer.capture(
            body.url,
            body.viewport or ViewportConfig(),
            CaptureOptions(full_page=True, wait_time_ms=body.wait_time or 0),
        )
        current = capture.screenshot
    if current is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Either currentImage or url must be provided",
        )

    masks = list(body.mask_regions)
    if baseline.mask_config is not None:
        masks.extend(baseline.mask_config.ignore_regions)
    result = await platform.pixel_engine.compare_async(baseline.image, current, body.threshold, masks)

    test_id = str(uuid.uuid4())
    paths = platform.files.save_screenshots(
        body.project_id, test_id, baseline=baseline.image, current=current, diff=result.diff_image
    )
    logger.info("Pixel compare against baseline %s: %.4f%% mismatch", baseline.id,
                result.mismatch_percentage)
    return _response(
        result,
        started,
        body.threshold,
        baseline=BaselineRef(id=baseline.id, name=baseline.name, version=baseline.version),
        file_paths=paths,
    )


@router.post("/quick-compare", response_model=PixelCompareResponse)
async def quick_compare(body: QuickCompareRequest, platform: Platform = Depends(get_platform)):
    """Compare two supplied images."""
    started = time.monotonic()
    result = await platform.pixel_engine.compare_async(
        body.baseline_image, body.current_image, body.threshold, body.mask_regions
    )
    return _response(result, started, body.threshold)
