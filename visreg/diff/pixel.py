"""Deterministic per-pixel comparison of two screenshots.

Each pixel's RGB distance is normalized to [0, 1] (Euclidean distance divided
by 255*sqrt(3)). A pixel counts as different when that distance exceeds
``threshold / 100``; the comparison as a whole is different when the share of
differing pixels (in percent) exceeds ``threshold``.
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Optional, Sequence

import numpy as np
from PIL import Image, ImageDraw

from visreg.diff.imaging import ImagePayload, decode_image, encode_png, to_data_url
from visreg.models.config import MAX_IMAGE_BYTES, Region
from visreg.models.diff import PixelDiffResult

logger = logging.getLogger(__name__)

HEADER_HEIGHT = 40
HEADER_COLOR = (220, 220, 220)
LABEL_COLOR = (0, 0, 0)
SEPARATOR_COLOR = (0, 0, 0)
DIFF_TINT = np.array([255, 0, 0], dtype=np.float32)

_MAX_DISTANCE = 255.0 * math.sqrt(3)


class PixelDiffEngine:
    """Compares two images pixel by pixel and renders a side-by-side artifact."""

    def __init__(self, max_image_bytes: int = MAX_IMAGE_BYTES):
        self.max_image_bytes = max_image_bytes

    def compare(
        self,
        baseline: ImagePayload,
        current: ImagePayload,
        threshold: float = 0.01,
        mask_regions: Optional[Sequence[Region]] = None,
    ) -> PixelDiffResult:
        """Compare ``baseline`` against ``current``.

        Raises ``DecodeError`` for unreadable payloads and
        ``PayloadTooLargeError`` when either payload exceeds the size ceiling.
        """
        baseline_img = decode_image(baseline, self.max_image_bytes)
        current_img = decode_image(current, self.max_image_bytes)

        resized = False
        if baseline_img.size != current_img.size:
            target = (
                max(baseline_img.width, current_img.width),
                max(baseline_img.height, current_img.height),
            )
            logger.warning(
                "Image sizes differ (baseline=%s, current=%s); resampling both to %s. "
                "Interpolated pixels are compared, not originals.",
                baseline_img.size, current_img.size, target,
            )
            baseline_img = baseline_img.resize(target, Image.LANCZOS)
            current_img = current_img.resize(target, Image.LANCZOS)
            resized = True

        width, height = baseline_img.size
        base_arr = np.asarray(baseline_img, dtype=np.float32)
        curr_arr = np.asarray(current_img, dtype=np.float32)

        distance = np.sqrt(np.sum((base_arr - curr_arr) ** 2, axis=2)) / _MAX_DISTANCE
        diff_mask = distance > (threshold / 100.0)

        ignored = self._build_mask(width, height, mask_regions or [])
        if ignored is not None:
            diff_mask &= ~ignored

        total_pixels = width * height
        diff_pixels = int(diff_mask.sum())
        mismatch = (diff_pixels / total_pixels * 100.0) if total_pixels else 0.0
        is_different = mismatch > threshold

        logger.debug(
            "Pixel diff: %d/%d pixels differ (%.4f%%), threshold=%.4f, different=%s",
            diff_pixels, total_pixels, mismatch, threshold, is_different,
        )

        diff_image = self._render_composite(baseline_img, current_img, diff_mask)

        return PixelDiffResult(
            mismatch_percentage=mismatch,
            diff_pixels=diff_pixels,
            total_pixels=total_pixels,
            diff_image=to_data_url(encode_png(diff_image)),
            is_different=is_different,
            width=width,
            height=height,
            resized=resized,
        )

    async def compare_async(
        self,
        baseline: ImagePayload,
        current: ImagePayload,
        threshold: float = 0.01,
        mask_regions: Optional[Sequence[Region]] = None,
    ) -> PixelDiffResult:
        """Run ``compare`` in a worker thread so the event loop stays responsive."""
        return await asyncio.to_thread(self.compare, baseline, current, threshold, mask_regions)

    @staticmethod
    def _build_mask(width: int, height: int, regions: Sequence[Region]) -> Optional[np.ndarray]:
        if not regions:
            return None
        mask = np.zeros((height, width), dtype=bool)
        for region in regions:
            x0 = max(0, region.x)
            y0 = max(0, region.y)
            x1 = min(width, region.x + region.width)
            y1 = min(height, region.y + region.height)
            if x1 > x0 and y1 > y0:
                mask[y0:y1, x0:x1] = True
        return mask

    @staticmethod
    def _render_composite(
        baseline_img: Image.Image,
        current_img: Image.Image,
        diff_mask: np.ndarray,
    ) -> Image.Image:
        """Baseline on the left, current on the right, differing pixels tinted red."""
        width, height = baseline_img.size

        tinted = np.asarray(current_img, dtype=np.float32).copy()
        if diff_mask.any():
            tinted[diff_mask] = tinted[diff_mask] * 0.4 + DIFF_TINT * 0.6
        current_marked = Image.fromarray(tinted.astype(np.uint8))

        canvas = Image.new("RGB", (width * 2, height + HEADER_HEIGHT), HEADER_COLOR)
        canvas.paste(baseline_img, (0, HEADER_HEIGHT))
        canvas.paste(current_marked, (width, HEADER_HEIGHT))

        draw = ImageDraw.Draw(canvas)
        draw.text((10, 12), "BASELINE", fill=LABEL_COLOR)
        draw.text((width + 10, 12), "CURRENT", fill=LABEL_COLOR)
        draw.line([(width, 0), (width, height + HEADER_HEIGHT)], fill=SEPARATOR_COLOR, width=2)
        return canvas
