"""Runs one test: capture the page, find its baseline, diff, and record the result."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

from visreg.capture.screenshot import CaptureOptions, ScreenshotCapturer
from visreg.diff.hybrid import HybridDiffEngine
from visreg.models.config import DynamicContentConfig, Settings
from visreg.models.diff import DiffContext, DiffSummary
from visreg.models.project import Baseline
from visreg.models.test_result import ResultMetadata, ResultScreenshots, TestResult
from visreg.models.test_run import RunResult, TestRun
from visreg.storage.files import ScreenshotStore
from visreg.storage.repositories import BaselineRepository, ProjectRepository, TestResultRepository

logger = logging.getLogger(__name__)

SETTLE_DELAY_MS = 2000


class TestExecutionService:
    __test__ = False

    def __init__(
        self,
        capturer: ScreenshotCapturer,
        diff_engine: HybridDiffEngine,
        baselines: BaselineRepository,
        results: TestResultRepository,
        settings: Settings,
        projects: Optional[ProjectRepository] = None,
        store: Optional[ScreenshotStore] = None,
    ):
        self.capturer = capturer
        self.diff_engine = diff_engine
        self.baselines = baselines
        self.results = results
        self.settings = settings
        self.projects = projects
        self.store = store

    def find_baseline(self, run: TestRun) -> Optional[Baseline]:
        """Explicit baseline id if it is active, else the active baseline recorded for the run's URL."""
        baseline_id = run.config.baseline_id
        if baseline_id:
            baseline = self.baselines.get(baseline_id)
            if baseline is not None and baseline.is_active:
                return baseline
            logger.warning("Baseline %s missing or inactive; falling back to URL match", baseline_id)
        baseline = self.baselines.find_active_by_url(run.project_id, run.config.url)
        logger.info("Baseline lookup for %s: %s", run.config.url, baseline.id if baseline else "none")
        return baseline

    def _capture_options(self, run: TestRun, baseline: Optional[Baseline]) -> CaptureOptions:
        dynamic = run.config.dynamic_content
        mask = baseline.mask_config if baseline else None
        if mask is None:
            return CaptureOptions(
                wait_conditions=run.config.wait_conditions,
                full_page=True,
                capture_dom=True,
                wait_time_ms=SETTLE_DELAY_MS,
                dynamic_content=dynamic,
            )
        merged = DynamicContentConfig(
            disable_animations=dynamic.disable_animations or mask.disable_animations,
            block_ads=dynamic.block_ads or mask.block_ads,
            scroll_to_trigger_lazy_load=(
                dynamic.scroll_to_trigger_lazy_load or mask.scroll_to_trigger_lazy_load
            ),
            multiple_screenshots=dynamic.multiple_screenshots,
            stability_check=dynamic.stability_check or mask.stability_check,
            mask_selectors=dynamic.mask_selectors,
        )
        return CaptureOptions(
            wait_conditions=run.config.wait_conditions,
            full_page=True,
            capture_dom=True,
            wait_time_ms=mask.wait_time_ms if mask.wait_time_ms is not None else SETTLE_DELAY_MS,
            mask_selectors=mask.ignore_css_selectors,
            mask_regions=mask.ignore_regions,
            dynamic_content=merged,
        )

    def _ai_enabled(self, project_id: str) -> bool:
        if self.projects is None:
            return True
        project = self.projects.get(project_id)
        return project.config.ai_enabled if project is not None else True

    async def execute_test(self, run: TestRun) -> TestRun:
        """Execute ``run`` (already RUNNING) and return it with its result attached.

        Capture, decode and storage errors propagate to the caller.
        """
        start = time.monotonic()
        logger.info("Executing test %s for %s", run.id, run.config.url)

        baseline = self.find_baseline(run)
        capture = await self.capturer.capture(
            run.config.url, run.config.viewport, self._capture_options(run, baseline)
        )

        if baseline is None:
            logger.warning("No baseline found for test %s; recording capture only", run.id)
            paths = {}
            if self.store is not None:
                paths = await asyncio.to_thread(
                    self.store.save_screenshots, run.project_id, run.id, current=capture.screenshot
                )
            return run.with_result(RunResult(metadata=capture.metadata, file_paths=paths))

        # Stored baselines are unpainted; ignore regions are masked in the diff too.
        mask_regions = baseline.mask_config.ignore_regions if baseline.mask_config else []
        options = self.diff_engine.default_options(
            ai_enabled=self._ai_enabled(run.project_id),
            mask_regions=list(mask_regions),
            context=DiffContext(url=run.config.url, viewport=run.config.viewport),
        )
        diff = await self.diff_engine.compare_images(baseline.image, capture.screenshot, options)

        paths = {}
        if self.store is not None:
            paths = await asyncio.to_thread(
                self.store.save_screenshots,
                run.project_id,
                run.id,
                baseline=baseline.image,
                current=capture.screenshot,
                diff=diff.diff_image,
            )

        result = TestResult.create(
            test_run_id=run.id,
            baseline_id=baseline.id,
            similarity_score=diff.pixel_analysis.similarity_score,
            is_different=diff.is_different,
            pass_threshold=self.settings.default_diff_threshold,
            diff_regions=[c.region for c in diff.changes if c.region is not None],
            # Paths only; image payloads never go into the result record.
            screenshots=ResultScreenshots(current=paths.get("current"), diff=paths.get("diff")),
            explanations=diff.explanation,
            ai_explanation=diff.ai_explanation,
            metadata=ResultMetadata(
                execution_time_ms=int((time.monotonic() - start) * 1000),
                ai_model=diff.ai_diff.model if diff.ai_diff else None,
                tokens_used=diff.metadata.tokens_used,
                file_paths=paths,
            ),
        )
        await asyncio.to_thread(self.results.create, result)

        logger.info(
            "Visual diff for %s: %s (%.2f%% similarity, method=%s)",
            run.id, result.status.value, result.similarity_score, diff.method,
        )
        return run.with_result(RunResult(
            metadata=capture.metadata,
            status=result.status.value,
            similarity_score=result.similarity_score,
            is_different=diff.is_different,
            diff_result=DiffSummary.from_hybrid(diff, stored="diff" in paths),
            test_result_id=result.id,
            baseline_id=baseline.id,
            file_paths=paths,
        ))
