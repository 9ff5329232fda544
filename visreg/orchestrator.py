"""Platform wiring: builds every component from settings and owns their lifecycle."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Callable, Optional

from visreg.ai.explanation import ExplanationService
from visreg.ai.providers.chain import ProviderChain
from visreg.capture.browser import BrowserManager
from visreg.capture.screenshot import ScreenshotCapturer
from visreg.diff.hybrid import HybridDiffEngine
from visreg.diff.pixel import PixelDiffEngine
from visreg.errors import NotFoundError
from visreg.execution.queue import ConcurrentExecutionManager
from visreg.execution.service import TestExecutionService
from visreg.models.config import Settings
from visreg.models.test_run import Priority, RunConfig, TestRun
from visreg.storage.files import ScreenshotStore
from visreg.storage.repositories import (
    BaselineRepository,
    ProjectRepository,
    TestResultRepository,
    TestRunRepository,
)

logger = logging.getLogger(__name__)


class Platform:
    """Holds the repositories, engines, browser and queue for one process."""

    def __init__(
        self,
        settings: Settings,
        persist: bool = True,
        capturer: Optional[ScreenshotCapturer] = None,
        chain_builder: Optional[Callable[[str], ProviderChain]] = None,
        explanation_service: Optional[ExplanationService] = None,
    ):
        self.settings = settings
        data_dir = Path(settings.data_dir)

        def store_path(name: str) -> Optional[Path]:
            return data_dir / name if persist else None

        self.projects = ProjectRepository(store_path("projects.json"))
        self.baselines = BaselineRepository(store_path("baselines.json"))
        self.runs = TestRunRepository(store_path("test_runs.json"))
        self.results = TestResultRepository(store_path("test_results.json"))

        self.files = ScreenshotStore(
            Path(settings.screenshots_dir), enabled=settings.save_to_filesystem
        )

        self.pixel_engine = PixelDiffEngine(max_image_bytes=settings.max_image_bytes)
        self.explanation_service = explanation_service or ExplanationService.from_settings(settings)
        self.diff_engine = HybridDiffEngine(
            self.pixel_engine,
            settings,
            explanation_service=self.explanation_service,
            chain_builder=chain_builder,
        )

        self.browser = BrowserManager(
            headless=settings.playwright_headless,
            timeout_ms=settings.playwright_timeout_ms,
        )
        self.capturer = capturer or ScreenshotCapturer.from_settings(self.browser, settings)

        self.execution_service = TestExecutionService(
            capturer=self.capturer,
            diff_engine=self.diff_engine,
            baselines=self.baselines,
            results=self.results,
            settings=settings,
            projects=self.projects,
            store=self.files,
        )
        self.queue = ConcurrentExecutionManager(
            repository=self.runs,
            execute_fn=self.execution_service.execute_test,
            max_concurrency=settings.queue_concurrency,
            tick_seconds=settings.queue_tick_seconds,
            job_timeout_seconds=settings.job_timeout_seconds,
        )

    async def start(self) -> None:
        await self.queue.start()
        if self.files.enabled:
            await asyncio.to_thread(self.files.cleanup_old_files, self.settings.screenshot_retention_days)
        logger.info(
            "Platform started (provider=%s, concurrency=%d)",
            self.settings.ai_provider, self.settings.queue_concurrency,
        )

    async def stop(self) -> None:
        await self.queue.stop()
        await self.browser.close()
        logger.info("Platform stopped")

    async def __aenter__(self) -> "Platform":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.stop()

    def submit_run(
        self,
        project_id: str,
        config: RunConfig,
        priority: Priority = Priority.NORMAL,
    ) -> tuple[TestRun, asyncio.Future]:
        """Create, persist and queue a run; the future resolves when it finishes."""
        project = self.projects.get(project_id)
        if project is None or not project.is_active:
            raise NotFoundError(f"project {project_id} not found")
        run = TestRun.create(
            project_id=project_id,
            config=config,
            priority=priority,
            max_retries=self.settings.max_retries,
        )
        self.runs.create(run)
        future = self.queue.submit(run)
        future.add_done_callback(_log_outcome)
        return run, future


def _log_outcome(future: asyncio.Future) -> None:
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.debug("Queued run finished with error: %s", error)
