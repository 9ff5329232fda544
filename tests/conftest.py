"""Pytest configuration and shared fixtures."""

from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest

from tests.helpers import b64, make_png
from visreg.models.config import Settings, ViewportConfig
from visreg.models.diff import AIDiffResult, Change
from visreg.models.project import Baseline, BaselineMetadata, Project
from visreg.models.test_run import Priority, RunConfig, TestRun


# ============================================================================
# Image Fixtures
# ============================================================================


@pytest.fixture
def white_png() -> bytes:
    return make_png(color=(255, 255, 255))


@pytest.fixture
def black_png() -> bytes:
    return make_png(color=(0, 0, 0))


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        data_dir=str(tmp_path / "data"),
        screenshots_dir=str(tmp_path / "screenshots"),
        save_to_filesystem=False,
        openai_api_key=None,
        groq_api_key=None,
        openai_router_api_key=None,
        anthropic_api_key=None,
        queue_tick_seconds=0.05,
    )


# ============================================================================
# Domain Fixtures
# ============================================================================


@pytest.fixture
def project() -> Project:
    return Project(name="Storefront", base_url="https://example.com")


@pytest.fixture
def run_config() -> RunConfig:
    return RunConfig(url="https://example.com/home", viewport=ViewportConfig(width=800, height=600))


@pytest.fixture
def test_run(project: Project, run_config: RunConfig) -> TestRun:
    return TestRun.create(project_id=project.id, config=run_config, priority=Priority.NORMAL)


@pytest.fixture
def baseline(project: Project, white_png: bytes) -> Baseline:
    return Baseline(
        project_id=project.id,
        name="home",
        image=b64(white_png),
        metadata=BaselineMetadata(
            viewport=ViewportConfig(width=800, height=600),
            url="https://example.com/home",
        ),
    )


# ============================================================================
# Mock Fixtures
# ============================================================================


@pytest.fixture
def mock_provider() -> Mock:
    """Vision provider double; override compare.return_value per test."""
    provider = Mock()
    provider.name = "openai"
    provider.compare = AsyncMock(return_value=AIDiffResult(
        is_different=True,
        confidence=90,
        changes=[Change(type="layout", description="Header moved", severity="high")],
        explanation="The header moved down",
        tokens_used=321,
        provider="openai",
        model="gpt-4o",
    ))
    return provider


@pytest.fixture
def mock_page() -> AsyncMock:
    """Create a mock Playwright page."""
    page = AsyncMock()
    page.goto = AsyncMock()
    page.wait_for_load_state = AsyncMock()
    page.wait_for_selector = AsyncMock()
    page.wait_for_timeout = AsyncMock()
    page.add_style_tag = AsyncMock()
    page.route = AsyncMock()
    page.screenshot = AsyncMock(return_value=make_png(50, 50))
    page.content = AsyncMock(return_value="<html><body>ok</body></html>")
    page.evaluate = AsyncMock(return_value="Mozilla/5.0 test")
    return page
