"""Tests for the command-line interface."""

from unittest.mock import AsyncMock, MagicMock, patch

import click
import pytest
from click.testing import CliRunner

from tests.helpers import make_png, make_png_with_box
from visreg.capture.screenshot import CaptureResult
from visreg.cli import cli, parse_region
from visreg.errors import CaptureError
from visreg.models.config import ViewportConfig
from visreg.models.test_run import CaptureMetadata


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def images(tmp_path):
    white = tmp_path / "white.png"
    black = tmp_path / "black.png"
    boxed = tmp_path / "boxed.png"
    white.write_bytes(make_png(color=(255, 255, 255)))
    black.write_bytes(make_png(color=(0, 0, 0)))
    boxed.write_bytes(make_png_with_box(box=(0, 0, 20, 20)))
    return white, black, boxed


class TestParseRegion:
    """Tests for parse_region."""

    def test_valid(self):
        region = parse_region("10,20,30,40")
        assert (region.x, region.y, region.width, region.height) == (10, 20, 30, 40)

    @pytest.mark.parametrize("value", ["1,2,3", "a,b,c,d", ""])
    def test_invalid(self, value):
        with pytest.raises(click.BadParameter):
            parse_region(value)


class TestCompareCommand:
    """Tests for `visreg compare`."""

    def test_identical_exit_zero(self, runner, images):
        white, _, _ = images
        result = runner.invoke(cli, ["compare", str(white), str(white)])
        assert result.exit_code == 0
        assert "MATCH" in result.output

    def test_different_exit_one(self, runner, images):
        white, black, _ = images
        result = runner.invoke(cli, ["compare", str(white), str(black), "--threshold", "5"])
        assert result.exit_code == 1
        assert "DIFFERENT" in result.output
        assert "10000 / 10000" in result.output

    def test_mask_hides_change(self, runner, images):
        white, _, boxed = images
        result = runner.invoke(cli, ["compare", str(white), str(boxed), "-m", "0,0,20,20"])
        assert result.exit_code == 0

    def test_writes_diff_image(self, runner, images, tmp_path):
        white, black, _ = images
        out = tmp_path / "diff.png"
        runner.invoke(cli, ["compare", str(white), str(black), "-o", str(out)])
        assert out.read_bytes().startswith(b"\x89PNG")

    def test_bad_image_exit_two(self, runner, images, tmp_path):
        white, _, _ = images
        junk = tmp_path / "junk.png"
        junk.write_bytes(b"not a png")
        result = runner.invoke(cli, ["compare", str(white), str(junk)])
        assert result.exit_code == 2
        assert "Comparison failed" in result.output

    def test_missing_file(self, runner, images):
        white, _, _ = images
        result = runner.invoke(cli, ["compare", str(white), "/nonexistent.png"])
        assert result.exit_code == 2


class TestCaptureCommand:
    """Tests for `visreg capture`."""

    @staticmethod
    def _browser_cm():
        browser = MagicMock()
        browser.__aenter__ = AsyncMock(return_value=browser)
        browser.__aexit__ = AsyncMock(return_value=None)
        return browser

    @patch("visreg.cli.ScreenshotCapturer")
    @patch("visreg.cli.BrowserManager")
    def test_saves_screenshot(self, mock_browser_cls, mock_capturer_cls, runner, tmp_path):
        mock_browser_cls.return_value = self._browser_cm()
        png = make_png(20, 20)
        capturer = MagicMock()
        capturer.capture = AsyncMock(return_value=CaptureResult(
            screenshot=png,
            metadata=CaptureMetadata(url="https://example.com", viewport=ViewportConfig(width=640, height=480)),
        ))
        mock_capturer_cls.from_settings.return_value = capturer
        out = tmp_path / "shot.png"

        result = runner.invoke(cli, ["capture", "https://example.com", "--width", "640",
                                     "--height", "480", "-o", str(out), "--viewport-only"])

        assert result.exit_code == 0
        assert out.read_bytes() == png
        url, viewport, options = capturer.capture.call_args.args
        assert viewport == ViewportConfig(width=640, height=480)
        assert options.full_page is False

    @patch("visreg.cli.ScreenshotCapturer")
    @patch("visreg.cli.BrowserManager")
    def test_capture_failure(self, mock_browser_cls, mock_capturer_cls, runner, tmp_path):
        mock_browser_cls.return_value = self._browser_cm()
        capturer = MagicMock()
        capturer.capture = AsyncMock(side_effect=CaptureError("Navigation failed"))
        mock_capturer_cls.from_settings.return_value = capturer

        result = runner.invoke(cli, ["capture", "https://example.com", "-o", str(tmp_path / "x.png")])

        assert result.exit_code == 2
        assert "Capture failed" in result.output
