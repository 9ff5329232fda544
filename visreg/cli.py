"""CLI entry point for the visual regression engine."""

from __future__ import annotations

import asyncio
import base64
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from visreg.capture.browser import BrowserManager
from visreg.capture.screenshot import CaptureOptions, ScreenshotCapturer
from visreg.diff.imaging import strip_data_url
from visreg.diff.pixel import PixelDiffEngine
from visreg.errors import CaptureError, ImageError
from visreg.models.config import Region, ViewportConfig, get_settings

console = Console()


def setup_logging(verbose: bool = False, level_name: str = "INFO") -> None:
    level = logging.DEBUG if verbose else getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def parse_region(value: str) -> Region:
    try:
        x, y, w, h = (int(part) for part in value.split(","))
    except ValueError:
        raise click.BadParameter(f"Expected x,y,width,height but got {value!r}")
    return Region(x=x, y=y, width=w, height=h)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Visual regression testing engine"""
    setup_logging(verbose, get_settings().log_level)


@cli.command()
@click.option("--host", default=None, help="Bind address (defaults to API_HOST)")
@click.option("--port", default=None, type=int, help="Port (defaults to API_PORT)")
def serve(host: str | None, port: int | None) -> None:
    """Run the HTTP API."""
    import uvicorn

    from visreg.api.app import create_app

    settings = get_settings()
    app = create_app(settings=settings)
    uvicorn.run(app, host=host or settings.api_host, port=port or settings.api_port, log_config=None)


@cli.command()
@click.argument("baseline", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("current", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--threshold", "-t", default=0.01, show_default=True, type=float,
              help="Per-pixel tolerance and pass mark, in percent")
@click.option("--mask", "-m", "masks", multiple=True, help="Region to ignore as x,y,width,height")
@click.option("--output", "-o", type=click.Path(dir_okay=False, path_type=Path),
              help="Write the side-by-side diff PNG here")
def compare(baseline: Path, current: Path, threshold: float, masks: tuple[str, ...],
            output: Path | None) -> None:
    """Pixel-compare two PNG files."""
    regions = [parse_region(m) for m in masks]
    engine = PixelDiffEngine(max_image_bytes=get_settings().max_image_bytes)
    try:
        result = engine.compare(baseline.read_bytes(), current.read_bytes(), threshold, regions)
    except ImageError as e:
        console.print(f"[red]Comparison failed:[/red] {e}")
        sys.exit(2)

    table = Table(title="Pixel Comparison")
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    table.add_row("Size", f"{result.width}x{result.height}" + (" (resized)" if result.resized else ""))
    table.add_row("Different pixels", f"{result.diff_pixels} / {result.total_pixels}")
    table.add_row("Mismatch", f"{result.mismatch_percentage:.4f}%")
    table.add_row("Similarity", f"{result.similarity_score:.2f}%")
    verdict = "[red]DIFFERENT[/red]" if result.is_different else "[green]MATCH[/green]"
    table.add_row("Verdict", verdict)
    console.print(table)

    if output:
        output.write_bytes(base64.b64decode(strip_data_url(result.diff_image)))
        console.print(f"Diff image: [blue]{output}[/blue]")

    sys.exit(1 if result.is_different else 0)


@cli.command()
@click.argument("url")
@click.option("--width", default=1920, show_default=True, type=int)
@click.option("--height", default=1080, show_default=True, type=int)
@click.option("--output", "-o", default="screenshot.png", show_default=True,
              type=click.Path(dir_okay=False, path_type=Path))
@click.option("--full-page/--viewport-only", default=True, show_default=True)
def capture(url: str, width: int, height: int, output: Path, full_page: bool) -> None:
    """Capture one normalized screenshot of URL."""
    settings = get_settings()

    async def _capture() -> bytes:
        async with BrowserManager(
            headless=settings.playwright_headless, timeout_ms=settings.playwright_timeout_ms
        ) as browser:
            capturer = ScreenshotCapturer.from_settings(browser, settings)
            result = await capturer.capture(
                url,
                ViewportConfig(width=width, height=height),
                CaptureOptions(full_page=full_page, dynamic_content=settings.default_dynamic_content()),
            )
            return result.screenshot

    try:
        png = asyncio.run(_capture())
    except CaptureError as e:
        console.print(f"[red]Capture failed:[/red] {e}")
        sys.exit(2)
    output.write_bytes(png)
    console.print(f"[green]Saved[/green] {len(png)} bytes to [blue]{output}[/blue]")


if __name__ == "__main__":
    cli()
