"""Image builders shared by the test modules."""

import base64
import io

from PIL import Image, ImageDraw


def make_png(width: int = 100, height: int = 100, color=(255, 255, 255)) -> bytes:
    """Create a solid-color PNG in memory."""
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


def make_png_with_box(
    width: int = 100,
    height: int = 100,
    box: tuple[int, int, int, int] = (0, 0, 10, 10),
    background=(255, 255, 255),
    fill=(0, 0, 0),
) -> bytes:
    """Solid background with a filled rectangle at (x0, y0, x1, y1), right/bottom exclusive."""
    img = Image.new("RGB", (width, height), background)
    x0, y0, x1, y1 = box
    ImageDraw.Draw(img).rectangle([x0, y0, x1 - 1, y1 - 1], fill=fill)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")
