"""Image payload helpers shared by the diff engines and storage."""

from __future__ import annotations

import base64
import binascii
import io
import re
from typing import Union

from PIL import Image, UnidentifiedImageError

from visreg.errors import DecodeError, PayloadTooLargeError
from visreg.models.config import MAX_IMAGE_BYTES

ImagePayload = Union[bytes, str]

_DATA_URL_RE = re.compile(r"^data:image/[a-zA-Z0-9.+-]+;base64,")


def strip_data_url(payload: str) -> str:
    """Remove a ``data:image/...;base64,`` prefix if present."""
    return _DATA_URL_RE.sub("", payload.strip(), count=1)


def payload_to_bytes(payload: ImagePayload, max_bytes: int = MAX_IMAGE_BYTES) -> bytes:
    """Return raw image bytes for a bytes or base64 payload, enforcing the size ceiling."""
    if isinstance(payload, (bytes, bytearray)):
        data = bytes(payload)
    else:
        text = strip_data_url(payload)
        # Decoded size is ~3/4 of the base64 length; reject early on obviously huge input
        if len(text) * 3 // 4 > max_bytes:
            raise PayloadTooLargeError(len(text) * 3 // 4, max_bytes)
        try:
            data = base64.b64decode(text, validate=False)
        except (binascii.Error, ValueError) as e:
            raise DecodeError(f"Invalid base64 image payload: {e}") from e
    if len(data) > max_bytes:
        raise PayloadTooLargeError(len(data), max_bytes)
    if not data:
        raise DecodeError("Empty image payload")
    return data


def decode_image(payload: ImagePayload, max_bytes: int = MAX_IMAGE_BYTES) -> Image.Image:
    """Decode a payload into an RGB PIL image."""
    data = payload_to_bytes(payload, max_bytes)
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise DecodeError(f"Could not decode image: {e}") from e
    return img.convert("RGB")


def encode_png(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def to_base64(payload: ImagePayload) -> str:
    """Plain base64 text (no data-URL prefix) for bytes or base64 input."""
    if isinstance(payload, (bytes, bytearray)):
        return base64.b64encode(bytes(payload)).decode("ascii")
    return strip_data_url(payload)


def to_data_url(png: bytes) -> str:
    return "data:image/png;base64," + base64.b64encode(png).decode("ascii")
