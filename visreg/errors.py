"""Error types raised across the visual regression engine."""

from __future__ import annotations


class VisregError(Exception):
    """Base class for all engine errors."""


class ImageError(VisregError):
    """An image payload could not be used for comparison."""


class DecodeError(ImageError):
    """Image payload is not a decodable raster."""


class PayloadTooLargeError(ImageError):
    """Image payload exceeds the configured size ceiling."""

    def __init__(self, size: int, limit: int):
        super().__init__(f"Image payload too large: {size} bytes (limit {limit})")
        self.size = size
        self.limit = limit


class CaptureError(VisregError):
    """Screenshot capture failed (navigation, empty or oversized buffer)."""


class ProviderError(VisregError):
    """An AI vision provider call failed."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class ProviderNotConfiguredError(ProviderError):
    """Provider has no credentials configured."""


class ProviderTimeoutError(ProviderError):
    """Provider call exceeded its request timeout."""


class ExecutionTimeoutError(VisregError):
    """A queued test run exceeded its execution budget."""


class InvalidTransitionError(VisregError):
    """Illegal test run state transition."""

    def __init__(self, action: str, status: str):
        super().__init__(f"Cannot {action} a run in state {status}")
        self.action = action
        self.status = status


class NotFoundError(VisregError):
    """A requested record does not exist."""
