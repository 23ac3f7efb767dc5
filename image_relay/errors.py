"""
Image Relay - Error Taxonomy

Fatal errors stop the process at startup. Per-run errors abort a single
notification and are logged by the event handler; they never reach the
subscription loop.
"""

from __future__ import annotations


class ImageRelayError(Exception):
    """Base class for all image-relay errors."""


# =============================================================================
# Fatal (startup)
# =============================================================================


class ConfigurationError(ImageRelayError):
    """Raised when required configuration is missing or invalid."""

    def __init__(self, message: str, missing: list[str] | None = None):
        super().__init__(message)
        self.missing = missing or []


class SubscriptionError(ImageRelayError):
    """Raised when the notification connection or LISTEN cannot be set up."""


# =============================================================================
# Aborting (per run)
# =============================================================================


class ImageFetchError(ImageRelayError):
    """Raised when image bytes cannot be retrieved from the internal API."""

    def __init__(self, url: str, message: str, status_code: int | None = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class ImageUploadError(ImageRelayError):
    """Raised when the storage backend rejects an upload."""

    def __init__(self, filename: str, destination: str, message: str):
        super().__init__(message)
        self.filename = filename
        self.destination = destination
