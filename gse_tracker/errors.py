# gse_tracker/errors.py
"""
Error taxonomy shared by storage, providers and jobs.

Decode-side errors (MalformedKey / DecodeError) are never surfaced to readers:
the store logs and skips the offending entry.
"""

from typing import Optional


class GseTrackerError(Exception):
    """Base exception for everything raised by this package."""
    pass


class UpstreamError(GseTrackerError):
    """Raised when a data-source request fails after its retry budget is spent."""

    def __init__(self, url: str, reason: str, status_code: Optional[int] = None):
        self.url = url
        self.reason = reason
        self.status_code = status_code

        msg = f"Upstream request failed: {url} ({reason})"
        if status_code is not None:
            msg = f"Upstream request failed: {url} status={status_code} ({reason})"
        super().__init__(msg)


class MalformedKey(GseTrackerError):
    """Raised when a stored key does not match the expected layout."""

    def __init__(self, key: bytes, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Malformed key {key!r}: {reason}")


class DecodeError(GseTrackerError):
    """Raised when a stored value cannot be parsed into its model."""

    def __init__(self, key: bytes, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Cannot decode value at {key!r}: {reason}")


class StorageError(GseTrackerError):
    """Raised when the key-value engine itself fails."""
    pass


class NotFound(GseTrackerError):
    """No record exists for the requested symbol."""

    def __init__(self, what: str):
        self.what = what
        super().__init__(f"Not found: {what}")
