"""
Errors raised by wni.

Library code only raises; the CLI decides how to present them.
"""

from typing import Optional


class WniError(Exception):
    """Base error for wni."""
    pass


class TrackerError(WniError):
    """Error reading or updating the resource tracker file."""
    pass


class NotFoundError(TrackerError):
    """Tracker file is missing or unreadable, or an ID to remove is not tracked."""
    pass


class DuplicateEntryError(TrackerError):
    """An ID passed to append_info is already tracked."""
    pass


class InvalidPathError(TrackerError):
    """The tracker directory does not exist or is not a directory."""
    pass


class TrackerIOError(TrackerError):
    """Filesystem failure while touching the tracker file."""

    def __init__(self, operation: str, path: str, error: Optional[OSError] = None):
        self.operation = operation
        self.path = path
        message = f"failed to {operation} '{path}'"
        if error is not None:
            message = f"{message}: {error}"
        super().__init__(message)


class IPLookupError(WniError):
    """The operator's external IP address could not be determined."""
    pass


class ProviderError(WniError):
    """A cloud provider call failed."""
    pass
