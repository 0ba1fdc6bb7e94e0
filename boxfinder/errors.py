"""Failure taxonomy for boxfinder.

- ConnectivityError: no response was received (timeout, DNS, refused, reset),
  or a success page that is not JSON came from something in front of the API.
  Triggers the offline fallback path and is never surfaced to the UI.
- ServerRejectedError: the server answered with an error status. Propagated
  unchanged; never queued and never retried automatically.
- NotCachedError: an offline operation needs an entity the cache does not hold.
- ConfigurationError: the client cannot be built from the available settings.

Local storage faults have no exception type: the cache and the queue log them
and degrade to empty/no-op.
"""

from typing import Optional


class BoxFinderError(Exception):
    """Base exception for boxfinder errors."""


class ConnectivityError(BoxFinderError):
    """Raised when a remote call gets no response from the API itself."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class ServerRejectedError(BoxFinderError):
    """Raised when the server returns a non-success status."""

    def __init__(self, status_code: int, message: str = ""):
        super().__init__(f"HTTP {status_code}: {message}" if message else f"HTTP {status_code}")
        self.status_code = status_code
        self.message = message

    @property
    def not_found(self) -> bool:
        return self.status_code == 404

    @property
    def unauthorized(self) -> bool:
        return self.status_code == 401


class NotCachedError(BoxFinderError):
    """Raised when an offline operation targets an entity missing from the cache."""


class ConfigurationError(BoxFinderError):
    """Raised when required client configuration is missing or invalid."""
