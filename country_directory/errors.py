"""Exception hierarchy for the member directory.

Only configuration and authorization failures reach callers synchronously.
Upstream failures are absorbed by the fetcher, and refresh failures are
logged by the scheduler while the previous snapshot stays in service.
"""

from typing import Optional

__all__ = [
    "DirectoryError",
    "ConfigurationError",
    "UpstreamRequestError",
    "RateLimitError",
    "RefreshFailure",
    "RefreshInProgress",
    "AuthorizationError",
]


class DirectoryError(Exception):
    """Base exception for member directory failures."""


class ConfigurationError(DirectoryError):
    """Raised when the Discourse URL or API key is missing."""


class UpstreamRequestError(DirectoryError):
    """A single HTTP call to the remote platform failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class RateLimitError(UpstreamRequestError):
    """The remote platform answered 429."""

    def __init__(self, message: str = "Rate limit exceeded"):
        super().__init__(message, status_code=429)


class RefreshFailure(DirectoryError):
    """A refresh produced no usable data; the previous snapshot was kept."""


class RefreshInProgress(DirectoryError):
    """A refresh was requested while another one is still running."""


class AuthorizationError(DirectoryError):
    """The caller is not an administrator."""
