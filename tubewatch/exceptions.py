"""
Defines custom exceptions for the application to allow for more specific error handling.
"""


class TubewatchError(Exception):
    """Base exception for all application-specific errors."""


class ConfigurationError(TubewatchError):
    """Raised for missing or invalid configuration (no download path, no API key)."""


class NoCredentialAvailable(TubewatchError):
    """Raised when the credential pool cannot hand out an API key."""


class NoActiveCredentialError(NoCredentialAvailable, ConfigurationError):
    """Raised when no active API key is configured at all."""


class CredentialsExhaustedError(NoCredentialAvailable):
    """
    Raised when every active API key was already tried and excluded during
    the current operation.
    """


class RemoteError(TubewatchError):
    """Raised when the remote API answers with a non-2xx status."""

    def __init__(self, status: int, body: str):
        self.status = status
        self.body = body
        super().__init__(f"YouTube API error {status}: {body[:300]}")

    @property
    def is_quota_error(self) -> bool:
        """True for quota or permission failures, which no retry will fix today."""
        return self.status == 403 or "quota" in self.body.lower()


class DecodeError(TubewatchError):
    """Raised when a remote response body cannot be parsed."""


class ProcessError(TubewatchError):
    """Raised when the external downloader cannot be spawned or exits with failure."""


class NotFoundError(TubewatchError):
    """Raised for unknown channels, items, groups or untracked downloads."""


class CircuitBreakerError(TubewatchError):
    """Attached to work that was skipped because the circuit breaker is open."""


def is_quota_error(error: BaseException) -> bool:
    """Checks whether an error should stop further API work for this run."""
    if isinstance(error, NoCredentialAvailable):
        return True
    if isinstance(error, RemoteError):
        return error.is_quota_error
    return False
