"""GitLab API exceptions.

Every failure raised by this package is a :class:`GitLabError` subclass whose
``kind`` is one of the closed :class:`ErrorKind` values, so callers can branch
on ``error.kind`` instead of inspecting messages or status codes.
"""

from __future__ import annotations

from enum import Enum

from .models.base import GitLabModel


class ErrorKind(str, Enum):
    NET_ERROR = "NET_ERROR"
    AUTH_ERROR = "AUTH_ERROR"
    RATE_LIMIT = "RATE_LIMIT"
    NOT_FOUND = "NOT_FOUND"
    GRAPHQL_ERROR = "GRAPHQL_ERROR"
    VALIDATION = "VALIDATION"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class ErrorRecord(GitLabModel):
    """Structured, user-facing description of a failure."""

    kind: ErrorKind
    message: str
    http_status: int | None = None
    retry_after_seconds: int | None = None


class GitLabError(Exception):
    """Base exception for GitLab operations."""

    kind: ErrorKind = ErrorKind.UNKNOWN_ERROR
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retry_after: int | None = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.retry_after = retry_after
        super().__init__(message)

    def to_record(self) -> ErrorRecord:
        return ErrorRecord(
            kind=self.kind,
            message=self.message,
            http_status=self.status_code,
            retry_after_seconds=self.retry_after,
        )


class GitLabNetworkError(GitLabError):
    """Raised on connection failures and timeouts."""

    kind = ErrorKind.NET_ERROR
    retryable = True


class GitLabAuthError(GitLabError):
    """Raised on 401/403 authentication failures."""

    kind = ErrorKind.AUTH_ERROR

    def __init__(self, status_code: int, message: str = "") -> None:
        status_text = "Unauthorized" if status_code == 401 else "Forbidden"
        super().__init__(
            f"{status_text}: {message}" if message else status_text,
            status_code=status_code,
        )


class GitLabRateLimitError(GitLabError):
    """Raised on 429 responses; ``retry_after`` is the server-requested wait in seconds."""

    kind = ErrorKind.RATE_LIMIT
    retryable = True

    def __init__(self, retry_after: int, message: str = "") -> None:
        super().__init__(
            message or f"Rate limit exceeded. Please retry after {retry_after} seconds.",
            status_code=429,
            retry_after=retry_after,
        )


class GitLabNotFoundError(GitLabError):
    """Raised on 404 responses and when a project or merge request is missing."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, message: str = "Not Found", *, status_code: int | None = 404) -> None:
        super().__init__(message, status_code=status_code)


class GitLabGraphQLError(GitLabError):
    """Raised when a GraphQL response carries errors or no data."""

    kind = ErrorKind.GRAPHQL_ERROR


class GitLabValidationError(GitLabError):
    """Raised when a payload does not have the expected structure."""

    kind = ErrorKind.VALIDATION


class GitLabUnknownError(GitLabError):
    """Raised for non-success responses and failures with no better classification."""

    kind = ErrorKind.UNKNOWN_ERROR
    retryable = True


_ERRORS_BY_KIND: dict[ErrorKind, type[GitLabError]] = {
    ErrorKind.NET_ERROR: GitLabNetworkError,
    ErrorKind.GRAPHQL_ERROR: GitLabGraphQLError,
    ErrorKind.VALIDATION: GitLabValidationError,
    ErrorKind.UNKNOWN_ERROR: GitLabUnknownError,
}


def error_for(
    kind: ErrorKind,
    message: str,
    *,
    status_code: int | None = None,
    retry_after: int | None = None,
) -> GitLabError:
    """Build the exception matching *kind*."""
    if kind is ErrorKind.AUTH_ERROR:
        return GitLabAuthError(status_code or 401, message)
    if kind is ErrorKind.RATE_LIMIT:
        return GitLabRateLimitError(60 if retry_after is None else retry_after, message)
    if kind is ErrorKind.NOT_FOUND:
        return GitLabNotFoundError(message, status_code=status_code)
    return _ERRORS_BY_KIND[kind](message, status_code=status_code)

