"""gptarchive error hierarchy.

All project exceptions inherit from GptArchiveError, enabling:
- ``except GptArchiveError`` at the CLI boundary
- Fine-grained catches deeper in the stack (``except AuthenticationError``)

API failures carry a tagged ``ErrorKind`` so retry classification is a match
over the kind rather than over class names.

Hierarchy:
    GptArchiveError
    ├── ConfigError                         # config.py
    ├── ApiError (kind, status, retry_after)
    │   ├── AuthenticationError             # AUTHENTICATION
    │   ├── RateLimitError                  # RATE_LIMITED
    │   ├── NetworkError                    # NETWORK
    │   └── ResponseValidationError         # VALIDATION
    ├── ProjectNotFoundError
    └── FileUnavailableError
"""

from __future__ import annotations

from enum import Enum

# Statuses signalling that the resource is gone; retrying cannot help.
GONE_STATUSES = frozenset({404, 410})


class ErrorKind(str, Enum):
    AUTHENTICATION = "authentication"
    RATE_LIMITED = "rate_limited"
    NETWORK = "network"
    VALIDATION = "validation"


class GptArchiveError(Exception):
    """Base class for all gptarchive errors."""


class ConfigError(GptArchiveError):
    pass


class ApiError(GptArchiveError):
    """A failed call against the ChatGPT backend."""

    kind: ErrorKind = ErrorKind.NETWORK

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.retry_after = retry_after

    @property
    def message(self) -> str:
        return str(self)


class AuthenticationError(ApiError):
    kind = ErrorKind.AUTHENTICATION


class RateLimitError(ApiError):
    kind = ErrorKind.RATE_LIMITED


class NetworkError(ApiError):
    kind = ErrorKind.NETWORK

    @property
    def resource_gone(self) -> bool:
        return self.status in GONE_STATUSES


class ResponseValidationError(ApiError):
    kind = ErrorKind.VALIDATION


class ProjectNotFoundError(GptArchiveError):
    def __init__(self, name_or_id: str, available: list[str]) -> None:
        listing = ", ".join(available) if available else "(none)"
        super().__init__(f'Project "{name_or_id}" not found. Available projects: {listing}')
        self.name_or_id = name_or_id
        self.available = available


class FileUnavailableError(GptArchiveError):
    """Download metadata for a file carried no usable download URL."""


def is_retryable(exc: BaseException) -> bool:
    """Return False for failures that retrying cannot fix."""
    if not isinstance(exc, ApiError):
        return isinstance(exc, Exception)
    match exc.kind:
        case ErrorKind.AUTHENTICATION | ErrorKind.VALIDATION:
            return False
        case ErrorKind.RATE_LIMITED:
            return True
        case ErrorKind.NETWORK:
            return exc.status not in GONE_STATUSES
    raise ValueError(f"Unknown error kind: {exc.kind!r}")


__all__ = [
    "ApiError",
    "AuthenticationError",
    "ConfigError",
    "ErrorKind",
    "FileUnavailableError",
    "GONE_STATUSES",
    "GptArchiveError",
    "NetworkError",
    "ProjectNotFoundError",
    "RateLimitError",
    "ResponseValidationError",
    "is_retryable",
]
