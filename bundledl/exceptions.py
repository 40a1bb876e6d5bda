"""
Exception hierarchy and error classification for the bundledl package.

Every failure raised by the library derives from ``BundleError`` so callers can
branch on the kind of failure instead of parsing message text.

Exception Hierarchy:
    BundleError (base)
    ├── ValidationError
    │   ├── InvalidURLError
    │   ├── InvalidSettingsError
    │   └── InvalidParamsError
    ├── NetworkError
    │   ├── RequestTimeoutError
    │   └── IncompleteDownloadError
    ├── APIError (non-2xx response from the service)
    ├── ResponseError
    │   ├── ResponseDecodeError
    │   └── EmptyResponseFieldError
    ├── ProcessFailedError
    ├── ArchiveError
    │   ├── TruncatedArchiveError
    │   ├── UnsafePathError
    │   ├── CorruptEntryError
    │   ├── EntryTooLargeError
    │   ├── ArchiveTooLargeError
    │   └── TooManyFilesError
    └── RetryError
        └── RetryAttemptsExceeded

Usage:
    from bundledl.exceptions import APIError, is_rate_limited

    try:
        result = await downloader.download(dest, {"format": "json"})
    except APIError as e:
        logger.warning(f"Service rejected export: {e.status_code} {e}")
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional

import httpx

__all__ = [
    # Base exceptions
    "BundleError",
    # Validation errors
    "ValidationError",
    "InvalidURLError",
    "InvalidSettingsError",
    "InvalidParamsError",
    # Network errors
    "NetworkError",
    "RequestTimeoutError",
    "IncompleteDownloadError",
    # Service errors
    "APIError",
    "ResponseError",
    "ResponseDecodeError",
    "EmptyResponseFieldError",
    "ProcessFailedError",
    # Archive errors
    "ArchiveError",
    "TruncatedArchiveError",
    "UnsafePathError",
    "CorruptEntryError",
    "EntryTooLargeError",
    "ArchiveTooLargeError",
    "TooManyFilesError",
    # Retry errors
    "RetryError",
    "RetryAttemptsExceeded",
    # Classification
    "RETRYABLE_STATUS_CODES",
    "iter_exception_chain",
    "find_api_error",
    "is_retryable",
    "is_rate_limited",
]

RETRYABLE_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})


# ============================================================================
# Base Exception
# ============================================================================


@dataclass(slots=True)
class BundleError(Exception):
    """
    Base exception for all bundledl failures.

    Carries the URL involved, the response (if any) and the causal exception.
    """

    message: str
    url: Optional[str] = None
    response: Optional[httpx.Response] = None
    cause: Optional[BaseException] = None
    context: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)
        if self.cause is not None:
            self.__cause__ = self.cause

    def __str__(self) -> str:
        parts = [self.message]
        if self.url:
            parts.append(f"url={self.url}")
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f"context=({ctx_str})")
        return " | ".join(parts)


# ============================================================================
# Validation Errors
# ============================================================================


@dataclass(slots=True)
class ValidationError(BundleError):
    """Base class for input validation failures."""
    pass


@dataclass(slots=True)
class InvalidURLError(ValidationError):
    """Raised when a URL is empty or malformed."""

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f"Invalid or empty URL: {self.url!r}"
        BundleError.__post_init__(self)


@dataclass(slots=True)
class InvalidSettingsError(ValidationError):
    """Raised when ClientSettings contains invalid configuration."""

    setting_name: Optional[str] = None
    setting_value: Optional[Any] = None

    def __post_init__(self) -> None:
        if not self.message and self.setting_name:
            self.message = f"Invalid setting {self.setting_name}={self.setting_value!r}"
        BundleError.__post_init__(self)


@dataclass(slots=True)
class InvalidParamsError(ValidationError):
    """Raised when upload/download request parameters are unusable."""

    param: Optional[str] = None


# ============================================================================
# Network Errors
# ============================================================================


@dataclass(slots=True)
class NetworkError(BundleError):
    """Transport-level failure. The originating httpx exception is the cause."""
    pass


@dataclass(slots=True)
class RequestTimeoutError(NetworkError):
    """Raised when a request exceeds one of the configured httpx timeouts."""

    timeout_type: Optional[str] = None  # "connect", "read", "write", "pool"

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f"Request timed out ({self.timeout_type})"
        BundleError.__post_init__(self)


@dataclass(slots=True)
class IncompleteDownloadError(NetworkError):
    """
    Raised when fewer bytes arrive than the declared Content-Length.

    Treated as a short read, so the download is retried.
    """

    expected_bytes: int = 0
    received_bytes: int = 0

    def __post_init__(self) -> None:
        if not self.message:
            self.message = (
                f"Incomplete download: got {self.received_bytes:,} of "
                f"{self.expected_bytes:,} bytes"
            )
        BundleError.__post_init__(self)


# ============================================================================
# Service Errors
# ============================================================================


@dataclass(slots=True)
class APIError(BundleError):
    """
    Structured representation of a non-2xx response from the service.

    Built by ``bundledl.parse.parse_api_error``. ``str()`` returns the server
    message, or the standard reason phrase when the server sent none.
    """

    status_code: int = 0
    code: int = 0
    reason: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    raw: str = ""

    def __str__(self) -> str:
        if self.message:
            return self.message
        if self.status_code:
            return httpx.codes.get_reason_phrase(self.status_code)
        return ""

    @property
    def retryable(self) -> bool:
        return self.status_code in RETRYABLE_STATUS_CODES


@dataclass(slots=True)
class ResponseError(BundleError):
    """Base class for 2xx responses the client cannot use."""
    pass


@dataclass(slots=True)
class ResponseDecodeError(ResponseError):
    """Raised when a 2xx response body is not valid JSON."""

    body_excerpt: Optional[str] = None


@dataclass(slots=True)
class EmptyResponseFieldError(ResponseError):
    """Raised when a required response field (bundle_url, process_id) is empty."""

    field_name: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f"Empty {self.field_name} in response"
        BundleError.__post_init__(self)


@dataclass(slots=True)
class ProcessFailedError(BundleError):
    """Raised when a server-side process did not reach the finished state."""

    process_id: Optional[str] = None
    status: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f"Process {self.process_id} did not finish (status={self.status})"
        BundleError.__post_init__(self)


# ============================================================================
# Archive Errors
# ============================================================================


@dataclass(slots=True)
class ArchiveError(BundleError):
    """Base class for archive validation and extraction failures."""

    archive_path: Optional[str] = None


@dataclass(slots=True)
class TruncatedArchiveError(ArchiveError):
    """
    Raised when a downloaded file is not a readable ZIP.

    Classified like a short read so the download is attempted again.
    """

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f"Truncated or invalid zip archive: {self.archive_path}"
        BundleError.__post_init__(self)


@dataclass(slots=True)
class UnsafePathError(ArchiveError):
    """Raised when an archive entry would land outside the destination."""

    entry_name: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f"Unsafe path in zip: {self.entry_name!r}"
        BundleError.__post_init__(self)


@dataclass(slots=True)
class CorruptEntryError(ArchiveError):
    """Raised when an entry's data fails to decompress or its CRC check."""

    entry_name: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f"Corrupt zip entry: {self.entry_name!r}"
        BundleError.__post_init__(self)


@dataclass(slots=True)
class EntryTooLargeError(ArchiveError):
    """Raised when a single entry exceeds ExtractionPolicy.max_file_bytes."""

    entry_name: Optional[str] = None
    size: int = 0
    max_size: int = 0

    def __post_init__(self) -> None:
        if not self.message:
            self.message = (
                f"Zip entry too big: {self.entry_name} ({self.size:,} bytes, "
                f"limit {self.max_size:,})"
            )
        BundleError.__post_init__(self)


@dataclass(slots=True)
class ArchiveTooLargeError(ArchiveError):
    """Raised when cumulative uncompressed size exceeds max_total_bytes."""

    total_size: int = 0
    max_size: int = 0

    def __post_init__(self) -> None:
        if not self.message:
            self.message = (
                f"Zip too large uncompressed: {self.total_size:,} bytes "
                f"exceeds limit of {self.max_size:,}"
            )
        BundleError.__post_init__(self)


@dataclass(slots=True)
class TooManyFilesError(ArchiveError):
    """Raised when the archive holds more entries than max_files."""

    file_count: int = 0
    max_files: int = 0

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f"Zip too many files: {self.file_count} (limit {self.max_files})"
        BundleError.__post_init__(self)


# ============================================================================
# Retry Errors
# ============================================================================


@dataclass(slots=True)
class RetryError(BundleError):
    """Base class for retry mechanism failures."""
    pass


@dataclass(slots=True)
class RetryAttemptsExceeded(RetryError):
    """
    Raised when maximum retry attempts are exhausted without success.

    The last error is the cause; its status code is copied when it was an
    APIError.
    """

    label: Optional[str] = None
    attempts: int = 0
    last_status_code: Optional[int] = None

    def __post_init__(self) -> None:
        if not self.message:
            status = f", last status={self.last_status_code}" if self.last_status_code else ""
            prefix = f"{self.label}: " if self.label else ""
            self.message = f"{prefix}retry attempts exhausted ({self.attempts} attempts{status})"
        BundleError.__post_init__(self)


# ============================================================================
# Classification
# ============================================================================

_FLAKY_IO_ERRORS: tuple[type[BaseException], ...] = (
    IncompleteDownloadError,
    TruncatedArchiveError,
    httpx.ReadError,
    httpx.WriteError,
    httpx.RemoteProtocolError,
    ConnectionResetError,
    ConnectionAbortedError,
    BrokenPipeError,
    EOFError,
)


def iter_exception_chain(exc: Optional[BaseException]) -> Iterator[BaseException]:
    """
    Yield ``exc`` followed by its explicit causes (``raise ... from`` / ``cause=``).

    Implicit ``__context__`` is not followed: an error raised while handling
    another one is classified on its own.
    """
    seen: set[int] = set()
    while exc is not None and id(exc) not in seen:
        seen.add(id(exc))
        yield exc
        exc = exc.__cause__


def find_api_error(exc: Optional[BaseException]) -> Optional[APIError]:
    """Return the first APIError in the exception chain, if any."""
    for item in iter_exception_chain(exc):
        if isinstance(item, APIError):
            return item
    return None


def is_retryable(exc: Optional[BaseException], *, retry_deadline: bool = False) -> bool:
    """
    Decide whether the same operation might succeed if attempted again.

    Args:
        exc: Raised exception (wrapped or not)
        retry_deadline: Treat a caller deadline (bare ``TimeoutError`` from
            ``asyncio.timeout``/``wait_for``) as retryable. Cancellation is
            never retryable.

    Returns:
        True for transport timeouts, flaky I/O, and APIError statuses in
        RETRYABLE_STATUS_CODES.
    """
    for item in iter_exception_chain(exc):
        if isinstance(item, asyncio.CancelledError):
            return False
        if isinstance(item, APIError):
            return item.retryable
        if isinstance(item, (RequestTimeoutError, httpx.TimeoutException)):
            return True
        if isinstance(item, _FLAKY_IO_ERRORS):
            return True
        if isinstance(item, TimeoutError):
            return retry_deadline
    return False


def is_rate_limited(exc: Optional[BaseException]) -> bool:
    """True iff the exception chain holds an APIError with status 429."""
    api_error = find_api_error(exc)
    return api_error is not None and api_error.status_code == 429
