from .clients import (
    BaseClient,
    Downloader,
    Uploader,
)
from .config import (
    ClientSettings,
    ExtractionPolicy,
    PollPolicy,
    RetryPolicy,
    Timeouts,
)
from .models import (
    STATUS_FAILED,
    STATUS_FINISHED,
    STATUS_QUEUED,
    BundleDownloadResult,
    QueuedProcess,
    UploadResult,
)
from .exceptions import (
    # Base exceptions
    BundleError,
    # Validation errors
    ValidationError,
    InvalidURLError,
    InvalidSettingsError,
    InvalidParamsError,
    # Network errors
    NetworkError,
    RequestTimeoutError,
    IncompleteDownloadError,
    # Service errors
    APIError,
    ResponseError,
    ResponseDecodeError,
    EmptyResponseFieldError,
    ProcessFailedError,
    # Archive errors
    ArchiveError,
    TruncatedArchiveError,
    UnsafePathError,
    CorruptEntryError,
    EntryTooLargeError,
    ArchiveTooLargeError,
    TooManyFilesError,
    # Retry errors
    RetryError,
    RetryAttemptsExceeded,
    # Classification
    find_api_error,
    is_retryable,
    is_rate_limited,
)
from .parse import parse_api_error
from .retry import jittered_backoff, with_exp_backoff
from .archive import unzip_archive, validate_archive
from .logging import configure_logging, get_logger


__all__ = [
    # Clients
    "BaseClient",
    "Downloader",
    "Uploader",

    # Configuration
    "ClientSettings",
    "ExtractionPolicy",
    "PollPolicy",
    "RetryPolicy",
    "Timeouts",

    # Models
    "QueuedProcess",
    "UploadResult",
    "BundleDownloadResult",
    "STATUS_QUEUED",
    "STATUS_FINISHED",
    "STATUS_FAILED",

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

    # Error handling
    "parse_api_error",
    "find_api_error",
    "is_retryable",
    "is_rate_limited",

    # Resilience and archives
    "jittered_backoff",
    "with_exp_backoff",
    "unzip_archive",
    "validate_archive",

    # Logging
    "configure_logging",
    "get_logger",
]
