"""
Logging adapter for the bundledl client.

The library never configures handlers. It emits dotted event names
(``request.started``, ``request.retry``, ``poll.round``, ``archive.extracted``)
with structured fields in ``extra`` and lets the embedding application decide
where they go.

Architecture:
- BundleLoggerAdapter wraps any LoggerAdapter and adds event helpers
- _logger_factory lets consumers inject their own logger factory
- The default factory uses standard library logging

Usage in bundledl:
    from bundledl.logging import get_logger

    logger = get_logger(__name__, project_id="123.abc")
    logger.info("upload.started", source_file="en.json")

Usage in consumer applications:
    from bundledl.logging import configure_logging

    configure_logging(logger_factory=my_structured_logger_factory)
"""

from __future__ import annotations

import logging
import time
from logging import Logger, LoggerAdapter
from typing import Any, Callable, Dict, Optional


# Global logger factory (can be injected by embedding applications)
_logger_factory: Optional[Callable[..., LoggerAdapter]] = None


class BundleLoggerAdapter:
    """
    Thin wrapper around LoggerAdapter with consistent event naming.

    Bound context is merged into every record's ``extra``.
    """

    def __init__(self, logger: LoggerAdapter, context: Optional[Dict[str, Any]] = None):
        self._logger = logger
        self._context = context or {}

    def _merge_context(self, **extra: Any) -> Dict[str, Any]:
        return {**self._context, **extra}

    def bind(self, **context: Any) -> "BundleLoggerAdapter":
        """Return a new adapter with additional bound context."""
        return BundleLoggerAdapter(self._logger, self._merge_context(**context))

    def debug(self, event: str, **extra: Any) -> None:
        self._logger.debug(event, extra=self._merge_context(**extra))

    def info(self, event: str, **extra: Any) -> None:
        self._logger.info(event, extra=self._merge_context(**extra))

    def warning(self, event: str, **extra: Any) -> None:
        self._logger.warning(event, extra=self._merge_context(**extra))

    def error(self, event: str, exc_info: Optional[BaseException] = None, **extra: Any) -> None:
        self._logger.error(event, extra=self._merge_context(**extra), exc_info=exc_info)


class _ContextAdapter(logging.LoggerAdapter):
    """LoggerAdapter that merges per-call ``extra`` over the bound context."""

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def _default_logger_factory(name: str, **context: Any) -> LoggerAdapter:
    """Default factory: a stdlib LoggerAdapter carrying the bound context."""
    base_logger: Logger = logging.getLogger(name)
    return _ContextAdapter(base_logger, context)


def configure_logging(logger_factory: Optional[Callable[..., LoggerAdapter]]) -> None:
    """
    Configure bundledl to use a custom logger factory.

    Args:
        logger_factory: Callable ``(name: str, **context) -> LoggerAdapter``,
            or None to restore the stdlib default.
    """
    global _logger_factory
    _logger_factory = logger_factory


def get_logger(
    name: str,
    project_id: Optional[str] = None,
    url: Optional[str] = None,
    **extra_context: Any
) -> BundleLoggerAdapter:
    """
    Get a bundledl logger with bound context.

    Uses the configured logger factory if set, otherwise stdlib logging.
    """
    context: Dict[str, Any] = {**extra_context}
    if project_id is not None:
        context["project_id"] = project_id
    if url is not None:
        context["url"] = url

    factory = _logger_factory or _default_logger_factory
    base_logger = factory(name, **context)

    return BundleLoggerAdapter(base_logger, context)


def log_timing(
    logger: BundleLoggerAdapter,
    event_prefix: str,
    **context: Any
) -> "TimingContext":
    """
    Context manager logging ``<prefix>.started`` and ``<prefix>.completed``
    (or ``<prefix>.failed``) with the elapsed time.

    Usage:
        with log_timing(logger, "archive.extract", dest=str(dest)):
            unzip_archive(path, dest)
    """
    return TimingContext(logger, event_prefix, context)


class TimingContext:
    """Context manager for timing and logging an operation."""

    def __init__(self, logger: BundleLoggerAdapter, event_prefix: str, context: Dict[str, Any]):
        self.logger = logger
        self.event_prefix = event_prefix
        self.context = context
        self.start_time = 0.0
        self.duration_ms = 0

    def __enter__(self) -> "TimingContext":
        self.start_time = time.perf_counter()
        self.logger.debug(f"{self.event_prefix}.started", **self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.duration_ms = int((time.perf_counter() - self.start_time) * 1000)

        if exc_type is None:
            self.logger.info(
                f"{self.event_prefix}.completed",
                duration_ms=self.duration_ms,
                **self.context
            )
        else:
            self.logger.error(
                f"{self.event_prefix}.failed",
                duration_ms=self.duration_ms,
                exc_info=exc_val,
                **self.context
            )


def log_exception(
    logger: BundleLoggerAdapter,
    exc: BaseException,
    event: str,
    **context: Any
) -> None:
    """
    Log an exception with its type, message and (for APIError) status.

    Usage:
        except BundleError as exc:
            log_exception(logger, exc, "upload.failed", source_file=name)
            raise
    """
    error_context = {
        **context,
        "error_type": exc.__class__.__name__,
        "error_message": str(exc),
    }
    status_code = getattr(exc, "status_code", None)
    if status_code:
        error_context["status_code"] = status_code

    logger.error(event, exc_info=exc, **error_context)


def log_retry(
    logger: BundleLoggerAdapter,
    label: str,
    attempt: int,
    max_retries: int,
    delay_ms: float,
    reason: str,
    **context: Any
) -> None:
    """
    Log a retry with its backoff delay.

    Args:
        logger: Logger instance
        label: Operation label ("request", "download", ...)
        attempt: Failed attempt number (0-indexed)
        max_retries: Additional attempts allowed by the policy
        delay_ms: Backoff delay in milliseconds
        reason: Exception class name or status that triggered the retry
    """
    logger.warning(
        f"{label}.retry",
        attempt=attempt,
        max_retries=max_retries,
        delay_ms=round(delay_ms, 2),
        reason=reason,
        **context
    )
