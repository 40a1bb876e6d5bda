"""
Retry controller: capped exponential backoff with jitter.

Sleeps go through ``asyncio.sleep`` so cancelling the calling task stops a
retry loop mid-wait.
"""

from __future__ import annotations

import asyncio
import random
from functools import partial
from typing import Awaitable, Callable, Optional, TypeVar

from .config import RetryPolicy
from .exceptions import RetryAttemptsExceeded, find_api_error, is_retryable as default_is_retryable
from .logging import BundleLoggerAdapter, get_logger, log_retry

__all__ = [
    "DEFAULT_BACKOFF",
    "jittered_backoff",
    "with_exp_backoff",
]

T = TypeVar("T")

DEFAULT_BACKOFF = 0.3  # seconds, used when the base is not positive

_logger = get_logger(__name__)


def jittered_backoff(base: float) -> float:
    """Return a delay uniformly drawn from ``[base/2, base/2 + base)``."""
    if base <= 0:
        base = DEFAULT_BACKOFF
    return base / 2 + random.random() * base


async def with_exp_backoff(
    label: str,
    operation: Callable[[int], Awaitable[T]],
    *,
    policy: Optional[RetryPolicy] = None,
    is_retryable: Optional[Callable[[BaseException], bool]] = None,
    logger: Optional[BundleLoggerAdapter] = None,
) -> T:
    """
    Run ``operation(attempt)`` until it succeeds or retrying stops making sense.

    Args:
        label: Operation name used in logs and in the exhaustion error
        operation: Async callable receiving the 0-based attempt number
        policy: Backoff and attempt limits (defaults to RetryPolicy())
        is_retryable: Predicate; defaults to the error classifier with the
            policy's deadline setting
        logger: Optional logger

    Returns:
        The operation's result

    Raises:
        RetryAttemptsExceeded: When a retryable error persists past max_retries
        Exception: The original error when it is not retryable, with a
            ``"<label>: not retryable (attempt N)"`` note attached
        asyncio.CancelledError: When the task is cancelled, including mid-sleep
    """
    policy = policy or RetryPolicy()
    log = logger or _logger
    if is_retryable is None:
        is_retryable = partial(default_is_retryable, retry_deadline=policy.retry_on_deadline)

    backoff = policy.initial_backoff
    attempt = 0
    while True:
        try:
            return await operation(attempt)
        except Exception as exc:
            if not is_retryable(exc):
                log.debug(
                    f"{label}.not_retryable",
                    attempt=attempt,
                    error_type=exc.__class__.__name__,
                )
                exc.add_note(f"{label}: not retryable (attempt {attempt + 1})")
                raise

            if attempt >= policy.max_retries:
                api_error = find_api_error(exc)
                log.error(
                    f"{label}.exhausted",
                    attempts=attempt + 1,
                    error_type=exc.__class__.__name__,
                    error_message=str(exc),
                )
                raise RetryAttemptsExceeded(
                    message="",
                    label=label,
                    attempts=attempt + 1,
                    last_status_code=api_error.status_code if api_error else None,
                    cause=exc,
                ) from exc

            delay = min(jittered_backoff(backoff), policy.max_backoff)
            api_error = find_api_error(exc)
            log_retry(
                log,
                label=label,
                attempt=attempt,
                max_retries=policy.max_retries,
                delay_ms=delay * 1000,
                reason=f"status_{api_error.status_code}" if api_error else exc.__class__.__name__,
            )

        await asyncio.sleep(delay)

        backoff = min(backoff * 2, policy.max_backoff)
        attempt += 1
