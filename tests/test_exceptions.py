"""
Tests for the exception hierarchy and error classification.

Covers:
- APIError string form
- is_retryable for statuses, transport errors, flaky I/O and deadlines
- is_rate_limited
- chain walking through wrapped exceptions
"""

from __future__ import annotations

import asyncio

import httpx
import pytest

from bundledl.exceptions import (
    APIError,
    BundleError,
    IncompleteDownloadError,
    NetworkError,
    RequestTimeoutError,
    RetryAttemptsExceeded,
    TruncatedArchiveError,
    UnsafePathError,
    find_api_error,
    is_rate_limited,
    is_retryable,
)


def wrap(err: BaseException, message: str = "wrap") -> RuntimeError:
    """Wrap ``err`` the way ``raise ... from err`` does."""
    outer = RuntimeError(f"{message}: {err}")
    outer.__cause__ = err
    return outer


class TestAPIError:
    """Test APIError formatting."""

    def test_str_prefers_message(self):
        err = APIError(message="Project not found", status_code=404)
        assert str(err) == "Project not found"

    def test_str_falls_back_to_reason_phrase(self):
        err = APIError(message="", status_code=503)
        assert str(err) == "Service Unavailable"

    def test_str_empty_when_nothing_set(self):
        assert str(APIError(message="")) == ""

    def test_is_bundle_error(self):
        assert isinstance(APIError(message="x", status_code=500), BundleError)

    def test_base_error_str_includes_url_and_context(self):
        err = BundleError(message="boom", url="https://x.test", context={"attempt": 2})
        assert str(err) == "boom | url=https://x.test | context=(attempt=2)"

    def test_cause_is_chained(self):
        cause = ValueError("inner")
        err = BundleError(message="outer", cause=cause)
        assert err.__cause__ is cause


class TestIsRetryableStatuses:
    """Status-code classification."""

    @pytest.mark.parametrize("status", [408, 425, 429, 500, 502, 503, 504])
    def test_retryable_statuses(self, status):
        err = APIError(message="boom", status_code=status, code=status)
        assert is_retryable(err) is True
        assert is_retryable(wrap(err)) is True

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 409, 418, 422, 501])
    def test_non_retryable_statuses(self, status):
        err = APIError(message="nope", status_code=status, code=status)
        assert is_retryable(err) is False
        assert is_retryable(wrap(err)) is False

    def test_exhausted_retries_keep_underlying_classification(self):
        inner = APIError(message="busy", status_code=503)
        outer = RetryAttemptsExceeded(message="", label="request", attempts=3, cause=inner)
        assert is_retryable(outer) is True
        assert find_api_error(outer) is inner


class TestIsRetryableTransport:
    """Transport, flaky I/O and cancellation classification."""

    def test_httpx_timeout(self):
        assert is_retryable(httpx.ReadTimeout("slow")) is True
        assert is_retryable(httpx.ConnectTimeout("slow")) is True

    def test_request_timeout_error(self):
        err = RequestTimeoutError(message="", timeout_type="read")
        assert is_retryable(err) is True
        assert is_retryable(wrap(err)) is True

    @pytest.mark.parametrize(
        "exc",
        [
            httpx.ReadError("reset"),
            httpx.WriteError("pipe"),
            httpx.RemoteProtocolError("peer closed connection"),
            ConnectionResetError(),
            ConnectionAbortedError(),
            BrokenPipeError(),
            EOFError(),
        ],
    )
    def test_flaky_io(self, exc):
        assert is_retryable(exc) is True

    def test_network_error_uses_cause(self):
        flaky = NetworkError(message="send request", cause=httpx.ReadError("reset"))
        refused = NetworkError(message="send request", cause=httpx.ConnectError("refused"))
        assert is_retryable(flaky) is True
        assert is_retryable(refused) is False

    def test_short_read_and_truncated_archive(self):
        assert is_retryable(IncompleteDownloadError(message="", expected_bytes=10, received_bytes=3))
        assert is_retryable(TruncatedArchiveError(message="", archive_path="/tmp/x.zip"))

    def test_archive_safety_errors_are_terminal(self):
        assert is_retryable(UnsafePathError(message="", entry_name="../evil.txt")) is False

    def test_cancellation_never_retryable(self):
        assert is_retryable(asyncio.CancelledError()) is False

    def test_deadline_is_terminal_by_default(self):
        assert is_retryable(TimeoutError()) is False
        assert is_retryable(wrap(TimeoutError())) is False

    def test_deadline_retryable_when_opted_in(self):
        assert is_retryable(TimeoutError(), retry_deadline=True) is True

    def test_nil_and_unknown(self):
        assert is_retryable(None) is False
        assert is_retryable(ValueError("some build error")) is False

    def test_error_raised_while_handling_is_classified_alone(self):
        """A bug inside an ``except`` block does not inherit the handled error's class."""
        try:
            try:
                raise httpx.ReadError("reset")
            except httpx.ReadError:
                {}["missing"]
        except KeyError as exc:
            err = exc

        assert isinstance(err.__context__, httpx.ReadError)
        assert is_retryable(err) is False
        assert find_api_error(err) is None

    def test_implicit_context_does_not_leak_api_error(self):
        try:
            try:
                raise APIError(message="slow down", status_code=429)
            except APIError:
                raise ValueError("bad handler")
        except ValueError as exc:
            err = exc

        assert is_rate_limited(err) is False
        assert is_rate_limited(wrap(err.__context__)) is True


class TestIsRateLimited:
    """429 detection."""

    def test_direct_and_wrapped(self):
        err = APIError(message="slow down", status_code=429)
        assert is_rate_limited(err) is True
        assert is_rate_limited(wrap(err)) is True

    def test_other_errors(self):
        assert is_rate_limited(APIError(message="", status_code=503)) is False
        assert is_rate_limited(ValueError("x")) is False
        assert is_rate_limited(None) is False
