from __future__ import annotations
import asyncio
import time
from typing import Any, Awaitable, Callable, Iterable, List, Mapping, Optional, TypeVar

import httpx

from ..config import ClientSettings
from ..exceptions import (
    BundleError,
    NetworkError,
    RequestTimeoutError,
    ResponseDecodeError,
    find_api_error,
    is_retryable,
)
from ..logging import BundleLoggerAdapter, get_logger, log_exception
from ..models import STATUS_FAILED, STATUS_QUEUED, QueuedProcess
from ..parse import ERROR_BODY_CAP, parse_api_error
from ..retry import with_exp_backoff
from ..utils import encode_json_body, is_success

T = TypeVar("T")


def translate_transport_error(exc: httpx.RequestError, method: str, url: str) -> NetworkError:
    """Wrap an httpx request exception (transport, redirect loop) in the matching NetworkError."""
    if isinstance(exc, httpx.TimeoutException):
        timeout_type = "unknown"
        if isinstance(exc, httpx.ConnectTimeout):
            timeout_type = "connect"
        elif isinstance(exc, httpx.ReadTimeout):
            timeout_type = "read"
        elif isinstance(exc, httpx.WriteTimeout):
            timeout_type = "write"
        elif isinstance(exc, httpx.PoolTimeout):
            timeout_type = "pool"
        return RequestTimeoutError(
            message=f"{method} request timed out ({timeout_type})",
            url=url,
            timeout_type=timeout_type,
            cause=exc,
        )
    return NetworkError(
        message=f"send request: {exc.__class__.__name__}: {exc}",
        url=url,
        cause=exc,
    )


class BaseClient:
    """
    Async client for the translation-management API.

    Provides shared functionality:
      - Async HTTP client management (async context manager)
      - Single-attempt request executor with error parsing
      - Retry logic with jittered exponential backoff
      - Polling of server-side processes until they finish

    Example:
        settings = ClientSettings(token="...", project_id="123.abc")
        async with BaseClient(settings) as client:
            processes = await client.poll_processes(["p1", "p2"])
    """

    def __init__(
        self,
        settings: ClientSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._logger: BundleLoggerAdapter = self.settings.logger or get_logger(
            __name__, project_id=self.settings.project_id
        )

    async def __aenter__(self) -> "BaseClient":
        self._client = httpx.AsyncClient(
            base_url=self.settings.base_url,
            headers={"User-Agent": self.settings.user_agent},
            timeout=httpx.Timeout(
                connect=self.settings.timeouts.connect,
                read=self.settings.timeouts.read,
                write=self.settings.timeouts.write,
                pool=self.settings.timeouts.pool,
            ),
            http2=self.settings.http2,
            follow_redirects=self.settings.follow_redirects,
            max_redirects=self.settings.max_redirects,
            transport=self._transport,
        )
        self._logger.debug(
            "client.initialized",
            base_url=self.settings.base_url,
            http2=self.settings.http2,
            max_retries=self.settings.retry.max_retries,
        )
        return self

    async def __aexit__(self, *exc) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            self._logger.debug("client.closed")

    @property
    def client(self) -> httpx.AsyncClient:
        assert self._client is not None, "Use async context manager: `async with Client(settings)`"
        return self._client

    def project_path(self, suffix: str) -> str:
        """Build ``projects/{project_id}/<suffix>`` relative to base_url."""
        return f"projects/{self.settings.project_id}/{suffix}"

    async def _with_retry(
        self,
        label: str,
        operation: Callable[[int], Awaitable[T]],
        is_retryable_fn: Optional[Callable[[BaseException], bool]] = None,
    ) -> T:
        return await with_exp_backoff(
            label,
            operation,
            policy=self.settings.retry,
            is_retryable=is_retryable_fn,
            logger=self._logger,
        )

    async def _do_request(
        self,
        method: str,
        path: str,
        body: Optional[Mapping[str, Any]] = None,
    ) -> dict:
        """
        Perform a single HTTP request against the API, no retries.

        Args:
            method: HTTP method
            path: Path relative to base_url
            body: JSON body (sent with Content-Type: application/json)

        Returns:
            Decoded JSON object ({} for an empty 2xx body)

        Raises:
            APIError: Non-2xx response, parsed from the body
            NetworkError: Transport failure (RequestTimeoutError for timeouts)
            ResponseDecodeError: 2xx body is not valid JSON
        """
        headers = {
            "X-Api-Token": self.settings.token,
            "Accept": "application/json",
        }
        content: Optional[bytes] = None
        if body is not None:
            content = encode_json_body(body)
            headers["Content-Type"] = "application/json"

        url = str(self.client.base_url.join(path))
        try:
            resp = await self.client.request(method, path, content=content, headers=headers)
        except httpx.RequestError as exc:
            raise translate_transport_error(exc, method, url) from exc

        if not is_success(resp.status_code):
            raise parse_api_error(resp.content[:ERROR_BODY_CAP], resp.status_code, response=resp)

        raw = resp.content
        if not raw.strip():
            return {}
        try:
            decoded = resp.json()
        except ValueError as exc:
            raise ResponseDecodeError(
                message=f"decode response: {exc}",
                url=url,
                response=resp,
                cause=exc,
                body_excerpt=raw[:200].decode("utf-8", errors="replace"),
            ) from exc
        if not isinstance(decoded, dict):
            raise ResponseDecodeError(
                message=f"decode response: expected JSON object, got {type(decoded).__name__}",
                url=url,
                response=resp,
            )
        return decoded

    async def _do_request_with_retry(
        self,
        method: str,
        path: str,
        body: Optional[Mapping[str, Any]] = None,
        label: str = "request",
    ) -> dict:
        """``_do_request`` wrapped in the retry controller."""
        request_start = time.perf_counter()
        self._logger.debug("request.started", method=method, path=path)

        async def attempt(_: int) -> dict:
            return await self._do_request(method, path, body)

        result = await self._with_retry(label, attempt)
        self._logger.debug(
            "request.completed",
            method=method,
            path=path,
            duration_ms=round((time.perf_counter() - request_start) * 1000, 2),
        )
        return result

    async def _fetch_process(self, process_id: str) -> QueuedProcess:
        payload = await self._do_request_with_retry(
            "GET",
            self.project_path(f"processes/{process_id}"),
            label="poll",
        )
        return QueuedProcess.from_payload(payload, fallback_id=process_id)

    async def poll_processes(self, process_ids: Iterable[str]) -> List[QueuedProcess]:
        """
        Poll server-side processes until each is finished or failed.

        Pending IDs are fetched one at a time per round. A fetch that fails
        with a non-retryable APIError marks that ID failed; any other failure
        is skipped until the next round. Rounds are separated by a doubling
        wait, bounded by ``settings.poll.max_wait`` overall.

        Args:
            process_ids: Process IDs; blanks are dropped, duplicates kept

        Returns:
            One QueuedProcess per non-blank input ID, in input order. IDs still
            pending when the ceiling elapses keep their last observed status.

        Raises:
            asyncio.CancelledError: The calling task was cancelled
        """
        ordered = [pid.strip() for pid in process_ids if pid and pid.strip()]

        processes: dict[str, QueuedProcess] = {}
        pending: dict[str, None] = {}
        for pid in ordered:
            processes[pid] = QueuedProcess(process_id=pid, status=STATUS_QUEUED)
            pending[pid] = None

        loop = asyncio.get_running_loop()
        start = loop.time()
        wait = self.settings.poll.initial_wait
        max_wait = self.settings.poll.max_wait
        rounds = 0

        self._logger.info("poll.started", process_count=len(pending))

        while pending and loop.time() - start < max_wait:
            rounds += 1
            for pid in list(pending):
                # let a pending cancellation land before each request
                await asyncio.sleep(0)
                proc_logger = self._logger.bind(process_id=pid)
                try:
                    proc = await self._fetch_process(pid)
                except BundleError as exc:
                    api_error = find_api_error(exc)
                    if api_error is not None and not is_retryable(exc):
                        log_exception(proc_logger, exc, "poll.process_failed")
                        processes[pid] = QueuedProcess(process_id=pid, status=STATUS_FAILED)
                        del pending[pid]
                    else:
                        proc_logger.warning(
                            "poll.fetch_skipped",
                            error_type=exc.__class__.__name__,
                            error_message=str(exc),
                        )
                    continue

                processes[pid] = proc
                if proc.is_terminal:
                    del pending[pid]

            self._logger.debug("poll.round", round=rounds, pending=len(pending))
            if not pending:
                break

            remaining = max_wait - (loop.time() - start)
            if remaining <= 0:
                break
            await asyncio.sleep(min(wait, remaining))
            wait *= 2

        if pending:
            self._logger.warning(
                "poll.ceiling_reached",
                pending=list(pending),
                max_wait=max_wait,
                rounds=rounds,
            )
        else:
            self._logger.info("poll.completed", rounds=rounds)

        return [processes[pid] for pid in ordered]
