from __future__ import annotations
import asyncio
import os
import tempfile
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

import aiofiles
import httpx

from .base import BaseClient, translate_transport_error
from ..archive import unzip_archive, validate_archive
from ..config import ExtractionPolicy
from ..exceptions import (
    EmptyResponseFieldError,
    IncompleteDownloadError,
    InvalidURLError,
    ProcessFailedError,
)
from ..logging import log_timing
from ..models import BundleDownloadResult
from ..parse import ERROR_BODY_CAP, parse_api_error
from ..utils import content_length, is_success

FetchFunc = Callable[[Mapping[str, Any]], Awaitable[str]]


class Downloader(BaseClient):
    """
    Exports translation bundles and unpacks them into a local directory.

    Two flows:
      - download(): POST files/download -> bundle_url
      - download_async(): POST files/async-download -> process_id, polled
        until it yields a download_url

    Both then fetch the ZIP with retry/backoff, verify Content-Length and the
    archive structure, and extract it under the configured ExtractionPolicy.

    Example:
        async with Downloader(settings) as downloader:
            result = await downloader.download(
                Path("locales"), {"format": "json", "original_filenames": True}
            )
            print(result.bundle_url, len(result.files))
    """

    async def download(
        self,
        dest_dir: Union[str, Path],
        params: Mapping[str, Any],
        policy: Optional[ExtractionPolicy] = None,
    ) -> BundleDownloadResult:
        """Synchronous export: fetch bundle_url, download and extract."""
        return await self._do_download(dest_dir, params, self.fetch_bundle, policy)

    async def download_async(
        self,
        dest_dir: Union[str, Path],
        params: Mapping[str, Any],
        policy: Optional[ExtractionPolicy] = None,
    ) -> BundleDownloadResult:
        """Asynchronous export: start the process, poll it, download and extract."""
        return await self._do_download(dest_dir, params, self.fetch_bundle_async, policy)

    async def _do_download(
        self,
        dest_dir: Union[str, Path],
        params: Mapping[str, Any],
        fetch: FetchFunc,
        policy: Optional[ExtractionPolicy],
    ) -> BundleDownloadResult:
        # copy to avoid mutating the caller's mapping
        body = dict(params)
        bundle_url = await fetch(body)
        return await self.download_and_unzip(bundle_url, dest_dir, policy)

    async def fetch_bundle(self, params: Mapping[str, Any]) -> str:
        """POST files/download and return the bundle_url."""
        payload = await self._do_request_with_retry(
            "POST", self.project_path("files/download"), dict(params), label="fetch bundle"
        )
        bundle_url = payload.get("bundle_url")
        if not isinstance(bundle_url, str) or not bundle_url:
            raise EmptyResponseFieldError(
                message="fetch bundle: empty bundle url", field_name="bundle_url"
            )
        return bundle_url

    async def fetch_bundle_async(self, params: Mapping[str, Any]) -> str:
        """POST files/async-download, poll the process and return its download_url."""
        payload = await self._do_request_with_retry(
            "POST",
            self.project_path("files/async-download"),
            dict(params),
            label="fetch bundle async",
        )
        process_id = payload.get("process_id")
        if not isinstance(process_id, str) or not process_id:
            raise EmptyResponseFieldError(
                message="fetch bundle async: empty process id", field_name="process_id"
            )

        results = await self.poll_processes([process_id])
        if not results:
            raise ProcessFailedError(
                message="fetch bundle async: no process results returned",
                process_id=process_id,
            )

        completed = results[0]
        if completed.is_finished and completed.download_url:
            return completed.download_url

        raise ProcessFailedError(
            message=(
                f"fetch bundle async: process {completed.process_id} did not finish "
                f"(status={completed.status})"
            ),
            process_id=completed.process_id,
            status=completed.status,
        )

    async def download_and_unzip(
        self,
        bundle_url: str,
        dest_dir: Union[str, Path],
        policy: Optional[ExtractionPolicy] = None,
    ) -> BundleDownloadResult:
        """
        Download the ZIP at ``bundle_url`` and extract it into ``dest_dir``.

        The GET + ZIP validation runs inside the retry controller: a short body
        (Content-Length mismatch) or an unreadable archive is retried like a
        transient network failure. Extraction runs in a worker thread.

        Args:
            bundle_url: Absolute URL of the bundle
            dest_dir: Destination directory (created if missing)
            policy: Extraction limits (defaults to settings.extraction)

        Returns:
            BundleDownloadResult with the extracted file list

        Raises:
            InvalidURLError: Empty bundle_url
            RetryAttemptsExceeded: Download kept failing transiently
            APIError: Non-retryable HTTP status from the bundle host
            ArchiveError: Archive violates the extraction policy
        """
        if not bundle_url or not bundle_url.strip():
            raise InvalidURLError(message="download: empty bundle url", url=bundle_url)

        start_time = time.perf_counter()
        policy = policy or self.settings.extraction
        dest = Path(dest_dir)
        dest.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(prefix="bundledl-", suffix=".zip")
        os.close(fd)
        tmp_path = Path(tmp_name)
        attempts = 0

        async def attempt(n: int) -> int:
            nonlocal attempts
            attempts = n + 1
            size = await self._download_once(bundle_url, tmp_path)
            validate_archive(tmp_path)
            return size

        try:
            size_bytes = await self._with_retry("download", attempt)
            with log_timing(self._logger, "archive.extract", dest_dir=str(dest)):
                files = await asyncio.to_thread(unzip_archive, tmp_path, dest, policy)
        finally:
            tmp_path.unlink(missing_ok=True)

        duration_ms = int((time.perf_counter() - start_time) * 1000)
        self._logger.info(
            "download.completed",
            url=bundle_url,
            dest_dir=str(dest),
            files=len(files),
            size_bytes=size_bytes,
            attempts=attempts,
            duration_ms=duration_ms,
        )
        return BundleDownloadResult(
            bundle_url=bundle_url,
            dest_dir=dest,
            files=files,
            size_bytes=size_bytes,
            attempts=attempts,
            duration_ms=duration_ms,
        )

    async def _download_once(self, url: str, dest_path: Path, chunk_size: int = 65536) -> int:
        """
        Single GET of the bundle written to ``dest_path``. Returns bytes written.

        Asks for identity encoding so the bytes on disk are the raw archive.
        """
        headers = {
            "Accept-Encoding": "identity",
            "Accept": "application/zip, application/octet-stream, */*",
        }
        received = 0
        try:
            async with self.client.stream("GET", url, headers=headers) as resp:
                if not is_success(resp.status_code):
                    chunks = bytearray()
                    async for chunk in resp.aiter_bytes():
                        chunks.extend(chunk)
                        if len(chunks) >= ERROR_BODY_CAP:
                            break
                    raise parse_api_error(
                        bytes(chunks[:ERROR_BODY_CAP]), resp.status_code, response=resp
                    )

                expected = content_length(resp.headers)
                async with aiofiles.open(dest_path, "wb") as f:
                    async for chunk in resp.aiter_bytes(chunk_size=chunk_size):
                        await f.write(chunk)
                        received += len(chunk)
                    await f.flush()
        except httpx.RequestError as exc:
            raise translate_transport_error(exc, "GET", url) from exc

        if expected is not None and received != expected:
            raise IncompleteDownloadError(
                message="",
                url=url,
                expected_bytes=expected,
                received_bytes=received,
            )
        return received
