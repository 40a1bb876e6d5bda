from __future__ import annotations
import os
import stat
import time
from typing import Any, Mapping

import aiofiles

from .base import BaseClient
from ..exceptions import (
    BundleError,
    EmptyResponseFieldError,
    InvalidParamsError,
    ProcessFailedError,
)
from ..logging import log_exception
from ..models import STATUS_QUEUED, UploadResult
from ..utils import encode_base64


class Uploader(BaseClient):
    """
    Uploads a translation file and (optionally) waits for the import process.

    The request body is the caller's params plus a base64 ``data`` field read
    from ``filename`` when the caller did not supply one.

    Example:
        async with Uploader(settings) as uploader:
            result = await uploader.upload({"filename": "locales/en.json", "lang_iso": "en"})
            print(result.process_id, result.status)
    """

    async def _build_body(self, params: Mapping[str, Any]) -> dict[str, Any]:
        body = dict(params)

        name = body.get("filename")
        if "filename" not in body:
            raise InvalidParamsError(message="upload: missing 'filename' param", param="filename")
        if not isinstance(name, str) or not name.strip():
            raise InvalidParamsError(
                message="upload: 'filename' must be a non-empty string", param="filename"
            )
        clean_path = os.path.normpath(name)

        try:
            st = os.stat(clean_path)
        except OSError as exc:
            raise InvalidParamsError(
                message=f"upload: stat {clean_path!r}: {exc}", param="filename", cause=exc
            ) from exc
        if stat.S_ISDIR(st.st_mode):
            raise InvalidParamsError(
                message=f"upload: {clean_path!r} is a directory, need a file", param="filename"
            )

        if "data" not in body:
            try:
                async with aiofiles.open(clean_path, "rb") as f:
                    raw = await f.read()
            except OSError as exc:
                raise InvalidParamsError(
                    message=f"upload: read {clean_path!r}: {exc}", param="data", cause=exc
                ) from exc
            body["data"] = encode_base64(raw)
        else:
            data = body["data"]
            if isinstance(data, (bytes, bytearray)):
                body["data"] = encode_base64(bytes(data))
            elif not isinstance(data, str):
                # strings are assumed to be base64 already
                raise InvalidParamsError(
                    message=f"upload: 'data' must be str or bytes, got {type(data).__name__}",
                    param="data",
                )
        return body

    async def upload(self, params: Mapping[str, Any], *, poll: bool = True) -> UploadResult:
        """
        Upload a file and return the import process.

        Args:
            params: Request fields; ``filename`` is required, ``data`` optional
            poll: Wait for the process to finish before returning

        Returns:
            UploadResult with the process id and last known status

        Raises:
            InvalidParamsError: filename missing, not a file, or bad data type
            EmptyResponseFieldError: Server returned no process id
            ProcessFailedError: Polled process did not finish
            APIError / RetryAttemptsExceeded: Request failed
        """
        start_time = time.perf_counter()
        body = await self._build_body(params)
        filename = body["filename"]

        self._logger.info("upload.started", source_file=filename, poll=poll)
        try:
            payload = await self._do_request_with_retry(
                "POST", self.project_path("files/upload"), body, label="upload"
            )
        except BundleError as exc:
            log_exception(self._logger, exc, "upload.failed", source_file=filename)
            raise

        process = payload.get("process")
        process_id = process.get("process_id") if isinstance(process, dict) else None
        if not isinstance(process_id, str) or not process_id.strip():
            raise EmptyResponseFieldError(
                message="upload: empty process id in response", field_name="process_id"
            )

        result = UploadResult(process_id=process_id, status=STATUS_QUEUED)
        if poll:
            results = await self.poll_processes([process_id])
            if not results:
                raise ProcessFailedError(
                    message=f"upload: no process results returned (process_id={process_id})",
                    process_id=process_id,
                )
            completed = results[0]
            result.process = completed
            result.status = completed.status
            if not completed.is_finished:
                raise ProcessFailedError(
                    message="",
                    process_id=completed.process_id,
                    status=completed.status,
                )

        result.duration_ms = int((time.perf_counter() - start_time) * 1000)
        self._logger.info(
            "upload.completed",
            source_file=filename,
            process_id=process_id,
            status=result.status,
            duration_ms=result.duration_ms,
        )
        return result
