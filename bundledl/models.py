from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional, List

STATUS_QUEUED = "queued"
STATUS_FINISHED = "finished"
STATUS_FAILED = "failed"

TERMINAL_STATUSES = frozenset({STATUS_FINISHED, STATUS_FAILED})


@dataclass
class QueuedProcess:
    """Last known state of a server-side process (upload or async export)."""

    process_id: str
    status: str = STATUS_QUEUED   # "queued" | "finished" | "failed" | any server-defined value
    download_url: Optional[str] = None  # set once an async export has finished

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_finished(self) -> bool:
        return self.status == STATUS_FINISHED

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], fallback_id: str) -> "QueuedProcess":
        """Build from a ``{"process": {...}}`` status response."""
        process = payload.get("process")
        if not isinstance(process, Mapping):
            process = {}
        details = process.get("details")
        if not isinstance(details, Mapping):
            details = {}
        download_url = details.get("download_url")
        return cls(
            process_id=str(process.get("process_id") or fallback_id),
            status=str(process.get("status") or ""),
            download_url=download_url if isinstance(download_url, str) and download_url else None,
        )


@dataclass
class UploadResult:
    """Result from Uploader.upload."""

    process_id: str
    status: str = STATUS_QUEUED
    process: Optional[QueuedProcess] = None  # final poll snapshot, None when polling was skipped
    duration_ms: int = 0


@dataclass
class BundleDownloadResult:
    """Result from Downloader.download / download_async."""

    bundle_url: str
    dest_dir: Path
    files: List[Path] = field(default_factory=list)  # extracted regular files
    size_bytes: int = 0                               # size of the downloaded archive
    attempts: int = 1                                 # download attempts used
    duration_ms: int = 0
