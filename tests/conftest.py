"""Shared fixtures for bundledl tests."""

from __future__ import annotations

import io
import stat
import zipfile
from pathlib import Path
from typing import Iterable, Optional

import pytest

from bundledl import ClientSettings, PollPolicy, RetryPolicy

API_BASE = "https://api.example.com/api2/"
PROJECT_ID = "123.abc"
TOKEN = "secret-token"
BUNDLE_URL = "https://cdn.example.com/exports/bundle.zip"


def api_path(suffix: str) -> str:
    """URL path the client requests for a project-relative suffix."""
    return f"/api2/projects/{PROJECT_ID}/{suffix}"


def build_zip(entries: Iterable[tuple], date_time: Optional[tuple] = None) -> bytes:
    """
    Build a ZIP in memory.

    Each entry is ``(name, data)``, ``(name, data, mode)`` or ``(name, None)``
    for a directory. A mode with S_IFLNK set makes a symlink whose target is
    ``data``.
    """
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for entry in entries:
            name, data = entry[0], entry[1]
            mode = entry[2] if len(entry) > 2 else None
            info = zipfile.ZipInfo(name, date_time=date_time or (2024, 1, 1, 0, 0, 0))
            info.compress_type = zipfile.ZIP_DEFLATED
            if data is None:
                info.external_attr = (stat.S_IFDIR | 0o755) << 16
                zf.writestr(info, b"")
                continue
            if mode is not None:
                if not stat.S_IFMT(mode):
                    mode |= stat.S_IFREG
                info.external_attr = mode << 16
            payload = data.encode() if isinstance(data, str) else data
            zf.writestr(info, payload)
    return buf.getvalue()


def crc_broken_zip(name: str = "en.json", data: bytes = b'{"hello": "Hello"}') -> bytes:
    """A structurally valid stored ZIP whose single entry fails its CRC check."""
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_STORED) as zf:
        zf.writestr(name, data)
    raw = buf.getvalue()
    assert raw.count(data) == 1
    return raw.replace(data, data.upper())


@pytest.fixture
def settings() -> ClientSettings:
    """Client settings with tiny backoff and poll waits."""
    return ClientSettings(
        token=TOKEN,
        project_id=PROJECT_ID,
        base_url=API_BASE,
        retry=RetryPolicy(max_retries=2, initial_backoff=0.001, max_backoff=0.005),
        poll=PollPolicy(initial_wait=0.005, max_wait=1.0),
    )


@pytest.fixture
def make_zip(tmp_path):
    """Write a ZIP built by build_zip() to disk and return its path."""

    def _make(entries: Iterable[tuple], name: str = "bundle.zip", **kwargs) -> Path:
        path = tmp_path / name
        path.write_bytes(build_zip(entries, **kwargs))
        return path

    return _make
