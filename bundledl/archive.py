"""
Safe validation and extraction of downloaded ZIP bundles.

Bundles come from the network and are treated as untrusted:
  - entry count, per-entry size and total size are bounded
  - every output path must stay inside the destination (zip-slip guard),
    both lexically and after resolving links already on disk
  - symlinks, devices, FIFOs and sockets are skipped by default
  - each file copy is capped independently of the size the archive declares

Extraction is not transactional. On failure, entries written so far stay on
disk; extract into a fresh directory and discard it on error.
"""

from __future__ import annotations

import os
import posixpath
import stat
import time
import zipfile
import zlib
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO, Iterator, List, Optional, Union

from .config import ExtractionPolicy
from .exceptions import (
    ArchiveError,
    ArchiveTooLargeError,
    CorruptEntryError,
    EntryTooLargeError,
    TooManyFilesError,
    TruncatedArchiveError,
    UnsafePathError,
)
from .logging import get_logger

__all__ = [
    "validate_archive",
    "unzip_archive",
]

_logger = get_logger(__name__)

DEFAULT_FILE_MODE = 0o644
DEFAULT_DIR_MODE = 0o755
COPY_CHUNK_SIZE = 64 * 1024

PathLike = Union[str, os.PathLike]


def validate_archive(zip_path: PathLike) -> None:
    """
    Check that ``zip_path`` is a readable ZIP.

    Raises:
        TruncatedArchiveError: File is not a ZIP or is cut short
        ArchiveError: File cannot be opened at all
    """
    try:
        with zipfile.ZipFile(zip_path):
            pass
    except (zipfile.BadZipFile, EOFError) as exc:
        raise TruncatedArchiveError(
            message="",
            archive_path=str(zip_path),
            cause=exc,
        ) from exc
    except OSError as exc:
        raise ArchiveError(
            message=f"zip validate open: {exc}",
            archive_path=str(zip_path),
            cause=exc,
        ) from exc


def _entry_mode(info: zipfile.ZipInfo) -> int:
    # Unix mode lives in the high 16 bits when the archive was made on Unix
    return (info.external_attr >> 16) & 0xFFFF


def _normalize_entry_name(name: str) -> str:
    rel = posixpath.normpath(name).lstrip("/")
    if rel in ("", "."):
        return ""
    return rel


def _is_within(path: str, root: str) -> bool:
    return path == root or path.startswith(root + os.sep)


def _copy_capped(dst: BinaryIO, src: BinaryIO, max_bytes: int, entry_name: str) -> int:
    """Copy at most ``max_bytes``; more data than that is an EntryTooLargeError."""
    written = 0
    while True:
        chunk = src.read(COPY_CHUNK_SIZE)
        if not chunk:
            return written
        written += len(chunk)
        if max_bytes > 0 and written > max_bytes:
            raise EntryTooLargeError(
                message="",
                entry_name=entry_name,
                size=written,
                max_size=max_bytes,
            )
        dst.write(chunk)


def _apply_mtime(target: str, info: zipfile.ZipInfo) -> None:
    try:
        mtime = time.mktime(info.date_time + (0, 0, -1))
        os.utime(target, (mtime, mtime))
    except (OSError, OverflowError, ValueError) as exc:
        _logger.debug("archive.mtime_skipped", entry=info.filename, error_message=str(exc))


def _resolves_within(path: str, root_real: str) -> bool:
    # follows links already on disk, including ones made by earlier entries
    return _is_within(os.path.realpath(path), root_real)


@contextmanager
def _entry_errors(zip_path: PathLike, info: zipfile.ZipInfo) -> Iterator[None]:
    try:
        yield
    except (zipfile.BadZipFile, zlib.error, EOFError) as exc:
        raise CorruptEntryError(
            message="",
            archive_path=str(zip_path),
            entry_name=info.filename,
            cause=exc,
        ) from exc
    except OSError as exc:
        raise ArchiveError(
            message=f"zip write {info.filename!r}: {exc}",
            archive_path=str(zip_path),
            cause=exc,
        ) from exc


def _extract_symlink(
    archive: zipfile.ZipFile,
    info: zipfile.ZipInfo,
    target: str,
    dest_real: str,
) -> None:
    link_target = archive.read(info).decode("utf-8", errors="replace")
    if os.path.isabs(link_target):
        raise UnsafePathError(message="", entry_name=info.filename)
    parent_real = os.path.realpath(os.path.dirname(target))
    resolved = os.path.realpath(os.path.join(parent_real, link_target))
    if not _is_within(resolved, dest_real):
        raise UnsafePathError(message="", entry_name=info.filename)
    os.makedirs(os.path.dirname(target), mode=DEFAULT_DIR_MODE, exist_ok=True)
    if os.path.lexists(target):
        os.unlink(target)
    os.symlink(link_target, target)


def unzip_archive(
    zip_path: PathLike,
    dest_dir: PathLike,
    policy: Optional[ExtractionPolicy] = None,
) -> List[Path]:
    """
    Extract ``zip_path`` into ``dest_dir`` under ``policy``.

    Args:
        zip_path: ZIP file on disk
        dest_dir: Destination root (created if missing)
        policy: Limits and behavior (defaults to ExtractionPolicy())

    Returns:
        Paths of the regular files written, in archive order

    Raises:
        TooManyFilesError: More entries than policy.max_files
        EntryTooLargeError: Declared or actual entry size above max_file_bytes
        ArchiveTooLargeError: Cumulative declared size above max_total_bytes
        UnsafePathError: Entry (or symlink target) escapes dest_dir, lexically
            or through a link already on disk
        CorruptEntryError: Entry data fails to decompress or its CRC check
        ArchiveError: An entry cannot be written
        TruncatedArchiveError: Archive cannot be read
    """
    policy = policy or ExtractionPolicy()
    extracted: List[Path] = []

    try:
        archive = zipfile.ZipFile(zip_path)
    except (zipfile.BadZipFile, EOFError) as exc:
        raise TruncatedArchiveError(
            message="", archive_path=str(zip_path), cause=exc
        ) from exc

    with archive:
        os.makedirs(dest_dir, mode=DEFAULT_DIR_MODE, exist_ok=True)
        dest_abs = os.path.abspath(dest_dir)
        dest_real = os.path.realpath(dest_dir)

        entries = archive.infolist()
        if len(entries) > policy.max_files:
            raise TooManyFilesError(
                message="",
                archive_path=str(zip_path),
                file_count=len(entries),
                max_files=policy.max_files,
            )

        total = 0
        for info in entries:
            if info.file_size > policy.max_file_bytes:
                raise EntryTooLargeError(
                    message="",
                    archive_path=str(zip_path),
                    entry_name=info.filename,
                    size=info.file_size,
                    max_size=policy.max_file_bytes,
                )
            total += info.file_size
            if total > policy.max_total_bytes:
                raise ArchiveTooLargeError(
                    message="",
                    archive_path=str(zip_path),
                    total_size=total,
                    max_size=policy.max_total_bytes,
                )

            rel = _normalize_entry_name(info.filename)
            if not rel:
                continue
            target = os.path.abspath(os.path.join(dest_abs, rel))
            link_entry = stat.S_ISLNK(_entry_mode(info)) and not info.is_dir()
            # a link entry may replace an existing link, so only its parent is resolved
            check_path = os.path.dirname(target) if link_entry else target
            if not _is_within(target, dest_abs) or not _resolves_within(check_path, dest_real):
                raise UnsafePathError(
                    message="",
                    archive_path=str(zip_path),
                    entry_name=info.filename,
                )

            if info.is_dir():
                os.makedirs(target, mode=DEFAULT_DIR_MODE, exist_ok=True)
                continue

            mode = _entry_mode(info)
            if link_entry:
                if policy.allow_symlinks:
                    with _entry_errors(zip_path, info):
                        _extract_symlink(archive, info, target, dest_real)
                else:
                    _logger.debug("archive.entry_skipped", entry=info.filename, kind="symlink")
                continue
            if stat.S_ISCHR(mode) or stat.S_ISBLK(mode) or stat.S_ISFIFO(mode) or stat.S_ISSOCK(mode):
                _logger.debug("archive.entry_skipped", entry=info.filename, kind="special")
                continue

            perm = stat.S_IMODE(mode) or DEFAULT_FILE_MODE
            with _entry_errors(zip_path, info):
                os.makedirs(os.path.dirname(target), mode=DEFAULT_DIR_MODE, exist_ok=True)
                fd = os.open(target, os.O_CREAT | os.O_TRUNC | os.O_WRONLY, perm)
                with os.fdopen(fd, "wb") as out, archive.open(info) as src:
                    _copy_capped(out, src, policy.max_file_bytes, info.filename)

            if policy.preserve_timestamps:
                _apply_mtime(target, info)

            extracted.append(Path(target))

    _logger.info(
        "archive.extracted",
        archive_path=str(zip_path),
        dest_dir=dest_abs,
        files=len(extracted),
        total_bytes=total,
    )
    return extracted
