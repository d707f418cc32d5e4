"""Song Data Pipeline - Atomic file publishing.

The retry queue and dead-letter archive are whole-document stores: every
mutation rewrites the full document. A crash mid-rewrite must never leave
a truncated queue behind, so every write goes through the same publish
sequence:

1. Write the complete payload to a sibling temp file
2. fsync the temp file
3. os.replace() temp -> final (the publish boundary)
4. Best-effort fsync of the directory

Readers therefore see either the previous document or the new one.

Failpoints:
- ATOMIC_WRITE_AFTER_TMP_WRITE: temp written, before fsync
- ATOMIC_WRITE_BEFORE_RENAME: fsynced, before the rename
- ATOMIC_WRITE_AFTER_RENAME: after the rename
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from songdata.utils.failpoints import maybe_fail

logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".tmp"


def _write_all(fd: int, data: bytes) -> None:
    """Write every byte to fd, looping over short writes and EINTR.

    Raises:
        OSError: If the write fails or makes no progress.
    """
    view = memoryview(data)
    while view:
        try:
            written = os.write(fd, view)
        except InterruptedError:
            continue
        if written == 0:
            raise OSError("os.write() returned 0 bytes unexpectedly")
        view = view[written:]


def _fsync_directory(dir_path: Path) -> None:
    """Best-effort fsync on a directory so the rename itself is durable."""
    try:
        fd = os.open(dir_path, os.O_RDONLY | os.O_DIRECTORY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)
    except (OSError, AttributeError):
        # O_DIRECTORY is missing on some platforms
        pass


def atomic_write_bytes(final_path: str | Path, data: bytes) -> None:
    """Atomically replace final_path with data.

    Safe to call when a stale temp file exists from an interrupted write;
    the temp file is truncated and reused.

    Args:
        final_path: Target document path. Parent directories are created.
        data: Complete document contents.

    Raises:
        OSError: If directory creation, write, or rename fails. The final
            path is left untouched in that case.
    """
    final_path = Path(final_path)
    temp_path = final_path.with_name(final_path.name + TEMP_SUFFIX)

    final_path.parent.mkdir(parents=True, exist_ok=True)

    fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
    try:
        _write_all(fd, data)
        maybe_fail("ATOMIC_WRITE_AFTER_TMP_WRITE")
        os.fsync(fd)
    except OSError:
        os.close(fd)
        temp_path.unlink(missing_ok=True)
        raise
    os.close(fd)

    maybe_fail("ATOMIC_WRITE_BEFORE_RENAME")

    os.replace(temp_path, final_path)
    _fsync_directory(final_path.parent)

    maybe_fail("ATOMIC_WRITE_AFTER_RENAME")


def atomic_write_text(final_path: str | Path, text: str, encoding: str = "utf-8") -> None:
    """Atomically replace final_path with text. See atomic_write_bytes."""
    atomic_write_bytes(final_path, text.encode(encoding))


def cleanup_orphan_temp_files(directory: str | Path) -> int:
    """Remove temp files left behind by interrupted writes.

    Called at batch start, before any document is loaded.

    Args:
        directory: Directory to scan (non-recursive).

    Returns:
        Number of files removed.
    """
    directory = Path(directory)
    if not directory.is_dir():
        return 0

    removed = 0
    for temp_file in directory.glob(f"*{TEMP_SUFFIX}"):
        try:
            temp_file.unlink()
            removed += 1
        except OSError as e:
            logger.warning("Could not remove orphan temp file %s: %s", temp_file, e)
    if removed:
        logger.info("Removed %d orphan temp file(s) from %s", removed, directory)
    return removed
