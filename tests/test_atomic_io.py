"""Tests for songdata.utils.atomic_io module."""

import os
import tempfile
from pathlib import Path
from unittest import mock

import pytest

from songdata.utils.atomic_io import (
    TEMP_SUFFIX,
    atomic_write_bytes,
    atomic_write_text,
    cleanup_orphan_temp_files,
)


class TestAtomicWriteBytes:
    """Tests for atomic_write_bytes function."""

    def test_creates_file(self):
        """Should create file with correct content."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "pending_extraction.md"

            atomic_write_bytes(path, b"# Pending\n")

            assert path.read_bytes() == b"# Pending\n"

    def test_creates_parent_directories(self):
        """Should create parent directories if they do not exist."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "nested" / "deep" / "queue.md"

            atomic_write_bytes(path, b"data")

            assert path.read_bytes() == b"data"

    def test_overwrites_existing_file(self):
        """Should atomically replace existing file."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "queue.md"
            path.write_bytes(b"old content")

            atomic_write_bytes(path, b"new content")

            assert path.read_bytes() == b"new content"

    def test_temp_file_cleaned_up_on_success(self):
        """No temp file should remain after a successful write."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "queue.md"

            atomic_write_bytes(path, b"data")

            assert not list(Path(tmpdir).glob(f"*{TEMP_SUFFIX}"))

    def test_stale_temp_file_is_reused(self):
        """A leftover temp file from a crash must not block the next write."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "queue.md"
            stale = Path(tmpdir) / f"queue.md{TEMP_SUFFIX}"
            stale.write_bytes(b"partial garbage that is longer than the payload")

            atomic_write_bytes(path, b"ok")

            assert path.read_bytes() == b"ok"
            assert not stale.exists()

    def test_failed_write_leaves_previous_document(self):
        """If the write fails, the previous document is untouched."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "queue.md"
            path.write_bytes(b"previous")

            with mock.patch("songdata.utils.atomic_io.os.fsync", side_effect=OSError("EIO")):
                with pytest.raises(OSError):
                    atomic_write_bytes(path, b"next")

            assert path.read_bytes() == b"previous"
            assert not (Path(tmpdir) / f"queue.md{TEMP_SUFFIX}").exists()

    def test_short_writes_are_completed(self):
        """os.write may write fewer bytes than asked; the rest must follow."""
        real_write = os.write

        def one_byte_write(fd, data):
            return real_write(fd, bytes(data[:1]))

        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "queue.md"
            with mock.patch("songdata.utils.atomic_io.os.write", side_effect=one_byte_write):
                atomic_write_bytes(path, b"abcdef")

            assert path.read_bytes() == b"abcdef"


class TestAtomicWriteText:
    def test_writes_utf8(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "unprocessed.md"

            atomic_write_text(path, "- Motörhead - Ace of Spades (Tab ID: 1)\n")

            assert path.read_text(encoding="utf-8") == "- Motörhead - Ace of Spades (Tab ID: 1)\n"


class TestOrphanTempCleanup:
    """Tests for cleanup_orphan_temp_files function."""

    def test_removes_only_temp_files(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            directory = Path(tmpdir)
            (directory / f"pending_extraction.md{TEMP_SUFFIX}").write_text("orphan")
            (directory / f"unprocessed.md{TEMP_SUFFIX}").write_text("orphan")
            (directory / "pending_extraction.md").write_text("real")

            removed = cleanup_orphan_temp_files(directory)

            assert removed == 2
            assert (directory / "pending_extraction.md").exists()
            assert not list(directory.glob(f"*{TEMP_SUFFIX}"))

    def test_missing_directory(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            assert cleanup_orphan_temp_files(Path(tmpdir) / "missing") == 0
