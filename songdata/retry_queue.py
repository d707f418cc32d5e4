"""Song Data Pipeline - Durable retry queue and dead-letter archive.

Failed inserts are tracked per key in a human-readable Markdown document
(the retry queue). Each further failure of the same key bumps its
retry_count; once it reaches RETRY_THRESHOLD the key is moved to a second
document (the dead-letter archive) for manual investigation.

Persistence model:
- Two independent whole-document stores, each rewritten in full on every
  mutation via atomic_write_text. There is no append log.
- A missing document means "empty", not an error.
- No locking: the pipeline guarantees a single writer at a time.

Invariant: a key is in at most one of {queue, archive}, and never twice in
either. Promotion saves the queue (key removed) before appending to the
archive, so a crash between the two writes loses the key from both rather
than leaving it in both.

Failpoints:
- QUEUE_AFTER_SAVE_BEFORE_ARCHIVE: queue saved, archive not yet appended
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from enum import StrEnum
from pathlib import Path

from songdata.config import REPROCESS_THRESHOLD, RETRY_THRESHOLD
from songdata.errors import QueueStoreError
from songdata.models import DeadLetterEntry, PendingEntry, SongKey
from songdata.utils.atomic_io import atomic_write_text
from songdata.utils.failpoints import maybe_fail

logger = logging.getLogger(__name__)


# --- Document Formats ---

PENDING_HEADER = "# Pending Song Extraction - Retry Queue"
ARCHIVE_HEADER = "# Unprocessed Songs - Permanent Archive"

# A field that could be misread as part of the line structure is written
# as a JSON string literal: "- \"Tom Petty - The Heartbreakers\" - Refugee ..."
_QUOTED = r'"(?:[^"\\]|\\.)*"'
_FIELD = rf"({_QUOTED}|.+?)"
_ID_FIELD = rf"({_QUOTED}|\S+?)"

# "- Artist - Song Title (Tab ID: 123456) - retry_count: 2"
_PENDING_LINE = re.compile(
    rf"^- {_FIELD} - {_FIELD} \(Tab ID: {_ID_FIELD}\) - retry_count: (\d+)\s*$"
)

# "- Artist - Song Title (Tab ID: 123456) (final_retry_count: 5, last_attempt: 2025-08-29)"
_ARCHIVE_LINE = re.compile(
    rf"^- {_FIELD} - {_FIELD} \(Tab ID: {_ID_FIELD}\) "
    r"\(final_retry_count: (\d+), last_attempt: (.+?)\)\s*$"
)

_AMBIGUOUS = (" -", "(Tab ID:")


def _needs_quoting(value: str, is_id: bool = False) -> bool:
    if value.splitlines() != [value] or value != value.strip() or value.startswith('"'):
        return True
    if is_id:
        return any(ch.isspace() for ch in value)
    return any(token in value for token in _AMBIGUOUS)


def encode_field(value: str, is_id: bool = False) -> str:
    """Render one key field for a document line."""
    if _needs_quoting(value, is_id):
        return json.dumps(value)
    return value


def decode_field(raw: str) -> str:
    """Inverse of encode_field; bare fields are whitespace-trimmed."""
    if len(raw) >= 2 and raw.startswith('"') and raw.endswith('"'):
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Keeping hand-edited quoted field as written: %s", raw)
    return raw.strip()


def _format_key(artist: str, title: str, external_id: str) -> str:
    return (
        f"{encode_field(artist)} - {encode_field(title)}"
        f" (Tab ID: {encode_field(external_id, is_id=True)})"
    )


class _MarkdownDocument:
    """Shared load/save plumbing for the two Markdown stores."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _read_lines(self) -> list[str]:
        if not self.path.exists():
            return []
        try:
            return self.path.read_text(encoding="utf-8").splitlines()
        except (OSError, UnicodeDecodeError) as e:
            raise QueueStoreError(str(self.path), f"read failed: {e}") from e

    def _write(self, text: str) -> None:
        try:
            atomic_write_text(self.path, text)
        except OSError as e:
            raise QueueStoreError(str(self.path), f"write failed: {e}") from e


class PendingQueueDocument(_MarkdownDocument):
    """Whole-document store for the retry queue."""

    def load(self) -> list[PendingEntry]:
        """Load all pending entries in document order.

        Lines that are not entries (headings, summary, blank) are ignored.

        Raises:
            QueueStoreError: If the document exists but cannot be read.
        """
        entries = []
        for line in self._read_lines():
            match = _PENDING_LINE.match(line)
            if match is None:
                continue
            artist, title, external_id, retry_count = match.groups()
            entries.append(
                PendingEntry(
                    artist=decode_field(artist),
                    title=decode_field(title),
                    external_id=decode_field(external_id),
                    retry_count=int(retry_count),
                )
            )
        return entries

    def save(self, entries: list[PendingEntry]) -> None:
        """Rewrite the whole document.

        Raises:
            QueueStoreError: If the document cannot be written.
        """
        lines = [PENDING_HEADER, ""]
        if not entries:
            lines.append("## No pending songs")
        else:
            lines.append("## Failed Songs (Retry Count)")
            for entry in entries:
                lines.append(
                    f"- {_format_key(entry.artist, entry.title, entry.external_id)}"
                    f" - retry_count: {entry.retry_count}"
                )
            lines.append("")
            lines.append(f"## Total Pending: {len(entries)} songs")
            lines.append(f"## Next Reprocessing: When count reaches {REPROCESS_THRESHOLD}+")
        self._write("\n".join(lines) + "\n")


class DeadLetterDocument(_MarkdownDocument):
    """Whole-document store for the dead-letter archive."""

    def __init__(self, path: str | Path, threshold: int = RETRY_THRESHOLD):
        super().__init__(path)
        self.threshold = threshold

    def load(self) -> list[DeadLetterEntry]:
        """Load all archived entries in document order.

        Raises:
            QueueStoreError: If the document exists but cannot be read.
        """
        entries = []
        for line in self._read_lines():
            match = _ARCHIVE_LINE.match(line)
            if match is None:
                continue
            artist, title, external_id, final_count, last_attempt = match.groups()
            entries.append(
                DeadLetterEntry(
                    artist=decode_field(artist),
                    title=decode_field(title),
                    external_id=decode_field(external_id),
                    final_retry_count=int(final_count),
                    last_attempt=last_attempt.strip(),
                )
            )
        return entries

    def save(self, entries: list[DeadLetterEntry]) -> None:
        """Rewrite the whole document.

        Raises:
            QueueStoreError: If the document cannot be written.
        """
        lines = [
            ARCHIVE_HEADER,
            "",
            f"## Songs That Failed After {self.threshold} Retry Attempts",
        ]
        for entry in entries:
            lines.append(
                f"- {_format_key(entry.artist, entry.title, entry.external_id)}"
                f" (final_retry_count: {entry.final_retry_count},"
                f" last_attempt: {entry.last_attempt})"
            )
        lines.append("")
        lines.append(f"## Total Unprocessed: {len(entries)} songs")
        lines.append("## Status: Requires manual investigation")
        self._write("\n".join(lines) + "\n")


# --- Dead-Letter Archive ---


class DeadLetterArchive:
    """Permanently failed keys, awaiting manual review."""

    def __init__(self, document: DeadLetterDocument):
        self.document = document

    def entries(self) -> list[DeadLetterEntry]:
        return self.document.load()

    def contains(self, key: SongKey) -> bool:
        return any(entry.key == key for entry in self.document.load())

    def add(self, entry: DeadLetterEntry) -> bool:
        """Append an entry unless its key is already archived.

        Returns:
            True if the entry was added, False if already present.
        """
        entries = self.document.load()
        if any(existing.key == entry.key for existing in entries):
            logger.info("%s already in dead-letter archive", entry.key.describe())
            return False
        entries.append(entry)
        self.document.save(entries)
        return True


# --- Retry Queue ---


class EnqueueStatus(StrEnum):
    PENDING = "pending"
    DEAD_LETTERED = "dead_lettered"
    ALREADY_ARCHIVED = "already_archived"


@dataclass
class EnqueueOutcome:
    """What enqueue_failure did with a key."""

    key: SongKey
    status: EnqueueStatus
    retry_count: int


class RetryQueue:
    """Per-key failure counts with threshold-based dead-lettering.

    Args:
        document: Store for pending entries.
        archive: Destination for keys that reach the threshold.
        threshold: Failure count that triggers promotion.
        today: Returns the date stamped on archived entries.
    """

    def __init__(
        self,
        document: PendingQueueDocument,
        archive: DeadLetterArchive,
        threshold: int = RETRY_THRESHOLD,
        today: Callable[[], date] = date.today,
    ):
        if threshold < 1:
            raise ValueError("threshold must be at least 1")
        self.document = document
        self.archive = archive
        self.threshold = threshold
        self._today = today
        self.dead_lettered_this_session: list[SongKey] = []

    def size(self) -> int:
        return len(self.document.load())

    def drain(self) -> list[PendingEntry]:
        """Snapshot of the queue for reprocessing. Does not remove anything."""
        return self.document.load()

    def get(self, key: SongKey) -> PendingEntry | None:
        for entry in self.document.load():
            if entry.key == key:
                return entry
        return None

    def enqueue_failure(self, key: SongKey, context: str = "") -> EnqueueOutcome:
        """Record one failed insert for key.

        Inserts the key with retry_count=1, or increments an existing count.
        At the threshold the key leaves the queue and enters the archive.

        Args:
            key: Song identity.
            context: Failure description, used for logging only.

        Returns:
            EnqueueOutcome describing the new state of the key.

        Raises:
            QueueStoreError: If either document cannot be read or written.
        """
        archived = next((e for e in self.archive.entries() if e.key == key), None)
        if archived is not None:
            # An archived key stays out of the queue.
            logger.warning(
                "%s failed again but is already dead-lettered; not requeued", key.describe()
            )
            return EnqueueOutcome(key, EnqueueStatus.ALREADY_ARCHIVED, archived.final_retry_count)

        entries = self.document.load()
        entry = next((e for e in entries if e.key == key), None)
        if entry is None:
            entry = PendingEntry(key.artist, key.title, key.external_id, retry_count=1)
            entries.append(entry)
        else:
            entry.retry_count += 1

        if entry.retry_count >= self.threshold:
            entries.remove(entry)
            self.document.save(entries)

            maybe_fail("QUEUE_AFTER_SAVE_BEFORE_ARCHIVE")

            self.archive.add(
                DeadLetterEntry(
                    artist=key.artist,
                    title=key.title,
                    external_id=key.external_id,
                    final_retry_count=entry.retry_count,
                    last_attempt=self._today().isoformat(),
                )
            )
            self.dead_lettered_this_session.append(key)
            logger.warning(
                "Moved %s to dead-letter archive after %d failed attempts (last error: %s)",
                key.describe(),
                entry.retry_count,
                context or "n/a",
            )
            return EnqueueOutcome(key, EnqueueStatus.DEAD_LETTERED, entry.retry_count)

        self.document.save(entries)
        logger.info(
            "Queued %s for retry (retry_count=%d/%d): %s",
            key.describe(),
            entry.retry_count,
            self.threshold,
            context or "n/a",
        )
        return EnqueueOutcome(key, EnqueueStatus.PENDING, entry.retry_count)

    def remove(self, key: SongKey) -> bool:
        """Drop key from the queue after a successful reinsert.

        The document is only rewritten when something was removed.

        Returns:
            True if the key was present.
        """
        entries = self.document.load()
        remaining = [e for e in entries if e.key != key]
        if len(remaining) == len(entries):
            return False
        self.document.save(remaining)
        logger.info("Removed %s from retry queue", key.describe())
        return True


def open_stores(
    pending_path: str | Path,
    archive_path: str | Path,
    threshold: int = RETRY_THRESHOLD,
) -> tuple[RetryQueue, DeadLetterArchive]:
    """Build a RetryQueue and its DeadLetterArchive over two documents."""
    archive = DeadLetterArchive(DeadLetterDocument(archive_path, threshold=threshold))
    queue = RetryQueue(PendingQueueDocument(pending_path), archive, threshold=threshold)
    return queue, archive
