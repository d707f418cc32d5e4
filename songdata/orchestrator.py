"""Song Data Pipeline - Batch ingestion orchestrator.

Sequences one batch run over the source documents:

    INIT -> [DRAINING] -> SCANNING -> FINAL_DRAIN -> REPORT

- INIT: probe the record store (ConnectivityError is fatal and aborts the
  run before anything is touched). If the retry queue holds
  REPROCESS_THRESHOLD or more entries, go to DRAINING first.
- DRAINING: retry every queued key through dedup -> insert. Success removes
  the key; failure calls enqueue_failure again so the count keeps growing.
- SCANNING: for each source document in name order, extract candidates and
  run each through dedup -> insert. Failures go to the retry queue.
- FINAL_DRAIN: unconditionally retry whatever is left in the queue.
- REPORT: build the BatchSummary.

Failure semantics: every per-candidate and per-document failure is caught,
logged and tallied here; none of them unwinds the run. Only the INIT probe
is fatal.

Concurrency: strictly sequential. At most one store mutation, one queue
document write or one extraction is in flight at a time; the queue stores
rely on that single writer.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from enum import StrEnum
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError

from services.worker_extract.run import ExtractResult, extract_document, list_source_documents
from songdata.config import (
    CANDIDATE_DELAY_SECONDS,
    DEAD_LETTER_PATH,
    DOCUMENT_DELAY_SECONDS,
    DRAIN_DELAY_SECONDS,
    PENDING_QUEUE_PATH,
    REPROCESS_THRESHOLD,
    SOURCE_DIR,
)
from songdata.db import init_db
from songdata.dedup import Deduplicator
from songdata.errors import ConnectivityError, DuplicateError, QueueStoreError, StoreError
from songdata.models import PendingEntry, SongCandidate, SongKey
from songdata.record_store import RecordStore, SqlRecordStore
from songdata.retry_queue import EnqueueStatus, RetryQueue, open_stores
from songdata.utils.atomic_io import cleanup_orphan_temp_files
from songdata.utils.paths import canonical_tab_url

logger = logging.getLogger(__name__)


# --- States and Results ---


class BatchState(StrEnum):
    INIT = "init"
    DRAINING = "draining"
    SCANNING = "scanning"
    FINAL_DRAIN = "final_drain"
    REPORT = "report"


class CandidateOutcome(StrEnum):
    INSERTED = "inserted"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class DrainStats:
    """Result of one pass over the retry queue."""

    processed: int = 0
    reinserted: int = 0
    skipped: int = 0
    failed: int = 0


@dataclass
class BatchSummary:
    """Aggregate tallies for one batch run."""

    documents_found: int = 0
    documents_processed: int = 0
    documents_failed: int = 0
    candidates_extracted: int = 0
    inserted: int = 0
    skipped: int = 0
    errors: int = 0
    drained: int = 0
    reinserted: int = 0
    dead_lettered: list[SongKey] = field(default_factory=list)
    states: list[BatchState] = field(default_factory=list)
    pending_remaining: int = 0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["dead_lettered"] = [key._asdict() for key in self.dead_lettered]
        data["states"] = [str(state) for state in self.states]
        return data

    def render(self) -> str:
        """Terminal summary, including every key dead-lettered this run."""
        rule = "=" * 60
        lines = [
            rule,
            "IMPORT SUMMARY:",
            f"   Files processed: {self.documents_processed}"
            f" ({self.documents_failed} without song data)",
            f"   Total songs extracted: {self.candidates_extracted}",
            f"   Songs successfully inserted: {self.inserted}"
            f" ({self.reinserted} from retry queue)",
            f"   Songs skipped (already exist): {self.skipped}",
            f"   Songs with errors: {self.errors}",
            f"   Songs still pending retry: {self.pending_remaining}",
            f"   Songs moved to dead-letter archive: {len(self.dead_lettered)}",
        ]
        for key in self.dead_lettered:
            lines.append(f"      - {key.artist} - {key.title} (Tab ID: {key.external_id})")
        lines.append(rule)
        if self.errors == 0:
            lines.append("All songs processed successfully!")
        else:
            lines.append("Some songs had errors during import. Check the logs above.")
        return "\n".join(lines)


def candidate_from_entry(entry: PendingEntry) -> SongCandidate:
    """Rebuild an insertable candidate from a queued key.

    The queue only keeps identity, so optional metadata falls back to the
    same defaults the extractor uses.
    """
    return SongCandidate(
        title=entry.title,
        artist=entry.artist,
        external_id=entry.external_id,
        source_url=canonical_tab_url(entry.artist, entry.title, entry.external_id),
    )


# --- Orchestrator ---


class IngestionOrchestrator:
    """Runs the batch state machine against injected collaborators.

    Args:
        store: Record store (probe/insert/exists).
        retry_queue: Durable retry queue, already wired to its archive.
        source_dir: Directory of source documents.
        deduplicator: Defaults to a Deduplicator over store.
        extract: Document -> ExtractResult; must not raise.
        list_documents: Directory -> ordered document paths.
        sleep: Delay function (injectable for tests).
        candidate_delay: Seconds to wait after each insert attempt.
        document_delay: Seconds to wait after each document.
        drain_delay: Seconds to wait after each drained entry.
        reprocess_threshold: Queue size that forces DRAINING before SCANNING.
    """

    def __init__(
        self,
        store: RecordStore,
        retry_queue: RetryQueue,
        source_dir: str | Path,
        deduplicator: Deduplicator | None = None,
        extract: Callable[[Path], ExtractResult] = extract_document,
        list_documents: Callable[[Path], list[Path]] = list_source_documents,
        sleep: Callable[[float], None] = time.sleep,
        candidate_delay: float = CANDIDATE_DELAY_SECONDS,
        document_delay: float = DOCUMENT_DELAY_SECONDS,
        drain_delay: float = DRAIN_DELAY_SECONDS,
        reprocess_threshold: int = REPROCESS_THRESHOLD,
    ):
        self.store = store
        self.retry_queue = retry_queue
        self.source_dir = Path(source_dir)
        self.deduplicator = deduplicator or Deduplicator(store)
        self._extract = extract
        self._list_documents = list_documents
        self._sleep = sleep
        self.candidate_delay = candidate_delay
        self.document_delay = document_delay
        self.drain_delay = drain_delay
        self.reprocess_threshold = reprocess_threshold
        self.summary = BatchSummary()

    # --- State Machine ---

    def run(self) -> BatchSummary:
        """Execute one batch run.

        Returns:
            BatchSummary with aggregate tallies.

        Raises:
            ConnectivityError: If the record store probe fails at INIT.
        """
        self.summary = BatchSummary()

        drain_first = self._init()

        if drain_first:
            self._enter(BatchState.DRAINING)
            self._drain(BatchState.DRAINING)

        self._enter(BatchState.SCANNING)
        self._scan()

        self._enter(BatchState.FINAL_DRAIN)
        self._drain(BatchState.FINAL_DRAIN)

        self._enter(BatchState.REPORT)
        return self._report()

    def _enter(self, state: BatchState) -> None:
        self.summary.states.append(state)
        logger.debug("Batch state -> %s", state)

    def _init(self) -> bool:
        """Probe the store and decide whether to drain before scanning.

        Returns:
            True if the queue is at or above the reprocess threshold.
        """
        self._enter(BatchState.INIT)

        logger.info("Connecting to record store...")
        self.store.probe()
        logger.info("Record store reachable")

        try:
            pending = self.retry_queue.size()
        except QueueStoreError as e:
            logger.error("Cannot read retry queue, skipping early drain: %s", e.message)
            return False

        if pending >= self.reprocess_threshold:
            logger.info(
                "Found %d pending songs (>= %d), processing them first",
                pending,
                self.reprocess_threshold,
            )
            return True
        if pending > 0:
            logger.info(
                "Found %d pending songs (< %d), will process at end of session",
                pending,
                self.reprocess_threshold,
            )
        return False

    # --- Scanning ---

    def _scan(self) -> None:
        documents = self._list_documents(self.source_dir)
        self.summary.documents_found = len(documents)
        if not documents:
            logger.warning("No source documents found in %s", self.source_dir)
            return

        logger.info("Found %d source documents to process", len(documents))
        for index, document in enumerate(documents, start=1):
            logger.info("Processing file %d/%d: %s", index, len(documents), document.name)
            try:
                self._process_document(document)
            except Exception:
                # A document failure never aborts the run
                self.summary.documents_failed += 1
                logger.exception("Unexpected error processing %s", document.name)
            self.summary.documents_processed += 1
            self._sleep(self.document_delay)

    def _process_document(self, document: Path) -> None:
        result = self._extract(document)
        if not result.ok:
            self.summary.documents_failed += 1
            return
        if not result.candidates:
            logger.info("No songs extracted from %s", document.name)
            return

        self.summary.candidates_extracted += len(result.candidates)
        counts = {outcome: 0 for outcome in CandidateOutcome}
        for candidate in result.candidates:
            counts[self._process_candidate(candidate)] += 1

        logger.info(
            "%s: %d extracted, %d inserted, %d skipped, %d failed",
            document.name,
            len(result.candidates),
            counts[CandidateOutcome.INSERTED],
            counts[CandidateOutcome.SKIPPED],
            counts[CandidateOutcome.FAILED],
        )

    def _process_candidate(self, candidate: SongCandidate) -> CandidateOutcome:
        outcome, error = self._attempt(candidate)
        if outcome is CandidateOutcome.INSERTED:
            self.summary.inserted += 1
        elif outcome is CandidateOutcome.SKIPPED:
            self.summary.skipped += 1
        else:
            self.summary.errors += 1
            self._record_failure(candidate.key, error)
        return outcome

    def _attempt(self, candidate: SongCandidate) -> tuple[CandidateOutcome, str]:
        """Dedup then insert one candidate. Never raises.

        Returns:
            (outcome, error message or "").
        """
        try:
            self.deduplicator.check(candidate)
        except DuplicateError:
            logger.debug("Skipping duplicate %s", candidate.key.describe())
            return CandidateOutcome.SKIPPED, ""
        except Exception as e:
            logger.exception("Unexpected error checking %s", candidate.key.describe())
            return CandidateOutcome.FAILED, str(e)

        try:
            self.store.insert(candidate)
        except StoreError as e:
            logger.error("Failed to insert %s: %s", candidate.key.describe(), e.message)
            return CandidateOutcome.FAILED, e.message
        except Exception as e:
            logger.exception("Unexpected error inserting %s", candidate.key.describe())
            return CandidateOutcome.FAILED, str(e)
        finally:
            self._sleep(self.candidate_delay)

        return CandidateOutcome.INSERTED, ""

    def _record_failure(self, key: SongKey, context: str) -> None:
        try:
            outcome = self.retry_queue.enqueue_failure(key, context)
        except QueueStoreError as e:
            logger.error("Could not record failure for %s: %s", key.describe(), e.message)
            return
        if outcome.status is EnqueueStatus.DEAD_LETTERED:
            self.summary.dead_lettered.append(key)

    # --- Draining ---

    def _drain(self, phase: BatchState) -> DrainStats:
        """Retry every queued key once, in document order."""
        stats = DrainStats()
        try:
            entries = self.retry_queue.drain()
        except QueueStoreError as e:
            logger.error("Cannot read retry queue during %s: %s", phase, e.message)
            return stats

        if not entries:
            return stats

        logger.info("Processing %d pending songs (%s)...", len(entries), phase)
        for entry in entries:
            stats.processed += 1
            candidate = candidate_from_entry(entry)
            outcome, error = self._attempt(candidate)

            if outcome is CandidateOutcome.FAILED:
                stats.failed += 1
                self.summary.errors += 1
                self._record_failure(entry.key, error)
            else:
                if outcome is CandidateOutcome.INSERTED:
                    stats.reinserted += 1
                    self.summary.inserted += 1
                    self.summary.reinserted += 1
                else:
                    stats.skipped += 1
                    self.summary.skipped += 1
                try:
                    self.retry_queue.remove(entry.key)
                except QueueStoreError as e:
                    logger.error(
                        "Could not remove %s from retry queue: %s",
                        entry.key.describe(),
                        e.message,
                    )
            self._sleep(self.drain_delay)

        self.summary.drained += stats.processed
        logger.info(
            "Pending songs processed: %d, successful: %d, already stored: %d, failed: %d",
            stats.processed,
            stats.reinserted,
            stats.skipped,
            stats.failed,
        )
        return stats

    # --- Report ---

    def _report(self) -> BatchSummary:
        try:
            self.summary.pending_remaining = self.retry_queue.size()
        except QueueStoreError as e:
            logger.error("Cannot read retry queue for report: %s", e.message)
        if self.summary.dead_lettered:
            logger.warning(
                "%d song(s) moved to the dead-letter archive this run",
                len(self.summary.dead_lettered),
            )
        return self.summary


# --- Entry Point ---


def run_batch(
    source_dir: str | Path | None = None,
    db_path: str | Path | None = None,
    pending_path: str | Path | None = None,
    archive_path: str | Path | None = None,
    store: RecordStore | None = None,
    **orchestrator_kwargs,
) -> BatchSummary:
    """Wire the default collaborators and run one batch.

    Cleans orphan temp files left by an interrupted queue rewrite before
    the queue is loaded.

    Args:
        source_dir: Override for config.SOURCE_DIR.
        db_path: Override for config.DB_PATH (ignored when store is given).
        pending_path: Override for config.PENDING_QUEUE_PATH.
        archive_path: Override for config.DEAD_LETTER_PATH.
        store: Optional pre-built RecordStore.
        **orchestrator_kwargs: Passed through to IngestionOrchestrator.

    Returns:
        BatchSummary for the run.

    Raises:
        ConnectivityError: If the record store is unreachable.
    """
    pending_path = Path(pending_path) if pending_path is not None else PENDING_QUEUE_PATH
    archive_path = Path(archive_path) if archive_path is not None else DEAD_LETTER_PATH

    for directory in {pending_path.parent, archive_path.parent}:
        cleanup_orphan_temp_files(directory)

    engine = None
    if store is None:
        try:
            engine, SessionFactory = init_db(db_path)
        except (SQLAlchemyError, OSError) as e:
            raise ConnectivityError(str(e)) from e
        store = SqlRecordStore(SessionFactory)

    retry_queue, _ = open_stores(pending_path, archive_path)
    orchestrator = IngestionOrchestrator(
        store=store,
        retry_queue=retry_queue,
        source_dir=source_dir if source_dir is not None else SOURCE_DIR,
        **orchestrator_kwargs,
    )
    try:
        return orchestrator.run()
    finally:
        if engine is not None:
            engine.dispose()
