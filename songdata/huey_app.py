"""Song Data Pipeline - Huey task queue configuration.

Huey setup with SQLite backend so batch runs can be queued from the API
without a broker.

How to run:
1. Start the song API:
   uvicorn services.song_api.main:app --reload

2. Start the Huey consumer with a single worker (one batch at a time, the
   retry queue and archive have a single writer):
   huey_consumer songdata.huey_app.huey -w 1
"""

from __future__ import annotations

import logging
from pathlib import Path

from huey import SqliteHuey

from songdata.config import HUEY_DB_PATH, QUEUE_DIR

logger = logging.getLogger(__name__)


def _ensure_queue_dir() -> None:
    """Ensure the queue directory exists."""
    Path(QUEUE_DIR).mkdir(parents=True, exist_ok=True)


# Ensure queue directory exists before creating Huey instance
_ensure_queue_dir()

huey = SqliteHuey(
    name="songdata_pipeline",
    filename=str(HUEY_DB_PATH),
    immediate=False,  # Tasks queued for consumer processing
)


@huey.task()
def batch_run_task(source_dir: str | None = None) -> dict:
    """Huey task that runs one full batch ingestion.

    Args:
        source_dir: Optional override for the source document directory.

    Returns:
        BatchSummary as a dict (for logging/debugging).
    """
    # Import here to avoid circular imports
    from songdata.orchestrator import run_batch

    logger.info("Batch run task started (source_dir=%s)", source_dir or "default")
    summary = run_batch(source_dir=source_dir)
    logger.info(
        "Batch run task completed: inserted=%d skipped=%d errors=%d",
        summary.inserted,
        summary.skipped,
        summary.errors,
    )
    return summary.to_dict()


def enqueue_batch_run(source_dir: str | None = None) -> str:
    """Enqueue a batch run.

    Non-blocking: returns immediately even if the consumer is not running.
    The task is persisted in SQLite and processed when the consumer starts.

    Args:
        source_dir: Optional override for the source document directory.

    Returns:
        The Huey task id.
    """
    logger.info("Enqueueing batch run (source_dir=%s)", source_dir or "default")
    result = batch_run_task(source_dir)
    return result.id
