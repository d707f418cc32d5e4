"""Song Data Pipeline - Song API service logic.

Glue between the HTTP layer and the tool invoker / retry queue documents.
No HTTP types here: endpoints in main.py map results and exceptions to
responses.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from services.tool_invoker.run import ExternalToolInvoker, InvocationResult, Operation
from songdata.config import DEAD_LETTER_PATH, PENDING_QUEUE_PATH, RETRY_THRESHOLD
from songdata.retry_queue import DeadLetterDocument, PendingQueueDocument
from songdata.schemas import InvocationResponse


def invoke_tool(
    invoker: ExternalToolInvoker,
    operation: Operation,
    target: str,
    timeout_seconds: float | None = None,
    retries: int | None = None,
) -> InvocationResult:
    """Run one fetch or search.

    Raises:
        ValueError: If target is empty.
        ToolInvocationError: If every attempt failed.
    """
    if operation is Operation.EXPORT:
        return invoker.fetch(target, timeout=timeout_seconds, retries=retries)
    return invoker.search(target, timeout=timeout_seconds, retries=retries)


def to_response(result: InvocationResult) -> InvocationResponse:
    """Map an InvocationResult to its API shape.

    The raw payload is only echoed back for degraded results; parsed
    results carry it inside data where relevant.
    """
    return InvocationResponse(
        operation=str(result.operation),
        target=result.target,
        degraded=result.degraded,
        data=result.data,
        raw_output=result.raw_output if result.degraded else None,
        parse_error=result.parse_error,
        attempts=result.attempts,
        elapsed_ms=result.elapsed_ms,
    )


def queue_snapshot(
    pending_path: str | Path = PENDING_QUEUE_PATH,
    archive_path: str | Path = DEAD_LETTER_PATH,
) -> dict[str, Any]:
    """Read-only view of the retry queue and dead-letter archive.

    Raises:
        QueueStoreError: If either document cannot be read.
    """
    pending = PendingQueueDocument(pending_path).load()
    archived = DeadLetterDocument(archive_path, threshold=RETRY_THRESHOLD).load()
    return {
        "pending": [
            {**entry.key._asdict(), "retry_count": entry.retry_count} for entry in pending
        ],
        "archived": [
            {
                **entry.key._asdict(),
                "final_retry_count": entry.final_retry_count,
                "last_attempt": entry.last_attempt,
            }
            for entry in archived
        ],
    }
