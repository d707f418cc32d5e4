"""Song Data Pipeline - Song API FastAPI application.

On-demand access to the external scraper tool (export one song, search by
query) and queueing of batch ingestion runs. Batch runs execute in the Huey
consumer, never in the request thread.

Run with:
    uvicorn services.song_api.main:app --reload  # dev server only
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from services.song_api.service import invoke_tool, queue_snapshot, to_response
from services.tool_invoker.run import ExternalToolInvoker, Operation, ToolConfig
from songdata.config import RAW_OUTPUT_DIR
from songdata.errors import ErrorCode, QueueStoreError, ToolInvocationError
from songdata.schemas import (
    BatchQueuedResponse,
    BatchRequest,
    ErrorResponse,
    FetchRequest,
    InvocationResponse,
    SearchRequest,
)

logger = logging.getLogger(__name__)

# --- Invoker Setup ---

# Module-level invoker (initialized on startup)
_invoker: ExternalToolInvoker | None = None


def get_invoker() -> ExternalToolInvoker:
    """Get the tool invoker.

    Raises:
        RuntimeError: If invoker not initialized (app lifespan not invoked).
    """
    if _invoker is None:
        raise RuntimeError("Tool invoker not initialized. App lifespan not invoked?")
    return _invoker


# --- Lifespan ---


def _cleanup_orphan_temp_files_safe() -> None:
    """Clean up orphan temp files in the raw output directory (best-effort)."""
    from songdata.utils.atomic_io import cleanup_orphan_temp_files

    try:
        cleanup_orphan_temp_files(RAW_OUTPUT_DIR)
    except Exception:
        # Best-effort: never crash startup
        logger.warning("Startup cleanup failed (non-fatal)", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler.

    Builds the default invoker unless a test already installed one.
    """
    global _invoker
    if _invoker is None:
        _invoker = ExternalToolInvoker(ToolConfig(raw_output_dir=RAW_OUTPUT_DIR))

    _cleanup_orphan_temp_files_safe()

    yield


# --- FastAPI App ---


app = FastAPI(
    title="Song Data Pipeline - Song API",
    description="On-demand song export/search and batch ingestion queueing.",
    version="0.1.0",
    lifespan=lifespan,
)


# --- Error Handling ---


def error_code_to_status(error_code: str) -> int:
    """Map error codes to HTTP status codes.

    - TOOL_TIMEOUT -> 504
    - PROCESS_ERROR, TOOL_LAUNCH_FAILED -> 502
    - everything else -> 500
    """
    if error_code == ErrorCode.TOOL_TIMEOUT:
        return 504
    if error_code in (ErrorCode.PROCESS_ERROR, ErrorCode.TOOL_LAUNCH_FAILED):
        return 502
    return 500


def make_error_response(error_code: str, error_message: str) -> JSONResponse:
    """Create a JSON error response."""
    return JSONResponse(
        status_code=error_code_to_status(error_code),
        content=ErrorResponse(
            error_code=error_code,
            error_message=error_message,
        ).model_dump(),
    )


_TOOL_ERROR_RESPONSES = {
    502: {"model": ErrorResponse, "description": "Tool failed or could not be started"},
    504: {"model": ErrorResponse, "description": "Tool timed out on every attempt"},
}


def _run(operation: Operation, target: str, timeout_seconds, retries):
    try:
        result = invoke_tool(get_invoker(), operation, target, timeout_seconds, retries)
    except ToolInvocationError as e:
        return make_error_response(e.error_code, e.message)
    except ValueError as e:
        return JSONResponse(
            status_code=422,
            content=ErrorResponse(error_code="INVALID_REQUEST", error_message=str(e)).model_dump(),
        )
    return to_response(result)


# --- Endpoints ---


@app.post(
    "/v1/songs/fetch",
    response_model=InvocationResponse,
    responses=_TOOL_ERROR_RESPONSES,
    summary="Export one song",
    description="Run the tool's export sub-operation for a single tab id.",
)
def fetch_song(request: FetchRequest):
    """Export one song by id.

    A tool that exits 0 with unparseable output yields a 200 with
    degraded=true and the raw payload.
    """
    return _run(Operation.EXPORT, request.item_id, request.timeout_seconds, request.retries)


@app.post(
    "/v1/songs/search",
    response_model=InvocationResponse,
    responses=_TOOL_ERROR_RESPONSES,
    summary="Search songs",
)
def search_songs(request: SearchRequest):
    return _run(Operation.SEARCH, request.query, request.timeout_seconds, request.retries)


@app.post(
    "/v1/batch",
    response_model=BatchQueuedResponse,
    status_code=202,
    responses={500: {"model": ErrorResponse, "description": "Enqueue failed"}},
    summary="Queue a batch ingestion run",
)
def queue_batch(request: BatchRequest | None = None):
    """Enqueue one batch run for the Huey consumer."""
    from songdata.huey_app import enqueue_batch_run

    source_dir = request.source_dir if request is not None else None
    try:
        task_id = enqueue_batch_run(source_dir)
    except Exception:
        logger.exception("Failed to enqueue batch run")
        return make_error_response("ENQUEUE_FAILED", "Could not enqueue batch run")
    return BatchQueuedResponse(task_id=task_id)


@app.get("/v1/queue", summary="Retry queue and dead-letter archive")
def get_queue():
    try:
        return queue_snapshot()
    except QueueStoreError as e:
        return make_error_response(e.error_code, e.message)


@app.get("/v1/tool/status", summary="External tool status")
def tool_status():
    return get_invoker().status()


@app.get("/health", summary="Health check")
def health_check():
    """Simple health check endpoint."""
    return {"status": "ok"}


# --- For testing: allow overriding the invoker ---


def override_invoker(invoker: ExternalToolInvoker | None) -> None:
    """Override the tool invoker for testing (None resets to default)."""
    global _invoker
    _invoker = invoker
