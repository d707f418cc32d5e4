"""Song Data Pipeline - Pydantic models for API validation.

Pydantic models for request/response validation corresponding to
JSON schemas in /specs. Used by FastAPI for runtime validation.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# --- Request Models ---


class FetchRequest(BaseModel):
    """Request payload for exporting one song by id."""

    model_config = ConfigDict(extra="forbid")

    item_id: str = Field(
        ...,
        min_length=1,
        description="Source site tab id to export",
    )
    timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Per-attempt timeout (defaults to configured value)",
    )
    retries: int | None = Field(
        default=None,
        ge=1,
        description="Total attempts (defaults to configured value)",
    )


class SearchRequest(BaseModel):
    """Request payload for a free-text song search."""

    model_config = ConfigDict(extra="forbid")

    query: str = Field(
        ...,
        min_length=1,
        description='Free-text query, e.g. "Hotel California Eagles"',
    )
    timeout_seconds: float | None = Field(default=None, gt=0)
    retries: int | None = Field(default=None, ge=1)


class BatchRequest(BaseModel):
    """Request payload for queueing a batch ingestion run."""

    model_config = ConfigDict(extra="forbid")

    source_dir: str | None = Field(
        default=None,
        min_length=1,
        description="Directory of saved pages (defaults to configured SOURCE_DIR)",
    )


# --- Response Models ---


class InvocationResponse(BaseModel):
    """Response for a completed fetch or search.

    Corresponds to specs/invocation_result.schema.json.
    """

    model_config = ConfigDict(extra="forbid")

    status: str = Field(default="success", description="Operation status")
    operation: str = Field(..., description="export or search")
    target: str = Field(..., description="Item id or query")
    degraded: bool = Field(
        default=False,
        description="True if output could not be parsed; raw_output holds the payload",
    )
    data: dict[str, Any] | None = Field(default=None, description="Parsed payload")
    raw_output: str | None = Field(default=None, description="Unparsed payload (degraded only)")
    parse_error: str | None = Field(default=None, description="Why parsing failed")
    attempts: int = Field(..., ge=1, description="Attempts used")
    elapsed_ms: int = Field(..., ge=0, description="Duration of the successful attempt")


class BatchQueuedResponse(BaseModel):
    """Response for a queued batch run."""

    model_config = ConfigDict(extra="forbid")

    status: str = Field(default="queued", description="Operation status")
    task_id: str | None = Field(default=None, description="Huey task id")


class ErrorResponse(BaseModel):
    """Response for failed operations."""

    model_config = ConfigDict(extra="forbid")

    status: str = Field(default="error", description="Operation status")
    error_code: str = Field(..., description="Error taxonomy code")
    error_message: str = Field(..., description="Human-readable error description")


__all__ = [
    "FetchRequest",
    "SearchRequest",
    "BatchRequest",
    "InvocationResponse",
    "BatchQueuedResponse",
    "ErrorResponse",
]
