"""Song Data Pipeline - Error taxonomy.

Every pipeline error carries a stable error_code so results, logs and
HTTP responses can report failures without matching on message text.

Only ConnectivityError is fatal to a batch run. Everything else is caught
and tallied per candidate or per document by the orchestrator, or counted
as one failed attempt by the tool invoker.
"""

from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    """Error codes for ingestion and tool invocation."""

    PARSE_ERROR = "PARSE_ERROR"
    DUPLICATE = "DUPLICATE"
    STORE_ERROR = "STORE_ERROR"
    CONNECTIVITY_ERROR = "CONNECTIVITY_ERROR"
    TOOL_TIMEOUT = "TOOL_TIMEOUT"
    PROCESS_ERROR = "PROCESS_ERROR"
    TOOL_LAUNCH_FAILED = "TOOL_LAUNCH_FAILED"
    QUEUE_STORE_ERROR = "QUEUE_STORE_ERROR"
    READ_FAILED = "READ_FAILED"


class SongDataError(Exception):
    """Base exception for pipeline errors."""

    def __init__(self, error_code: str, message: str):
        self.error_code = error_code
        self.message = message
        super().__init__(f"{error_code}: {message}")


class ParseError(SongDataError):
    """Embedded payload is absent or malformed. Non-fatal."""

    def __init__(self, reason: str):
        super().__init__(ErrorCode.PARSE_ERROR, reason)


class DuplicateError(SongDataError):
    """Candidate already stored with the same (title, artist, external_id).

    A skip decision rather than a failure.
    """

    def __init__(self, title: str, artist: str, external_id: str):
        self.title = title
        self.artist = artist
        self.external_id = external_id
        super().__init__(
            ErrorCode.DUPLICATE,
            f'"{title}" by {artist} (id {external_id}) already exists',
        )


class StoreError(SongDataError):
    """Record store rejected an operation."""

    def __init__(self, reason: str):
        super().__init__(ErrorCode.STORE_ERROR, reason)


class ConnectivityError(SongDataError):
    """Record store unreachable at batch start. Fatal."""

    def __init__(self, reason: str):
        super().__init__(ErrorCode.CONNECTIVITY_ERROR, f"Record store unreachable: {reason}")


class QueueStoreError(SongDataError):
    """Retry queue or dead-letter document could not be read or written."""

    def __init__(self, path: str, reason: str):
        self.path = path
        super().__init__(ErrorCode.QUEUE_STORE_ERROR, f"{path}: {reason}")


class ToolInvocationError(SongDataError):
    """Base class for one failed external tool attempt."""


class ToolTimeoutError(ToolInvocationError):
    """Tool exceeded its wall-clock budget and was killed."""

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            ErrorCode.TOOL_TIMEOUT,
            f"Tool timed out after {timeout_seconds * 1000:.0f}ms",
        )


class ProcessError(ToolInvocationError):
    """Tool exited with a nonzero status."""

    def __init__(self, returncode: int, stderr: str = ""):
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip() or f"Process exited with code {returncode}"
        super().__init__(ErrorCode.PROCESS_ERROR, detail)


class ToolLaunchError(ToolInvocationError):
    """Tool executable could not be started."""

    def __init__(self, executable: str, reason: str):
        self.executable = executable
        super().__init__(
            ErrorCode.TOOL_LAUNCH_FAILED, f"Failed to start {executable}: {reason}"
        )
