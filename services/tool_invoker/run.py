"""Song Data Pipeline - External Tool Invoker.

On-demand, single-item access to the out-of-process scraper tool. Not part
of the batch scan.

Sub-operations (exactly one per invocation):
- export: <exe> export -id <item_id>      -> HTML song page on stdout
- search: <exe> search -query <query>     -> JSON (or plain text) on stdout

Contract with the tool: stdout/stderr and the exit code only
(0 = success, nonzero = failure).

Bounded execution:
- Each attempt spawns exactly one process in its own session and blocks
  until it exits or the wall-clock timeout fires. On timeout the whole
  process group is killed, output is discarded, and the attempt fails with
  ToolTimeoutError. Nothing waits past the timeout.
- Up to `retries` attempts, with a fixed delay between failed attempts.
  The first successful attempt wins; after the last failure its error is
  raised.

Parse failures on a zero exit code are not invocation failures: the result
is returned with degraded=True and the raw payload, so the caller can keep
the data for later reprocessing.

Error codes:
- TOOL_TIMEOUT: attempt exceeded its timeout
- PROCESS_ERROR: tool exited nonzero
- TOOL_LAUNCH_FAILED: executable missing or not runnable
"""

from __future__ import annotations

import json
import logging
import os
import re
import signal
import subprocess
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any

from bs4 import BeautifulSoup

from songdata.config import (
    TOOL_EXECUTABLE_PATH,
    TOOL_MAX_RETRIES,
    TOOL_RETRY_DELAY_SECONDS,
    TOOL_TIMEOUT_SECONDS,
)
from songdata.errors import (
    ParseError,
    ProcessError,
    ToolInvocationError,
    ToolLaunchError,
    ToolTimeoutError,
)
from songdata.utils.atomic_io import atomic_write_text
from songdata.utils.paths import raw_output_path

logger = logging.getLogger(__name__)


# --- Configuration ---


class Operation(StrEnum):
    EXPORT = "export"
    SEARCH = "search"


@dataclass
class ToolConfig:
    """How to run the external tool."""

    executable_path: Path = TOOL_EXECUTABLE_PATH
    timeout_seconds: float = TOOL_TIMEOUT_SECONDS
    retries: int = TOOL_MAX_RETRIES
    retry_delay_seconds: float = TOOL_RETRY_DELAY_SECONDS
    # Extra environment variables, merged over the current environment
    env: dict[str, str] = field(default_factory=dict)
    # When set, raw payloads are persisted here for later reprocessing
    raw_output_dir: Path | None = None


# --- Result Types ---


@dataclass
class ProcessOutcome:
    """Captured output of one finished tool process."""

    returncode: int
    stdout: str
    stderr: str
    elapsed_ms: int


@dataclass
class InvocationResult:
    """Outcome of a fetch or search that produced output.

    degraded=True means the tool succeeded but its output could not be
    parsed: data is None and raw_output holds the unparsed payload.
    """

    operation: Operation
    target: str
    ok: bool
    degraded: bool = False
    data: dict[str, Any] | None = None
    raw_output: str = ""
    return_code: int | None = None
    attempts: int = 0
    elapsed_ms: int = 0
    parse_error: str | None = None
    raw_output_path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result = asdict(self)
        result["operation"] = str(self.operation)
        return result


@dataclass
class _Attempt:
    """Tagged outcome of a single attempt: exactly one field is set."""

    result: InvocationResult | None = None
    error: ToolInvocationError | None = None


# --- Process Execution ---


def build_args(executable: str | Path, operation: Operation, target: str) -> list[str]:
    """Build the fixed argument vector for a sub-operation."""
    if operation is Operation.EXPORT:
        return [str(executable), "export", "-id", target]
    return [str(executable), "search", "-query", target]


def _kill_process_tree(proc: subprocess.Popen) -> None:
    """Forcibly stop proc and anything it spawned, then reap it."""
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        logger.debug("Process group %d already exited", proc.pid)
    for stream in (proc.stdout, proc.stderr):
        if stream is not None:
            stream.close()
    proc.wait()


def run_tool_once(
    argv: list[str],
    timeout: float,
    env: dict[str, str] | None = None,
) -> ProcessOutcome:
    """Run the tool once, bounded by timeout.

    Args:
        argv: Full argument vector (executable first).
        timeout: Wall-clock budget in seconds.
        env: Complete environment for the child (None inherits).

    Returns:
        ProcessOutcome for a zero exit code.

    Raises:
        ToolTimeoutError: Timeout fired; the process group was killed.
        ProcessError: Nonzero exit code.
        ToolLaunchError: Process could not be started.
    """
    start = time.monotonic()
    try:
        proc = subprocess.Popen(
            argv,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=env,
            text=True,
            encoding="utf-8",
            errors="replace",
            start_new_session=True,
        )
    except OSError as e:
        raise ToolLaunchError(argv[0], str(e)) from e

    try:
        stdout, stderr = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        _kill_process_tree(proc)
        raise ToolTimeoutError(timeout) from None

    elapsed_ms = int((time.monotonic() - start) * 1000)
    if proc.returncode != 0:
        raise ProcessError(proc.returncode, stderr)

    return ProcessOutcome(
        returncode=proc.returncode, stdout=stdout, stderr=stderr, elapsed_ms=elapsed_ms
    )


# --- Export Parsing ---

_TIMING = re.compile(r"\b(\d{1,2}:\d{2})\b")
_REPEAT = re.compile(r"\b(\d+)x\b")
_BRACKET_SECTION = re.compile(r"\[([^\]]+)\]")

# Free-text labels that mark instrumental passages next to a timing marker
_INLINE_LABELS = ("Guitar Solo", "Bass Out", "Organ, Violins", "Drums", "Organ, Guitar")

# Checked in order; first keyword found in the lowercased label wins
_SECTION_KEYWORDS = (
    ("solo", "solo"),
    ("bass", "bass"),
    ("guitar", "guitar"),
    ("organ", "instrumental"),
    ("drums", "drums"),
    ("repeat", "repeat"),
    ("intro", "intro"),
    ("verse", "verse"),
    ("chorus", "chorus"),
    ("bridge", "bridge"),
    ("outro", "outro"),
    ("instrumental", "instrumental"),
)

MIN_COMPLETE_HTML_LENGTH = 1000


def section_type(label: str) -> str:
    """Classify a section label (e.g. "Verse 2" -> "verse")."""
    lowered = label.lower()
    for keyword, kind in _SECTION_KEYWORDS:
        if keyword in lowered:
            return kind
    return "section"


def _timing_seconds(marker: str) -> int:
    minutes, seconds = marker.split(":")
    return int(minutes) * 60 + int(seconds)


def is_html_complete(html: str) -> bool:
    """True if an export page carries everything the song view needs."""
    checks = {
        "length": len(html) > MIN_COMPLETE_HTML_LENGTH,
        "chord definitions": "chords-used" in html and '<div class="' in html,
        "chord progressions": '<span class="chord">' in html,
        "song title": "<title>" in html and "Chords" in html,
        "tab content": "tab-content" in html and '<div class="' in html,
    }
    failed = [name for name, passed in checks.items() if not passed]
    if failed:
        logger.debug("Export HTML incomplete, failed checks: %s", ", ".join(failed))
    return not failed


def _split_title(page_title: str) -> tuple[str, str]:
    """Split "<song> by <artist>"; the artist may itself contain " by "."""
    if " by " in page_title:
        song, artist = page_title.split(" by ", 1)
        return song.strip(), artist.strip()
    return page_title, "Unknown Artist"


def parse_export_output(output: str, item_id: str) -> dict[str, Any]:
    """Parse the HTML song page produced by the export sub-operation.

    Raises:
        ParseError: If the output is empty or is not an HTML song page.
    """
    if not output.strip():
        raise ParseError("export produced no output")

    soup = BeautifulSoup(output, "html.parser")
    title_tag = soup.find("title")
    pre_tag = soup.find("pre")
    if title_tag is None and pre_tag is None and "tab-content" not in output:
        raise ParseError("export output is not an HTML song page")

    page_title = title_tag.get_text(strip=True) if title_tag is not None else ""
    title, artist = _split_title(page_title) if page_title else ("Unknown Title", "Unknown Artist")

    timing_markers: list[str] = []
    sections: list[dict[str, Any]] = []
    last_marker = "0:00"
    for line in soup.get_text("\n").splitlines():
        timing = _TIMING.search(line)
        if timing:
            last_marker = timing.group(1)
            if last_marker not in timing_markers:
                timing_markers.append(last_marker)
            label = next((lbl for lbl in _INLINE_LABELS if lbl in line), None)
            if label:
                sections.append({"time": last_marker, "label": label, "type": section_type(label)})

        repeat = _REPEAT.search(line)
        if repeat:
            count = int(repeat.group(1))
            sections.append(
                {
                    "time": last_marker,
                    "label": f"Repeat {count}x",
                    "type": "repeat",
                    "repeat_count": count,
                }
            )

        bracket = _BRACKET_SECTION.search(line)
        if bracket:
            name = bracket.group(1).strip()
            sections.append({"time": last_marker, "label": name, "type": section_type(name)})

    return {
        "item_id": item_id,
        "type": "rich_song_data",
        "title": title,
        "artist": artist,
        "timing_markers": sorted(timing_markers, key=_timing_seconds),
        "sections": sections,
        "tab_content": pre_tag.get_text().strip() if pre_tag is not None else "",
        "has_raw_html": is_html_complete(output),
    }


# --- Search Parsing ---

_FOUND_RESULTS = re.compile(r"Found\s+(\d+)\s+results")
_SONG_NAME = re.compile(r"Song name:\s*(.+?)\s+by\s+(.+)")


def _parse_search_text(output: str) -> tuple[int | None, list[dict[str, str]]]:
    total = None
    results = []
    for line in output.splitlines():
        if total is None:
            found = _FOUND_RESULTS.search(line)
            if found:
                total = int(found.group(1))
        song = _SONG_NAME.search(line)
        if song:
            results.append({"title": song.group(1).strip(), "artist": song.group(2).strip()})
    return total, results


def parse_search_output(output: str, query: str) -> dict[str, Any]:
    """Parse search output: JSON first, then the plain-text listing.

    Raises:
        ParseError: If the output is neither JSON nor a recognizable listing.
    """
    text = output.strip()
    if not text:
        raise ParseError("search produced no output")

    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        payload = None

    if payload is not None:
        if isinstance(payload, list):
            results = payload
        elif isinstance(payload, dict) and isinstance(payload.get("results"), list):
            results = payload["results"]
        else:
            results = [payload]
        return {
            "query": query,
            "type": "search_results",
            "format": "json",
            "total_results": len(results),
            "results": results,
        }

    total, results = _parse_search_text(text)
    if total is None and not results:
        raise ParseError("search output is neither JSON nor a result listing")
    return {
        "query": query,
        "type": "search_results",
        "format": "text",
        "total_results": total if total is not None else len(results),
        "results": results,
    }


_PARSERS: dict[Operation, Callable[[str, str], dict[str, Any]]] = {
    Operation.EXPORT: parse_export_output,
    Operation.SEARCH: parse_search_output,
}


# --- Invoker ---


class ExternalToolInvoker:
    """Bounded-timeout, bounded-retry wrapper around the scraper tool.

    Args:
        config: Tool configuration. Defaults from songdata.config.
        sleep: Delay function between attempts (injectable for tests).
        runner: Single-attempt process runner (injectable for tests).
    """

    def __init__(
        self,
        config: ToolConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
        runner: Callable[..., ProcessOutcome] = run_tool_once,
    ):
        self.config = config or ToolConfig()
        self._sleep = sleep
        self._runner = runner

    def fetch(
        self,
        item_id: str | int,
        timeout: float | None = None,
        retries: int | None = None,
    ) -> InvocationResult:
        """Export one item by id.

        Raises:
            ValueError: If item_id is empty or not a string/int.
            ToolInvocationError: Last error after all attempts failed.
        """
        if isinstance(item_id, bool) or not isinstance(item_id, (str, int)):
            raise ValueError("Invalid item id provided")
        target = str(item_id).strip()
        if not target:
            raise ValueError("Invalid item id provided")
        return self.invoke(Operation.EXPORT, target, timeout=timeout, retries=retries)

    def search(
        self,
        query: str,
        timeout: float | None = None,
        retries: int | None = None,
    ) -> InvocationResult:
        """Search by free-text query (e.g. "Hotel California Eagles").

        Raises:
            ValueError: If query is empty or not a string.
            ToolInvocationError: Last error after all attempts failed.
        """
        if not isinstance(query, str) or not query.strip():
            raise ValueError("Invalid search query provided")
        return self.invoke(Operation.SEARCH, query.strip(), timeout=timeout, retries=retries)

    def invoke(
        self,
        operation: Operation,
        target: str,
        timeout: float | None = None,
        retries: int | None = None,
    ) -> InvocationResult:
        """Run operation with the retry policy.

        Args:
            operation: Sub-operation to run.
            target: Item id or query.
            timeout: Per-attempt timeout in seconds (default from config).
            retries: Total attempts, at least 1 (default from config).

        Returns:
            InvocationResult from the first successful attempt.

        Raises:
            ToolInvocationError: The last attempt's error.
        """
        timeout = timeout if timeout is not None else self.config.timeout_seconds
        attempts = max(1, retries if retries is not None else self.config.retries)
        argv = build_args(self.config.executable_path, operation, target)
        env = {**os.environ, **self.config.env}

        logger.info(
            "Calling tool %s for %r (timeout=%.3fs, attempts=%d)",
            operation,
            target,
            timeout,
            attempts,
        )

        last_error: ToolInvocationError | None = None
        for attempt in range(1, attempts + 1):
            outcome = self._attempt(operation, target, argv, timeout, env)
            if outcome.result is not None:
                outcome.result.attempts = attempt
                logger.info("Tool %s succeeded on attempt %d/%d", operation, attempt, attempts)
                return outcome.result

            last_error = outcome.error
            logger.warning(
                "Tool %s attempt %d/%d failed: %s", operation, attempt, attempts, last_error
            )
            if attempt < attempts:
                self._sleep(self.config.retry_delay_seconds)

        logger.error("All %d %s attempts failed for %r", attempts, operation, target)
        raise last_error

    def _attempt(
        self,
        operation: Operation,
        target: str,
        argv: list[str],
        timeout: float,
        env: dict[str, str],
    ) -> _Attempt:
        try:
            process = self._runner(argv, timeout, env)
        except ToolInvocationError as e:
            return _Attempt(error=e)

        result = InvocationResult(
            operation=operation,
            target=target,
            ok=True,
            raw_output=process.stdout,
            return_code=process.returncode,
            elapsed_ms=process.elapsed_ms,
        )
        try:
            result.data = _PARSERS[operation](process.stdout, target)
        except ParseError as e:
            logger.warning(
                "Tool %s output for %r could not be parsed, keeping raw payload: %s",
                operation,
                target,
                e.message,
            )
            result.degraded = True
            result.parse_error = e.message

        if result.degraded or operation is Operation.EXPORT:
            result.raw_output_path = self._persist_raw(operation, target, process.stdout)
        return _Attempt(result=result)

    def _persist_raw(self, operation: Operation, target: str, payload: str) -> str | None:
        if self.config.raw_output_dir is None:
            return None
        path = raw_output_path(str(operation), target, self.config.raw_output_dir)
        try:
            atomic_write_text(path, payload)
        except OSError as e:
            logger.warning("Failed to save raw %s output to %s: %s", operation, path, e)
            return None
        logger.info("Raw %s output saved to %s", operation, path)
        return str(path)

    def status(self) -> dict[str, Any]:
        """Describe the configured tool (for health/status endpoints)."""
        exe = Path(self.config.executable_path)
        return {
            "service": "external_tool_invoker",
            "executable_path": str(exe),
            "executable_exists": exe.is_file(),
            "executable_runnable": exe.is_file() and os.access(exe, os.X_OK),
            "timeout_seconds": self.config.timeout_seconds,
            "max_retries": self.config.retries,
            "retry_delay_seconds": self.config.retry_delay_seconds,
            "operations": [str(op) for op in Operation],
        }


if __name__ == "__main__":
    import sys

    logging.basicConfig(level=logging.INFO)

    if len(sys.argv) != 3 or sys.argv[1] not in ("export", "search"):
        print(f"Usage: {sys.argv[0]} export <item_id> | search <query>")
        sys.exit(1)

    invoker = ExternalToolInvoker()
    try:
        if sys.argv[1] == "export":
            outcome = invoker.fetch(sys.argv[2])
        else:
            outcome = invoker.search(sys.argv[2])
    except ToolInvocationError as e:
        print(f"Error: {e.error_code} - {e.message}")
        sys.exit(1)

    print(json.dumps(outcome.data if outcome.data is not None else outcome.to_dict(), indent=2))
    sys.exit(0)
