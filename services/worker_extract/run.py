"""Song Data Pipeline - Extract Worker.

Turns one saved source page into song candidates.

Input: a raw HTML document (saved explore/search page)
Output: ordered list of SongCandidate (possibly empty)

The page embeds its entire client-side store as HTML-escaped JSON in the
data-content attribute of a single <div class="js-store">. The worker
locates that container, lets the HTML parser decode the attribute, parses
the JSON and descends store.page.data.data.tabs to the list of raw tab
objects.

Error codes:
- PARSE_ERROR: container missing, or payload is not a JSON object
- READ_FAILED: file could not be read

Both are non-fatal: the orchestrator logs them and counts the document as
yielding zero candidates.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from bs4 import BeautifulSoup

from songdata.config import DEFAULT_DIFFICULTY, SOURCE_DOCUMENT_SUFFIX
from songdata.errors import ErrorCode, ParseError
from songdata.models import SongCandidate

logger = logging.getLogger(__name__)

# --- Constants ---

STORE_CONTAINER_CLASS = "js-store"
STORE_ATTRIBUTE = "data-content"

# Path from the top of the embedded store to the list of tab objects
TABS_PATH = ("store", "page", "data", "data", "tabs")


# --- Result Types ---


@dataclass
class ExtractResult:
    """Result of extracting one source document."""

    ok: bool
    path: str
    candidates: list[SongCandidate] = field(default_factory=list)
    error_code: str | None = None
    message: str | None = None
    skipped_items: int = 0


# --- Parsing ---


def _load_store_payload(html: str) -> dict[str, Any]:
    """Find the js-store container and decode its JSON payload.

    Raises:
        ParseError: If the container is missing or the payload is invalid.
    """
    soup = BeautifulSoup(html, "html.parser")
    containers = soup.find_all("div", class_=STORE_CONTAINER_CLASS)
    if not containers:
        raise ParseError("No js-store container found")
    if len(containers) > 1:
        logger.debug("Found %d js-store containers, using the first", len(containers))

    raw = containers[0].get(STORE_ATTRIBUTE)
    if not raw:
        raise ParseError(f"js-store container has no {STORE_ATTRIBUTE} attribute")

    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ParseError(f"js-store payload is not valid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise ParseError(f"js-store payload is a {type(payload).__name__}, expected an object")
    return payload


def _descend(payload: dict[str, Any], path: tuple[str, ...]) -> list[Any]:
    """Follow path through nested dicts. Any missing hop yields []."""
    node: Any = payload
    for segment in path:
        if not isinstance(node, dict):
            return []
        node = node.get(segment)
    return node if isinstance(node, list) else []


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _optional_float(value: Any) -> float | None:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _int_or_zero(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def item_to_candidate(item: dict[str, Any]) -> SongCandidate | None:
    """Map one raw tab object to a SongCandidate.

    Returns:
        The candidate, or None if title, artist or id is missing.
    """
    title = _optional_str(item.get("song_name"))
    artist = _optional_str(item.get("artist_name"))
    external_id = _optional_str(item.get("id"))
    if not (title and artist and external_id):
        return None

    return SongCandidate(
        title=title,
        artist=artist,
        external_id=external_id,
        source_url=_optional_str(item.get("tab_url")) or "",
        key_signature=_optional_str(item.get("tonality_name")),
        difficulty=_optional_str(item.get("difficulty")) or DEFAULT_DIFFICULTY,
        rating=_optional_float(item.get("rating")),
        votes=_int_or_zero(item.get("votes")),
        attributes={
            k: item[k] for k in ("type", "part", "version") if item.get(k) not in (None, "")
        },
    )


def extract_candidates(html: str) -> list[SongCandidate]:
    """Extract song candidates from a source page.

    Pure function of its input. Items missing a title, artist or id are
    dropped with a warning; everything else keeps page order.

    Args:
        html: Raw document text.

    Returns:
        Candidates in page order (empty if the page lists no tabs).

    Raises:
        ParseError: If the js-store container is absent or malformed.
    """
    candidates, _ = _extract_with_stats(html)
    return candidates


def _extract_with_stats(html: str) -> tuple[list[SongCandidate], int]:
    payload = _load_store_payload(html)
    candidates = []
    skipped = 0
    for item in _descend(payload, TABS_PATH):
        candidate = item_to_candidate(item) if isinstance(item, dict) else None
        if candidate is None:
            skipped += 1
            continue
        candidates.append(candidate)
    if skipped:
        logger.warning("Skipped %d tab item(s) missing title, artist or id", skipped)
    return candidates, skipped


# --- Documents ---


def list_source_documents(directory: str | Path) -> list[Path]:
    """List source documents in a fixed (name-sorted) order.

    Args:
        directory: Directory holding saved pages.

    Returns:
        Sorted list of *.html files. Empty if the directory is missing.
    """
    directory = Path(directory)
    if not directory.is_dir():
        logger.error("Source directory not found: %s", directory)
        return []
    return sorted(
        p for p in directory.iterdir() if p.is_file() and p.suffix == SOURCE_DOCUMENT_SUFFIX
    )


def extract_document(path: str | Path) -> ExtractResult:
    """Read and extract one source document. Never raises.

    Args:
        path: Path to the HTML file.

    Returns:
        ExtractResult; ok=False carries the error code and zero candidates.
    """
    path = Path(path)
    try:
        html = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.error("Failed to read %s: %s", path.name, e)
        return ExtractResult(
            ok=False, path=str(path), error_code=ErrorCode.READ_FAILED, message=str(e)
        )

    try:
        candidates, skipped = _extract_with_stats(html)
    except ParseError as e:
        logger.warning("No song data in %s: %s", path.name, e.message)
        return ExtractResult(
            ok=False, path=str(path), error_code=e.error_code, message=e.message
        )

    return ExtractResult(ok=True, path=str(path), candidates=candidates, skipped_items=skipped)


if __name__ == "__main__":
    import sys

    logging.basicConfig(level=logging.INFO)

    if len(sys.argv) != 2:
        print(f"Usage: {sys.argv[0]} <page.html>")
        sys.exit(1)

    result = extract_document(sys.argv[1])
    if not result.ok:
        print(f"Error: {result.error_code} - {result.message}")
        sys.exit(1)

    for candidate in result.candidates:
        print(f"{candidate.artist} - {candidate.title} (Tab ID: {candidate.external_id})")
    print(f"Extracted {len(result.candidates)} song(s)")
