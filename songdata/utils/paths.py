"""Song Data Pipeline - Canonical path and URL helpers.

Does NOT create directories. Directory creation is the responsibility of
the writer (see atomic_io).
"""

import re
from pathlib import Path

from songdata.config import RAW_OUTPUT_DIR, TAB_URL_BASE

_WHITESPACE = re.compile(r"\s+")
_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def slugify(text: str) -> str:
    """Lowercase text and collapse whitespace runs into single dashes.

    Args:
        text: Artist or song title.

    Returns:
        Slug, e.g. "Hotel California" -> "hotel-california".
    """
    return _WHITESPACE.sub("-", text.strip().lower())


def canonical_tab_url(artist: str, title: str, external_id: str) -> str:
    """Build the public tab URL for a song.

    Returns:
        {TAB_URL_BASE}/{artist-slug}/{title-slug}-{external_id}
    """
    return f"{TAB_URL_BASE}/{slugify(artist)}/{slugify(title)}-{external_id}"


def safe_filename_component(value: str, max_length: int = 80) -> str:
    """Reduce an arbitrary id or query to a filesystem-safe component."""
    cleaned = _UNSAFE_FILENAME_CHARS.sub("_", value.strip()).strip("._")
    return (cleaned or "empty")[:max_length]


def raw_output_path(operation: str, target: str, base_dir: Path | None = None) -> Path:
    """Get canonical path for a persisted raw tool payload.

    Args:
        operation: Tool sub-operation ("export" or "search").
        target: Item id or search query.
        base_dir: Optional override for RAW_OUTPUT_DIR.

    Returns:
        Path: {base_dir}/{operation}_{safe-target}.raw.txt
    """
    base = base_dir if base_dir is not None else RAW_OUTPUT_DIR
    return Path(base) / f"{operation}_{safe_filename_component(target)}.raw.txt"
