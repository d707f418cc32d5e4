"""Song Data Pipeline - Configuration constants.

No external config libraries. Paths default to locations under the
repository root; a handful of knobs can be overridden via environment
variables (SONGDATA_*), which is mainly useful for tests and ops.
"""

import os
from pathlib import Path

# Repository root (parent of songdata/)
REPO_ROOT = Path(__file__).parent.parent.resolve()


def _get_path(env_name: str, default: Path) -> Path:
    """Get a path from the environment or use default.

    Args:
        env_name: Environment variable name.
        default: Fallback path.

    Returns:
        Resolved Path.
    """
    env_val = os.environ.get(env_name)
    if env_val:
        return Path(env_val).expanduser().resolve()
    return default


def _get_int(env_name: str, default: int, minimum: int = 0) -> int:
    """Get an integer from the environment or use default.

    Values that do not parse, or fall below minimum, are ignored.

    Args:
        env_name: Environment variable name.
        default: Fallback value.
        minimum: Smallest accepted value.

    Returns:
        Integer value.
    """
    env_val = os.environ.get(env_name)
    if env_val:
        try:
            value = int(env_val)
            if value >= minimum:
                return value
        except ValueError:
            pass
    return default


def _get_float(env_name: str, default: float, minimum: float = 0.0) -> float:
    """Get a float from the environment or use default."""
    env_val = os.environ.get(env_name)
    if env_val:
        try:
            value = float(env_val)
            if value >= minimum:
                return value
        except ValueError:
            pass
    return default


# Data directories
DATA_DIR = _get_path("SONGDATA_DATA_DIR", REPO_ROOT / "data")

# Raw source documents (saved search/explore pages), scanned in full each run
SOURCE_DIR = _get_path("SONGDATA_SOURCE_DIR", REPO_ROOT / "ug_html_pages")

# Retry queue and dead-letter archive documents (human-readable Markdown)
PENDING_QUEUE_PATH = DATA_DIR / "pending_extraction.md"
DEAD_LETTER_PATH = DATA_DIR / "unprocessed.md"

# Raw tool payloads persisted for later reprocessing
RAW_OUTPUT_DIR = DATA_DIR / "song_raw_html"

# Record store database path
DB_PATH = DATA_DIR / "songs.db"

# Queue directory and Huey database path
QUEUE_DIR = DATA_DIR / "queue"
HUEY_DB_PATH = QUEUE_DIR / "huey.db"

# Retry policy (LOCKED)
# A key that fails RETRY_THRESHOLD times is moved to the dead-letter archive.
RETRY_THRESHOLD = 5
# A queue holding this many entries at batch start is drained before scanning.
REPROCESS_THRESHOLD = 10

# Rate limiting against the record store, in seconds
CANDIDATE_DELAY_SECONDS = _get_float("SONGDATA_CANDIDATE_DELAY_SEC", 0.05)
DOCUMENT_DELAY_SECONDS = _get_float("SONGDATA_DOCUMENT_DELAY_SEC", 0.1)
DRAIN_DELAY_SECONDS = _get_float("SONGDATA_DRAIN_DELAY_SEC", 0.1)

# Source documents accepted by the scanner
SOURCE_DOCUMENT_SUFFIX = ".html"

# External extraction/search tool
TOOL_EXECUTABLE_PATH = _get_path(
    "SONGDATA_TOOL_PATH",
    REPO_ROOT / "tools" / "ultimate-guitar-scraper" / "ultimate-guitar-scraper",
)
TOOL_TIMEOUT_SECONDS = _get_float("SONGDATA_TOOL_TIMEOUT_SEC", 30.0, minimum=0.001)
TOOL_MAX_RETRIES = _get_int("SONGDATA_TOOL_RETRIES", 2, minimum=1)
TOOL_RETRY_DELAY_SECONDS = _get_float("SONGDATA_TOOL_RETRY_DELAY_SEC", 1.0)

# Canonical public URL for a tab, used when rebuilding drained entries
TAB_URL_BASE = "https://tabs.ultimate-guitar.com/tab"

# Defaults for fields the source pages never provide
DEFAULT_GENRE = "rock"
DEFAULT_INSTRUMENT_TYPE = "guitar"
DEFAULT_TUNING = "E A D G B E"
DEFAULT_DIFFICULTY = "unknown"
