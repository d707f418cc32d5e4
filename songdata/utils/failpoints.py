"""Song Data Pipeline - Failpoint injection for crash testing.

Lets tests kill the process at a named point (mid-rewrite of the queue
document, between the queue save and the archive append, ...) to prove
that a restarted batch never sees a key in both stores.

Safety gate: a complete no-op unless SONGDATA_ENABLE_FAILPOINTS=1.

Environment variables:
- SONGDATA_ENABLE_FAILPOINTS: "1" enables the system (default: disabled)
- SONGDATA_FAILPOINT: name of the point to trigger, with or without the
  FAILPOINT_ prefix
- SONGDATA_FAILPOINT_EXIT_CODE: exit code used when crashing (default: 42)
"""

from __future__ import annotations

import os

_PREFIX = "FAILPOINT_"
DEFAULT_EXIT_CODE = 42


def _normalize(name: str) -> str:
    name = name.upper()
    if name.startswith(_PREFIX):
        name = name[len(_PREFIX) :]
    return name


def is_failpoint_enabled() -> bool:
    """Return True if SONGDATA_ENABLE_FAILPOINTS=1."""
    return os.environ.get("SONGDATA_ENABLE_FAILPOINTS") == "1"


def get_active_failpoint() -> str | None:
    """Return the armed failpoint name (normalized), or None."""
    if not is_failpoint_enabled():
        return None
    target = os.environ.get("SONGDATA_FAILPOINT", "")
    return _normalize(target) if target else None


def maybe_fail(point: str) -> None:
    """Crash the process if point is the armed failpoint.

    os._exit() is used so that no finally block, atexit hook or exception
    handler can run; that is what a power cut looks like to the queue files.

    Args:
        point: Failpoint name, e.g. "ATOMIC_WRITE_BEFORE_RENAME".
    """
    active = get_active_failpoint()
    if active is None or active != _normalize(point):
        return

    try:
        exit_code = int(os.environ.get("SONGDATA_FAILPOINT_EXIT_CODE", DEFAULT_EXIT_CODE))
    except ValueError:
        exit_code = DEFAULT_EXIT_CODE

    os._exit(exit_code)
