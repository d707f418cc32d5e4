"""Song Data Pipeline - Utility modules."""

from songdata.utils.atomic_io import (
    atomic_write_bytes,
    atomic_write_text,
    cleanup_orphan_temp_files,
)
from songdata.utils.paths import (
    canonical_tab_url,
    raw_output_path,
    safe_filename_component,
    slugify,
)

__all__ = [
    # atomic_io
    "atomic_write_bytes",
    "atomic_write_text",
    "cleanup_orphan_temp_files",
    # paths
    "canonical_tab_url",
    "raw_output_path",
    "safe_filename_component",
    "slugify",
]
