"""Tests for songdata.utils.paths module."""

from pathlib import Path

from songdata.config import RAW_OUTPUT_DIR
from songdata.utils.paths import (
    canonical_tab_url,
    raw_output_path,
    safe_filename_component,
    slugify,
)


class TestSlugify:
    def test_lowercases_and_dashes(self):
        assert slugify("Hotel California") == "hotel-california"

    def test_collapses_whitespace(self):
        assert slugify("  Guns N'   Roses ") == "guns-n'-roses"


class TestCanonicalTabUrl:
    def test_basic_url(self):
        url = canonical_tab_url("Eagles", "Hotel California", "46190")
        assert url == "https://tabs.ultimate-guitar.com/tab/eagles/hotel-california-46190"


class TestRawOutputPath:
    def test_default_base_dir(self):
        path = raw_output_path("export", "46190")
        assert path == RAW_OUTPUT_DIR / "export_46190.raw.txt"

    def test_query_is_made_filesystem_safe(self, temp_dir):
        path = raw_output_path("search", "AC/DC: Back in Black?", base_dir=temp_dir)
        assert path.parent == temp_dir
        assert path.name == "search_AC_DC_Back_in_Black.raw.txt"

    def test_returns_path_object(self):
        assert isinstance(raw_output_path("export", "1"), Path)


class TestSafeFilenameComponent:
    def test_empty_becomes_placeholder(self):
        assert safe_filename_component("///") == "empty"

    def test_truncates(self):
        assert len(safe_filename_component("x" * 500)) == 80
