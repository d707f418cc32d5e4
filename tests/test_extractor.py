"""Tests for the extract worker (services.worker_extract.run)."""

import html
import json

import pytest

from conftest import build_source_page, tab_item
from services.worker_extract.run import (
    extract_candidates,
    extract_document,
    item_to_candidate,
    list_source_documents,
)
from songdata.errors import ErrorCode, ParseError


class TestExtractCandidates:
    """Tests for extract_candidates()."""

    def test_extracts_in_page_order(self):
        page = build_source_page(
            [
                tab_item("Hotel California", "Eagles", 46190),
                tab_item("Wonderwall", "Oasis", 27596),
            ]
        )

        candidates = extract_candidates(page)

        assert [(c.title, c.artist, c.external_id) for c in candidates] == [
            ("Hotel California", "Eagles", "46190"),
            ("Wonderwall", "Oasis", "27596"),
        ]

    def test_maps_optional_fields(self):
        page = build_source_page(
            [
                tab_item(
                    "Hotel California",
                    "Eagles",
                    46190,
                    tonality_name="Bm",
                    difficulty="intermediate",
                    rating=4.83,
                    votes="1520",
                    type="Chords",
                    version=2,
                )
            ]
        )

        (candidate,) = extract_candidates(page)

        assert candidate.key_signature == "Bm"
        assert candidate.difficulty == "intermediate"
        assert candidate.rating == pytest.approx(4.83)
        assert candidate.votes == 1520
        assert candidate.attributes == {"type": "Chords", "version": 2}
        assert candidate.source_url.endswith("Hotel California-46190")

    def test_defaults_for_fields_the_page_never_has(self):
        (candidate,) = extract_candidates(build_source_page([tab_item("Yesterday", "Beatles", 1)]))

        assert candidate.genre == "rock"
        assert candidate.instrument_type == "guitar"
        assert candidate.tuning == "E A D G B E"
        assert candidate.difficulty == "unknown"
        assert candidate.votes == 0
        assert candidate.rating is None

    def test_html_entities_in_payload_are_decoded(self):
        """Titles with quotes and ampersands survive the attribute escaping."""
        page = build_source_page([tab_item('Rock & Roll "Live"', "Led Zeppelin", 5)])

        (candidate,) = extract_candidates(page)

        assert candidate.title == 'Rock & Roll "Live"'

    def test_items_missing_identity_are_skipped(self):
        page = build_source_page(
            [
                {"id": 1, "song_name": "No Artist"},
                tab_item("Kept", "Artist", 2),
                {"song_name": "No Id", "artist_name": "X"},
                "not a dict",
            ]
        )

        candidates = extract_candidates(page)

        assert [c.title for c in candidates] == ["Kept"]

    def test_missing_container_raises_parse_error(self):
        with pytest.raises(ParseError):
            extract_candidates("<html><body><p>nothing here</p></body></html>")

    def test_invalid_json_raises_parse_error(self):
        page = '<div class="js-store" data-content="{not json"></div>'
        with pytest.raises(ParseError):
            extract_candidates(page)

    def test_non_object_payload_raises_parse_error(self):
        payload = html.escape(json.dumps([1, 2, 3]), quote=True)
        page = f'<div class="js-store" data-content="{payload}"></div>'
        with pytest.raises(ParseError):
            extract_candidates(page)

    def test_missing_tabs_path_yields_empty(self):
        payload = html.escape(json.dumps({"store": {"page": {}}}), quote=True)
        page = f'<div class="js-store" data-content="{payload}"></div>'

        assert extract_candidates(page) == []

    def test_container_with_extra_classes(self):
        payload = html.escape(
            json.dumps({"store": {"page": {"data": {"data": {"tabs": [tab_item("A", "B", 3)]}}}}}),
            quote=True,
        )
        page = f'<div class="js-store hidden" data-content="{payload}"></div>'

        assert len(extract_candidates(page)) == 1


class TestItemToCandidate:
    def test_whitespace_only_title_is_missing(self):
        assert item_to_candidate({"id": 1, "song_name": "  ", "artist_name": "X"}) is None

    def test_bad_rating_becomes_none(self):
        candidate = item_to_candidate(tab_item("T", "A", 1, rating="n/a", votes=None))
        assert candidate.rating is None
        assert candidate.votes == 0


class TestDocuments:
    """Tests for list_source_documents() and extract_document()."""

    def test_lists_html_files_sorted(self, source_dir, write_page):
        write_page("b.html", [])
        write_page("a.html", [])
        (source_dir / "notes.txt").write_text("ignored")

        documents = list_source_documents(source_dir)

        assert [p.name for p in documents] == ["a.html", "b.html"]

    def test_missing_directory_is_empty(self, temp_dir):
        assert list_source_documents(temp_dir / "missing") == []

    def test_extract_document_success(self, write_page):
        path = write_page("page.html", [tab_item("Hotel California", "Eagles", 46190)])

        result = extract_document(path)

        assert result.ok is True
        assert len(result.candidates) == 1
        assert result.error_code is None

    def test_extract_document_parse_error_is_a_result(self, source_dir):
        path = source_dir / "broken.html"
        path.write_text("<html></html>")

        result = extract_document(path)

        assert result.ok is False
        assert result.error_code == ErrorCode.PARSE_ERROR
        assert result.candidates == []

    def test_extract_document_unreadable_is_a_result(self, source_dir):
        result = extract_document(source_dir / "missing.html")

        assert result.ok is False
        assert result.error_code == ErrorCode.READ_FAILED

    def test_skipped_items_are_counted(self, write_page):
        path = write_page("page.html", [tab_item("A", "B", 1), {"id": 2}])

        result = extract_document(path)

        assert result.skipped_items == 1
