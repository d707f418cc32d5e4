"""Tests for duplicate detection."""

from unittest.mock import MagicMock

import pytest

from conftest import FakeRecordStore
from songdata.dedup import Deduplicator
from songdata.errors import DuplicateError, StoreError
from songdata.models import SongCandidate


def _candidate(title="Hotel California", artist="Eagles", external_id="46190") -> SongCandidate:
    return SongCandidate(title=title, artist=artist, external_id=external_id, source_url="")


class TestDeduplicator:
    def test_new_song_passes(self):
        dedup = Deduplicator(FakeRecordStore())
        dedup.check(_candidate())
        assert dedup.is_duplicate(_candidate()) is False

    def test_same_triple_is_duplicate(self):
        store = FakeRecordStore()
        store.insert(_candidate())
        dedup = Deduplicator(store)

        with pytest.raises(DuplicateError) as exc_info:
            dedup.check(_candidate())

        assert exc_info.value.external_id == "46190"
        assert dedup.is_duplicate(_candidate()) is True

    def test_different_external_id_is_a_variation(self):
        store = FakeRecordStore()
        store.insert(_candidate(external_id="46190"))
        dedup = Deduplicator(store)

        assert dedup.is_duplicate(_candidate(external_id="1135")) is False

    def test_title_and_artist_must_both_match(self):
        store = FakeRecordStore()
        store.insert(_candidate())
        dedup = Deduplicator(store)

        assert dedup.is_duplicate(_candidate(artist="The Eagles")) is False
        assert dedup.is_duplicate(_candidate(title="Hotel California (Live)")) is False

    def test_lookup_failure_lets_candidate_through(self):
        store = MagicMock()
        store.exists.side_effect = StoreError("lookup failed: disk I/O error")
        dedup = Deduplicator(store)

        dedup.check(_candidate())  # must not raise

        store.exists.assert_called_once_with("Hotel California", "Eagles", "46190")

    def test_any_stored_variation_can_be_the_duplicate(self):
        """With two stored variations, either triple is recognised."""
        store = FakeRecordStore()
        store.insert(_candidate(external_id="1"))
        store.insert(_candidate(external_id="2"))
        dedup = Deduplicator(store)

        assert dedup.is_duplicate(_candidate(external_id="1")) is True
        assert dedup.is_duplicate(_candidate(external_id="2")) is True
        assert dedup.is_duplicate(_candidate(external_id="3")) is False
