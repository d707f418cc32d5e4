"""Song Data Pipeline - Duplicate detection.

A candidate is a duplicate only if the store already holds a record with
the same (title, artist, external_id). The same (title, artist) under a
different external_id is accepted as a new variation of the song (an
alternate tab or version).

The lookup passes the candidate's external_id so the store can return the
exact triple when any stored variation matches it.
"""

from __future__ import annotations

import logging

from songdata.errors import DuplicateError, StoreError
from songdata.models import SongCandidate
from songdata.record_store import RecordStore

logger = logging.getLogger(__name__)


class Deduplicator:
    """Read-only duplicate check against a RecordStore."""

    def __init__(self, store: RecordStore):
        self.store = store

    def check(self, candidate: SongCandidate) -> None:
        """Raise DuplicateError if candidate should be skipped.

        A failing lookup does not block the candidate: it is let through
        and the insert attempt decides.

        Raises:
            DuplicateError: Identical (title, artist, external_id) stored.
        """
        try:
            existing = self.store.exists(
                candidate.title, candidate.artist, candidate.external_id
            )
        except StoreError as e:
            logger.warning(
                "Duplicate check failed for %s, letting insert decide: %s",
                candidate.key.describe(),
                e.message,
            )
            return

        if existing is None:
            return

        if existing.external_id == candidate.external_id:
            raise DuplicateError(candidate.title, candidate.artist, candidate.external_id)

        logger.info(
            "Accepting %s as a variation (stored tab id %s)",
            candidate.key.describe(),
            existing.external_id,
        )

    def is_duplicate(self, candidate: SongCandidate) -> bool:
        try:
            self.check(candidate)
        except DuplicateError:
            return True
        return False
