"""Song Data Pipeline - Record store boundary.

The orchestrator only ever talks to the record store through three calls:
probe() once at batch start, exists(title, artist, external_id) from the
deduplicator, and insert(candidate). RecordStore is that contract;
SqlRecordStore is the bundled SQLAlchemy implementation over the songs table.

Errors:
- probe() failures surface as ConnectivityError (fatal to the batch)
- insert()/exists() failures surface as StoreError (per-candidate)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from songdata.errors import ConnectivityError, StoreError
from songdata.models import Song, SongCandidate

if TYPE_CHECKING:
    from sqlalchemy.orm import sessionmaker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExistingRecord:
    """The identity columns of a stored song."""

    title: str
    artist: str
    external_id: str


class RecordStore(Protocol):
    """What the ingestion core needs from a record store."""

    def probe(self) -> None:
        """Raise ConnectivityError if the store is unreachable."""
        ...

    def insert(self, candidate: SongCandidate) -> None:
        """Persist candidate or raise StoreError."""
        ...

    def exists(
        self, title: str, artist: str, external_id: str | None = None
    ) -> ExistingRecord | None:
        """Return a stored record for (title, artist), if any.

        When external_id is given, a record with that exact id is returned in
        preference to any other variation of the song.
        """
        ...


class SqlRecordStore:
    """RecordStore over the SQLAlchemy songs table.

    One session per operation; each insert commits on its own so a failed
    candidate never rolls back its neighbours.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def probe(self) -> None:
        session = self._session_factory()
        try:
            count = session.execute(select(func.count()).select_from(Song)).scalar_one()
            logger.debug("Record store reachable (%d songs)", count)
        except SQLAlchemyError as e:
            raise ConnectivityError(str(e)) from e
        finally:
            session.close()

    def insert(self, candidate: SongCandidate) -> None:
        session = self._session_factory()
        try:
            session.add(Song(**candidate.to_record()))
            session.commit()
        except IntegrityError as e:
            session.rollback()
            raise StoreError(f"constraint violation: {e.orig}") from e
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreError(str(e)) from e
        finally:
            session.close()

    def exists(
        self, title: str, artist: str, external_id: str | None = None
    ) -> ExistingRecord | None:
        stmt = select(Song.title, Song.artist, Song.ug_tab_id).where(
            Song.title == title, Song.artist == artist
        )
        if external_id is not None:
            # Exact triple first, then the oldest variation
            stmt = stmt.order_by(case((Song.ug_tab_id == external_id, 0), else_=1), Song.id)
        else:
            stmt = stmt.order_by(Song.id)
        stmt = stmt.limit(1)

        session = self._session_factory()
        try:
            row = session.execute(stmt).first()
        except SQLAlchemyError as e:
            raise StoreError(f"lookup failed: {e}") from e
        finally:
            session.close()

        if row is None:
            return None
        return ExistingRecord(title=row.title, artist=row.artist, external_id=row.ug_tab_id)

    def count(self) -> int:
        """Number of stored songs (diagnostics and tests)."""
        session = self._session_factory()
        try:
            return session.execute(select(func.count()).select_from(Song)).scalar_one()
        finally:
            session.close()
