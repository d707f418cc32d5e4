"""Song Data Pipeline - Data model.

Two layers live here:
- Plain dataclasses for the ephemeral pipeline records (SongCandidate,
  PendingEntry, DeadLetterEntry) and their identity key (SongKey).
- The SQLAlchemy ORM model backing the bundled record store (songs table).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, NamedTuple

from sqlalchemy import DateTime, Float, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from songdata.config import (
    DEFAULT_DIFFICULTY,
    DEFAULT_GENRE,
    DEFAULT_INSTRUMENT_TYPE,
    DEFAULT_TUNING,
)


def utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


# --- Pipeline Records ---


class SongKey(NamedTuple):
    """Identity of a song across the retry queue and dead-letter archive."""

    artist: str
    title: str
    external_id: str

    def describe(self) -> str:
        return f'"{self.title}" by {self.artist} (Tab ID: {self.external_id})'


@dataclass
class SongCandidate:
    """An extracted, not-yet-persisted song record.

    Created by the extractor (or rebuilt from a pending entry) and consumed
    once by the dedup/insert path. Never persisted directly.
    """

    title: str
    artist: str
    external_id: str
    source_url: str
    key_signature: str | None = None
    difficulty: str = DEFAULT_DIFFICULTY
    rating: float | None = None
    votes: int = 0
    genre: str = DEFAULT_GENRE
    instrument_type: str = DEFAULT_INSTRUMENT_TYPE
    tuning: str = DEFAULT_TUNING
    attributes: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> SongKey:
        return SongKey(self.artist, self.title, self.external_id)

    def to_record(self) -> dict[str, Any]:
        """Column mapping for insertion into the songs table."""
        return {
            "title": self.title,
            "artist": self.artist,
            "ug_tab_id": self.external_id,
            "ug_url": self.source_url,
            "key_signature": self.key_signature,
            "difficulty": self.difficulty,
            "ug_rating": self.rating,
            "ug_votes": self.votes,
            "genre": self.genre,
            "instrument_type": self.instrument_type,
            "tuning": self.tuning,
        }


@dataclass
class PendingEntry:
    """A key awaiting retry, with the number of failed insert attempts."""

    artist: str
    title: str
    external_id: str
    retry_count: int = 1

    @property
    def key(self) -> SongKey:
        return SongKey(self.artist, self.title, self.external_id)


@dataclass
class DeadLetterEntry:
    """A permanently failed key, kept for manual investigation."""

    artist: str
    title: str
    external_id: str
    final_retry_count: int
    last_attempt: str  # ISO date, YYYY-MM-DD

    @property
    def key(self) -> SongKey:
        return SongKey(self.artist, self.title, self.external_id)


# --- ORM ---


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class Song(Base):
    """A stored song record.

    The (title, artist, ug_tab_id) triple is unique: the same tab can only
    be stored once, while different tabs of the same song are kept as
    variations.
    """

    __tablename__ = "songs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    artist: Mapped[str] = mapped_column(String(255), nullable=False)

    # External (source site) identifiers
    ug_tab_id: Mapped[str] = mapped_column(String(32), nullable=False)
    ug_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Tab metadata (best-effort, as provided by the source page)
    key_signature: Mapped[str | None] = mapped_column(String(32), nullable=True)
    difficulty: Mapped[str] = mapped_column(String(32), nullable=False, default=DEFAULT_DIFFICULTY)
    ug_rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    ug_votes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Fields the source never provides; filled with fixed defaults
    genre: Mapped[str] = mapped_column(String(64), nullable=False, default=DEFAULT_GENRE)
    instrument_type: Mapped[str] = mapped_column(
        String(32), nullable=False, default=DEFAULT_INSTRUMENT_TYPE
    )
    tuning: Mapped[str] = mapped_column(String(64), nullable=False, default=DEFAULT_TUNING)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint("title", "artist", "ug_tab_id", name="uq_song_title_artist_tab"),
        Index("ix_songs_title_artist", "title", "artist"),
    )
