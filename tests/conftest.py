"""Shared pytest fixtures for Song Data Pipeline tests.

This module contains common fixtures used across multiple test files:
temp directories and databases, an in-memory record store, source page
builders and scripted fake tool executables.
"""

import html
import json
import os
import stat
import sys
import tempfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from songdata.db import init_db
from songdata.errors import ConnectivityError, StoreError
from songdata.models import SongCandidate, SongKey
from songdata.record_store import ExistingRecord
from songdata.retry_queue import open_stores


class FakeRecordStore:
    """In-memory RecordStore with scriptable failures.

    Args:
        fail_keys: Keys whose insert raises StoreError.
        probe_error: If set, probe() raises ConnectivityError with this reason.
        exists_error: If set, exists() raises it.
    """

    def __init__(
        self,
        fail_keys=(),
        probe_error: str | None = None,
        exists_error: Exception | None = None,
    ):
        self.records: list[SongCandidate] = []
        self.fail_keys: set[SongKey] = set(fail_keys)
        self.probe_error = probe_error
        self.probe_calls = 0
        self.exists_error = exists_error
        self.exists_calls = 0
        self.insert_attempts: list[SongKey] = []

    def probe(self) -> None:
        self.probe_calls += 1
        if self.probe_error:
            raise ConnectivityError(self.probe_error)

    def insert(self, candidate: SongCandidate) -> None:
        self.insert_attempts.append(candidate.key)
        if candidate.key in self.fail_keys:
            raise StoreError("constraint violation: simulated")
        self.records.append(candidate)

    def exists(
        self, title: str, artist: str, external_id: str | None = None
    ) -> ExistingRecord | None:
        self.exists_calls += 1
        if self.exists_error is not None:
            raise self.exists_error
        matches = [r for r in self.records if r.title == title and r.artist == artist]
        exact = [r for r in matches if r.external_id == external_id]
        for record in exact or matches:
            return ExistingRecord(record.title, record.artist, record.external_id)
        return None

    @property
    def stored_keys(self) -> list[SongKey]:
        return [record.key for record in self.records]


@pytest.fixture
def temp_dir():
    """Temporary directory, removed after the test.

    Yields:
        Path: Directory path.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_db(temp_dir):
    """Create a temporary database for testing.

    Yields:
        tuple: (db_path, engine, SessionFactory)
    """
    db_path = temp_dir / "test.db"
    engine, SessionFactory = init_db(db_path)
    yield db_path, engine, SessionFactory
    engine.dispose()


@pytest.fixture
def queue_paths(temp_dir):
    """Paths of the pending queue and dead-letter documents (not created)."""
    return temp_dir / "pending_extraction.md", temp_dir / "unprocessed.md"


@pytest.fixture
def stores(queue_paths):
    """A RetryQueue and DeadLetterArchive over temp documents.

    Yields:
        tuple: (retry_queue, archive)
    """
    pending_path, archive_path = queue_paths
    yield open_stores(pending_path, archive_path)


@pytest.fixture
def fake_store():
    return FakeRecordStore()


def build_source_page(tabs: list[dict]) -> str:
    """Render a saved explore page embedding tabs in its js-store payload."""
    store = {"store": {"page": {"data": {"data": {"tabs": tabs}}}}}
    payload = html.escape(json.dumps(store), quote=True)
    return (
        "<!DOCTYPE html><html><head><title>Explore</title></head><body>"
        f'<div class="js-store" data-content="{payload}"></div>'
        "</body></html>"
    )


def tab_item(title: str, artist: str, tab_id, **extra) -> dict:
    """A raw tab object as it appears in the page store."""
    item = {
        "id": tab_id,
        "song_name": title,
        "artist_name": artist,
        "tab_url": f"https://tabs.ultimate-guitar.com/tab/{artist}/{title}-{tab_id}",
    }
    item.update(extra)
    return item


@pytest.fixture
def source_dir(temp_dir):
    """Empty directory for source pages."""
    path = temp_dir / "pages"
    path.mkdir()
    return path


@pytest.fixture
def write_page(source_dir):
    """Write a source page with the given tabs; returns its path."""

    def _write(name: str, tabs: list[dict]) -> Path:
        path = source_dir / name
        path.write_text(build_source_page(tabs), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def fake_tool(temp_dir):
    """Write an executable Python script standing in for the scraper tool.

    The body is plain Python; sys and os are already imported and argv is
    available as sys.argv.
    """

    def _make(body: str, name: str = "fake-scraper") -> Path:
        path = temp_dir / name
        path.write_text(f"#!{sys.executable}\nimport os\nimport sys\n{body}\n", encoding="utf-8")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return _make


@pytest.fixture
def client():
    """Song API test client with an injectable tool invoker.

    Yields:
        tuple: (test_client, override_invoker)
    """
    from services.song_api.main import app, override_invoker

    with TestClient(app) as test_client:
        yield test_client, override_invoker

    override_invoker(None)


@pytest.fixture
def clean_failpoint_env(monkeypatch):
    """Make sure no failpoint leaks in from the outer environment."""
    for name in list(os.environ):
        if name.startswith("SONGDATA_FAILPOINT") or name == "SONGDATA_ENABLE_FAILPOINTS":
            monkeypatch.delenv(name, raising=False)
