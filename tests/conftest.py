"""Shared test fixtures."""

import sqlite3
import tempfile
from pathlib import Path

import pytest

from store_merger.db import MergeSession

FILES_SCHEMA = """
    CREATE TABLE files (
        path TEXT PRIMARY KEY,
        size_bytes INTEGER NULL,
        optimized INTEGER NULL
    )
"""

PRIMARY_ROWS = [
    ("a.txt", 100, None),
    ("b.txt", None, 0),
    ("c.txt", 10, None),
    ("d.txt", 200, 1),
    ("e.txt", None, None),
]

SOURCE_ROWS = [
    ("a.txt", 50, 1),
    ("b.txt", 30, 1),
    ("d.txt", 300, 0),
    ("e.txt", None, 1),
    ("z.txt", 5, 1),
]


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def make_store(temp_dir):
    """Return a factory creating a SQLite store with a ``files`` table."""
    def _make_store(name: str, rows=(), schema: str = FILES_SCHEMA) -> Path:
        path = temp_dir / name
        conn = sqlite3.connect(str(path))
        conn.execute(schema)
        conn.executemany("INSERT INTO files VALUES (?, ?, ?)", rows)
        conn.commit()
        conn.close()
        return path
    return _make_store


@pytest.fixture
def read_store():
    """Return a helper loading all rows of a store, keyed by path."""
    def _read_store(path: Path) -> dict[str, tuple]:
        conn = sqlite3.connect(str(path))
        try:
            cursor = conn.execute("SELECT path, size_bytes, optimized FROM files")
            return {row[0]: row for row in cursor}
        finally:
            conn.close()
    return _read_store


@pytest.fixture
def sample_stores(make_store):
    """Create a primary and a source store with overlapping paths."""
    primary = make_store("primary.db", PRIMARY_ROWS)
    source = make_store("source.db", SOURCE_ROWS)
    return primary, source


@pytest.fixture
def session(sample_stores):
    """Open a MergeSession on the sample stores."""
    primary, source = sample_stores
    merge_session = MergeSession(primary, source)
    yield merge_session
    merge_session.close()
