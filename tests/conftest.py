"""Shared fixtures and fakes for the dbsteward test suite."""

from __future__ import annotations

import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import pytest

from dbsteward.connection import ManagedConnection
from dbsteward.storage import SqliteStore


def create_items_schema(conn: ManagedConnection) -> None:
    """Small schema with an index and a foreign key, used across tests."""
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS owners (
            id INTEGER PRIMARY KEY,
            name TEXT NOT NULL
        );
        CREATE TABLE IF NOT EXISTS items (
            id INTEGER PRIMARY KEY,
            owner_id INTEGER REFERENCES owners(id),
            name TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_items_name ON items(name);
        """
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "library.db"


@pytest.fixture
def store(db_path: Path) -> SqliteStore:
    """An initialised store with the items schema, closed after the test."""
    s = SqliteStore(db_path)
    s.initialize(setup=create_items_schema)
    yield s  # type: ignore[misc]
    s.close()


@pytest.fixture
def populated_db(db_path: Path) -> Path:
    """A closed database file with some rows, ready for maintenance runs."""
    with SqliteStore(db_path) as s:
        s.initialize(setup=create_items_schema)
        with s.acquire(write=True) as conn:
            conn.execute("INSERT INTO owners (id, name) VALUES (1, 'ann')")
            conn.executemany(
                "INSERT INTO items (owner_id, name) VALUES (?, ?)",
                [(1, f"item-{i}") for i in range(200)],
            )
            conn.execute("DELETE FROM items WHERE id % 2 = 0")
            conn.commit()
    return db_path


@pytest.fixture
def traced_statements(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    """Record every statement run on connections opened during the test."""
    statements: list[str] = []
    real_connect = sqlite3.connect

    def _connect(*args: Any, **kwargs: Any) -> sqlite3.Connection:
        conn = real_connect(*args, **kwargs)
        conn.set_trace_callback(statements.append)
        return conn

    monkeypatch.setattr(sqlite3, "connect", _connect)
    return statements


# ---------------------------------------------------------------------------
# Secondary store fakes
# ---------------------------------------------------------------------------


class RecordingContext:
    """DataContext stand-in that records statements instead of running them."""

    def __init__(
        self,
        dialect: str = "sqlite",
        results: dict[str, list[tuple[Any, ...]]] | None = None,
        fail_on: str | None = None,
    ) -> None:
        self._dialect = dialect
        self._results = results or {}
        self._fail_on = fail_on
        self.statements: list[str] = []

    @property
    def dialect_name(self) -> str:
        return self._dialect

    async def execute_raw(self, sql: str) -> list[tuple[Any, ...]]:
        self.statements.append(sql)
        if self._fail_on is not None and self._fail_on in sql:
            raise sqlite3.OperationalError(f"simulated failure in {sql}")
        for fragment, rows in self._results.items():
            if fragment in sql:
                return rows
        if "integrity_check" in sql or "quick_check" in sql:
            return [("ok",)]
        return []


class RecordingContextFactory:
    """DataContextFactory handing out one :class:`RecordingContext`."""

    def __init__(self, ctx: RecordingContext | None = None, label: str = "app.db") -> None:
        self.ctx = ctx or RecordingContext()
        self.label = label
        self.opened = 0

    @asynccontextmanager
    async def __call__(self) -> AsyncIterator[RecordingContext]:
        self.opened += 1
        yield self.ctx


@pytest.fixture
def recording_factory() -> RecordingContextFactory:
    return RecordingContextFactory()


@pytest.fixture
def make_factory():
    """Build a :class:`RecordingContextFactory` around a configured context."""

    def _make(label: str = "app.db", **ctx_kwargs: Any) -> RecordingContextFactory:
        return RecordingContextFactory(RecordingContext(**ctx_kwargs), label=label)

    return _make


@pytest.fixture
def items_schema():
    return create_items_schema
