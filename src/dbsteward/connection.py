"""Disposable handle around one physical SQLite connection.

A handle is either the *writer* (the store's single persistent connection,
borrowed while the write gate is held) or a *reader* (a private read-only
connection owned by the handle).  Closing a writer handle gives the gate
back and leaves the connection open for the next writer; closing a reader
handle closes its connection.

Usage::

    with store.acquire(write=True) as conn:
        conn.execute("INSERT INTO items (name) VALUES (?)", ("a",))
        conn.commit()
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterable, Sequence
from typing import Any

Params = Sequence[Any] | dict[str, Any]


class ManagedConnection:
    """Wrap *conn*, releasing *gate* (writer) or closing *conn* (reader) on close.

    Parameters
    ----------
    conn:
        The physical connection.
    gate:
        The write gate held by the caller, or ``None`` for a reader.
    """

    def __init__(self, conn: sqlite3.Connection, gate: threading.Lock | None) -> None:
        self._conn = conn
        self._gate = gate
        self._closed = False
        self._close_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def is_writer(self) -> bool:
        """``True`` for the shared writer, ``False`` for an owned reader."""
        return self._gate is not None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def raw(self) -> sqlite3.Connection:
        """The underlying :class:`sqlite3.Connection`."""
        self._check_open()
        return self._conn

    # ------------------------------------------------------------------
    # Statement execution
    # ------------------------------------------------------------------

    def execute(self, sql: str, params: Params = ()) -> sqlite3.Cursor:
        self._check_open()
        return self._conn.execute(sql, params)

    def executemany(self, sql: str, params_list: Iterable[Params]) -> sqlite3.Cursor:
        self._check_open()
        return self._conn.executemany(sql, params_list)

    def executescript(self, sql: str) -> sqlite3.Cursor:
        self._check_open()
        return self._conn.executescript(sql)

    def query(self, sql: str, params: Params = ()) -> list[sqlite3.Row]:
        """Run *sql* and return every row, closing the cursor afterwards."""
        cursor = self.cursor()
        try:
            return cursor.execute(sql, params).fetchall()
        finally:
            cursor.close()

    def cursor(self) -> sqlite3.Cursor:
        self._check_open()
        return self._conn.cursor()

    def commit(self) -> None:
        self._check_open()
        self._conn.commit()

    def rollback(self) -> None:
        self._check_open()
        self._conn.rollback()

    @property
    def in_transaction(self) -> bool:
        self._check_open()
        return self._conn.in_transaction

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Release the handle.  Safe to call more than once."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True

        if self._gate is not None:
            # Leave no open transaction behind for the next writer.
            try:
                if self._conn.in_transaction:
                    self._conn.rollback()
            finally:
                self._gate.release()
        else:
            self._conn.close()

    def _check_open(self) -> None:
        if self._closed:
            raise sqlite3.ProgrammingError("Cannot operate on a released connection handle")

    def __enter__(self) -> ManagedConnection:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def __repr__(self) -> str:
        role = "writer" if self.is_writer else "reader"
        state = "closed" if self._closed else "open"
        return f"<ManagedConnection {role} {state}>"
