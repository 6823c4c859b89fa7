"""Connection manager for a single-file SQLite store.

Connection strategy:
    - One persistent writer connection per store, opened lazily on the first
      write acquire and kept until :meth:`SqliteStore.close`.
    - A ``threading.Lock`` (the *write gate*) serialises every use of the
      writer.  Acquisition blocks until the gate is free.
    - Readers get a fresh read-only connection each time, closed on release.
    - Every connection, writer or reader, is tuned with the same
      :class:`~dbsteward.config.PragmaConfig` statements in the same order.

The async helpers wrap the synchronous calls with
:func:`anyio.to_thread.run_sync`, so waiting on the gate never blocks the
event loop.

Usage::

    from dbsteward.storage import SqliteStore

    store = SqliteStore("~/.dbsteward/library.db")
    store.initialize(setup=create_tables)

    with store.acquire(write=True) as conn:
        conn.execute("INSERT INTO items (name) VALUES (?)", ("a",))
        conn.commit()

    rows = await store.execute("SELECT name FROM items")
    store.close()
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

import anyio

from dbsteward.config import PragmaConfig
from dbsteward.connection import ManagedConnection, Params
from dbsteward.errors import StoreDisposedError, WriteGateTimeoutError

_T = TypeVar("_T")

log = logging.getLogger(__name__)


class SqliteStore:
    """Owns the writer connection and write gate for one database file.

    Parameters
    ----------
    db_path:
        Filesystem path of the SQLite database.  ``~`` is expanded.
    pragmas:
        Tuning applied to every connection.  Defaults to :class:`PragmaConfig`.
    write_timeout:
        Seconds to wait for the write gate before raising
        :class:`~dbsteward.errors.WriteGateTimeoutError`.  ``None`` (the
        default) waits as long as it takes.
    """

    def __init__(
        self,
        db_path: str | Path,
        pragmas: PragmaConfig | None = None,
        *,
        write_timeout: float | None = None,
    ) -> None:
        if write_timeout is not None and write_timeout <= 0:
            raise ValueError("write_timeout must be positive or None")
        self._db_path = Path(db_path).expanduser()
        self._pragmas = pragmas or PragmaConfig()
        self._write_timeout = write_timeout
        self._write_lock = threading.Lock()
        self._write_conn: sqlite3.Connection | None = None
        self._state_lock = threading.Lock()  # guards _disposed
        self._disposed = False
        self._initialized = False

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def db_path(self) -> Path:
        """Filesystem path of the SQLite database."""
        return self._db_path

    @property
    def pragmas(self) -> PragmaConfig:
        return self._pragmas

    @property
    def disposed(self) -> bool:
        return self._disposed

    # ------------------------------------------------------------------
    # Initialisation
    # ------------------------------------------------------------------

    def initialize(self, setup: Callable[[ManagedConnection], None] | None = None) -> None:
        """Prepare the database for use.

        Creates the parent directory, opens the writer, logs engine
        diagnostics, then runs *setup* (schema creation or upgrade) on the
        writer and commits.  Calling it again only re-runs *setup*.
        """
        self._check_disposed()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        with self.acquire(write=True) as conn:
            if not self._initialized:
                self._log_diagnostics(conn)
            if setup is not None:
                try:
                    setup(conn)
                    conn.commit()
                except Exception:
                    conn.rollback()
                    raise

        self._initialized = True
        log.info("Store initialised at %s", self._db_path)

    def _log_diagnostics(self, conn: ManagedConnection) -> None:
        version = conn.query("SELECT sqlite_version()")[0][0]
        log.info("SQLite version: %s", version)

        options = [row[0] for row in conn.query("PRAGMA compile_options")]
        log.info("SQLite compile options: %s", ", ".join(options))

        for name, value in self._pragmas.describe().items():
            if value is not None:
                log.info("SQLite %s: %s", name, value)

    # ------------------------------------------------------------------
    # Connection factory
    # ------------------------------------------------------------------

    def acquire(self, write: bool = True) -> ManagedConnection:
        """Return a connection handle; the caller must close it.

        A write acquire blocks on the write gate and hands out the shared
        writer, creating and tuning it on first use.  A read acquire opens
        a private read-only connection and never touches the gate.
        """
        self._check_disposed()
        if not write:
            return ManagedConnection(self._open_reader(), None)

        self._acquire_gate()
        try:
            # close() may have won the gate while we were waiting.
            self._check_disposed()
            if self._write_conn is None:
                self._write_conn = self._open_writer()
        except BaseException:
            self._write_lock.release()
            raise
        return ManagedConnection(self._write_conn, self._write_lock)

    def _acquire_gate(self) -> None:
        if self._write_timeout is None:
            self._write_lock.acquire()
            return
        if not self._write_lock.acquire(timeout=self._write_timeout):
            raise WriteGateTimeoutError(self._db_path, self._write_timeout)

    def _open_writer(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        try:
            self._apply_pragmas(conn)
        except BaseException:
            conn.close()
            raise
        log.debug("Opened writer connection to %s", self._db_path)
        return conn

    def _open_reader(self) -> sqlite3.Connection:
        uri = f"{self._db_path.absolute().as_uri()}?mode=ro"
        conn = sqlite3.connect(uri, uri=True, check_same_thread=False)
        try:
            self._apply_pragmas(conn)
        except BaseException:
            conn.close()
            raise
        return conn

    def _apply_pragmas(self, conn: sqlite3.Connection) -> None:
        conn.row_factory = sqlite3.Row
        for statement in self._pragmas.statements():
            conn.execute(statement).fetchall()

    # ------------------------------------------------------------------
    # Query execution
    # ------------------------------------------------------------------

    async def execute(self, sql: str, params: Params = ()) -> list[sqlite3.Row]:
        """Run a read-only query on a fresh reader and return all rows."""
        return await anyio.to_thread.run_sync(lambda: self._execute_sync(sql, params))

    def _execute_sync(self, sql: str, params: Params = ()) -> list[sqlite3.Row]:
        with self.acquire(write=False) as conn:
            return conn.query(sql, params)

    async def execute_write(self, sql: str, params: Params = ()) -> int:
        """Run a write statement under the write gate.

        Returns
        -------
        int
            The ``lastrowid`` of the executed statement.
        """
        return await anyio.to_thread.run_sync(
            lambda: self._execute_write_sync(sql, params),
        )

    def _execute_write_sync(self, sql: str, params: Params = ()) -> int:
        with self.acquire(write=True) as conn:
            try:
                cursor = conn.execute(sql, params)
                conn.commit()
                return cursor.lastrowid or 0
            except Exception:
                conn.rollback()
                raise

    async def execute_many(self, sql: str, params_list: list[Params]) -> None:
        """Run *sql* once per parameter set under the write gate."""
        await anyio.to_thread.run_sync(
            lambda: self._execute_many_sync(sql, params_list),
        )

    def _execute_many_sync(self, sql: str, params_list: list[Params]) -> None:
        with self.acquire(write=True) as conn:
            try:
                conn.executemany(sql, params_list)
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    async def execute_script(self, sql: str) -> None:
        """Run a multi-statement script under the write gate."""
        await anyio.to_thread.run_sync(lambda: self._execute_script_sync(sql))

    def _execute_script_sync(self, sql: str) -> None:
        with self.acquire(write=True) as conn:
            try:
                conn.executescript(sql)
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    async def execute_transaction(self, fn: Callable[[ManagedConnection], _T]) -> _T:
        """Run *fn* inside one ``BEGIN IMMEDIATE`` transaction on the writer.

        The gate is held for the whole callback.  Commits when *fn*
        returns, rolls back when it raises.
        """
        return await anyio.to_thread.run_sync(
            lambda: self._execute_transaction_sync(fn),
        )

    def _execute_transaction_sync(self, fn: Callable[[ManagedConnection], _T]) -> _T:
        with self.acquire(write=True) as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
                result = fn(conn)
                conn.commit()
                return result
            except Exception:
                conn.rollback()
                raise

    # ------------------------------------------------------------------
    # Disposal
    # ------------------------------------------------------------------

    def _check_disposed(self) -> None:
        if self._disposed:
            raise StoreDisposedError(self._db_path)

    def close(self) -> None:
        """Close the writer and retire the store.  Idempotent.

        Waits for the current writer, if any, to finish first.
        """
        with self._state_lock:
            if self._disposed:
                return
            self._disposed = True

        self._write_lock.acquire()
        try:
            if self._write_conn is not None:
                self._write_conn.close()
        finally:
            self._write_conn = None
            self._write_lock.release()

        log.debug("Store closed: %s", self._db_path)

    async def aclose(self) -> None:
        await anyio.to_thread.run_sync(self.close)

    def __enter__(self) -> SqliteStore:
        try:
            self.initialize()
        except BaseException:
            self.close()
            raise
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    async def __aenter__(self) -> SqliteStore:
        try:
            await anyio.to_thread.run_sync(self.initialize)
        except Exception:
            await self.aclose()
            raise
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    def __repr__(self) -> str:
        return f"<SqliteStore {self._db_path}{' closed' if self._disposed else ''}>"
