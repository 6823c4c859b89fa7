"""Schema introspection helpers used while creating or upgrading a store.

Usage::

    def setup(conn):
        if not table_exists(conn, "items"):
            conn.execute("CREATE TABLE items (id INTEGER PRIMARY KEY)")
        columns = list_columns(conn, "items")
        add_column_if_absent(conn, "items", "name", "TEXT", columns)

    store.initialize(setup=setup)
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from dbsteward.connection import ManagedConnection

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ColumnInfo:
    """A column as reported by ``PRAGMA table_info``."""

    name: str
    type: str


def quote_identifier(name: str) -> str:
    """Quote *name* for use as an SQLite identifier."""
    return '"' + name.replace('"', '""') + '"'


def table_exists(conn: ManagedConnection, name: str) -> bool:
    """Whether a table called *name* exists, ignoring case."""
    wanted = name.casefold()
    for row in conn.query("SELECT DISTINCT tbl_name FROM sqlite_master"):
        if row[0] is not None and row[0].casefold() == wanted:
            return True
    return False


def get_columns(conn: ManagedConnection, table: str) -> list[ColumnInfo]:
    """Columns of *table* in declared order.  Empty if the table is missing."""
    rows = conn.query(f"PRAGMA table_info({quote_identifier(table)})")
    return [ColumnInfo(name=row[1], type=row[2] or "") for row in rows if row[1]]


def list_columns(conn: ManagedConnection, table: str) -> list[str]:
    """Column names of *table* in declared order."""
    return [column.name for column in get_columns(conn, table)]


def add_column_if_absent(
    conn: ManagedConnection,
    table: str,
    column: str,
    type: str,  # noqa: A002
    known_columns: Sequence[str] | None = None,
) -> bool:
    """Add a nullable *column* to *table* unless it is already there.

    Parameters
    ----------
    known_columns:
        Existing column names, usually from :func:`list_columns`.  Looked up
        when omitted.  A ``list`` passed here gets the new column appended,
        so calling again with the same list is a no-op.

    Returns
    -------
    bool
        ``True`` if an ``ALTER TABLE`` was issued.
    """
    if known_columns is None:
        known_columns = list_columns(conn, table)

    wanted = column.casefold()
    if any(existing.casefold() == wanted for existing in known_columns):
        return False

    conn.execute(
        f"ALTER TABLE {quote_identifier(table)} "
        f"ADD COLUMN {quote_identifier(column)} {type} NULL"
    )
    if isinstance(known_columns, list):
        known_columns.append(column)
    log.info("Migration: added %r column to %s", column, table)
    return True
