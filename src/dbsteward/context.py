"""Raw-statement access to the secondary store.

The secondary store is owned by an ORM layer elsewhere in the application.
Maintenance only needs two things from it: the name of the engine behind it
and a way to run a raw statement outside any ORM transaction.  That contract
is :class:`DataContext`, handed out by a :class:`DataContextFactory`.

:class:`SqlAlchemyContextFactory` implements it on top of a SQLAlchemy
:class:`~sqlalchemy.ext.asyncio.AsyncEngine`, borrowing a pooled connection
in ``AUTOCOMMIT`` mode so statements such as ``VACUUM`` are accepted.

Usage::

    factory = SqlAlchemyContextFactory.from_url("sqlite+aiosqlite:///app.db")
    async with factory() as ctx:
        if ctx.dialect_name == "sqlite":
            await ctx.execute_raw("PRAGMA quick_check(1)")
    await factory.dispose()
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any, Protocol, runtime_checkable

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

log = logging.getLogger(__name__)


@runtime_checkable
class DataContext(Protocol):
    """A borrowed handle on the secondary store."""

    @property
    def dialect_name(self) -> str:
        """Engine family, e.g. ``"sqlite"`` or ``"postgresql"``."""
        ...

    async def execute_raw(self, sql: str) -> list[tuple[Any, ...]]:
        """Run one raw statement and return any rows it produced."""
        ...


class DataContextFactory(Protocol):
    """Callable returning an async context manager that yields a :class:`DataContext`."""

    label: str

    def __call__(self) -> AbstractAsyncContextManager[DataContext]: ...


class EngineDataContext:
    """:class:`DataContext` over one pooled SQLAlchemy connection."""

    def __init__(self, conn: AsyncConnection) -> None:
        self._conn = conn

    @property
    def dialect_name(self) -> str:
        return self._conn.dialect.name

    async def execute_raw(self, sql: str) -> list[tuple[Any, ...]]:
        result = await self._conn.exec_driver_sql(sql)
        if not result.returns_rows:
            return []
        return [tuple(row) for row in result.fetchall()]


class SqlAlchemyContextFactory:
    """Hand out :class:`EngineDataContext` objects from an :class:`AsyncEngine`.

    Parameters
    ----------
    engine:
        The engine backing the secondary store.  Its pool is shared with
        the rest of the application.
    label:
        Name used in logs.  Defaults to the database name in the URL.
    """

    def __init__(self, engine: AsyncEngine, label: str | None = None) -> None:
        self._engine = engine
        self.label = label or _label_for(engine.url.database)

    @classmethod
    def from_url(cls, url: str, label: str | None = None) -> SqlAlchemyContextFactory:
        """Build a factory that owns a new engine for *url*."""
        return cls(create_async_engine(url), label=label)

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @asynccontextmanager
    async def __call__(self) -> AsyncIterator[DataContext]:
        async with self._engine.connect() as conn:
            conn = await conn.execution_options(isolation_level="AUTOCOMMIT")
            yield EngineDataContext(conn)

    async def dispose(self) -> None:
        """Release the engine's pooled connections."""
        await self._engine.dispose()
        log.debug("Disposed engine for %s", self.label)


def _label_for(database: str | None) -> str:
    if not database:
        return "secondary"
    return database.replace("\\", "/").rsplit("/", 1)[-1]
