"""dbsteward -- connection lifecycle and maintenance for single-file SQLite stores.

Quick start::

    from dbsteward import SqliteStore, OptimizeDatabaseTask

    store = SqliteStore("~/.dbsteward/library.db")
    store.initialize()

    with store.acquire(write=True) as conn:
        conn.execute("CREATE TABLE IF NOT EXISTS items (id INTEGER PRIMARY KEY)")
        conn.commit()

    report = await OptimizeDatabaseTask(store.db_path).execute()
    store.close()

For lower-level access, import from submodules::

    from dbsteward.config import PragmaConfig, SynchronousMode, TempStoreMode
    from dbsteward.schema import table_exists, list_columns, add_column_if_absent
    from dbsteward.context import SqlAlchemyContextFactory
"""

from __future__ import annotations

__version__ = "0.1.0"

# Public API exports
from dbsteward.config import PragmaConfig, StewardConfig, get_config
from dbsteward.connection import ManagedConnection
from dbsteward.errors import (
    StewardError,
    StoreDisposedError,
    WriteGateTimeoutError,
)
from dbsteward.maintenance import (
    MaintenanceReport,
    MaintenanceTask,
    OptimizeDatabaseExtendedTask,
    OptimizeDatabaseTask,
)
from dbsteward.storage import SqliteStore

__all__ = [
    "__version__",
    "PragmaConfig",
    "StewardConfig",
    "get_config",
    "ManagedConnection",
    "SqliteStore",
    "MaintenanceTask",
    "MaintenanceReport",
    "OptimizeDatabaseTask",
    "OptimizeDatabaseExtendedTask",
    "StewardError",
    "StoreDisposedError",
    "WriteGateTimeoutError",
]
