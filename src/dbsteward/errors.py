"""Exceptions raised by dbsteward.

SQLite and SQLAlchemy errors are never wrapped; they reach the caller as-is.
"""

from __future__ import annotations


class StewardError(Exception):
    """Base class for errors raised by this package."""


class StoreDisposedError(StewardError, RuntimeError):
    """An operation was attempted on a store that has been closed."""

    def __init__(self, db_path: object) -> None:
        super().__init__(f"Store {db_path} has been closed")
        self.db_path = db_path


class WriteGateTimeoutError(StewardError, TimeoutError):
    """The write gate was not granted within the configured wait."""

    def __init__(self, db_path: object, timeout: float) -> None:
        super().__init__(
            f"Timed out after {timeout:.1f}s waiting for the write gate on {db_path}"
        )
        self.db_path = db_path
        self.timeout = timeout
