"""Central configuration for dbsteward.

All tunables live here with sensible defaults.  Values can be overridden
through environment variables prefixed with ``DBSTEWARD_`` (nested keys use
double underscores, e.g. ``DBSTEWARD_PRAGMAS__MMAP_SIZE=0``).  Optional
fields accept ``none`` (or an empty string) to switch a setting off.

Usage::

    from dbsteward.config import get_config

    cfg = get_config()
    print(cfg.library_path)
    print(cfg.pragmas.journal_mode)
"""

from __future__ import annotations

import enum
import os
import sys
import types
import typing
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, TypeVar, get_type_hints

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Pragma value encodings
# ---------------------------------------------------------------------------


class SynchronousMode(enum.IntEnum):
    """SQLite durability levels, see https://www.sqlite.org/pragma.html#pragma_synchronous."""

    OFF = 0
    NORMAL = 1
    FULL = 2
    EXTRA = 3


class TempStoreMode(enum.IntEnum):
    """Where SQLite keeps temporary tables and indices."""

    DEFAULT = 0
    FILE = 1
    MEMORY = 2


_LOCKING_MODES: frozenset[str] = frozenset({"NORMAL", "EXCLUSIVE"})
_JOURNAL_MODES: frozenset[str] = frozenset(
    {"DELETE", "TRUNCATE", "PERSIST", "MEMORY", "WAL", "OFF"}
)

MiB = 1024 * 1024
GiB = 1024 * MiB

# ---------------------------------------------------------------------------
# Nested configuration sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PragmaConfig:
    """Storage-engine tuning applied to every connection a store opens.

    Each field is optional: ``None`` skips the matching ``PRAGMA`` entirely.
    ``temp_store`` is the exception and is always issued, falling back to
    :attr:`TempStoreMode.DEFAULT` when unset.
    """

    cache_size: int | None = None
    locking_mode: str | None = "NORMAL"
    journal_mode: str | None = "WAL"
    journal_size_limit: int | None = 128 * MiB
    """Caps the WAL file.  SQLite's own default (-1) lets it grow without bound."""

    synchronous: SynchronousMode | None = SynchronousMode.NORMAL
    page_size: int | None = None
    mmap_size: int | None = 8 * GiB
    temp_store: TempStoreMode | None = TempStoreMode.MEMORY

    def __post_init__(self) -> None:
        # Values end up inside PRAGMA statements, so only known tokens pass.
        for name in ("locking_mode", "journal_mode"):
            value = getattr(self, name)
            if value is not None and not isinstance(value, str):
                raise TypeError(f"{name} must be a string or None, got {value!r}")
            if value is not None and value.strip():
                object.__setattr__(self, name, value.strip().upper())
            elif value is not None:
                object.__setattr__(self, name, None)

        if self.locking_mode is not None and self.locking_mode not in _LOCKING_MODES:
            raise ValueError(f"Unsupported locking_mode: {self.locking_mode!r}")
        if self.journal_mode is not None and self.journal_mode not in _JOURNAL_MODES:
            raise ValueError(f"Unsupported journal_mode: {self.journal_mode!r}")

        for name in ("cache_size", "journal_size_limit", "page_size", "mmap_size"):
            value = getattr(self, name)
            if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
                raise TypeError(f"{name} must be an int or None, got {value!r}")

        if self.synchronous is not None:
            object.__setattr__(self, "synchronous", SynchronousMode(self.synchronous))
        if self.temp_store is not None:
            object.__setattr__(self, "temp_store", TempStoreMode(self.temp_store))

    def statements(self) -> list[str]:
        """Return the ``PRAGMA`` statements to run on a new connection, in order."""
        stmts: list[str] = []
        if self.cache_size is not None:
            stmts.append(f"PRAGMA cache_size={self.cache_size}")
        if self.locking_mode:
            stmts.append(f"PRAGMA locking_mode={self.locking_mode}")
        if self.journal_mode:
            stmts.append(f"PRAGMA journal_mode={self.journal_mode}")
        if self.journal_size_limit is not None:
            stmts.append(f"PRAGMA journal_size_limit={self.journal_size_limit}")
        if self.synchronous is not None:
            stmts.append(f"PRAGMA synchronous={int(self.synchronous)}")
        if self.page_size is not None:
            stmts.append(f"PRAGMA page_size={self.page_size}")
        if self.mmap_size is not None:
            stmts.append(f"PRAGMA mmap_size={self.mmap_size}")
        temp_store = self.temp_store if self.temp_store is not None else TempStoreMode.DEFAULT
        stmts.append(f"PRAGMA temp_store={int(temp_store)}")
        return stmts

    def describe(self) -> dict[str, Any]:
        """Resolved values keyed by pragma name, for diagnostics."""
        return {
            "cache_size": self.cache_size,
            "locking_mode": self.locking_mode,
            "journal_mode": self.journal_mode,
            "journal_size_limit": self.journal_size_limit,
            "synchronous": self.synchronous.name if self.synchronous is not None else None,
            "page_size": self.page_size,
            "mmap_size": self.mmap_size,
            "temp_store": (self.temp_store or TempStoreMode.DEFAULT).name,
        }


@dataclass(frozen=True, slots=True)
class MaintenanceConfig:
    """Schedules and statistics budgets for the optimize tasks."""

    quick_interval_days: int = 1
    extended_interval_days: int = 7
    quick_analysis_limit: int = 1024
    """Rows sampled per index by ``ANALYZE`` in the quick task."""

    extended_analysis_limit: int = 0
    """``0`` makes ``ANALYZE`` scan every row."""


# ---------------------------------------------------------------------------
# Top-level configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class StewardConfig:
    """Root configuration object.

    ``data_dir`` is stored with ``~`` expanded.
    """

    data_dir: Path = field(default_factory=lambda: Path("~/.dbsteward"))
    library_db: str = "library.db"
    secondary_url: str | None = None
    """SQLAlchemy async URL of the secondary store, e.g. ``sqlite+aiosqlite:///...``."""

    write_timeout: float | None = None
    """Seconds to wait for the write gate.  ``None`` waits indefinitely."""

    pragmas: PragmaConfig = field(default_factory=PragmaConfig)
    maintenance: MaintenanceConfig = field(default_factory=MaintenanceConfig)

    def __post_init__(self) -> None:
        object.__setattr__(self, "data_dir", Path(self.data_dir).expanduser())

    @property
    def library_path(self) -> Path:
        """Filesystem path of the primary store."""
        return self.data_dir / self.library_db


# ---------------------------------------------------------------------------
# Environment-variable loader
# ---------------------------------------------------------------------------

_ENV_PREFIX = "DBSTEWARD_"
_NESTED_SEP = "__"
_NONE_VALUES = frozenset({"", "none", "null"})


def _resolve_type_hints(dc_type: type) -> dict[str, Any]:
    """Resolve stringified annotations back to real types.

    ``from __future__ import annotations`` turns all annotations into
    strings.  :func:`typing.get_type_hints` evaluates them in the correct
    module namespace so we get the actual type objects.
    """
    module = sys.modules.get(dc_type.__module__, None)
    globalns = getattr(module, "__dict__", {}) if module else {}
    return get_type_hints(dc_type, globalns=globalns)


def _unwrap_optional(target_type: Any) -> tuple[Any, bool]:
    """Split ``X | None`` into ``(X, True)``."""
    origin = typing.get_origin(target_type)
    if origin is typing.Union or origin is types.UnionType:
        args = [a for a in typing.get_args(target_type) if a is not type(None)]
        if len(args) == 1:
            return args[0], True
    return target_type, False


def _coerce(value: str, target_type: Any) -> Any:
    """Cast an env-var string to the target field type."""
    inner, optional = _unwrap_optional(target_type)
    if optional and value.strip().lower() in _NONE_VALUES:
        return None
    if inner is bool:
        return value.lower() in ("1", "true", "yes")
    if isinstance(inner, type) and issubclass(inner, enum.Enum):
        try:
            return inner[value.strip().upper()]
        except KeyError:
            return inner(int(value))
    return inner(value)


def _load_dataclass(dc_type: type[T], prefix: str) -> T:
    """Recursively build a dataclass from env-var overrides + defaults."""
    hints = _resolve_type_hints(dc_type)
    kwargs: dict[str, object] = {}

    for f in fields(dc_type):  # type: ignore[arg-type]
        field_type = hints[f.name]
        nested_prefix = f"{prefix}{f.name}{_NESTED_SEP}".upper()

        if hasattr(field_type, "__dataclass_fields__"):
            kwargs[f.name] = _load_dataclass(field_type, nested_prefix)
        else:
            env_key = f"{prefix}{f.name}".upper()
            raw = os.environ.get(env_key)
            if raw is not None:
                kwargs[f.name] = _coerce(raw, field_type)

    return dc_type(**kwargs)  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

_cached_config: StewardConfig | None = None


def get_config(*, reload: bool = False) -> StewardConfig:
    """Return the current :class:`StewardConfig`.

    On the first call the config is built by merging defaults with any
    ``DBSTEWARD_*`` environment variables.  The result is cached for the
    lifetime of the process unless *reload* is ``True``.
    """
    global _cached_config  # noqa: PLW0603
    if _cached_config is None or reload:
        _cached_config = _load_dataclass(StewardConfig, _ENV_PREFIX)
    return _cached_config
