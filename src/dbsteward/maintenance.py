"""Scheduled database optimisation: integrity checks, compaction, statistics.

A :class:`MaintenanceTask` runs one :class:`MaintenancePolicy` against two
stores per invocation:

1. **Primary** -- the SQLite file itself, through a short-lived raw
   connection opened outside the store's write gate.
2. **Secondary** -- the ORM-managed store, through a
   :class:`~dbsteward.context.DataContextFactory`.  Skipped when that store
   is not SQLite.

Each phase produces a :class:`PhaseOutcome`.  A failure in one phase is
logged and recorded but never stops the other phase, and :meth:`execute`
never raises for it: the scheduler always sees the task complete.

Two policies ship:

- **quick** (daily): checkpoint the WAL, ``quick_check``, sampled
  ``ANALYZE``, ``REINDEX``.
- **extended** (weekly): full ``integrity_check``, ``foreign_key_check``,
  ``VACUUM``, exhaustive ``ANALYZE``, ``REINDEX``.

Usage::

    task = OptimizeDatabaseTask(cfg.library_path, context_factory)
    report = await task.execute()
    print(report.to_dict())
"""

from __future__ import annotations

import enum
import logging
import sqlite3
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import anyio

from dbsteward.config import StewardConfig
from dbsteward.context import DataContextFactory

log = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

# ---------------------------------------------------------------------------
# Scheduling metadata
# ---------------------------------------------------------------------------

TRIGGER_INTERVAL = "interval"
MAINTENANCE_CATEGORY = "Maintenance"


@dataclass(frozen=True, slots=True)
class TaskTrigger:
    """When a task should run.  Only fixed intervals are used here."""

    interval: timedelta
    type: str = TRIGGER_INTERVAL

    def next_run(self, last_run: datetime | None, now: datetime | None = None) -> datetime:
        """Next due time, counted from *last_run*.  Due immediately if never run."""
        now = now or datetime.now(tz=timezone.utc)
        if last_run is None:
            return now
        return last_run + self.interval


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class MaintenancePolicy:
    """Identity, schedule and statement sequence of one optimise variant."""

    key: str
    name: str
    description: str
    interval: timedelta
    statements: tuple[str, ...]


def quick_policy(analysis_limit: int = 1024, interval_days: int = 1) -> MaintenancePolicy:
    return MaintenancePolicy(
        key="OptimizeDatabaseTask",
        name="Optimise Database - Quick",
        description=(
            "Checkpoints the write-ahead log and refreshes planner statistics. "
            "Running this task after large imports or other changes that imply "
            "database modifications might improve performance."
        ),
        interval=timedelta(days=interval_days),
        statements=(
            "PRAGMA wal_checkpoint(FULL)",
            "PRAGMA quick_check(1)",
            f"PRAGMA analysis_limit={int(analysis_limit)}",
            "ANALYZE",
            "PRAGMA optimize",
            "REINDEX",
        ),
    )


def extended_policy(analysis_limit: int = 0, interval_days: int = 7) -> MaintenancePolicy:
    return MaintenancePolicy(
        key="OptimizeDatabaseExtendedTask",
        name="Optimise Database - Extended",
        description=(
            "Verifies, compacts and truncates free space. Running this task after "
            "deleting large amounts of data or other significant database "
            "modifications might improve performance."
        ),
        interval=timedelta(days=interval_days),
        statements=(
            "PRAGMA integrity_check(1)",
            "PRAGMA foreign_key_check",
            "VACUUM",
            f"PRAGMA analysis_limit={int(analysis_limit)}",
            "ANALYZE",
            "PRAGMA optimize",
            "REINDEX",
        ),
    )


QUICK_POLICY = quick_policy()
EXTENDED_POLICY = extended_policy()

# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class PhaseStatus(str, enum.Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class PhaseOutcome:
    """Result of running a policy against one store.

    Attributes
    ----------
    store:
        Label of the store (file name or context label).
    status:
        Final :class:`PhaseStatus`.
    statements_run:
        Statements that completed before the phase ended.
    findings:
        Non-fatal observations, e.g. foreign key violations.
    error:
        ``"ExceptionType: message"`` when the phase failed.
    """

    store: str
    status: PhaseStatus = PhaseStatus.SUCCEEDED
    statements_run: int = 0
    duration: float = 0.0
    findings: list[str] = field(default_factory=list)
    error: str | None = None
    exception: Exception | None = field(default=None, repr=False, compare=False)

    @property
    def failed(self) -> bool:
        return self.status is PhaseStatus.FAILED

    def skip(self, reason: str) -> None:
        self.status = PhaseStatus.SKIPPED
        self.findings.append(reason)

    def to_dict(self) -> dict[str, Any]:
        return {
            "store": self.store,
            "status": self.status.value,
            "statements_run": self.statements_run,
            "duration": round(self.duration, 3),
            "findings": list(self.findings),
            "error": self.error,
        }


@dataclass
class MaintenanceReport:
    """Both phase outcomes of one scheduled invocation."""

    task_key: str
    primary: PhaseOutcome
    secondary: PhaseOutcome

    @property
    def succeeded(self) -> bool:
        return not (self.primary.failed or self.secondary.failed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "task": self.task_key,
            "succeeded": self.succeeded,
            "primary": self.primary.to_dict(),
            "secondary": self.secondary.to_dict(),
        }


# ---------------------------------------------------------------------------
# Statement result checks
# ---------------------------------------------------------------------------

_CHECK_PRAGMAS = ("integrity_check", "quick_check")


def _inspect_result(
    store: str,
    sql: str,
    rows: Sequence[Sequence[Any]],
    outcome: PhaseOutcome,
) -> None:
    """Record anything a statement reported besides a clean result.

    A failed structural check is a finding like any other; the sequence
    carries on through ``REINDEX``.
    """
    check = next((name for name in _CHECK_PRAGMAS if name in sql), None)
    if check is not None:
        status = rows[0][0] if rows else "no result"
        if status != "ok":
            finding = f"{check}: {status}"
            log.warning("%s on %s", finding, store)
            outcome.findings.append(finding)
    elif "foreign_key_check" in sql and rows:
        finding = f"foreign_key_check: {len(rows)} violation(s)"
        log.warning("%s on %s", finding, store)
        outcome.findings.append(finding)
    elif "wal_checkpoint" in sql and rows and rows[0][0]:
        finding = "wal_checkpoint: could not complete, database busy"
        log.warning("%s on %s", finding, store)
        outcome.findings.append(finding)


# ---------------------------------------------------------------------------
# Task
# ---------------------------------------------------------------------------


class MaintenanceTask:
    """Run a :class:`MaintenancePolicy` against the primary and secondary stores.

    Parameters
    ----------
    db_path:
        Path of the primary SQLite file.
    context_factory:
        Access to the secondary store, or ``None`` when there is none.
    policy:
        The statement sequence and schedule to use.
    """

    category: str = MAINTENANCE_CATEGORY
    is_hidden: bool = False
    is_enabled: bool = True
    is_logged: bool = True

    def __init__(
        self,
        db_path: str | Path,
        context_factory: DataContextFactory | None = None,
        policy: MaintenancePolicy = QUICK_POLICY,
    ) -> None:
        self._db_path = Path(db_path).expanduser()
        self._context_factory = context_factory
        self._policy = policy

    # ------------------------------------------------------------------
    # Scheduling metadata
    # ------------------------------------------------------------------

    @property
    def policy(self) -> MaintenancePolicy:
        return self._policy

    @property
    def key(self) -> str:
        return self._policy.key

    @property
    def name(self) -> str:
        return self._policy.name

    @property
    def description(self) -> str:
        return self._policy.description

    def default_triggers(self) -> list[TaskTrigger]:
        return [TaskTrigger(interval=self._policy.interval)]

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(self, progress: ProgressCallback | None = None) -> MaintenanceReport:
        """Optimise both stores.  Never raises for a failed phase."""
        primary = await self._run_phase(self._db_path.name, self._optimize_primary)
        if progress is not None:
            progress(50.0)

        secondary_label = getattr(self._context_factory, "label", None) or "secondary"
        secondary = await self._run_phase(secondary_label, self._optimize_secondary)
        if progress is not None:
            progress(100.0)

        report = MaintenanceReport(self.key, primary, secondary)
        log.info(
            "%s finished: %s=%s  %s=%s",
            self.name,
            primary.store,
            primary.status.value,
            secondary.store,
            secondary.status.value,
        )
        return report

    async def _run_phase(
        self,
        store: str,
        phase: Callable[[PhaseOutcome], Awaitable[None]],
    ) -> PhaseOutcome:
        outcome = PhaseOutcome(store=store)
        started = time.monotonic()
        try:
            await phase(outcome)
        except Exception as exc:
            outcome.status = PhaseStatus.FAILED
            outcome.error = f"{type(exc).__name__}: {exc}"
            outcome.exception = exc
        outcome.duration = time.monotonic() - started
        self._log_outcome(outcome)
        return outcome

    def _log_outcome(self, outcome: PhaseOutcome) -> None:
        if outcome.failed:
            log.error(
                "Error optimizing DB: %s",
                outcome.store,
                exc_info=outcome.exception,
            )
        elif outcome.status is PhaseStatus.SKIPPED:
            log.info("Skipped optimizing DB: %s (%s)", outcome.store, "; ".join(outcome.findings))
        else:
            log.info(
                "Optimized DB: %s (%d statements, %.2fs)",
                outcome.store,
                outcome.statements_run,
                outcome.duration,
            )

    # ------------------------------------------------------------------
    # Primary store
    # ------------------------------------------------------------------

    async def _optimize_primary(self, outcome: PhaseOutcome) -> None:
        await anyio.to_thread.run_sync(self._optimize_primary_sync, outcome)

    def _optimize_primary_sync(self, outcome: PhaseOutcome) -> None:
        # mode=rw: a missing file is an error, not a new empty database.
        uri = f"{self._db_path.absolute().as_uri()}?mode=rw"
        conn = sqlite3.connect(uri, uri=True, isolation_level=None)
        try:
            log.info("Optimizing DB: %s", outcome.store)
            for sql in self._policy.statements:
                log.debug("%s: %s", outcome.store, sql)
                rows = conn.execute(sql).fetchall()
                _inspect_result(outcome.store, sql, rows, outcome)
                outcome.statements_run += 1
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Secondary store
    # ------------------------------------------------------------------

    async def _optimize_secondary(self, outcome: PhaseOutcome) -> None:
        if self._context_factory is None:
            outcome.skip("no secondary store configured")
            return

        async with self._context_factory() as ctx:
            if ctx.dialect_name != "sqlite":
                log.info("Database is not SQLite (%s), skipping optimization.", ctx.dialect_name)
                outcome.skip(f"dialect {ctx.dialect_name} is not sqlite")
                return

            log.info("Optimizing DB: %s", outcome.store)
            for sql in self._policy.statements:
                log.debug("%s: %s", outcome.store, sql)
                rows = await ctx.execute_raw(sql)
                _inspect_result(outcome.store, sql, rows, outcome)
                outcome.statements_run += 1


class OptimizeDatabaseTask(MaintenanceTask):
    """Daily quick optimisation."""

    def __init__(
        self,
        db_path: str | Path,
        context_factory: DataContextFactory | None = None,
        *,
        analysis_limit: int = 1024,
        interval_days: int = 1,
    ) -> None:
        super().__init__(
            db_path,
            context_factory,
            policy=quick_policy(analysis_limit=analysis_limit, interval_days=interval_days),
        )


class OptimizeDatabaseExtendedTask(MaintenanceTask):
    """Weekly full verification and rebuild."""

    def __init__(
        self,
        db_path: str | Path,
        context_factory: DataContextFactory | None = None,
        *,
        analysis_limit: int = 0,
        interval_days: int = 7,
    ) -> None:
        super().__init__(
            db_path,
            context_factory,
            policy=extended_policy(analysis_limit=analysis_limit, interval_days=interval_days),
        )


def build_tasks(
    cfg: StewardConfig,
    context_factory: DataContextFactory | None = None,
    *,
    db_path: str | Path | None = None,
) -> list[MaintenanceTask]:
    """The quick and extended tasks for *cfg*, in that order.

    *db_path* overrides ``cfg.library_path``.
    """
    m = cfg.maintenance
    path = db_path if db_path is not None else cfg.library_path
    return [
        OptimizeDatabaseTask(
            path,
            context_factory,
            analysis_limit=m.quick_analysis_limit,
            interval_days=m.quick_interval_days,
        ),
        OptimizeDatabaseExtendedTask(
            path,
            context_factory,
            analysis_limit=m.extended_analysis_limit,
            interval_days=m.extended_interval_days,
        ),
    ]
