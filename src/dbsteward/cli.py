"""Operator entry points.

Usage::

    python -m dbsteward optimize                 # quick task
    python -m dbsteward optimize --extended      # extended task
    python -m dbsteward optimize --db ./library.db --secondary sqlite+aiosqlite:///app.db
    python -m dbsteward info --db ./library.db
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from dbsteward.config import StewardConfig, get_config
from dbsteward.context import SqlAlchemyContextFactory
from dbsteward.maintenance import MaintenanceReport, build_tasks
from dbsteward.storage import SqliteStore

log = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


# ------------------------------------------------------------------
# optimize
# ------------------------------------------------------------------


async def _optimize(
    cfg: StewardConfig,
    db_path: Path,
    secondary_url: str | None,
    extended: bool,
) -> MaintenanceReport:
    factory = SqlAlchemyContextFactory.from_url(secondary_url) if secondary_url else None
    quick, full = build_tasks(cfg, factory, db_path=db_path)
    task = full if extended else quick
    log.debug("Running %s against %s", task.name, db_path)
    try:
        return await task.execute()
    finally:
        if factory is not None:
            await factory.dispose()


def run_optimize(args: list[str]) -> int:
    """Run one optimise invocation and print its report as JSON."""
    cfg = get_config()
    parser = argparse.ArgumentParser(
        prog="python -m dbsteward optimize",
        description="Check, compact and re-analyse the databases",
    )
    parser.add_argument(
        "--extended",
        action="store_true",
        help="Run the extended task (integrity_check, VACUUM, full ANALYZE)",
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=cfg.library_path,
        help="Path to the primary SQLite database",
    )
    parser.add_argument(
        "--secondary",
        default=cfg.secondary_url,
        help="SQLAlchemy async URL of the secondary store",
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    opts = parser.parse_args(args)
    _configure_logging(opts.verbose)

    report = asyncio.run(
        _optimize(cfg, opts.db.expanduser(), opts.secondary, opts.extended)
    )
    print(json.dumps(report.to_dict(), indent=2))
    return 0 if report.succeeded else 1


# ------------------------------------------------------------------
# info
# ------------------------------------------------------------------


def run_info(args: list[str]) -> int:
    """Open the store once and print engine diagnostics."""
    cfg = get_config()
    parser = argparse.ArgumentParser(
        prog="python -m dbsteward info",
        description="Show SQLite version, compile options and tuning",
    )
    parser.add_argument("--db", type=Path, default=cfg.library_path)
    parser.add_argument("-v", "--verbose", action="store_true")
    opts = parser.parse_args(args)
    _configure_logging(opts.verbose)

    with SqliteStore(opts.db, cfg.pragmas, write_timeout=cfg.write_timeout) as store:
        with store.acquire(write=False) as conn:
            version = conn.query("SELECT sqlite_version()")[0][0]
            options = [row[0] for row in conn.query("PRAGMA compile_options")]
            journal_mode = conn.query("PRAGMA journal_mode")[0][0]

    info = {
        "path": str(opts.db),
        "sqlite_version": version,
        "journal_mode": journal_mode,
        "compile_options": options,
        "pragmas": cfg.pragmas.describe(),
    }
    print(json.dumps(info, indent=2))
    return 0


# ------------------------------------------------------------------
# Dispatch
# ------------------------------------------------------------------

_COMMANDS = {
    "optimize": run_optimize,
    "optimise": run_optimize,
    "info": run_info,
}


def dispatch(args: list[str]) -> int:
    """Main CLI dispatcher.

    Parameters
    ----------
    args:
        Command-line arguments after ``python -m dbsteward``,
        e.g. ``["optimize", "--extended"]``.
    """
    if not args or args[0] not in _COMMANDS:
        print(
            "Usage: python -m dbsteward {optimize,info} [options]",
            file=sys.stderr,
        )
        return 2
    return _COMMANDS[args[0]](args[1:])
