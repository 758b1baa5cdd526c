from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from collections.abc import Callable, Iterator
from contextlib import ExitStack, contextmanager
from pathlib import Path
from typing import Any

import pandas as pd
import psycopg2
from dotenv import load_dotenv

from oos_tracker.config.loader import ConfigError, resolve_config
from oos_tracker.db.document_store import (
    DocumentStore,
    JsonFileDocumentStore,
    PostgresDocumentStore,
    StorageError,
)
from oos_tracker.excel.reader import ParseError, read_sheet_file
from oos_tracker.logging.init import log_summary, set_debug, setup_logging
from oos_tracker.models.config_models import AppConfig
from oos_tracker.services.merge import guess_join_key
from oos_tracker.services.orchestrator import Dashboard, UploadKind
from oos_tracker.services.query import normalize_filters
from oos_tracker.services.record_store import NotFoundError
from oos_tracker.services.summary import render_import_line, render_summary_line

"""CLI entrypoint.

Subcommands map onto the Dashboard session surface:
    import   upload OOS + location sheets and merge (or --legacy positional CSVs)
    list     filtered records + SUMMARY counts
    edit     manual garage / location / remarks edit
    history  audit events of one record (JSON Lines)
    charts   chart series as JSON
    reset    drop records and history
    inspect  print headers / first rows of a sheet
"""

EXIT_SUCCESS = 0
EXIT_FATAL = 1
EXIT_SKIPPED = 2

logger = logging.getLogger("oos_tracker.cli")


@contextmanager
def _db_connection(cfg: AppConfig) -> Iterator[Any]:
    """psycopg2 connection for the postgres storage backend.

    DSN priority: DATABASE_URL, PGDSN, storage.dsn. With none of them set an
    empty DSN is used and libpq falls back to PGHOST / PGUSER / ... variables.
    """
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or cfg.storage.dsn or ""
    conn = psycopg2.connect(dsn)
    try:
        yield conn
    finally:
        conn.close()


def _open_storage(cfg: AppConfig, stack: ExitStack) -> DocumentStore:
    if cfg.storage.backend == "postgres":
        if os.getenv("DISABLE_DB_CONNECT") == "1":
            logger.debug("DB connect disabled via DISABLE_DB_CONNECT=1 -> file storage")
        else:
            try:
                conn = stack.enter_context(_db_connection(cfg))
            except psycopg2.Error as e:
                raise StorageError(f"cannot connect to database: {e}") from e
            logger.debug("storage: postgres")
            return PostgresDocumentStore(conn)
    directory = Path(os.getenv("OOS_STATE_DIR") or cfg.storage.directory)
    logger.debug(f"storage: files in {directory}")
    return JsonFileDocumentStore(directory)


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env with python-dotenv; values override existing variables."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _add_filter_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--garage", help="Mapped garage (exact)")
    p.add_argument("--reason", help="OOS reason (exact)")
    p.add_argument("--status", choices=["Ready", "InProgress", "In Progress"])
    p.add_argument("--search", help="Case-insensitive text search")


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="oos-tracker", description="Out-of-service vehicle tracker")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    p.add_argument("--config", help="Config YAML (default: config/oos.yml when present)")
    sub = p.add_subparsers(dest="command", required=True)

    imp = sub.add_parser("import", help="Import OOS and location sheets")
    imp.add_argument("oos_file")
    imp.add_argument("location_file")
    imp.add_argument("--join-key", help="OOS column matched against the location GROUPING column")
    imp.add_argument("--legacy", action="store_true", help="Positional 6-column CSV mode")

    lst = sub.add_parser("list", help="List records")
    _add_filter_args(lst)
    lst.add_argument("--limit", type=int, default=None)

    edit = sub.add_parser("edit", help="Edit a record")
    edit.add_argument("id")
    edit.add_argument("--garage")
    edit.add_argument("--location")
    edit.add_argument("--remarks")

    hist = sub.add_parser("history", help="Show record history")
    hist.add_argument("id")

    charts = sub.add_parser("charts", help="Chart series as JSON")
    _add_filter_args(charts)

    reset = sub.add_parser("reset", help="Delete all records and history")
    reset.add_argument("--yes", action="store_true", help="Confirm the reset")

    insp = sub.add_parser("inspect", help="Print sheet headers & first rows then exit")
    insp.add_argument("file")
    return p.parse_args(argv)


def _filter_state(args: argparse.Namespace):
    return normalize_filters(
        {
            "garage": args.garage,
            "oos_reason": args.reason,
            "status": args.status,
            "search_text": args.search,
        }
    )


def _cmd_import(dashboard: Dashboard, args: argparse.Namespace) -> int:
    if args.legacy:
        records = dashboard.import_legacy(Path(args.oos_file), Path(args.location_file))
        join_label = "positional"
    else:
        dashboard.on_upload(Path(args.oos_file), UploadKind.OOS)
        if args.join_key:
            if args.join_key not in dashboard.join_candidates:
                logger.warning(f"join key '{args.join_key}' not in OOS headers: {dashboard.join_candidates}")
            dashboard.select_join_key(args.join_key)
        records = dashboard.on_upload(Path(args.location_file), UploadKind.LOCATION)
        join_label = dashboard.join_key
    if not records:
        logger.warning("import skipped: both sheets need data rows and a join key")
        return EXIT_SKIPPED
    located = sum(1 for r in records if r.location)
    log_summary(render_import_line(len(records), located, join_label))
    return EXIT_SUCCESS


def _cmd_list(dashboard: Dashboard, args: argparse.Namespace) -> int:
    view = dashboard.get_merged_view(_filter_state(args))
    rows = view.rows[: args.limit] if args.limit is not None else view.rows
    if rows:
        table = pd.DataFrame(
            [
                {
                    "id": r.id,
                    "license": r.license,
                    "make": r.make,
                    "model": r.model,
                    "oos_reason": r.oos_reason,
                    "garage": r.garage_mapped,
                    "days": "" if r.days_in_garage is None else r.days_in_garage,
                    "location": r.location,
                    "remarks": r.remarks,
                    "status": r.status.label,
                }
                for r in rows
            ]
        )
        print(table.to_string(index=False))
    else:
        print("(no records)")
    log_summary(render_summary_line(view.summary))
    return EXIT_SUCCESS


def _cmd_edit(dashboard: Dashboard, args: argparse.Namespace) -> int:
    patch = {
        key: value
        for key, value in (("garage", args.garage), ("location", args.location), ("remarks", args.remarks))
        if value is not None
    }
    if not patch:
        logger.error("edit: nothing to change (use --garage / --location / --remarks)")
        return EXIT_FATAL
    before = len(dashboard.get_history(args.id))
    record = dashboard.edit_record(args.id, patch)
    changed = len(dashboard.get_history(args.id)) - before
    logger.info(f"record {record.id} saved ({changed} field(s) changed)")
    return EXIT_SUCCESS


def _cmd_history(dashboard: Dashboard, args: argparse.Namespace) -> int:
    events = dashboard.get_history(args.id)
    if not events:
        logger.info(f"no history for {args.id}")
    for event in events:
        print(json.dumps(event.to_dict(), ensure_ascii=False))
    return EXIT_SUCCESS


def _cmd_charts(dashboard: Dashboard, args: argparse.Namespace) -> int:
    print(json.dumps(dashboard.chart_data(_filter_state(args)), ensure_ascii=False, indent=2))
    return EXIT_SUCCESS


def _cmd_reset(dashboard: Dashboard, args: argparse.Namespace) -> int:
    if not args.yes:
        logger.error("reset: refusing without --yes")
        return EXIT_FATAL
    dashboard.reset_all()
    return EXIT_SUCCESS


def _inspect_file(path: Path) -> int:
    try:
        rows = read_sheet_file(path)
    except ParseError as e:
        logger.error(f"inspect: {e}")
        return EXIT_FATAL
    headers = list(rows[0].keys()) if rows else []
    print(f"FILE: {path.name} rows={len(rows)} cols={headers}")
    print(f"  join_key_guess={guess_join_key(headers)}")
    for r in rows[:3]:
        # datetime を含む行は isoformat で表示
        safe = {k: (v.isoformat() if hasattr(v, "isoformat") else v) for k, v in r.items()}
        print("  sample_row=", safe)
    return EXIT_SUCCESS


COMMANDS: dict[str, Callable[[Dashboard, argparse.Namespace], int]] = {
    "import": _cmd_import,
    "list": _cmd_list,
    "edit": _cmd_edit,
    "history": _cmd_history,
    "charts": _cmd_charts,
    "reset": _cmd_reset,
}


def main(argv: list[str] | None = None) -> int:
    app_logger = setup_logging()

    # NOTE: [] (テストからの呼び出し) と None を区別する。None の時のみ sys.argv を読む
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    _load_env_file(Path(".env"), override=True)

    if args.debug:
        set_debug(app_logger)
        logger.debug("debug mode enabled")

    if args.command == "inspect":
        return _inspect_file(Path(args.file))

    try:
        cfg = resolve_config(Path(args.config) if args.config else None)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    with ExitStack() as stack:
        try:
            storage = _open_storage(cfg, stack)
            dashboard = Dashboard.open(storage, cfg)
            return COMMANDS[args.command](dashboard, args)
        except ParseError as e:
            logger.error(f"parse: {e}")
        except NotFoundError as e:
            logger.error(f"not found: {e}")
        except StorageError as e:
            logger.error(f"storage: {e}")
        except ValueError as e:
            logger.error(f"invalid input: {e}")
    return EXIT_FATAL


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
