from __future__ import annotations

import argparse
import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from dotenv import load_dotenv

from project_import.config.loader import ConfigError, ImportConfig, load_config
from project_import.db.memory import InMemoryStore
from project_import.db.postgres import PostgresStore
from project_import.db.store import Store, StoreError
from project_import.excel.writer import write_template
from project_import.logging.init import log_summary, setup_logging
from project_import.models.entities import UserRole
from project_import.services.orchestrator import ActorRef, ImportSetupError, import_projects
from project_import.services.summary import render_summary_line

"""CLI entrypoint: ``project-import``.

    project-import FILE --area ID (--actor-id ID | --actor-email EMAIL)
                   [--incremental] [--error-report PATH] [--config PATH]
                   [--dry-run] [--debug]
    project-import --write-template PATH

Exit codes: 0 every row succeeded or was skipped, 2 at least one row failed,
1 fatal error (config, database, setup).
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1

DEFAULT_CONFIG_PATH = Path("config/import.yml")


def resolve_dsn(cfg: ImportConfig) -> str:
    """Connection string: DATABASE_URL / PGDSN, then PG* variables, then the config file."""
    db_cfg = cfg.database
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if dsn:
        return dsn
    host = os.getenv("PGHOST", db_cfg.host or "localhost")
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


def _dry_run_store(actor: ActorRef, area_id: str) -> InMemoryStore:
    """Empty in-memory store holding just the acting administrator and the area."""
    store = InMemoryStore()
    store.add_area("dry-run", area_id=area_id)
    store.add_user(
        actor.email or "dry-run@localhost",
        "Dry",
        "Run",
        UserRole.ADMINISTRADOR,
        user_id=actor.user_id,
    )
    return store


@contextmanager
def _open_store(cfg: ImportConfig, args: argparse.Namespace, actor: ActorRef) -> Iterator[Store]:
    if args.dry_run:
        yield _dry_run_store(actor, args.area)
        return
    store = PostgresStore(
        resolve_dsn(cfg),
        min_connections=cfg.database.min_connections,
        max_connections=cfg.database.max_connections,
    )
    try:
        yield store
    finally:
        store.close()


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env with python-dotenv; its values win over the process environment."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="project-import", description="Excel -> project store importer")
    p.add_argument("file", nargs="?", type=Path, help="Workbook (.xlsx) to import")
    p.add_argument("--area", help="Area id the imported projects belong to")
    actor = p.add_mutually_exclusive_group()
    actor.add_argument("--actor-id", help="Id of the administrator running the import")
    actor.add_argument("--actor-email", help="Email of the administrator running the import")
    p.add_argument("--incremental", action="store_true", help="Skip rows whose external id already exists")
    p.add_argument("--error-report", type=Path, help="Write the error workbook here when rows fail")
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="YAML config file")
    p.add_argument("--dry-run", action="store_true", help="Import into a throwaway in-memory store")
    p.add_argument("--write-template", type=Path, metavar="PATH", help="Write the import template and exit")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = p.parse_args(argv)
    if args.write_template is None:
        if args.file is None:
            p.error("FILE is required")
        if not args.area:
            p.error("--area is required")
        if not (args.actor_id or args.actor_email):
            p.error("one of --actor-id / --actor-email is required")
    return args


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # [] must not fall back to sys.argv (tests call main([]))
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    if args.debug:
        logger = setup_logging(logging.DEBUG)
        logger.debug("debug mode enabled")

    if args.write_template is not None:
        write_template(args.write_template)
        logger.info(f"template written: {args.write_template}")
        return EXIT_SUCCESS_ALL

    _load_env_file(Path(".env"), override=True)
    if args.config.exists():
        try:
            cfg = load_config(args.config)
        except ConfigError as e:
            logger.error(f"config: {e}")
            return EXIT_FATAL
    elif args.config != DEFAULT_CONFIG_PATH:
        logger.error(f"config: config file not found: {args.config}")
        return EXIT_FATAL
    else:
        cfg = ImportConfig(error_log_dir="./logs")

    actor = ActorRef(user_id=args.actor_id, email=args.actor_email)
    try:
        with _open_store(cfg, args, actor) as store:
            result = import_projects(args.file, actor, args.area, args.incremental, store=store, config=cfg)
    except ImportSetupError as e:
        logger.error(f"setup: {e}")
        return EXIT_FATAL
    except StoreError as e:
        logger.error(f"database: {e}")
        return EXIT_FATAL

    logger.info(f"mode={'dry-run' if args.dry_run else 'live'} rows={result.total_rows}")
    for warning in result.warnings:
        logger.warning(f"row {warning.row}: {warning.message}")
    for failure in result.errors:
        logger.error(f"row {failure.row}: {failure.category.value} {failure.message}")

    report = result.error_report
    if report is not None:
        if not report.available:
            logger.warning(f"error report unavailable: {report.report_error}")
        elif args.error_report is not None:
            args.error_report.write_bytes(report.content or b"")
            logger.info(f"error report written: {args.error_report} ({report.total_errors} rows)")
        else:
            logger.info(f"{report.total_errors} rows failed; pass --error-report PATH to save {report.filename}")

    # log_summary adds its own label
    log_summary(render_summary_line(result)[len("SUMMARY "):])

    if result.errors:
        return EXIT_PARTIAL_FAILURE
    return EXIT_SUCCESS_ALL


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
