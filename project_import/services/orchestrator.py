from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import IO

from ..config.loader import ImportConfig
from ..db.store import Store, StoreError
from ..excel.reader import SheetData, SpreadsheetError, read_workbook
from ..excel.writer import render_error_report
from ..logging.error_log import ErrorLogBuffer
from ..models.entities import User, UserRole
from ..models.error_record import ErrorRecord
from ..models.outcome import ErrorCategory, ImportResult, OutcomeKind, RowOutcome
from ..models.records import ImportRow
from .parsers import parse_external_id
from .persistence import PersistenceWriter
from .progress import ProgressTracker
from .resolver import EntityResolver, ResolutionContext
from .row_processor import RowProcessor
from .validator import validate_row

"""Import orchestration.

State machine of one run:

    IDLE -> PRELOADING -> PRECREATING_ENTITIES -> PROCESSING_BATCHES
         -> REPORTING -> DONE

FAILED is entered on a setup error (actor, area, workbook), before any row
is touched, and on any exception escaping a later phase. Either way the
exception propagates to the caller.

Preload and pre-creation are strictly sequential and complete before the
first row is dispatched. They only see rows that pass validation and, in
incremental mode, are not already imported, so a rejected or skipped row
never creates a user, catalog or supplier.

Rows are then processed in windows of ``batch_size``: rows within a window
run concurrently on a thread pool, windows run one after another. Each row
yields exactly one RowOutcome; a fault escaping a row is converted to
UNEXPECTED_ERROR at the future boundary so the rest of the window is
unaffected.
"""

__all__ = [
    "ImportState",
    "ImportSetupError",
    "ActorRef",
    "ProjectImporter",
    "import_projects",
]

logger = logging.getLogger(__name__)

RUN_LEVEL_ROW = -1


class ImportState(Enum):
    IDLE = "idle"
    PRELOADING = "preloading"
    PRECREATING_ENTITIES = "precreating_entities"
    PROCESSING_BATCHES = "processing_batches"
    REPORTING = "reporting"
    DONE = "done"
    FAILED = "failed"


class ImportSetupError(Exception):
    """Fatal error detected before any row is processed."""


@dataclass(frozen=True)
class ActorRef:
    """Identity of the user running the import (id first, email as fallback)."""
    user_id: str | None = None
    email: str | None = None


class ProjectImporter:
    def __init__(self, store: Store, config: ImportConfig | None = None) -> None:
        self.store = store
        self.config = config or ImportConfig()
        self.resolver = EntityResolver(store, self.config)
        self.writer = PersistenceWriter(store, self.config.default_task)
        self.state = ImportState.IDLE

    def _transition(self, state: ImportState) -> None:
        logger.debug("import state %s -> %s", self.state.value, state.value)
        self.state = state

    # -- setup ------------------------------------------------------------
    def _resolve_actor(self, actor: ActorRef) -> User:
        try:
            user = self.store.get_user(actor.user_id) if actor.user_id else None
            if user is None and actor.email:
                if actor.user_id:
                    logger.warning("acting user %s not found, trying email %s", actor.user_id, actor.email)
                user = self.store.find_user_by_email(actor.email)
        except StoreError as e:
            raise ImportSetupError(f"acting user lookup failed: {e}") from e
        if user is None:
            raise ImportSetupError(f"acting user not found (id={actor.user_id}, email={actor.email})")
        if user.role is not UserRole.ADMINISTRADOR:
            raise ImportSetupError(f"user {user.email} is not allowed to import projects (role {user.role.value})")
        return user

    def _check_area(self, area_id: str) -> None:
        try:
            area = self.store.get_area(area_id)
        except StoreError as e:
            raise ImportSetupError(f"area lookup failed: {e}") from e
        if area is None or not area.is_active:
            raise ImportSetupError(f"area not found or inactive: {area_id}")

    @staticmethod
    def _read(source: Path | str | IO[bytes]) -> SheetData:
        try:
            return read_workbook(source)
        except SpreadsheetError as e:
            raise ImportSetupError(f"spreadsheet unreadable: {e}") from e

    # -- run --------------------------------------------------------------
    def run(
        self,
        source: Path | str | IO[bytes],
        actor: ActorRef,
        area_id: str,
        incremental: bool = False,
        *,
        file_name: str | None = None,
    ) -> ImportResult:
        started = time.perf_counter()
        self.state = ImportState.IDLE
        try:
            actor_user = self._resolve_actor(actor)
            self._check_area(area_id)
            sheet = self._read(source)
        except ImportSetupError as e:
            self._transition(ImportState.FAILED)
            logger.error("import aborted: %s", e)
            raise

        if file_name is None:
            file_name = Path(source).name if isinstance(source, (str, Path)) else "<upload>"
        logger.info(
            "importing %s sheet=%s rows=%d actor=%s area=%s mode=%s",
            file_name,
            sheet.sheet_name,
            len(sheet.rows),
            actor_user.email,
            area_id,
            "incremental" if incremental else "full",
        )

        ctx = ResolutionContext(actor_id=actor_user.id, area_id=area_id)
        error_log = ErrorLogBuffer(self.config.error_log_dir) if self.config.error_log_dir else None
        result = ImportResult()
        try:
            self._transition(ImportState.PRELOADING)
            persistable = self._rows_to_resolve(sheet.rows, incremental)
            self.resolver.preload(ctx, persistable)

            self._transition(ImportState.PRECREATING_ENTITIES)
            self.resolver.precreate(ctx, persistable)

            self._transition(ImportState.PROCESSING_BATCHES)
            processor = RowProcessor(self.store, self.resolver, self.writer, ctx, incremental=incremental)
            self._process_windows(processor, sheet, result, error_log, file_name)
        except Exception:
            self._transition(ImportState.FAILED)
            raise
        finally:
            ctx.clear()

        self._transition(ImportState.REPORTING)
        if result.errors:
            result.error_report = render_error_report(result.errors)
            if not result.error_report.available and error_log is not None:
                error_log.append(
                    ErrorRecord.create(
                        file=file_name,
                        sheet=sheet.sheet_name,
                        row=RUN_LEVEL_ROW,
                        error_type="REPORT_ERROR",
                        message=result.error_report.report_error or "",
                    )
                )
        if error_log is not None:
            try:
                path = error_log.flush()
                if path is not None:
                    logger.info("row errors written to %s", path)
            except OSError as e:
                logger.warning("error log could not be written: %s", e)

        result.elapsed_seconds = time.perf_counter() - started
        self._transition(ImportState.DONE)
        logger.info(
            "import finished: %d ok (%d created, %d updated), %d skipped, %d errors, %d warnings",
            result.success,
            len(result.created),
            len(result.updated),
            result.skipped,
            len(result.errors),
            len(result.warnings),
        )
        return result

    def _rows_to_resolve(self, rows: list[ImportRow], incremental: bool) -> list[ImportRow]:
        """Rows whose references may be created: valid ones, minus incremental skips."""
        persistable = []
        for row in rows:
            if not validate_row(row).valid:
                continue
            if incremental:
                external_id = parse_external_id(row.get("external_id"))
                if external_id is not None and self._exists(external_id):
                    continue
            persistable.append(row)
        logger.debug("%d of %d rows take part in entity pre-creation", len(persistable), len(rows))
        return persistable

    def _exists(self, external_id: str) -> bool:
        try:
            return self.store.find_project_by_external_id(external_id) is not None
        except StoreError as e:
            # the row processor repeats the lookup and reports the failure
            logger.warning("lookup of external id %s failed: %s", external_id, e)
            return False

    def _process_windows(
        self,
        processor: RowProcessor,
        sheet: SheetData,
        result: ImportResult,
        error_log: ErrorLogBuffer | None,
        file_name: str,
    ) -> None:
        rows = sheet.rows
        size = max(1, self.config.batch_size)
        windows = (len(rows) + size - 1) // size
        with ProgressTracker(len(rows)) as progress, ThreadPoolExecutor(max_workers=size) as executor:
            for number, start in enumerate(range(0, len(rows), size), start=1):
                window = rows[start : start + size]
                futures = [(row, executor.submit(processor.process, row)) for row in window]
                # all rows of a window settle before the next window starts
                for row, future in futures:
                    outcome = self._settle(row, future)
                    result.add(outcome, dict(row.values))
                    progress.advance(outcome)
                    if outcome.kind is OutcomeKind.FAILED and error_log is not None:
                        category = outcome.error_category or ErrorCategory.UNEXPECTED_ERROR
                        error_log.append(
                            ErrorRecord.create(
                                file=file_name,
                                sheet=sheet.sheet_name,
                                row=outcome.row_number,
                                error_type=category.value,
                                message=outcome.error or "",
                            )
                        )
                logger.info(
                    "window %d/%d processed - %d ok, %d errors, %d warnings",
                    number,
                    windows,
                    result.success,
                    len(result.errors),
                    len(result.warnings),
                )

    @staticmethod
    def _settle(row: ImportRow, future: Future[RowOutcome]) -> RowOutcome:
        try:
            return future.result()
        except Exception as e:
            logger.error("row %d: unexpected error: %s", row.row_number, e, exc_info=True)
            return RowOutcome.failed(
                row.row_number,
                ErrorCategory.UNEXPECTED_ERROR,
                str(e) or type(e).__name__,
                {"exception": type(e).__name__},
            )


def import_projects(
    source: Path | str | IO[bytes],
    actor: ActorRef,
    area_id: str,
    incremental: bool = False,
    *,
    store: Store,
    config: ImportConfig | None = None,
) -> ImportResult:
    """Import one workbook of projects; see ProjectImporter.run."""
    return ProjectImporter(store, config).run(source, actor, area_id, incremental)
