from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .entities import ExternalProject, Project

"""Row outcome and aggregate result models for one import run.

RowOutcome is what row processing returns instead of raising; the
orchestrator folds outcomes into an ImportResult.
"""

__all__ = [
    "OutcomeKind",
    "ErrorCategory",
    "SavedProject",
    "RowOutcome",
    "RowFailure",
    "RowWarning",
    "ErrorReport",
    "ImportResult",
]


class OutcomeKind(Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


class ErrorCategory(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    DUPLICATE_ERROR = "DUPLICATE_ERROR"
    NOT_FOUND_ERROR = "NOT_FOUND_ERROR"
    FOREIGN_KEY_ERROR = "FOREIGN_KEY_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"


@dataclass(frozen=True)
class SavedProject:
    project: Project
    detail: ExternalProject


@dataclass
class RowOutcome:
    row_number: int
    kind: OutcomeKind
    record: SavedProject | None = None
    warnings: list[str] = field(default_factory=list)
    error: str | None = None
    error_category: ErrorCategory | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.kind is not OutcomeKind.FAILED

    @property
    def is_update(self) -> bool:
        return self.kind is OutcomeKind.UPDATED

    @classmethod
    def failed(
        cls,
        row_number: int,
        category: ErrorCategory,
        error: str,
        details: dict[str, Any] | None = None,
        warnings: list[str] | None = None,
    ) -> RowOutcome:
        return cls(
            row_number=row_number,
            kind=OutcomeKind.FAILED,
            error=error,
            error_category=category,
            details=details or {},
            warnings=list(warnings or []),
        )

    @classmethod
    def skipped(cls, row_number: int, warning: str) -> RowOutcome:
        return cls(row_number=row_number, kind=OutcomeKind.SKIPPED, warnings=[warning])


@dataclass(frozen=True)
class RowFailure:
    """A failed row together with its original raw values (for the report)."""
    row: int
    category: ErrorCategory
    message: str
    data: dict[str, Any]
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def missing_fields(self) -> list[str]:
        return list(self.details.get("missing_fields", []))

    @property
    def invalid_fields(self) -> list[dict[str, str]]:
        return list(self.details.get("invalid_fields", []))


@dataclass(frozen=True)
class RowWarning:
    row: int
    message: str


@dataclass(frozen=True)
class ErrorReport:
    """Generated correction workbook, or the reason it is unavailable."""
    filename: str | None
    content: bytes | None
    total_errors: int
    report_error: str | None = None

    @property
    def available(self) -> bool:
        return self.content is not None


@dataclass
class ImportResult:
    """Aggregated result of one run. Built incrementally, returned once."""
    success: int = 0
    errors: list[RowFailure] = field(default_factory=list)
    warnings: list[RowWarning] = field(default_factory=list)
    created: list[SavedProject] = field(default_factory=list)
    updated: list[SavedProject] = field(default_factory=list)
    skipped: int = 0
    total_rows: int = 0
    elapsed_seconds: float = 0.0
    error_report: ErrorReport | None = None

    def add(self, outcome: RowOutcome, data: dict[str, Any]) -> None:
        """Fold one row outcome into the aggregate counters."""
        self.total_rows += 1
        for message in outcome.warnings:
            self.warnings.append(RowWarning(row=outcome.row_number, message=message))
        if outcome.kind is OutcomeKind.FAILED:
            self.errors.append(
                RowFailure(
                    row=outcome.row_number,
                    category=outcome.error_category or ErrorCategory.UNEXPECTED_ERROR,
                    message=outcome.error or "",
                    data=data,
                    details=outcome.details,
                )
            )
        elif outcome.kind is OutcomeKind.SKIPPED:
            self.skipped += 1
        elif outcome.record is not None:
            self.success += 1
            if outcome.kind is OutcomeKind.UPDATED:
                self.updated.append(outcome.record)
            else:
                self.created.append(outcome.record)
