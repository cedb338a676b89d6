"""Domain models for the spreadsheet project import engine.

entities: rows handed back by the relational store
records: per-row payloads (raw row, verdict, prepared records)
outcome: row outcomes and the aggregated ImportResult
"""

from .entities import (
    Area,
    Assignment,
    Catalog,
    CatalogType,
    ExternalProject,
    Project,
    ProjectStatus,
    Supplier,
    Task,
    User,
    UserRole,
)
from .error_record import ErrorRecord
from .outcome import (
    ErrorCategory,
    ErrorReport,
    ImportResult,
    OutcomeKind,
    RowFailure,
    RowOutcome,
    RowWarning,
    SavedProject,
)
from .records import (
    ExistingProject,
    ExternalDetailRecord,
    ImportRow,
    InvalidField,
    NewTask,
    NewUser,
    PreparedRow,
    ProjectRecord,
    ValidationVerdict,
)

__all__ = [
    # Store entities
    "Area",
    "Assignment",
    "Catalog",
    "CatalogType",
    "ExternalProject",
    "Project",
    "ProjectStatus",
    "Supplier",
    "Task",
    "User",
    "UserRole",
    # Row records
    "ExistingProject",
    "ExternalDetailRecord",
    "ImportRow",
    "InvalidField",
    "NewTask",
    "NewUser",
    "PreparedRow",
    "ProjectRecord",
    "ValidationVerdict",
    # Outcomes
    "ErrorCategory",
    "ErrorRecord",
    "ErrorReport",
    "ImportResult",
    "OutcomeKind",
    "RowFailure",
    "RowOutcome",
    "RowWarning",
    "SavedProject",
]
