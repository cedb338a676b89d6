from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .entities import ExternalProject, Project, ProjectStatus, UserRole

"""Row-level records flowing through one import run.

ImportRow (raw, mapped) -> ValidationVerdict -> PreparedRow (typed, resolved)
-> persisted Project / ExternalProject pair.
"""

__all__ = [
    "ImportRow",
    "InvalidField",
    "ValidationVerdict",
    "ProjectRecord",
    "ExternalDetailRecord",
    "PreparedRow",
    "ExistingProject",
    "NewUser",
    "NewTask",
]


@dataclass(frozen=True)
class ImportRow:
    """One spreadsheet data row after column mapping.

    row_number is the 1-based worksheet row (header = 1, first data row = 2).
    values holds canonical field key -> raw cell value; unmapped columns never
    appear here.
    """
    row_number: int
    values: dict[str, Any]

    def get(self, key: str) -> Any:
        return self.values.get(key)


@dataclass(frozen=True)
class InvalidField:
    field: str
    reason: str


@dataclass(frozen=True)
class ValidationVerdict:
    valid: bool
    missing_fields: tuple[str, ...] = ()
    invalid_fields: tuple[InvalidField, ...] = ()

    def as_details(self) -> dict[str, Any]:
        return {
            "missing_fields": list(self.missing_fields),
            "invalid_fields": [{"field": f.field, "reason": f.reason} for f in self.invalid_fields],
        }


@dataclass(frozen=True)
class ProjectRecord:
    """Mutable attributes of the canonical project."""
    name: str
    description: str | None
    status: ProjectStatus
    start_date: datetime | None
    end_date: datetime | None
    area_id: str


@dataclass
class ExternalDetailRecord:
    """Import-specific attributes stored alongside a project."""
    area_id: str
    external_id: str | None = None
    title: str | None = None
    service_description: str | None = None
    general_status: str | None = None
    next_steps: str | None = None
    summary_table: str | None = None
    assignment_date: datetime | None = None
    is_strategic_project: bool = False
    risk_types: list[str] = field(default_factory=list)
    estimated_end_date: datetime | None = None
    updated_estimated_end_date: datetime | None = None
    actual_end_date: datetime | None = None
    budget_control: str | None = None
    total_contract_amount_mxn: float | None = None
    income: float | None = None
    contract_period_months: float | None = None
    monthly_billing_mxn: float | None = None
    penalty: str | None = None
    providers_involved: str | None = None
    award_date: datetime | None = None
    design_transfer_date: datetime | None = None
    tender_delivery_date: datetime | None = None
    siebel_order_number: str | None = None
    order_in_progress: str | None = None
    related_orders: str | None = None
    applies_change_control: bool = False
    justification: str | None = None
    sharepoint_documentation: str | None = None
    estratel_repository: str | None = None
    # resolved references
    mentor_id: str | None = None
    coordinator_id: str | None = None
    risk_level_id: str | None = None
    project_type_id: str | None = None
    business_line_id: str | None = None
    opportunity_type_id: str | None = None
    segment_id: str | None = None
    sales_management_id: str | None = None
    sales_executive_id: str | None = None
    designer_id: str | None = None


@dataclass
class PreparedRow:
    """Persistence-ready result of processing one valid row."""
    row_number: int
    project: ProjectRecord
    detail: ExternalDetailRecord
    supplier_ids: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ExistingProject:
    project: Project
    detail: ExternalProject


@dataclass(frozen=True)
class NewUser:
    email: str
    password_hash: str
    first_name: str
    last_name: str
    role: UserRole
    area_id: str | None


@dataclass(frozen=True)
class NewTask:
    project_id: str
    title: str
    description: str | None
    created_by: str | None
    status: str = "TODO"
    priority: str = "MEDIUM"
    tags: tuple[str, ...] = ()
