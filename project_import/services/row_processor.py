from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable
from dataclasses import dataclass
from functools import partial
from typing import Any

from ..db.store import DuplicateError, ForeignKeyError, NotFoundError, Store, StoreError
from ..models.outcome import ErrorCategory, OutcomeKind, RowOutcome
from ..models.records import ExternalDetailRecord, ImportRow, PreparedRow, ProjectRecord, ValidationVerdict
from .parsers import (
    map_status,
    parse_boolean,
    parse_date,
    parse_decimal,
    parse_external_id,
    parse_list,
    parse_string,
)
from .persistence import PersistenceWriter
from .resolver import CATALOG_REFERENCE_FIELDS, USER_REFERENCE_FIELDS, EntityResolver, ResolutionContext
from .validator import validate_row

"""Row processing: validate -> match existing -> prepare -> persist.

process() never raises for expected failures; they come back as a FAILED
RowOutcome carrying an ErrorCategory. Anything else escapes to the
orchestrator, which records it as UNEXPECTED_ERROR.
"""

__all__ = [
    "MONEY_MAX",
    "CONTRACT_PERIOD_MAX",
    "FieldSpec",
    "DETAIL_FIELDS",
    "REFERENCE_TARGETS",
    "RowProcessor",
    "categorize_error",
]

logger = logging.getLogger(__name__)

# NUMERIC(15,2)
MONEY_MAX = 9999999999999.99
CONTRACT_PERIOD_MAX = 99999.9


@dataclass(frozen=True)
class FieldSpec:
    source: str
    target: str
    parse: Callable[[Any], Any]


_money = partial(parse_decimal, max_value=MONEY_MAX)

DETAIL_FIELDS: tuple[FieldSpec, ...] = (
    FieldSpec("external_id", "external_id", parse_external_id),
    FieldSpec("title", "title", parse_string),
    FieldSpec("service_description", "service_description", parse_string),
    FieldSpec("general_status", "general_status", parse_string),
    FieldSpec("next_steps", "next_steps", parse_string),
    FieldSpec("summary_table", "summary_table", parse_string),
    FieldSpec("assignment_date", "assignment_date", parse_date),
    FieldSpec("is_strategic_project", "is_strategic_project", parse_boolean),
    FieldSpec("risk_types", "risk_types", parse_list),
    FieldSpec("estimated_end_date", "estimated_end_date", parse_date),
    FieldSpec("updated_estimated_end_date", "updated_estimated_end_date", parse_date),
    FieldSpec("actual_end_date", "actual_end_date", parse_date),
    FieldSpec("budget_control", "budget_control", parse_string),
    FieldSpec("total_contract_amount_mxn", "total_contract_amount_mxn", _money),
    FieldSpec("income", "income", _money),
    FieldSpec("contract_period_months", "contract_period_months", partial(parse_decimal, max_value=CONTRACT_PERIOD_MAX)),
    FieldSpec("monthly_billing_mxn", "monthly_billing_mxn", _money),
    FieldSpec("penalty", "penalty", parse_string),
    FieldSpec("suppliers", "providers_involved", parse_string),
    FieldSpec("award_date", "award_date", parse_date),
    FieldSpec("design_transfer_date", "design_transfer_date", parse_date),
    FieldSpec("tender_delivery_date", "tender_delivery_date", parse_date),
    FieldSpec("siebel_order_number", "siebel_order_number", parse_string),
    FieldSpec("order_in_progress", "order_in_progress", parse_string),
    FieldSpec("related_orders", "related_orders", parse_string),
    FieldSpec("applies_change_control", "applies_change_control", parse_boolean),
    FieldSpec("justification", "justification", parse_string),
    FieldSpec("sharepoint_documentation", "sharepoint_documentation", parse_string),
    FieldSpec("estratel_repository", "estratel_repository", parse_string),
)

# row key -> ExternalDetailRecord attribute holding the resolved id
REFERENCE_TARGETS: dict[str, str] = {
    "mentor": "mentor_id",
    "coordinator": "coordinator_id",
    "risk": "risk_level_id",
    "project_type": "project_type_id",
    "business_line": "business_line_id",
    "opportunity_type": "opportunity_type_id",
    "segment": "segment_id",
    "sales_management": "sales_management_id",
    "sales_executive": "sales_executive_id",
    "designer": "designer_id",
}


def _check_mapping() -> None:
    attrs = {f.name for f in dataclasses.fields(ExternalDetailRecord)}
    targets = [spec.target for spec in DETAIL_FIELDS] + list(REFERENCE_TARGETS.values())
    unknown = [t for t in targets if t not in attrs]
    if unknown:
        raise TypeError(f"unknown ExternalDetailRecord fields in mapping: {unknown}")
    referenced = set(USER_REFERENCE_FIELDS) | set(CATALOG_REFERENCE_FIELDS)
    missing = referenced - set(REFERENCE_TARGETS)
    if missing:
        raise TypeError(f"reference fields without target: {sorted(missing)}")


_check_mapping()


def categorize_error(exc: BaseException) -> ErrorCategory:
    if isinstance(exc, DuplicateError):
        return ErrorCategory.DUPLICATE_ERROR
    if isinstance(exc, NotFoundError):
        return ErrorCategory.NOT_FOUND_ERROR
    if isinstance(exc, ForeignKeyError):
        return ErrorCategory.FOREIGN_KEY_ERROR
    message = str(exc).lower()
    if isinstance(exc, TimeoutError) or "timeout" in message:
        return ErrorCategory.TIMEOUT_ERROR
    if isinstance(exc, ConnectionError) or "connection" in message:
        return ErrorCategory.CONNECTION_ERROR
    return ErrorCategory.UNKNOWN_ERROR


def _validation_message(verdict: ValidationVerdict) -> str:
    parts = [f"missing {name}" for name in verdict.missing_fields]
    parts += [f"{f.field}: {f.reason}" for f in verdict.invalid_fields]
    return "validation failed: " + "; ".join(parts)


class RowProcessor:
    """Turns one ImportRow into a RowOutcome for a single run."""

    def __init__(
        self,
        store: Store,
        resolver: EntityResolver,
        writer: PersistenceWriter,
        context: ResolutionContext,
        *,
        incremental: bool = False,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._writer = writer
        self._ctx = context
        self._incremental = incremental

    def process(self, row: ImportRow) -> RowOutcome:
        verdict = validate_row(row)
        if not verdict.valid:
            return RowOutcome.failed(
                row.row_number,
                ErrorCategory.VALIDATION_ERROR,
                _validation_message(verdict),
                verdict.as_details(),
            )

        warnings: list[str] = []
        try:
            existing = None
            external_id = parse_external_id(row.get("external_id"))
            if external_id is not None:
                existing = self._store.find_project_by_external_id(external_id)
            if existing is not None:
                if self._incremental:
                    return RowOutcome.skipped(
                        row.row_number,
                        f"project with external id {external_id} already exists, skipped (incremental)",
                    )
                warnings.append(f"project with external id {external_id} will be updated")

            prepared = self.prepare(row)
            warnings.extend(prepared.warnings)
            saved, save_warnings = self._writer.save(prepared, self._ctx.actor_id, existing)
            warnings.extend(save_warnings)
        except (StoreError, TimeoutError, ConnectionError) as e:
            category = categorize_error(e)
            logger.debug("row %d failed (%s): %s", row.row_number, category.value, e)
            details: dict[str, Any] = {"exception": type(e).__name__}
            if isinstance(e, StoreError) and e.target:
                details["target"] = e.target
            return RowOutcome.failed(row.row_number, category, str(e), details, warnings)

        kind = OutcomeKind.UPDATED if existing is not None else OutcomeKind.CREATED
        return RowOutcome(row_number=row.row_number, kind=kind, record=saved, warnings=warnings)

    def prepare(self, row: ImportRow) -> PreparedRow:
        """Build the typed records and resolve every reference of a valid row."""
        project = ProjectRecord(
            name=parse_string(row.get("title")) or "",
            description=parse_string(row.get("service_description")),
            status=map_status(row.get("project_stage")),
            start_date=parse_date(row.get("assignment_date")),
            end_date=parse_date(row.get("estimated_end_date")),
            area_id=self._ctx.area_id,
        )

        detail = ExternalDetailRecord(area_id=self._ctx.area_id)
        for spec in DETAIL_FIELDS:
            setattr(detail, spec.target, spec.parse(row.get(spec.source)))

        warnings: list[str] = []
        for key, role in USER_REFERENCE_FIELDS.items():
            reference = parse_string(row.get(key))
            user_id = self._resolver.resolve_user(self._ctx, reference, role)
            setattr(detail, REFERENCE_TARGETS[key], user_id)
            if reference and user_id is None:
                warnings.append(f"{key} could not be resolved: {reference}")
        if detail.mentor_id is None and parse_string(row.get("mentor")) is None:
            warnings.append("no mentor assigned")

        for key, catalog_type in CATALOG_REFERENCE_FIELDS.items():
            setattr(
                detail,
                REFERENCE_TARGETS[key],
                self._resolver.resolve_catalog(self._ctx, catalog_type, parse_string(row.get(key))),
            )

        supplier_ids = self._resolver.resolve_suppliers(self._ctx, parse_string(row.get("suppliers")))
        return PreparedRow(
            row_number=row.row_number,
            project=project,
            detail=detail,
            supplier_ids=supplier_ids,
            warnings=warnings,
        )
