from __future__ import annotations

import math
from collections.abc import Mapping
from typing import Any

from ..models.records import ImportRow, InvalidField, ValidationVerdict
from .parsers import parse_date, parse_integer, parse_string

"""Row validation: required fields plus per-field format checks.

A row failing here is rejected before any entity resolution or store call.
"""

__all__ = [
    "REQUIRED_FIELDS",
    "DATE_FIELDS_CHECKED",
    "validate_row",
]

REQUIRED_FIELDS: tuple[str, ...] = ("title",)
DATE_FIELDS_CHECKED: tuple[str, ...] = ("assignment_date", "estimated_end_date")


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, float) and math.isnan(value):
        return False
    if isinstance(value, str):
        return value.strip() != ""
    return True


def validate_row(row: ImportRow | Mapping[str, Any]) -> ValidationVerdict:
    values = row.values if isinstance(row, ImportRow) else row

    missing = [f for f in REQUIRED_FIELDS if parse_string(values.get(f)) is None]

    invalid: list[InvalidField] = []
    external_id = values.get("external_id")
    if _present(external_id):
        number = parse_integer(external_id)
        if number is None or number <= 0:
            invalid.append(InvalidField("external_id", "must be a positive integer"))

    for field in DATE_FIELDS_CHECKED:
        raw = values.get(field)
        if _present(raw) and parse_date(raw) is None:
            invalid.append(InvalidField(field, "invalid date format"))

    return ValidationVerdict(
        valid=not missing and not invalid,
        missing_fields=tuple(missing),
        invalid_fields=tuple(invalid),
    )
