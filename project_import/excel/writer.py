from __future__ import annotations

import io
import json
import logging
from collections.abc import Sequence
from datetime import date
from pathlib import Path
from typing import Any

import pandas as pd
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from ..models.outcome import ErrorReport, RowFailure
from .columns import COLUMN_MAPPING, TEMPLATE_EXAMPLE_ROW, TEMPLATE_HEADERS

"""Workbook writers: import template and error report.

Both are rendered with pandas.ExcelWriter (openpyxl engine) into memory and
returned as bytes; headers are bolded and filled, columns widened.
"""

__all__ = [
    "TEMPLATE_SHEET",
    "ERRORS_SHEET",
    "CORRECTION_SHEET",
    "ERROR_TABLE_HEADERS",
    "write_template",
    "render_error_report",
]

logger = logging.getLogger(__name__)

TEMPLATE_SHEET = "Proyectos"
ERRORS_SHEET = "Import Errors"
CORRECTION_SHEET = "Data for Correction"

ERROR_TABLE_HEADERS: list[str] = [
    "Row",
    "Error Type",
    "Error Description",
    "Missing Fields",
    "Invalid Fields",
    "External ID",
    "Title",
    "Mentor",
    "Coordinator",
    "Assignment Date",
    "General Status",
    "Technical Details",
]

_TEMPLATE_FILL = PatternFill(fill_type="solid", fgColor="FFD9E1F2")
_ERRORS_FILL = PatternFill(fill_type="solid", fgColor="FFE6E6FA")
_CORRECTION_FILL = PatternFill(fill_type="solid", fgColor="FFFFEFD5")


def _style_header(ws: Worksheet, fill: PatternFill, widths: Sequence[int]) -> None:
    for cell in ws[1]:
        cell.font = Font(bold=True)
        cell.fill = fill
    for idx, width in enumerate(widths, start=1):
        ws.column_dimensions[get_column_letter(idx)].width = width


def write_template(dest: Path | str | None = None) -> bytes:
    """Render the import template (header row + one example row).

    When ``dest`` is given the workbook is also written there.
    """
    frame = pd.DataFrame([TEMPLATE_EXAMPLE_ROW], columns=TEMPLATE_HEADERS)
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        frame.to_excel(writer, sheet_name=TEMPLATE_SHEET, index=False)
        _style_header(writer.sheets[TEMPLATE_SHEET], _TEMPLATE_FILL, [20] * len(TEMPLATE_HEADERS))
    content = buffer.getvalue()
    if dest is not None:
        Path(dest).write_bytes(content)
    return content


def _cell(value: Any) -> Any:
    return "" if value is None else value


def _error_table_row(failure: RowFailure) -> list[Any]:
    data = failure.data
    invalid = "; ".join(f"{f['field']}: {f['reason']}" for f in failure.invalid_fields)
    return [
        failure.row,
        failure.category.value,
        failure.message,
        ", ".join(failure.missing_fields),
        invalid,
        _cell(data.get("external_id")),
        _cell(data.get("title")),
        _cell(data.get("mentor")),
        _cell(data.get("coordinator")),
        _cell(data.get("assignment_date")),
        _cell(data.get("general_status")),
        json.dumps(failure.details, ensure_ascii=False, default=str),
    ]


def _report_filename(today: date | None = None) -> str:
    return f"import_errors_{(today or date.today()).isoformat()}.xlsx"


def render_error_report(failures: Sequence[RowFailure]) -> ErrorReport:
    """Render the two-sheet correction workbook for the failed rows.

    Sheet 1 lists one failure per line; sheet 2 repeats the failed rows'
    original cells in template column order so they can be fixed and
    re-imported as is. Rendering problems are reported on the returned
    ErrorReport (report_error) instead of being raised.
    """
    total = len(failures)
    try:
        errors = pd.DataFrame([_error_table_row(f) for f in failures], columns=ERROR_TABLE_HEADERS)
        correction = pd.DataFrame(
            [[f.data.get(key) for key in COLUMN_MAPPING.values()] for f in failures],
            columns=TEMPLATE_HEADERS,
        )
        buffer = io.BytesIO()
        with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
            errors.to_excel(writer, sheet_name=ERRORS_SHEET, index=False)
            correction.to_excel(writer, sheet_name=CORRECTION_SHEET, index=False)
            widths = [15] * len(ERROR_TABLE_HEADERS)
            widths[2] = 40
            widths[-1] = 30
            _style_header(writer.sheets[ERRORS_SHEET], _ERRORS_FILL, widths)
            _style_header(writer.sheets[CORRECTION_SHEET], _CORRECTION_FILL, [20] * len(TEMPLATE_HEADERS))
    except Exception as e:  # report is best effort; the import result stands
        logger.error("error report could not be generated: %s", e)
        return ErrorReport(filename=None, content=None, total_errors=total, report_error=str(e))

    return ErrorReport(filename=_report_filename(), content=buffer.getvalue(), total_errors=total)
