from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import IO, Any

import pandas as pd

from ..models.records import ImportRow
from .columns import map_headers

"""Workbook reader.

Row 1 of the worksheet is the header row, rows 2+ are data. Header cells are
mapped to canonical keys (columns.py); unmapped columns are dropped. Cells are
handed over raw apart from NaN -> None and pandas/numpy scalars -> plain
Python values. Field coercion happens later in services.parsers.
"""

__all__ = [
    "SpreadsheetError",
    "SheetHeaderError",
    "SheetData",
    "read_workbook",
]


class SpreadsheetError(Exception):
    """Raised when the workbook cannot be opened or has no usable sheet."""


class SheetHeaderError(SpreadsheetError):
    """Raised when the header row (1st line) is missing."""


@dataclass
class SheetData:
    sheet_name: str
    headers: list[str]
    field_keys: list[str | None]
    rows: list[ImportRow]


def _plain_value(val: Any) -> Any:
    if val is None:
        return None
    if isinstance(val, pd.Timestamp):
        return val.to_pydatetime()
    if isinstance(val, datetime):
        return val
    try:
        if pd.isna(val):
            return None
    except (TypeError, ValueError):  # list-like cells
        return val
    if hasattr(val, "item"):  # numpy scalar
        return val.item()
    return val


def read_workbook(source: Path | str | IO[bytes], sheet_name: str | None = None) -> SheetData:
    """Read one worksheet (the first one unless ``sheet_name`` is given).

    Raises:
        SpreadsheetError: workbook unreadable, no sheets, or named sheet absent
        SheetHeaderError: worksheet has no header row
    """
    try:
        xls = pd.ExcelFile(source)
    except Exception as e:
        raise SpreadsheetError(f"cannot open workbook: {e}") from e

    with xls:
        if not xls.sheet_names:
            raise SpreadsheetError("workbook contains no worksheets")
        if sheet_name is None:
            sheet_name = str(xls.sheet_names[0])
        elif sheet_name not in xls.sheet_names:
            raise SpreadsheetError(f"worksheet not found: {sheet_name}")

        try:
            df = xls.parse(sheet_name, header=None)
        except Exception as e:
            raise SpreadsheetError(f"cannot read worksheet '{sheet_name}': {e}") from e

    if df.shape[0] < 1:
        raise SheetHeaderError(f"sheet '{sheet_name}' has no header row")

    headers = ["" if pd.isna(c) else str(c).strip() for c in df.iloc[0].tolist()]
    field_keys = map_headers(headers)

    rows: list[ImportRow] = []
    # df index 0 is worksheet row 1 (header)
    for idx, raw in df.iloc[1:].iterrows():
        values: dict[str, Any] = {}
        for key, val in zip(field_keys, raw.tolist(), strict=False):
            if key is None:
                continue
            values[key] = _plain_value(val)
        if all(v is None for v in values.values()):
            continue
        rows.append(ImportRow(row_number=int(idx) + 1, values=values))

    return SheetData(sheet_name=sheet_name, headers=headers, field_keys=field_keys, rows=rows)
