from __future__ import annotations

import math
import re
import warnings
from datetime import date, datetime
from typing import Any

import pandas as pd

from ..models.entities import ProjectStatus

"""Cell value parsers.

Every parser is total: malformed input degrades to None / False / a clamped
value and never raises, so one bad cell cannot abort a row. Whether a None is
fatal is decided by services.validator.
"""

__all__ = [
    "AFFIRMATIVE_TOKENS",
    "STATUS_MAPPING",
    "parse_string",
    "parse_integer",
    "parse_external_id",
    "parse_date",
    "parse_decimal",
    "parse_boolean",
    "parse_list",
    "map_status",
]

AFFIRMATIVE_TOKENS = frozenset({"si", "sí", "yes", "true", "1"})

STATUS_MAPPING: dict[str, ProjectStatus] = {
    "Ejecución": ProjectStatus.ACTIVE,
    "Completado": ProjectStatus.COMPLETED,
    "Cancelada": ProjectStatus.CANCELLED,
    "Detenido": ProjectStatus.ON_HOLD,
    "Ganada": ProjectStatus.AWARDED,
}

_LIST_SPLIT = re.compile(r"[;,]")
_INTEGER_TEXT = re.compile(r"^[+-]?\d+$")


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return False


def parse_string(value: Any) -> str | None:
    if _is_blank(value):
        return None
    if isinstance(value, float) and value.is_integer():
        # 12.0 read from a numeric column is the text "12"
        value = int(value)
    return str(value).strip() or None


def parse_integer(value: Any) -> int | None:
    """Integer value of a cell; floats must be integral, text must be all digits."""
    if _is_blank(value) or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    text = str(value).strip()
    if _INTEGER_TEXT.match(text):
        return int(text)
    try:
        number = float(text)
    except ValueError:
        return None
    return int(number) if number.is_integer() else None


def parse_external_id(value: Any) -> str | None:
    """Canonical text form of an external identifier (``"5"`` for 5, 5.0 or " 5 ")."""
    number = parse_integer(value)
    if number is not None:
        return str(number)
    return parse_string(value)


def parse_date(value: Any) -> datetime | None:
    if _is_blank(value):
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float)):
            parsed = pd.to_datetime(value, unit="ms", errors="coerce")
        else:
            text = str(value).strip()
            if not text:
                return None
            with warnings.catch_warnings():
                # format inference chatter for one-off strings
                warnings.simplefilter("ignore", UserWarning)
                parsed = pd.to_datetime(text, errors="coerce")
    except (ValueError, TypeError, OverflowError):
        return None
    if parsed is None or pd.isna(parsed):
        return None
    return parsed.to_pydatetime()


def parse_decimal(value: Any, max_value: float | None = None) -> float | None:
    """Parse a numeric cell; magnitudes above ``max_value`` are clamped, not rejected."""
    if _is_blank(value) or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip().replace("$", "").replace(",", "").replace(" ", "")
        try:
            number = float(text)
        except ValueError:
            return None
    if math.isnan(number) or math.isinf(number):
        return None
    if max_value is not None and abs(number) > max_value:
        return max_value if number > 0 else -max_value
    return number


def parse_boolean(value: Any) -> bool:
    if _is_blank(value):
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip().lower() in AFFIRMATIVE_TOKENS


def parse_list(value: Any, separators: re.Pattern[str] = _LIST_SPLIT) -> list[str]:
    if _is_blank(value):
        return []
    if isinstance(value, (list, tuple)):
        items = [str(v).strip() for v in value]
    else:
        items = [part.strip() for part in separators.split(str(value))]
    return [item for item in items if item]


def map_status(value: Any) -> ProjectStatus:
    text = parse_string(value)
    if text is None:
        return ProjectStatus.ACTIVE
    return STATUS_MAPPING.get(text, ProjectStatus.ACTIVE)
