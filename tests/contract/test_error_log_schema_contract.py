from __future__ import annotations

import json
import re

from project_import.models.error_record import ErrorRecord
from project_import.models.outcome import ErrorCategory

"""JSON Lines error log contract."""

EXPECTED_KEYS = ["timestamp", "file", "sheet", "row", "error_type", "message"]


def test_record_keys_and_types():
    rec = ErrorRecord.create("projects.xlsx", "Proyectos", 4, ErrorCategory.VALIDATION_ERROR.value, "validation failed")
    data = json.loads(rec.to_json_line())
    assert list(data) == EXPECTED_KEYS
    assert re.fullmatch(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?Z", data["timestamp"])
    assert isinstance(data["row"], int)
    assert data["error_type"] == "VALIDATION_ERROR"


def test_error_categories_are_upper_snake_case():
    for category in ErrorCategory:
        assert re.fullmatch(r"[A-Z]+(_[A-Z]+)*", category.value)
