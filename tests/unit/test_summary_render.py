from __future__ import annotations

import re

import pytest

from project_import.models.outcome import ErrorCategory, ImportResult, OutcomeKind, RowOutcome
from project_import.services.summary import format_seconds, render_summary_line

SUMMARY_RE = re.compile(
    r"^SUMMARY rows=\d+ success=\d+ created=\d+ updated=\d+ skipped=\d+ failed=\d+ warnings=\d+ elapsed_sec=\d+(\.\d+)?$"
)


@pytest.mark.parametrize(
    "seconds,expected",
    [(0, "0"), (2.0, "2"), (1.23456, "1.235"), (0.0012, "0.0012"), (12.5, "12.5")],
)
def test_format_seconds(seconds, expected):
    assert format_seconds(seconds) == expected


def test_summary_counts_each_outcome_kind():
    result = ImportResult()
    result.add(RowOutcome(row_number=2, kind=OutcomeKind.SKIPPED, warnings=["skipped"]), {})
    result.add(RowOutcome.failed(3, ErrorCategory.VALIDATION_ERROR, "validation failed: missing title"), {})
    result.elapsed_seconds = 0.5

    line = render_summary_line(result)

    assert SUMMARY_RE.match(line)
    assert line == "SUMMARY rows=2 success=0 created=0 updated=0 skipped=1 failed=1 warnings=1 elapsed_sec=0.5"
