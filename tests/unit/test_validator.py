from __future__ import annotations

from datetime import datetime

from project_import.models.records import ImportRow
from project_import.services.validator import validate_row


def test_valid_row():
    verdict = validate_row(
        ImportRow(2, {"external_id": 10, "title": "Proyecto", "assignment_date": datetime(2025, 1, 1)})
    )
    assert verdict.valid
    assert verdict.missing_fields == ()
    assert verdict.invalid_fields == ()


def test_missing_title():
    verdict = validate_row({"title": "   ", "external_id": 3})
    assert not verdict.valid
    assert verdict.missing_fields == ("title",)


def test_external_id_must_be_positive_integer():
    for raw in ("ABC", 0, -4, 2.5):
        verdict = validate_row({"title": "P", "external_id": raw})
        assert not verdict.valid
        assert [f.field for f in verdict.invalid_fields] == ["external_id"]
        assert verdict.invalid_fields[0].reason == "must be a positive integer"


def test_absent_external_id_is_fine():
    assert validate_row({"title": "P", "external_id": None}).valid


def test_unparseable_dates_are_invalid():
    verdict = validate_row({"title": "P", "assignment_date": "fecha-invalida", "estimated_end_date": "nope"})
    assert [f.field for f in verdict.invalid_fields] == ["assignment_date", "estimated_end_date"]
    assert all(f.reason == "invalid date format" for f in verdict.invalid_fields)


def test_other_date_fields_are_not_checked():
    assert validate_row({"title": "P", "actual_end_date": "fecha-invalida"}).valid


def test_missing_and_invalid_reported_together():
    verdict = validate_row({"title": None, "external_id": "ABC"})
    details = verdict.as_details()
    assert details["missing_fields"] == ["title"]
    assert details["invalid_fields"] == [{"field": "external_id", "reason": "must be a positive integer"}]
