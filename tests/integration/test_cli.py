from __future__ import annotations

import re
from datetime import datetime
from pathlib import Path

import pytest
from openpyxl import load_workbook

from project_import.cli.__main__ import EXIT_FATAL, EXIT_PARTIAL_FAILURE, EXIT_SUCCESS_ALL, main, resolve_dsn
from project_import.config.loader import DatabaseConfig, ImportConfig
from project_import.excel.writer import CORRECTION_SHEET, ERRORS_SHEET, TEMPLATE_SHEET

SUMMARY_RE = re.compile(
    r"^SUMMARY rows=(\d+) success=(\d+) created=(\d+) updated=(\d+) skipped=(\d+) failed=(\d+) warnings=(\d+) elapsed_sec=[0-9.]+$",
    re.M,
)


def _args(path: Path, *extra: str) -> list[str]:
    return [str(path), "--area", "area-x", "--actor-email", "boss@teamtime.com", "--dry-run", *extra]


def test_write_template(temp_workdir: Path):
    dest = temp_workdir / "template.xlsx"
    assert main(["--write-template", str(dest)]) == EXIT_SUCCESS_ALL
    assert load_workbook(dest).sheetnames == [TEMPLATE_SHEET]


def test_dry_run_all_rows_ok(temp_workdir: Path, excel_factory, capsys):
    path = excel_factory([{"ID": 1, "Title": "P1", "Mentor": "Juan Pérez"}, {"ID": 2, "Title": "P2", "Mentor": "Juan Pérez"}])

    code = main(_args(path))

    out = capsys.readouterr().out
    assert code == EXIT_SUCCESS_ALL
    match = SUMMARY_RE.search(out)
    assert match is not None
    assert match.groups() == ("2", "2", "2", "0", "0", "0", "0")
    assert "INFO mode=dry-run rows=2" in out


def test_dry_run_partial_failure_writes_report(temp_workdir: Path, excel_factory, capsys):
    path = excel_factory(
        [
            {"ID": 1, "Title": "P1", "Fecha Asignacion": datetime(2025, 7, 30)},
            {"ID": 2, "Title": None, "Mentor": "Ana Ruiz"},
        ]
    )
    report = temp_workdir / "errors.xlsx"

    code = main(_args(path, "--error-report", str(report)))

    out = capsys.readouterr().out
    assert code == EXIT_PARTIAL_FAILURE
    assert SUMMARY_RE.search(out).groups()[:6] == ("2", "1", "1", "0", "0", "1")
    assert "ERROR row 3: VALIDATION_ERROR validation failed: missing title" in out
    assert "WARN row 2: no mentor assigned" in out
    assert load_workbook(report).sheetnames == [ERRORS_SHEET, CORRECTION_SHEET]
    assert list((temp_workdir / "logs").glob("errors-*.log"))


def test_report_path_hint_without_flag(temp_workdir: Path, excel_factory, capsys):
    path = excel_factory([{"ID": 1, "Title": None, "Segmento": "Federal"}])
    assert main(_args(path)) == EXIT_PARTIAL_FAILURE
    assert "pass --error-report PATH" in capsys.readouterr().out


def test_unreadable_workbook_is_fatal(temp_workdir: Path, capsys):
    path = temp_workdir / "broken.xlsx"
    path.write_text("nope", encoding="utf-8")
    assert main(_args(path)) == EXIT_FATAL
    assert "ERROR setup: spreadsheet unreadable" in capsys.readouterr().out


@pytest.mark.parametrize(
    "argv",
    [
        [],
        ["file.xlsx"],
        ["file.xlsx", "--area", "a"],
        ["file.xlsx", "--area", "a", "--actor-id", "x", "--actor-email", "y@z.com"],
    ],
)
def test_missing_or_conflicting_arguments(argv):
    with pytest.raises(SystemExit) as exc:
        main(argv)
    assert exc.value.code == 2


def test_explicit_config_must_exist(temp_workdir: Path, capsys):
    code = main(_args(temp_workdir / "x.xlsx", "--config", "missing.yml"))
    assert code == EXIT_FATAL
    assert "ERROR config: config file not found" in capsys.readouterr().out


def test_invalid_config_is_fatal(temp_workdir: Path, capsys):
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text("batch_size: zero\n", encoding="utf-8")
    assert main(_args(temp_workdir / "x.xlsx")) == EXIT_FATAL
    assert "ERROR config:" in capsys.readouterr().out


def test_database_settings_build_dsn(monkeypatch):
    for var in ("DATABASE_URL", "PGDSN", "PGHOST", "PGPORT", "PGUSER", "PGPASSWORD", "PGDATABASE"):
        monkeypatch.delenv(var, raising=False)
    cfg = ImportConfig(database=DatabaseConfig(host="db", port=6543, user="app", password="s3cret", database="projects"))
    assert resolve_dsn(cfg) == "host=db port=6543 user=app dbname=projects password=s3cret"

    monkeypatch.setenv("DATABASE_URL", "postgresql://u@h/d")
    assert resolve_dsn(cfg) == "postgresql://u@h/d"
