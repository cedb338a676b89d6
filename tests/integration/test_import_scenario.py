from __future__ import annotations

import json
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from unittest.mock import patch

import pytest

from project_import.db.memory import InMemoryStore
from project_import.models.entities import UserRole
from project_import.models.outcome import ErrorCategory, ErrorReport
from project_import.services.orchestrator import (
    ActorRef,
    ImportSetupError,
    ImportState,
    ProjectImporter,
    import_projects,
)
from project_import.services.resolver import EntityResolver

"""End-to-end runs against the in-memory store."""

AREA_ID = "area-1"
ADMIN = ActorRef(user_id="admin-1")


def _scenario_rows() -> list[dict]:
    return [
        {"ID": 1, "Title": "Proyecto Uno", "Mentor": "Juan Pérez;#123", "Fecha Asignacion": datetime(2025, 7, 30)},
        {"ID": 2, "Title": None, "Descripcion Servicio": "sin titulo"},
        {"ID": "ABC", "Title": "Proyecto Tres"},
        {"ID": 4, "Title": "Proyecto Cuatro", "Fecha Asignacion": "fecha-invalida"},
        {"ID": 5, "Title": "Proyecto Cinco", "Mentor": "Juan Pérez", "Segmento": "Federal"},
        {"ID": 6, "Title": "Proyecto Seis", "Mentor": None},
    ]


def test_mixed_workbook(store, config, excel_factory):
    path = excel_factory(_scenario_rows())

    result = import_projects(path, ADMIN, AREA_ID, store=store, config=config)

    assert result.total_rows == 6
    assert result.success == 3
    assert len(result.created) == 3
    assert result.updated == []
    assert [e.row for e in result.errors] == [3, 4, 5]
    assert {e.category for e in result.errors} == {ErrorCategory.VALIDATION_ERROR}
    assert result.errors[0].message == "validation failed: missing title"
    assert result.errors[1].message == "validation failed: external_id: must be a positive integer"
    assert [(w.row, w.message) for w in result.warnings] == [(7, "no mentor assigned")]
    assert result.error_report is not None and result.error_report.available

    mentors = [u for u in store.users.values() if u.last_name == "Pérez"]
    assert len(mentors) == 1
    assert mentors[0].email == "juan.perez@teamtime.com"
    assert mentors[0].area_id == AREA_ID
    assert len(store.projects) == 3
    assert len(store.tasks) == 3
    assert len([a for a in store.assignments.values() if a.user_id == mentors[0].id]) == 2


def test_failure_is_isolated_to_its_row(store, config, excel_factory):
    rows = [{"ID": i, "Title": f"P{i}", "Proveedores Involucrados": "BOOM" if i == 2 else "Proveedor A"} for i in range(1, 5)]
    path = excel_factory(rows)
    original = EntityResolver.resolve_suppliers

    def flaky(self, ctx, raw):
        if raw == "BOOM":
            raise RuntimeError("resolver exploded")
        return original(self, ctx, raw)

    with patch.object(EntityResolver, "resolve_suppliers", autospec=True, side_effect=flaky):
        result = import_projects(path, ADMIN, AREA_ID, store=store, config=config)

    assert result.success == 3
    assert len(result.errors) == 1
    failure = result.errors[0]
    assert failure.row == 3
    assert failure.category is ErrorCategory.UNEXPECTED_ERROR
    assert failure.message == "resolver exploded"
    assert failure.data["external_id"] == 2


def test_reference_created_once_across_windows(store, config, excel_factory):
    refs = ["Ana Ruiz;#5", "ana ruiz", "Ana Ruiz", "ANA RUIZ;#5", "Ana  Ruiz", "Ana Ruiz;#5", "ana ruiz"]
    path = excel_factory([{"ID": i, "Title": f"P{i}", "Mentor": ref, "Riesgo": "Alto"} for i, ref in enumerate(refs, 1)])

    result = import_projects(path, ADMIN, AREA_ID, store=store, config=config)

    assert result.success == 7
    assert result.warnings == []
    assert len(store.users) == 2
    assert len(store.catalogs) == 1


def test_incremental_rerun_skips_everything(store, config, excel_factory):
    path = excel_factory([{"ID": i, "Title": f"P{i}", "Mentor": "Eva Luna"} for i in (1, 2)])
    import_projects(path, ADMIN, AREA_ID, store=store, config=config)
    projects = dict(store.projects)
    assignments = dict(store.assignments)

    result = import_projects(path, ADMIN, AREA_ID, True, store=store, config=config)

    assert result.skipped == 2
    assert result.success == 0
    assert result.created == [] and result.updated == []
    assert all("skipped (incremental)" in w.message for w in result.warnings)
    assert store.projects == projects
    assert store.assignments == assignments


def test_full_rerun_updates_in_place(store, config, excel_factory):
    first = excel_factory([{"ID": 1, "Title": "Original", "Mentor": "Eva Luna"}], name="first.xlsx")
    second = excel_factory([{"ID": 1, "Title": "Renombrado", "Mentor": "Leo Sol"}], name="second.xlsx")
    import_projects(first, ADMIN, AREA_ID, store=store, config=config)

    result = import_projects(second, ADMIN, AREA_ID, store=store, config=config)

    assert len(result.updated) == 1
    assert [w.message for w in result.warnings] == ["project with external id 1 will be updated"]
    (project,) = store.projects.values()
    assert project.name == "Renombrado"
    assert len(store.tasks) == 1
    active = store.active_assignments(project.id)
    assert [store.users[a.user_id].first_name for a in active] == ["Leo"]


def test_actor_found_by_email_fallback(store, config, excel_factory):
    path = excel_factory([{"ID": 1, "Title": "P1"}])
    result = import_projects(path, ActorRef(user_id="missing", email="ADMIN@teamtime.com"), AREA_ID, store=store, config=config)
    assert result.success == 1


@pytest.mark.parametrize("case", ["non_admin", "unknown_actor", "inactive_area", "unreadable"])
def test_setup_failures(case, store, config, excel_factory, tmp_path):
    path = excel_factory([{"ID": 1, "Title": "P1"}])
    actor, area = ADMIN, AREA_ID
    if case == "non_admin":
        store.add_user("colab@teamtime.com", "Co", "Lab", UserRole.COLABORADOR, user_id="colab-1")
        actor = ActorRef(user_id="colab-1")
    elif case == "unknown_actor":
        actor = ActorRef(email="nobody@teamtime.com")
    elif case == "inactive_area":
        store.areas[AREA_ID] = replace(store.areas[AREA_ID], is_active=False)
    else:
        path = tmp_path / "broken.xlsx"
        path.write_text("not a workbook", encoding="utf-8")

    importer = ProjectImporter(store, config)
    with pytest.raises(ImportSetupError):
        importer.run(path, actor, area)
    assert importer.state is ImportState.FAILED
    assert store.projects == {}


def test_unexpected_phase_error_marks_run_failed(store, config, excel_factory):
    path = excel_factory([{"ID": 1, "Title": "P1"}])
    importer = ProjectImporter(store, config)
    with patch.object(importer.resolver, "precreate", side_effect=RuntimeError("boom")):
        with pytest.raises(RuntimeError):
            importer.run(path, ADMIN, AREA_ID)
    assert importer.state is ImportState.FAILED


def test_finished_run_is_done(store, config, excel_factory):
    importer = ProjectImporter(store, config)
    importer.run(excel_factory([{"ID": 1, "Title": "P1"}]), ADMIN, AREA_ID)
    assert importer.state is ImportState.DONE


def _log_lines(log_dir: Path) -> list[dict]:
    (log_file,) = log_dir.glob("errors-*.log")
    return [json.loads(line) for line in log_file.read_text(encoding="utf-8").splitlines()]


def test_row_failures_go_to_json_lines_log(store, config, excel_factory, tmp_path):
    log_dir = tmp_path / "logs"
    cfg = replace(config, error_log_dir=str(log_dir))

    import_projects(excel_factory(_scenario_rows()), ADMIN, AREA_ID, store=store, config=cfg)

    records = _log_lines(log_dir)
    assert [r["row"] for r in records] == [3, 4, 5]
    assert {r["error_type"] for r in records} == {"VALIDATION_ERROR"}
    assert {(r["file"], r["sheet"]) for r in records} == {("projects.xlsx", "Proyectos")}


def test_unavailable_report_is_logged_as_run_level_error(store, config, excel_factory, tmp_path):
    log_dir = tmp_path / "logs"
    cfg = replace(config, error_log_dir=str(log_dir))
    broken = ErrorReport(filename=None, content=None, total_errors=1, report_error="disk full")

    with patch("project_import.services.orchestrator.render_error_report", return_value=broken):
        result = import_projects(excel_factory([{"ID": 1, "Title": None, "Mentor": "X Y"}]), ADMIN, AREA_ID, store=store, config=cfg)

    assert result.error_report is broken
    records = _log_lines(log_dir)
    assert records[-1]["row"] == -1
    assert records[-1]["error_type"] == "REPORT_ERROR"
    assert records[-1]["message"] == "disk full"


def test_empty_workbook_imports_nothing(config, excel_factory):
    store = InMemoryStore()
    store.add_area("A", area_id=AREA_ID)
    store.add_user("admin@teamtime.com", "Admin", "Root", UserRole.ADMINISTRADOR, user_id="admin-1")

    result = import_projects(excel_factory([]), ADMIN, AREA_ID, store=store, config=config)

    assert result.total_rows == 0
    assert result.error_report is None


def _entity_names(store: InMemoryStore) -> tuple[list[str], list[str], list[str]]:
    return (
        sorted(u.email for u in store.users.values()),
        sorted(c.name for c in store.catalogs.values()),
        sorted(s.name for s in store.suppliers.values()),
    )


def test_invalid_row_creates_no_entities(store, config, excel_factory):
    before = _entity_names(store)
    path = excel_factory(
        [{"ID": 1, "Title": None, "Mentor": "Nadia Nueva", "Riesgo": "Altisimo", "Proveedores Involucrados": "Prov X"}]
    )

    result = import_projects(path, ADMIN, AREA_ID, store=store, config=config)

    assert [(e.row, e.category) for e in result.errors] == [(2, ErrorCategory.VALIDATION_ERROR)]
    assert _entity_names(store) == before
    assert store.projects == {}


def test_incremental_skip_creates_no_entities(store, config, excel_factory):
    import_projects(excel_factory([{"ID": 1, "Title": "P1"}], name="first.xlsx"), ADMIN, AREA_ID, store=store, config=config)
    before = _entity_names(store)
    again = excel_factory(
        [{"ID": 1, "Title": "P1", "Coordinador": "Otto Nuevo", "Segmento": "Federal", "Proveedores Involucrados": "Prov Y"}],
        name="again.xlsx",
    )

    result = import_projects(again, ADMIN, AREA_ID, True, store=store, config=config)

    assert result.skipped == 1
    assert _entity_names(store) == before


def test_full_mode_update_still_resolves_references(store, config, excel_factory):
    import_projects(excel_factory([{"ID": 1, "Title": "P1"}], name="first.xlsx"), ADMIN, AREA_ID, store=store, config=config)
    again = excel_factory([{"ID": 1, "Title": "P1", "Coordinador": "Otto Nuevo"}], name="again.xlsx")

    result = import_projects(again, ADMIN, AREA_ID, store=store, config=config)

    assert len(result.updated) == 1
    assert "otto.nuevo@teamtime.com" in _entity_names(store)[0]
