from __future__ import annotations

import pytest

from project_import.db.memory import InMemoryStore
from project_import.db.store import DuplicateError, ForeignKeyError, NotFoundError
from project_import.models.entities import CatalogType, ProjectStatus
from project_import.models.records import ExternalDetailRecord, PreparedRow, ProjectRecord
from project_import.services.persistence import PersistenceWriter

AREA_ID = "area-1"
ADMIN_ID = "admin-1"


def _project(name: str = "P") -> ProjectRecord:
    return ProjectRecord(name=name, description=None, status=ProjectStatus.ACTIVE, start_date=None, end_date=None, area_id=AREA_ID)


def test_email_lookup_is_case_insensitive(store: InMemoryStore):
    assert store.find_user_by_email("ADMIN@TeamTime.com").id == ADMIN_ID
    with pytest.raises(DuplicateError) as exc:
        store.add_user("Admin@teamtime.com", "Other", "Admin")
    assert exc.value.target == "email"


def test_name_lookup_exact_and_partial(store: InMemoryStore):
    store.add_user("maria.garcia@teamtime.com", "María", "García López")
    assert store.find_user_by_name("maría", "garcía lópez") is not None
    assert store.find_user_by_name("María", "García") is None
    assert store.find_user_by_name("Mar", "García", partial=True) is not None


def test_catalog_natural_key(store: InMemoryStore):
    store.create_catalog(CatalogType.SEGMENT, "Federal")
    assert store.find_catalog(CatalogType.SEGMENT, "FEDERAL") is not None
    assert store.find_catalog(CatalogType.RISK_LEVEL, "Federal") is None
    with pytest.raises(DuplicateError):
        store.create_catalog(CatalogType.SEGMENT, "federal")


def test_external_id_unique(store: InMemoryStore):
    first = store.create_project(_project("A"), ADMIN_ID)
    store.create_external_project(first.id, ExternalDetailRecord(area_id=AREA_ID, external_id="7"))
    second = store.create_project(_project("B"), ADMIN_ID)
    with pytest.raises(DuplicateError):
        store.create_external_project(second.id, ExternalDetailRecord(area_id=AREA_ID, external_id="7"))
    assert store.find_project_by_external_id("7").project.id == first.id


def test_foreign_keys_and_missing_rows(store: InMemoryStore):
    with pytest.raises(ForeignKeyError):
        store.create_project(_project(), "ghost")
    with pytest.raises(NotFoundError):
        store.update_project("ghost", _project())
    project = store.create_project(_project(), ADMIN_ID)
    with pytest.raises(ForeignKeyError):
        store.create_external_project(project.id, ExternalDetailRecord(area_id=AREA_ID, mentor_id="ghost"))


def test_assignments_deactivate(store: InMemoryStore):
    project = store.create_project(_project(), ADMIN_ID)
    store.create_assignment(project.id, ADMIN_ID, ADMIN_ID)
    assert store.deactivate_assignments(project.id) == 1
    assert store.active_assignments(project.id) == []


def test_failed_transaction_rolls_back(store: InMemoryStore):
    supplier = store.create_supplier("Proveedor A")
    with pytest.raises(DuplicateError):
        with store.transaction():
            project = store.create_project(_project("kept?"), created_by=ADMIN_ID)
            with store.transaction():
                store.replace_supplier_links("ext-1", [supplier.id])
            store.create_supplier("proveedor a")
    assert project.id not in store.projects
    assert store.supplier_links == {}
    assert list(store.suppliers) == [supplier.id]


def test_duplicate_external_id_leaves_no_orphan_project(store: InMemoryStore):
    writer = PersistenceWriter(store)

    def prepared(name: str) -> PreparedRow:
        return PreparedRow(row_number=2, project=_project(name), detail=ExternalDetailRecord(area_id=AREA_ID, external_id="7", title=name))

    writer.save(prepared("A"), ADMIN_ID)
    with pytest.raises(DuplicateError):
        writer.save(prepared("B"), ADMIN_ID)

    assert len(store.projects) == 1
    assert len(store.external_projects) == 1
    assert [p.name for p in store.projects.values()] == ["A"]
