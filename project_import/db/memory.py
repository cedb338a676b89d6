from __future__ import annotations

import threading
import uuid
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from typing import Any

from ..models.entities import (
    Area,
    Assignment,
    Catalog,
    CatalogType,
    ExternalProject,
    Project,
    Supplier,
    Task,
    User,
    UserRole,
)
from ..models.records import (
    ExistingProject,
    ExternalDetailRecord,
    NewTask,
    NewUser,
    ProjectRecord,
)
from .store import DuplicateError, ForeignKeyError, NotFoundError

"""In-process store used for --dry-run and tests.

Thread-safe (one re-entrant lock around every operation) and enforces the
same natural keys as the PostgreSQL schema so uniqueness races surface as
DuplicateError exactly like the live store. A failing transaction() block
leaves the tables as they were when the outermost block was entered.
"""

__all__ = [
    "InMemoryStore",
]


_TABLES = (
    "users",
    "password_hashes",
    "areas",
    "catalogs",
    "suppliers",
    "projects",
    "external_projects",
    "external_details",
    "supplier_links",
    "tasks",
    "assignments",
)


def _new_id() -> str:
    return str(uuid.uuid4())


def _fold(value: str) -> str:
    return value.strip().casefold()


class InMemoryStore:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self.users: dict[str, User] = {}
        self.password_hashes: dict[str, str] = {}
        self.areas: dict[str, Area] = {}
        self.catalogs: dict[str, Catalog] = {}
        self.suppliers: dict[str, Supplier] = {}
        self.projects: dict[str, Project] = {}
        self.external_projects: dict[str, ExternalProject] = {}  # by project_id
        self.external_details: dict[str, ExternalDetailRecord] = {}  # by project_id
        self.supplier_links: dict[str, list[str]] = {}  # external_project_id -> supplier ids
        self.tasks: dict[str, Task] = {}
        self.assignments: dict[str, Assignment] = {}
        self._tx_depth = 0

    # -- seeding helpers -------------------------------------------------
    def add_area(self, name: str, *, area_id: str | None = None, is_active: bool = True) -> Area:
        area = Area(id=area_id or _new_id(), name=name, is_active=is_active)
        with self._lock:
            self.areas[area.id] = area
        return area

    def add_user(
        self,
        email: str,
        first_name: str,
        last_name: str,
        role: UserRole = UserRole.COLABORADOR,
        *,
        user_id: str | None = None,
        area_id: str | None = None,
    ) -> User:
        return self.create_user(
            NewUser(
                email=email,
                password_hash="",
                first_name=first_name,
                last_name=last_name,
                role=role,
                area_id=area_id,
            ),
            user_id=user_id,
        )

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Hold the lock; the outermost block restores every table on error."""
        with self._lock:
            if self._tx_depth:
                self._tx_depth += 1
                try:
                    yield
                finally:
                    self._tx_depth -= 1
                return
            snapshot = self._snapshot()
            self._tx_depth = 1
            try:
                yield
            except BaseException:
                self._restore(snapshot)
                raise
            finally:
                self._tx_depth = 0

    def _snapshot(self) -> dict[str, dict[str, Any]]:
        tables = {name: dict(getattr(self, name)) for name in _TABLES}
        tables["supplier_links"] = {k: list(v) for k, v in self.supplier_links.items()}
        return tables

    def _restore(self, snapshot: dict[str, dict[str, Any]]) -> None:
        for name, table in snapshot.items():
            setattr(self, name, table)

    # -- users -----------------------------------------------------------
    def get_user(self, user_id: str) -> User | None:
        with self._lock:
            return self.users.get(user_id)

    def find_user_by_email(self, email: str) -> User | None:
        wanted = _fold(email)
        with self._lock:
            return next((u for u in self.users.values() if _fold(u.email) == wanted), None)

    def find_user_by_emails(self, emails: Iterable[str]) -> User | None:
        wanted = {_fold(e) for e in emails}
        with self._lock:
            return next((u for u in self.users.values() if _fold(u.email) in wanted), None)

    def find_user_by_name(self, first_name: str, last_name: str, *, partial: bool = False) -> User | None:
        first, last = _fold(first_name), _fold(last_name)
        with self._lock:
            for user in self.users.values():
                uf, ul = _fold(user.first_name), _fold(user.last_name)
                if partial and first in uf and last in ul:
                    return user
                if not partial and uf == first and ul == last:
                    return user
        return None

    def list_users(self) -> list[User]:
        with self._lock:
            return list(self.users.values())

    def create_user(self, new_user: NewUser, *, user_id: str | None = None) -> User:
        with self._lock:
            if self.find_user_by_email(new_user.email) is not None:
                raise DuplicateError(
                    f"Unique constraint failed on the fields: (email) value={new_user.email}",
                    target="email",
                )
            user = User(
                id=user_id or _new_id(),
                email=new_user.email,
                first_name=new_user.first_name,
                last_name=new_user.last_name,
                role=new_user.role,
                area_id=new_user.area_id,
            )
            self.users[user.id] = user
            self.password_hashes[user.id] = new_user.password_hash
            return user

    def update_user(self, user_id: str, *, email: str | None = None, area_id: str | None = None) -> User:
        with self._lock:
            user = self.users.get(user_id)
            if user is None:
                raise NotFoundError(f"user not found: {user_id}")
            if email is not None:
                other = self.find_user_by_email(email)
                if other is not None and other.id != user_id:
                    raise DuplicateError(f"Unique constraint failed on the fields: (email) value={email}", target="email")
                user = replace(user, email=email)
            if area_id is not None:
                user = replace(user, area_id=area_id)
            self.users[user_id] = user
            return user

    # -- areas -----------------------------------------------------------
    def get_area(self, area_id: str) -> Area | None:
        with self._lock:
            return self.areas.get(area_id)

    # -- catalogs / suppliers ---------------------------------------------
    def list_catalogs(self) -> list[Catalog]:
        with self._lock:
            return list(self.catalogs.values())

    def find_catalog(self, catalog_type: CatalogType, name: str) -> Catalog | None:
        wanted = _fold(name)
        with self._lock:
            return next(
                (c for c in self.catalogs.values() if c.type == catalog_type and _fold(c.name) == wanted),
                None,
            )

    def create_catalog(self, catalog_type: CatalogType, name: str, external_id: str | None = None) -> Catalog:
        with self._lock:
            if self.find_catalog(catalog_type, name) is not None:
                raise DuplicateError(
                    f"Unique constraint failed on the fields: (type, name) value={catalog_type.value}/{name}",
                    target="type,name",
                )
            catalog = Catalog(id=_new_id(), type=catalog_type, name=name, external_id=external_id)
            self.catalogs[catalog.id] = catalog
            return catalog

    def list_suppliers(self) -> list[Supplier]:
        with self._lock:
            return list(self.suppliers.values())

    def find_supplier(self, name: str) -> Supplier | None:
        wanted = _fold(name)
        with self._lock:
            return next((s for s in self.suppliers.values() if _fold(s.name) == wanted), None)

    def create_supplier(self, name: str) -> Supplier:
        with self._lock:
            if self.find_supplier(name) is not None:
                raise DuplicateError(f"Unique constraint failed on the fields: (name) value={name}", target="name")
            supplier = Supplier(id=_new_id(), name=name)
            self.suppliers[supplier.id] = supplier
            return supplier

    # -- projects --------------------------------------------------------
    def find_project_by_external_id(self, external_id: str) -> ExistingProject | None:
        with self._lock:
            for project_id, detail in self.external_projects.items():
                if detail.external_id == external_id:
                    return ExistingProject(project=self.projects[project_id], detail=detail)
        return None

    def create_project(self, record: ProjectRecord, created_by: str) -> Project:
        with self._lock:
            if record.area_id not in self.areas:
                raise ForeignKeyError(f"Foreign key constraint failed on the field: area_id={record.area_id}")
            if created_by not in self.users:
                raise ForeignKeyError(f"Foreign key constraint failed on the field: created_by={created_by}")
            project = Project(
                id=_new_id(),
                name=record.name,
                status=record.status,
                area_id=record.area_id,
                description=record.description,
                start_date=record.start_date,
                end_date=record.end_date,
                created_by=created_by,
            )
            self.projects[project.id] = project
            return project

    def update_project(self, project_id: str, record: ProjectRecord) -> Project:
        with self._lock:
            current = self.projects.get(project_id)
            if current is None:
                raise NotFoundError(f"Record to update not found: project {project_id}")
            project = replace(
                current,
                name=record.name,
                status=record.status,
                area_id=record.area_id,
                description=record.description,
                start_date=record.start_date,
                end_date=record.end_date,
            )
            self.projects[project_id] = project
            return project

    def _check_external_id(self, project_id: str, external_id: str | None) -> None:
        if external_id is None:
            return
        for other_project_id, other in self.external_projects.items():
            if other.external_id == external_id and other_project_id != project_id:
                raise DuplicateError(
                    f"Unique constraint failed on the fields: (external_id) value={external_id}",
                    target="external_id",
                )

    def _check_references(self, detail: ExternalDetailRecord) -> None:
        for user_field in ("mentor_id", "coordinator_id"):
            user_id = getattr(detail, user_field)
            if user_id is not None and user_id not in self.users:
                raise ForeignKeyError(f"Foreign key constraint failed on the field: {user_field}={user_id}")

    def create_external_project(self, project_id: str, detail: ExternalDetailRecord) -> ExternalProject:
        with self._lock:
            if project_id not in self.projects:
                raise ForeignKeyError(f"Foreign key constraint failed on the field: project_id={project_id}")
            if project_id in self.external_projects:
                raise DuplicateError(f"Unique constraint failed on the fields: (project_id) value={project_id}", target="project_id")
            self._check_external_id(project_id, detail.external_id)
            self._check_references(detail)
            external = ExternalProject(
                id=_new_id(), project_id=project_id, external_id=detail.external_id, title=detail.title
            )
            self.external_projects[project_id] = external
            self.external_details[project_id] = replace(detail)
            return external

    def update_external_project(self, project_id: str, detail: ExternalDetailRecord) -> ExternalProject:
        with self._lock:
            current = self.external_projects.get(project_id)
            if current is None:
                raise NotFoundError(f"Record to update not found: external project for {project_id}")
            self._check_external_id(project_id, detail.external_id)
            self._check_references(detail)
            external = replace(current, external_id=detail.external_id, title=detail.title)
            self.external_projects[project_id] = external
            self.external_details[project_id] = replace(detail)
            return external

    # -- side effects ----------------------------------------------------
    def replace_supplier_links(self, external_project_id: str, supplier_ids: Iterable[str]) -> int:
        ids = list(dict.fromkeys(supplier_ids))
        with self._lock:
            for supplier_id in ids:
                if supplier_id not in self.suppliers:
                    raise ForeignKeyError(f"Foreign key constraint failed on the field: supplier_id={supplier_id}")
            self.supplier_links[external_project_id] = ids
            return len(ids)

    def count_active_tasks(self, project_id: str) -> int:
        with self._lock:
            return sum(1 for t in self.tasks.values() if t.project_id == project_id and t.is_active)

    def create_task(self, task: NewTask) -> Task:
        with self._lock:
            if task.project_id not in self.projects:
                raise ForeignKeyError(f"Foreign key constraint failed on the field: project_id={task.project_id}")
            created = Task(id=_new_id(), project_id=task.project_id, title=task.title, tags=tuple(task.tags))
            self.tasks[created.id] = created
            return created

    def deactivate_assignments(self, project_id: str) -> int:
        with self._lock:
            count = 0
            for assignment_id, assignment in list(self.assignments.items()):
                if assignment.project_id == project_id and assignment.is_active:
                    self.assignments[assignment_id] = replace(assignment, is_active=False)
                    count += 1
            return count

    def create_assignment(self, project_id: str, user_id: str, assigned_by_id: str) -> Assignment:
        with self._lock:
            if user_id not in self.users:
                raise ForeignKeyError(f"Foreign key constraint failed on the field: user_id={user_id}")
            assignment = Assignment(
                id=_new_id(), project_id=project_id, user_id=user_id, assigned_by_id=assigned_by_id
            )
            self.assignments[assignment.id] = assignment
            return assignment

    def active_assignments(self, project_id: str) -> list[Assignment]:
        with self._lock:
            return [a for a in self.assignments.values() if a.project_id == project_id and a.is_active]
