from __future__ import annotations

from collections.abc import Iterable
from contextlib import AbstractContextManager
from typing import Protocol

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
)
from ..models.records import (
    ExistingProject,
    ExternalDetailRecord,
    NewTask,
    NewUser,
    ProjectRecord,
)

"""Relational store contract consumed by the import engine.

Two implementations ship with the package: db.postgres.PostgresStore (live)
and db.memory.InMemoryStore (dry runs, tests). Both honour the same natural
key constraints:

- users.email unique
- catalogs (type, lower(name)) unique
- external_projects.external_id unique (when not null)

String lookups are case-insensitive. Driver failures surface as StoreError
subclasses with the original message kept, so callers can still inspect it
for timeout / connection hints.
"""

__all__ = [
    "StoreError",
    "DuplicateError",
    "NotFoundError",
    "ForeignKeyError",
    "Store",
]


class StoreError(Exception):
    """Base class for store failures."""

    def __init__(self, message: str, *, target: str | None = None) -> None:
        super().__init__(message)
        self.target = target


class DuplicateError(StoreError):
    """Unique / natural key constraint violated. ``target`` names the key."""


class NotFoundError(StoreError):
    """Row to update or delete does not exist."""


class ForeignKeyError(StoreError):
    """Referenced row does not exist."""


class Store(Protocol):
    def transaction(self) -> AbstractContextManager[None]: ...

    # users
    def get_user(self, user_id: str) -> User | None: ...
    def find_user_by_email(self, email: str) -> User | None: ...
    def find_user_by_emails(self, emails: Iterable[str]) -> User | None: ...
    def find_user_by_name(self, first_name: str, last_name: str, *, partial: bool = False) -> User | None: ...
    def list_users(self) -> list[User]: ...
    def create_user(self, new_user: NewUser) -> User: ...
    def update_user(self, user_id: str, *, email: str | None = None, area_id: str | None = None) -> User: ...

    # areas
    def get_area(self, area_id: str) -> Area | None: ...

    # catalogs / suppliers
    def list_catalogs(self) -> list[Catalog]: ...
    def find_catalog(self, catalog_type: CatalogType, name: str) -> Catalog | None: ...
    def create_catalog(self, catalog_type: CatalogType, name: str, external_id: str | None = None) -> Catalog: ...
    def list_suppliers(self) -> list[Supplier]: ...
    def find_supplier(self, name: str) -> Supplier | None: ...
    def create_supplier(self, name: str) -> Supplier: ...

    # projects
    def find_project_by_external_id(self, external_id: str) -> ExistingProject | None: ...
    def create_project(self, record: ProjectRecord, created_by: str) -> Project: ...
    def update_project(self, project_id: str, record: ProjectRecord) -> Project: ...
    def create_external_project(self, project_id: str, detail: ExternalDetailRecord) -> ExternalProject: ...
    def update_external_project(self, project_id: str, detail: ExternalDetailRecord) -> ExternalProject: ...

    # project side effects
    def replace_supplier_links(self, external_project_id: str, supplier_ids: Iterable[str]) -> int: ...
    def count_active_tasks(self, project_id: str) -> int: ...
    def create_task(self, task: NewTask) -> Task: ...
    def deactivate_assignments(self, project_id: str) -> int: ...
    def create_assignment(self, project_id: str, user_id: str, assigned_by_id: str) -> Assignment: ...

