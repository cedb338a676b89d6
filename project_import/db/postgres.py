from __future__ import annotations

import dataclasses
import logging
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from typing import Any

import psycopg2
import psycopg2.errors
import psycopg2.extras
from psycopg2.pool import ThreadedConnectionPool

from ..models.entities import (
    Area,
    Assignment,
    Catalog,
    CatalogType,
    ExternalProject,
    Project,
    ProjectStatus,
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
from .store import DuplicateError, ForeignKeyError, NotFoundError, StoreError

"""PostgreSQL store (psycopg2).

Connections come from a ThreadedConnectionPool; rows processed concurrently
each run on their own pooled connection. Inside ``transaction()`` the
connection is bound to the calling thread so every statement of one row's
save commits or rolls back together. Outside a transaction each call is its
own short transaction.

Schema: db/schema.sql.
"""

__all__ = [
    "PostgresStore",
    "translate_error",
]

logger = logging.getLogger(__name__)

# ExternalDetailRecord field name == external_projects column name
DETAIL_COLUMNS: tuple[str, ...] = tuple(f.name for f in dataclasses.fields(ExternalDetailRecord))

_USER_COLS = "id, email, first_name, last_name, role, area_id, is_active"
_PROJECT_COLS = "id, name, status, area_id, description, start_date, end_date, created_by"
_EXTERNAL_COLS = "id, project_id, external_id, title"


def translate_error(exc: psycopg2.Error) -> StoreError:
    """Map a driver error onto the StoreError hierarchy, keeping its message."""
    message = str(exc).strip() or exc.__class__.__name__
    diag = getattr(exc, "diag", None)
    target = getattr(diag, "constraint_name", None) if diag is not None else None
    if isinstance(exc, psycopg2.errors.UniqueViolation):
        return DuplicateError(message, target=target)
    if isinstance(exc, psycopg2.errors.ForeignKeyViolation):
        return ForeignKeyError(message, target=target)
    if isinstance(exc, psycopg2.errors.QueryCanceled):
        return StoreError(f"statement timeout: {message}")
    if isinstance(exc, (psycopg2.OperationalError, psycopg2.InterfaceError)):
        return StoreError(f"connection error: {message}")
    return StoreError(message)


def _user(row: dict[str, Any]) -> User:
    return User(
        id=row["id"],
        email=row["email"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        role=UserRole(row["role"]),
        area_id=row["area_id"],
        is_active=row["is_active"],
    )


def _project(row: dict[str, Any]) -> Project:
    return Project(
        id=row["id"],
        name=row["name"],
        status=ProjectStatus(row["status"]),
        area_id=row["area_id"],
        description=row["description"],
        start_date=row["start_date"],
        end_date=row["end_date"],
        created_by=row["created_by"],
    )


def _external(row: dict[str, Any]) -> ExternalProject:
    return ExternalProject(
        id=row["id"], project_id=row["project_id"], external_id=row["external_id"], title=row["title"]
    )


def _catalog(row: dict[str, Any]) -> Catalog:
    return Catalog(id=row["id"], type=CatalogType(row["type"]), name=row["name"], external_id=row["external_id"])


class PostgresStore:
    def __init__(self, dsn: str, *, min_connections: int = 1, max_connections: int = 10) -> None:
        try:
            self._pool = ThreadedConnectionPool(min_connections, max_connections, dsn)
        except psycopg2.Error as e:
            raise translate_error(e) from e
        # getconn() raises instead of blocking when the pool is exhausted
        self._slots = threading.BoundedSemaphore(max_connections)
        self._local = threading.local()

    def close(self) -> None:
        self._pool.closeall()

    def __enter__(self) -> PostgresStore:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    # -- connection handling --------------------------------------------
    @contextmanager
    def _connection(self) -> Iterator[Any]:
        self._slots.acquire()
        conn = None
        try:
            conn = self._pool.getconn()
            yield conn
        finally:
            if conn is not None:
                self._pool.putconn(conn)
            self._slots.release()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if getattr(self._local, "conn", None) is not None:
            yield  # nested: join the outer transaction
            return
        with self._connection() as conn:
            self._local.conn = conn
            try:
                with conn:  # commit on success, rollback on exception
                    yield
            except psycopg2.Error as e:
                raise translate_error(e) from e
            finally:
                self._local.conn = None

    def _run(self, sql: str, params: Any = None, fetch: str | None = "one") -> Any:
        def execute(conn: Any) -> Any:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(sql, params)
                if fetch == "one":
                    return cur.fetchone()
                if fetch == "all":
                    return cur.fetchall()
                return cur.rowcount

        try:
            bound = getattr(self._local, "conn", None)
            if bound is not None:
                return execute(bound)
            with self._connection() as conn:
                with conn:
                    return execute(conn)
        except psycopg2.Error as e:
            raise translate_error(e) from e

    # -- users -----------------------------------------------------------
    def get_user(self, user_id: str) -> User | None:
        row = self._run(f"SELECT {_USER_COLS} FROM users WHERE id = %s", (user_id,))
        return _user(row) if row else None

    def find_user_by_email(self, email: str) -> User | None:
        row = self._run(f"SELECT {_USER_COLS} FROM users WHERE lower(email) = lower(%s)", (email,))
        return _user(row) if row else None

    def find_user_by_emails(self, emails: Iterable[str]) -> User | None:
        wanted = [e.lower() for e in emails]
        if not wanted:
            return None
        row = self._run(
            f"SELECT {_USER_COLS} FROM users WHERE lower(email) = ANY(%s) ORDER BY created_at LIMIT 1",
            (wanted,),
        )
        return _user(row) if row else None

    def find_user_by_name(self, first_name: str, last_name: str, *, partial: bool = False) -> User | None:
        if partial:
            sql = (
                f"SELECT {_USER_COLS} FROM users WHERE first_name ILIKE %s AND last_name ILIKE %s "
                "ORDER BY created_at LIMIT 1"
            )
            params = (f"%{_escape_like(first_name)}%", f"%{_escape_like(last_name)}%")
        else:
            sql = (
                f"SELECT {_USER_COLS} FROM users WHERE lower(first_name) = lower(%s) "
                "AND lower(last_name) = lower(%s) ORDER BY created_at LIMIT 1"
            )
            params = (first_name, last_name)
        row = self._run(sql, params)
        return _user(row) if row else None

    def list_users(self) -> list[User]:
        return [_user(r) for r in self._run(f"SELECT {_USER_COLS} FROM users", fetch="all")]

    def create_user(self, new_user: NewUser) -> User:
        row = self._run(
            "INSERT INTO users (email, password, first_name, last_name, role, area_id) "
            f"VALUES (%s, %s, %s, %s, %s, %s) RETURNING {_USER_COLS}",
            (
                new_user.email,
                new_user.password_hash,
                new_user.first_name,
                new_user.last_name,
                new_user.role.value,
                new_user.area_id,
            ),
        )
        return _user(row)

    def update_user(self, user_id: str, *, email: str | None = None, area_id: str | None = None) -> User:
        row = self._run(
            "UPDATE users SET email = COALESCE(%s, email), area_id = COALESCE(%s, area_id) "
            f"WHERE id = %s RETURNING {_USER_COLS}",
            (email, area_id, user_id),
        )
        if row is None:
            raise NotFoundError(f"user not found: {user_id}")
        return _user(row)

    # -- areas -----------------------------------------------------------
    def get_area(self, area_id: str) -> Area | None:
        row = self._run("SELECT id, name, is_active FROM areas WHERE id = %s", (area_id,))
        return Area(id=row["id"], name=row["name"], is_active=row["is_active"]) if row else None

    # -- catalogs / suppliers ---------------------------------------------
    def list_catalogs(self) -> list[Catalog]:
        return [_catalog(r) for r in self._run("SELECT id, type, name, external_id FROM catalogs", fetch="all")]

    def find_catalog(self, catalog_type: CatalogType, name: str) -> Catalog | None:
        row = self._run(
            "SELECT id, type, name, external_id FROM catalogs WHERE type = %s AND lower(name) = lower(%s)",
            (catalog_type.value, name),
        )
        return _catalog(row) if row else None

    def create_catalog(self, catalog_type: CatalogType, name: str, external_id: str | None = None) -> Catalog:
        row = self._run(
            "INSERT INTO catalogs (type, name, external_id) VALUES (%s, %s, %s) "
            "RETURNING id, type, name, external_id",
            (catalog_type.value, name, external_id),
        )
        return _catalog(row)

    def list_suppliers(self) -> list[Supplier]:
        return [Supplier(id=r["id"], name=r["name"]) for r in self._run("SELECT id, name FROM suppliers", fetch="all")]

    def find_supplier(self, name: str) -> Supplier | None:
        row = self._run("SELECT id, name FROM suppliers WHERE lower(name) = lower(%s)", (name,))
        return Supplier(id=row["id"], name=row["name"]) if row else None

    def create_supplier(self, name: str) -> Supplier:
        row = self._run("INSERT INTO suppliers (name) VALUES (%s) RETURNING id, name", (name,))
        return Supplier(id=row["id"], name=row["name"])

    # -- projects --------------------------------------------------------
    def find_project_by_external_id(self, external_id: str) -> ExistingProject | None:
        row = self._run(
            "SELECT p.id, p.name, p.status, p.area_id, p.description, p.start_date, p.end_date, p.created_by, "
            "e.id AS e_id, e.external_id, e.title "
            "FROM projects p JOIN external_projects e ON e.project_id = p.id WHERE e.external_id = %s",
            (external_id,),
        )
        if row is None:
            return None
        detail = ExternalProject(id=row["e_id"], project_id=row["id"], external_id=row["external_id"], title=row["title"])
        return ExistingProject(project=_project(row), detail=detail)

    def create_project(self, record: ProjectRecord, created_by: str) -> Project:
        row = self._run(
            "INSERT INTO projects (name, description, status, start_date, end_date, area_id, created_by) "
            f"VALUES (%s, %s, %s, %s, %s, %s, %s) RETURNING {_PROJECT_COLS}",
            (
                record.name,
                record.description,
                record.status.value,
                record.start_date,
                record.end_date,
                record.area_id,
                created_by,
            ),
        )
        return _project(row)

    def update_project(self, project_id: str, record: ProjectRecord) -> Project:
        row = self._run(
            "UPDATE projects SET name = %s, description = %s, status = %s, start_date = %s, end_date = %s, "
            f"area_id = %s, updated_at = now() WHERE id = %s RETURNING {_PROJECT_COLS}",
            (
                record.name,
                record.description,
                record.status.value,
                record.start_date,
                record.end_date,
                record.area_id,
                project_id,
            ),
        )
        if row is None:
            raise NotFoundError(f"Record to update not found: project {project_id}")
        return _project(row)

    def create_external_project(self, project_id: str, detail: ExternalDetailRecord) -> ExternalProject:
        values = [getattr(detail, c) for c in DETAIL_COLUMNS]
        cols = ", ".join(DETAIL_COLUMNS)
        placeholders = ", ".join(["%s"] * len(DETAIL_COLUMNS))
        row = self._run(
            f"INSERT INTO external_projects (project_id, {cols}) VALUES (%s, {placeholders}) "
            f"RETURNING {_EXTERNAL_COLS}",
            (project_id, *values),
        )
        return _external(row)

    def update_external_project(self, project_id: str, detail: ExternalDetailRecord) -> ExternalProject:
        assignments = ", ".join(f"{c} = %s" for c in DETAIL_COLUMNS)
        values = [getattr(detail, c) for c in DETAIL_COLUMNS]
        row = self._run(
            f"UPDATE external_projects SET {assignments}, updated_at = now() WHERE project_id = %s "
            f"RETURNING {_EXTERNAL_COLS}",
            (*values, project_id),
        )
        if row is None:
            raise NotFoundError(f"Record to update not found: external project for {project_id}")
        return _external(row)

    # -- side effects ----------------------------------------------------
    def replace_supplier_links(self, external_project_id: str, supplier_ids: Iterable[str]) -> int:
        ids = list(dict.fromkeys(supplier_ids))
        with self.transaction():
            self._run(
                "DELETE FROM external_project_suppliers WHERE external_project_id = %s",
                (external_project_id,),
                fetch=None,
            )
            for supplier_id in ids:
                self._run(
                    "INSERT INTO external_project_suppliers (external_project_id, supplier_id) VALUES (%s, %s)",
                    (external_project_id, supplier_id),
                    fetch=None,
                )
        return len(ids)

    def count_active_tasks(self, project_id: str) -> int:
        row = self._run("SELECT count(*) AS n FROM tasks WHERE project_id = %s AND is_active", (project_id,))
        return int(row["n"])

    def create_task(self, task: NewTask) -> Task:
        row = self._run(
            "INSERT INTO tasks (project_id, title, description, status, priority, created_by, tags) "
            "VALUES (%s, %s, %s, %s, %s, %s, %s) RETURNING id, project_id, title, is_active, tags",
            (task.project_id, task.title, task.description, task.status, task.priority, task.created_by, list(task.tags)),
        )
        return Task(
            id=row["id"], project_id=row["project_id"], title=row["title"], is_active=row["is_active"], tags=tuple(row["tags"])
        )

    def deactivate_assignments(self, project_id: str) -> int:
        return self._run(
            "UPDATE project_assignments SET is_active = false WHERE project_id = %s AND is_active",
            (project_id,),
            fetch=None,
        )

    def create_assignment(self, project_id: str, user_id: str, assigned_by_id: str) -> Assignment:
        row = self._run(
            "INSERT INTO project_assignments (project_id, user_id, assigned_by_id) VALUES (%s, %s, %s) "
            "RETURNING id, project_id, user_id, assigned_by_id, is_active",
            (project_id, user_id, assigned_by_id),
        )
        return Assignment(
            id=row["id"],
            project_id=row["project_id"],
            user_id=row["user_id"],
            assigned_by_id=row["assigned_by_id"],
            is_active=row["is_active"],
        )


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
