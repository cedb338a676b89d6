from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

"""Persisted entities as returned by the relational store.

These mirror the rows the store hands back; the import engine only reads
them and builds new payloads from its own record types (see records.py).
"""

__all__ = [
    "UserRole",
    "CatalogType",
    "ProjectStatus",
    "User",
    "Area",
    "Catalog",
    "Supplier",
    "Project",
    "ExternalProject",
    "Task",
    "Assignment",
]


class UserRole(str, Enum):
    ADMINISTRADOR = "ADMINISTRADOR"
    COORDINADOR = "COORDINADOR"
    COLABORADOR = "COLABORADOR"


class CatalogType(str, Enum):
    RISK_LEVEL = "RISK_LEVEL"
    PROJECT_TYPE = "PROJECT_TYPE"
    BUSINESS_LINE = "BUSINESS_LINE"
    OPPORTUNITY_TYPE = "OPPORTUNITY_TYPE"
    SEGMENT = "SEGMENT"
    SALES_MANAGEMENT = "SALES_MANAGEMENT"
    SALES_EXECUTIVE = "SALES_EXECUTIVE"
    DESIGNER = "DESIGNER"


class ProjectStatus(str, Enum):
    ACTIVE = "ACTIVE"
    ON_HOLD = "ON_HOLD"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    AWARDED = "AWARDED"


@dataclass
class User:
    id: str
    email: str
    first_name: str
    last_name: str
    role: UserRole
    area_id: str | None = None
    is_active: bool = True

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


@dataclass(frozen=True)
class Area:
    id: str
    name: str
    is_active: bool = True


@dataclass(frozen=True)
class Catalog:
    id: str
    type: CatalogType
    name: str
    external_id: str | None = None


@dataclass(frozen=True)
class Supplier:
    id: str
    name: str


@dataclass
class Project:
    id: str
    name: str
    status: ProjectStatus
    area_id: str
    description: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    created_by: str | None = None


@dataclass
class ExternalProject:
    """Import-specific extension of a Project (1:1, keyed by ``project_id``)."""
    id: str
    project_id: str
    external_id: str | None
    title: str | None = None


@dataclass(frozen=True)
class Task:
    id: str
    project_id: str
    title: str
    is_active: bool = True
    tags: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class Assignment:
    id: str
    project_id: str
    user_id: str
    assigned_by_id: str
    is_active: bool = True
