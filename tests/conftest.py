# Shared pytest fixtures
from __future__ import annotations

import tempfile
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pandas as pd
import pytest

from project_import.config.loader import ImportConfig
from project_import.db.memory import InMemoryStore
from project_import.excel.columns import TEMPLATE_HEADERS
from project_import.logging.init import reset_logging
from project_import.models.entities import UserRole

AREA_ID = "area-1"
ADMIN_ID = "admin-1"
ADMIN_EMAIL = "admin@teamtime.com"


@pytest.fixture(autouse=True)
def _fresh_logging() -> Iterator[None]:
    # handlers bind sys.stdout at creation; never reuse one across tests
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def temp_workdir(monkeypatch) -> Iterator[Path]:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """batch_size: 3
email_domain: teamtime.com
legacy_email_domains: [imported.com]
default_password: temp_password123
password_rounds: 4
error_log_dir: ./logs
default_task:
  title: Seguimiento de proyecto
  tags: [importado, seguimiento]
database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: appdb
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def config() -> ImportConfig:
    # bcrypt cost 4 keeps user creation fast in tests
    return ImportConfig(batch_size=3, password_rounds=4)


@pytest.fixture()
def store() -> InMemoryStore:
    s = InMemoryStore()
    s.add_area("Ingeniería", area_id=AREA_ID)
    s.add_user(ADMIN_EMAIL, "Admin", "Root", UserRole.ADMINISTRADOR, user_id=ADMIN_ID)
    return s


def make_excel(path: Path, rows: list[dict[str, Any]], headers: list[str] | None = None) -> Path:
    """Write a one-sheet workbook: header row + one line per dict (header -> value)."""
    headers = headers or TEMPLATE_HEADERS
    frame = pd.DataFrame([[row.get(h) for h in headers] for row in rows], columns=headers)
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        frame.to_excel(writer, sheet_name="Proyectos", index=False)
    return path


@pytest.fixture()
def excel_factory(tmp_path: Path) -> Callable[..., Path]:
    def _factory(rows: list[dict[str, Any]], name: str = "projects.xlsx", headers: list[str] | None = None) -> Path:
        return make_excel(tmp_path / name, rows, headers)

    return _factory
