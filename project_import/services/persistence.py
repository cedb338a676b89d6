from __future__ import annotations

import logging

from ..config.loader import DefaultTaskConfig
from ..db.store import Store, StoreError
from ..models.outcome import SavedProject
from ..models.records import ExistingProject, ExternalDetailRecord, NewTask, PreparedRow

"""Create-or-update of the project / external detail pair.

The pair, together with its supplier links, is written in one store
transaction. Follow-up side effects (default task, assignments) run in their
own transactions afterwards; their failures are logged and returned as
warnings but never fail the row.
"""

__all__ = [
    "PersistenceWriter",
]

logger = logging.getLogger(__name__)


class PersistenceWriter:
    def __init__(self, store: Store, default_task: DefaultTaskConfig | None = None) -> None:
        self._store = store
        self._default_task = default_task or DefaultTaskConfig()

    def save(
        self,
        prepared: PreparedRow,
        actor_id: str,
        existing: ExistingProject | None = None,
    ) -> tuple[SavedProject, list[str]]:
        """Persist one prepared row. Returns the saved pair and side-effect warnings."""
        with self._store.transaction():
            if existing is not None:
                project = self._store.update_project(existing.project.id, prepared.project)
                detail = self._store.update_external_project(existing.project.id, prepared.detail)
            else:
                project = self._store.create_project(prepared.project, created_by=actor_id)
                detail = self._store.create_external_project(project.id, prepared.detail)
            # full replacement, an empty list clears the links
            self._store.replace_supplier_links(detail.id, prepared.supplier_ids)

        warnings: list[str] = []
        if existing is None:
            self._seed_default_task(project.id, actor_id, warnings)
        self._replace_assignments(project.id, prepared.detail, actor_id, warnings)
        return SavedProject(project=project, detail=detail), warnings

    def _seed_default_task(self, project_id: str, actor_id: str, warnings: list[str]) -> None:
        task = self._default_task
        try:
            with self._store.transaction():
                active = self._store.count_active_tasks(project_id)
                if active:
                    logger.debug("project %s already has %d tasks, default task not created", project_id, active)
                    return
                created = self._store.create_task(
                    NewTask(
                        project_id=project_id,
                        title=task.title,
                        description=task.description,
                        created_by=actor_id,
                        tags=task.tags,
                    )
                )
            logger.debug("default task %s created for project %s", created.id, project_id)
        except StoreError as e:
            logger.error("default task for project %s failed: %s", project_id, e)
            warnings.append(f"default task could not be created: {e}")

    def _replace_assignments(
        self, project_id: str, detail: ExternalDetailRecord, actor_id: str, warnings: list[str]
    ) -> None:
        """Last write wins: deactivate every active assignment, then coordinator, then mentor."""
        try:
            with self._store.transaction():
                self._store.deactivate_assignments(project_id)
                for user_id in (detail.coordinator_id, detail.mentor_id):
                    if user_id:
                        self._store.create_assignment(project_id, user_id, actor_id)
        except StoreError as e:
            logger.error("assignments for project %s failed: %s", project_id, e)
            warnings.append(f"assignments could not be updated: {e}")
