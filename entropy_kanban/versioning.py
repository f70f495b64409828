"""Optimistic concurrency gate for task updates."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

from entropy_kanban.errors import TaskNotFound, VersionConflict
from entropy_kanban.models import Task
from entropy_kanban.store import TaskStore

logger = logging.getLogger(__name__)


class UpdateOutcome(str, Enum):
    APPLIED = "applied"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class UpdateResult:
    outcome: UpdateOutcome
    task: Task | None = None
    forced: bool = False

    @property
    def applied(self) -> bool:
        return self.outcome is UpdateOutcome.APPLIED


class VersionGuard:
    """Applies patches only when the caller saw the current version.

    Omitting ``expected_version`` is force-write mode: the patch is applied
    whatever the stored version is. Clients that send a version never take
    that path.
    """

    def __init__(self, store: TaskStore) -> None:
        self._store = store

    def apply_update(
        self,
        task_id: str,
        patch: Mapping[str, Any],
        expected_version: int | None = None,
    ) -> UpdateResult:
        def change(current: Task) -> Task:
            if expected_version is not None and expected_version != current.version:
                raise VersionConflict(current, expected_version)
            return current.with_patch(patch, now=self._store.now())

        try:
            updated = self._store.mutate(task_id, change)
        except TaskNotFound:
            return UpdateResult(UpdateOutcome.NOT_FOUND)
        except VersionConflict as exc:
            logger.info(
                "Version conflict on %s: expected v%s, current v%s",
                task_id,
                expected_version,
                exc.current_task.version,
            )
            return UpdateResult(UpdateOutcome.CONFLICT, exc.current_task)

        forced = expected_version is None
        if forced:
            logger.info("Forced write on %s (no version supplied)", task_id)
        logger.info("Task updated: %s (v%s)", updated.title, updated.version)
        return UpdateResult(UpdateOutcome.APPLIED, updated, forced=forced)
