"""Authoritative in-memory task store."""

from __future__ import annotations

import logging
import random
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterator

from entropy_kanban.errors import TaskNotFound, ValidationError
from entropy_kanban.models import Task, utc_now

logger = logging.getLogger(__name__)


class TaskStore:
    """Keyed task collection with one lock per task id.

    Records are immutable, so a mutation swaps the whole value and readers
    never observe half of one. The registry lock only guards the index maps
    and is never held while a task lock is being waited on.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] = utc_now,
        rng: random.Random | None = None,
    ) -> None:
        self._clock = clock
        self._rng = rng or random.Random()
        self._tasks: dict[str, Task] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def now(self) -> datetime:
        return self._clock()

    def create(self, title: object, description: object = "") -> Task:
        if not isinstance(title, str) or not title.strip():
            raise ValidationError(
                "MISSING_TITLE", "Title is required", {"fields": ["title"]}
            )
        if description is None:
            description = ""
        if not isinstance(description, str):
            raise ValidationError(
                "INVALID_TYPE",
                "description must be a string.",
                {"description": type(description).__name__},
            )

        task = Task.new(title, description, now=self._clock(), rng=self._rng)
        with self._registry_lock:
            self._tasks[task.id] = task
            self._locks[task.id] = threading.Lock()
        logger.info("Task created: %s (%s)", task.title, task.id)
        return task

    def get(self, task_id: str) -> Task:
        with self._registry_lock:
            task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        return task

    def list(self) -> list[Task]:
        """Return every task. Order carries no meaning."""
        with self._registry_lock:
            return list(self._tasks.values())

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._tasks)

    def delete(self, task_id: str) -> Task:
        with self._task_lock(task_id):
            with self._registry_lock:
                removed = self._tasks.pop(task_id)
                self._locks.pop(task_id, None)
        logger.info("Task deleted: %s (%s)", removed.title, task_id)
        return removed

    def mutate(self, task_id: str, change: Callable[[Task], Task]) -> Task:
        """Replace a task with ``change(current)`` while holding its lock.

        Anything raised by ``change`` propagates and leaves the task as it
        was. Returning the current value unchanged is a no-op.
        """
        with self._task_lock(task_id):
            current = self._tasks[task_id]
            updated = change(current)
            if updated is not current:
                if updated.id != task_id:
                    raise ValueError("Task id is immutable.")
                with self._registry_lock:
                    self._tasks[task_id] = updated
            return updated

    @contextmanager
    def _task_lock(self, task_id: str) -> Iterator[None]:
        with self._registry_lock:
            lock = self._locks.get(task_id)
        if lock is None:
            raise TaskNotFound(task_id)
        with lock:
            # The task may have been deleted while we waited.
            with self._registry_lock:
                present = task_id in self._tasks
            if not present:
                raise TaskNotFound(task_id)
            yield
