"""Client-side view of the board with optimistic writes.

``ClientReconciler`` holds one observer's local copy of the task list. Local
edits show up immediately and are kept as shadows until the server answers,
so a snapshot that was computed before the edit landed cannot paint over it.
``TaskBoardClient`` performs the HTTP round trips and tells the reconciler
how each one ended.
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable

import httpx

from entropy_kanban.broadcast import TASKS_UPDATED_EVENT

logger = logging.getLogger(__name__)

NOTICE_TTL_SECONDS = 5.0
DEFAULT_TIMEOUT_SECONDS = 10.0
PENDING_ID_PREFIX = "pending-"

TaskDict = dict[str, Any]


class NoticeKind(str, Enum):
    CONFLICT = "conflict"
    NETWORK = "network"
    SERVER = "server"
    REJECTED = "rejected"
    MISSING = "missing"


@dataclass(frozen=True)
class Notice:
    """A user-facing alert about a write that did not go through."""

    id: int
    kind: NoticeKind
    message: str
    created_at: float
    task_id: str | None = None
    task_title: str | None = None
    attempted_status: str | None = None
    server_status: str | None = None

    @property
    def expires_at(self) -> float:
        return self.created_at + NOTICE_TTL_SECONDS

    def expired(self, now: float) -> bool:
        return now >= self.expires_at


_notice_ids = itertools.count(1)


class ClientReconciler:
    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.RLock()
        self._view: list[TaskDict] = []
        self._shadows: dict[str, TaskDict] = {}
        self._pending_deletes: dict[str, tuple[int, TaskDict]] = {}
        self._pending_creates: dict[str, TaskDict] = {}
        # Placeholder id -> server id of the task a snapshot showed for it.
        self._claimed_creates: dict[str, str] = {}
        self._notices: list[Notice] = []

    # Local view

    def tasks(self) -> list[TaskDict]:
        with self._lock:
            return [dict(task) for task in self._view]

    def get(self, task_id: str) -> TaskDict | None:
        with self._lock:
            index = self._index(task_id)
            return None if index is None else dict(self._view[index])

    def has_shadow(self, task_id: str) -> bool:
        with self._lock:
            return task_id in self._shadows

    def pending_ids(self) -> set[str]:
        with self._lock:
            return (
                set(self._shadows)
                | set(self._pending_deletes)
                | set(self._pending_creates)
            )

    # Snapshots

    def handle_message(self, message: dict[str, Any]) -> bool:
        """Feed a real-time channel message; returns whether it was used."""
        if message.get("event") != TASKS_UPDATED_EVENT:
            return False
        self.on_snapshot(message.get("tasks") or [])
        return True

    def on_snapshot(self, server_tasks: Iterable[TaskDict]) -> None:
        with self._lock:
            known_ids = {task.get("id") for task in self._view}
            view: list[TaskDict] = []
            for server_task in server_tasks:
                task_id = server_task["id"]
                if task_id in self._pending_deletes:
                    continue
                shadow = self._shadows.get(task_id)
                view.append(dict(shadow) if shadow is not None else dict(server_task))
            self._claim_created(view, known_ids)
            view.extend(
                dict(task)
                for temp_id, task in self._pending_creates.items()
                if temp_id not in self._claimed_creates
            )
            self._view = view

    def _claim_created(self, view: list[TaskDict], known_ids: set[Any]) -> None:
        """Match pending placeholders to tasks the server already created.

        A snapshot can carry a new task before its POST response arrives. A
        task the view has never shown, with the same title and description
        as a placeholder, stands in for it until ``ack_create`` runs.
        """
        claimed = set(self._claimed_creates.values())
        for temp_id, placeholder in self._pending_creates.items():
            if temp_id in self._claimed_creates:
                continue
            for task in view:
                task_id = task["id"]
                if task_id in known_ids or task_id in claimed:
                    continue
                if (task.get("title"), task.get("description")) == (
                    placeholder.get("title"),
                    placeholder.get("description"),
                ):
                    self._claimed_creates[temp_id] = task_id
                    claimed.add(task_id)
                    break

    # Updates

    def apply_optimistic(self, task_id: str, mutated: TaskDict) -> TaskDict | None:
        """Show ``mutated`` now and shadow it; returns the value it replaced."""
        with self._lock:
            previous = self.get(task_id)
            self._put(task_id, dict(mutated))
            self._shadows[task_id] = dict(mutated)
            return previous

    def on_ack(self, task_id: str, server_task: TaskDict | None = None) -> None:
        with self._lock:
            self._shadows.pop(task_id, None)
            if server_task is not None:
                self._put(task_id, dict(server_task))

    def on_conflict(
        self,
        task_id: str,
        server_task: TaskDict,
        *,
        attempted_status: str | None = None,
    ) -> Notice:
        with self._lock:
            shadow = self._shadows.pop(task_id, None)
            self._put(task_id, dict(server_task))
            title = (shadow or server_task).get("title")
            return self._notify(
                NoticeKind.CONFLICT,
                "Someone else changed this task first; showing the latest version.",
                task_id=task_id,
                task_title=title,
                attempted_status=attempted_status,
                server_status=server_task.get("status"),
            )

    def rollback(
        self,
        task_id: str,
        previous: TaskDict | None,
        kind: NoticeKind,
        message: str,
    ) -> Notice:
        """Undo an optimistic update after the request failed."""
        with self._lock:
            shadow = self._shadows.pop(task_id, None)
            if previous is None:
                self._remove(task_id)
            else:
                self._put(task_id, dict(previous))
            title = (previous or shadow or {}).get("title")
            return self._notify(kind, message, task_id=task_id, task_title=title)

    def drop_missing(self, task_id: str, message: str) -> Notice:
        """Forget a task the server no longer has."""
        with self._lock:
            shadow = self._shadows.pop(task_id, None)
            index = self._index(task_id)
            task = self._view.pop(index) if index is not None else None
            title = (task or shadow or {}).get("title")
            return self._notify(
                NoticeKind.MISSING, message, task_id=task_id, task_title=title
            )

    # Deletes

    def begin_delete(self, task_id: str) -> TaskDict | None:
        with self._lock:
            index = self._index(task_id)
            if index is None:
                return None
            task = self._view.pop(index)
            self._pending_deletes[task_id] = (index, task)
            return dict(task)

    def ack_delete(self, task_id: str) -> None:
        with self._lock:
            self._pending_deletes.pop(task_id, None)
            self._shadows.pop(task_id, None)

    def rollback_delete(self, task_id: str, kind: NoticeKind, message: str) -> Notice:
        with self._lock:
            pending = self._pending_deletes.pop(task_id, None)
            title = None
            if pending is not None:
                index, task = pending
                title = task.get("title")
                if self._index(task_id) is None:
                    self._view.insert(min(index, len(self._view)), task)
            return self._notify(kind, message, task_id=task_id, task_title=title)

    # Creates

    def begin_create(self, title: str, description: str = "") -> str:
        """Show a placeholder for a task the server has not created yet."""
        temp_id = f"{PENDING_ID_PREFIX}{uuid.uuid4().hex}"
        now = datetime.now(timezone.utc).isoformat()
        placeholder = {
            "id": temp_id,
            "title": title,
            "description": description,
            "status": "Todo",
            "created_at": now,
            "updated_at": now,
            "version": 0,
            "corrupted": False,
            "pending": True,
        }
        with self._lock:
            self._pending_creates[temp_id] = placeholder
            self._view.append(dict(placeholder))
        return temp_id

    def ack_create(self, temp_id: str, server_task: TaskDict) -> None:
        with self._lock:
            self._pending_creates.pop(temp_id, None)
            self._claimed_creates.pop(temp_id, None)
            index = self._index(temp_id)
            if index is not None:
                self._view.pop(index)
            # A snapshot may already have delivered the real task.
            if self._index(server_task["id"]) is None:
                self._view.append(dict(server_task))

    def rollback_create(self, temp_id: str, kind: NoticeKind, message: str) -> Notice:
        with self._lock:
            placeholder = self._pending_creates.pop(temp_id, None)
            self._claimed_creates.pop(temp_id, None)
            self._remove(temp_id)
            title = placeholder.get("title") if placeholder else None
            return self._notify(kind, message, task_title=title)

    # Notices

    def notices(self, now: float | None = None) -> list[Notice]:
        """Return live notices; expired ones are dropped."""
        now = self._clock() if now is None else now
        with self._lock:
            self._notices = [n for n in self._notices if not n.expired(now)]
            return list(self._notices)

    def dismiss(self, notice_id: int) -> None:
        with self._lock:
            self._notices = [n for n in self._notices if n.id != notice_id]

    def _notify(self, kind: NoticeKind, message: str, **fields: Any) -> Notice:
        notice = Notice(
            id=next(_notice_ids),
            kind=kind,
            message=message,
            created_at=self._clock(),
            **fields,
        )
        self._notices.append(notice)
        return notice

    def _index(self, task_id: str) -> int | None:
        for index, task in enumerate(self._view):
            if task.get("id") == task_id:
                return index
        return None

    def _put(self, task_id: str, task: TaskDict) -> None:
        index = self._index(task_id)
        if index is None:
            self._view.append(task)
        else:
            self._view[index] = task

    def _remove(self, task_id: str) -> None:
        index = self._index(task_id)
        if index is not None:
            self._view.pop(index)


class WriteOutcome(str, Enum):
    ACKED = "acked"
    CONFLICT = "conflict"
    NETWORK_ERROR = "network_error"
    SERVER_ERROR = "server_error"
    REJECTED = "rejected"
    NOT_FOUND = "not_found"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class WriteResult:
    outcome: WriteOutcome
    task: TaskDict | None = None
    notice: Notice | None = None


class TaskBoardClient:
    """HTTP client that keeps a ``ClientReconciler`` in step with each write.

    Requests time out after ``timeout`` seconds; a timeout is handled like
    any other transport failure, so no shadow outlives its request. Nothing
    is retried.
    """

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:3001",
        *,
        reconciler: ClientReconciler | None = None,
        http: httpx.Client | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.reconciler = reconciler or ClientReconciler()
        self._http = http or httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout)

    def close(self) -> None:
        self._http.close()

    def refresh(self) -> bool:
        """Pull a full snapshot over HTTP and merge it."""
        try:
            response = self._http.get("/tasks")
            response.raise_for_status()
            tasks = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Snapshot refresh failed: %s", exc)
            return False
        self.reconciler.on_snapshot(tasks)
        return True

    def change_status(self, task_id: str, new_status: str) -> WriteResult:
        return self.update_task(task_id, status=new_status)

    def update_task(self, task_id: str, **fields: Any) -> WriteResult:
        current = self.reconciler.get(task_id)
        if current is None:
            return WriteResult(WriteOutcome.SKIPPED)

        optimistic = {
            **current,
            **fields,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        previous = self.reconciler.apply_optimistic(task_id, optimistic)
        body = {**fields, "version": current.get("version", 0)}

        try:
            response = self._http.patch(f"/tasks/{task_id}", json=body)
        except httpx.TransportError as exc:
            logger.warning("Update of %s failed to reach the server: %s", task_id, exc)
            notice = self.reconciler.rollback(
                task_id,
                previous,
                NoticeKind.NETWORK,
                "Network error: cannot reach server. Changes reverted.",
            )
            return WriteResult(WriteOutcome.NETWORK_ERROR, previous, notice)

        if response.status_code == 409:
            server_task = _json_field(response, "current_task")
            if server_task is not None:
                logger.warning("Version conflict on %s", task_id)
                notice = self.reconciler.on_conflict(
                    task_id, server_task, attempted_status=fields.get("status")
                )
                return WriteResult(WriteOutcome.CONFLICT, server_task, notice)

        if response.status_code == 404:
            logger.warning("Update of %s found no such task on the server", task_id)
            notice = self.reconciler.drop_missing(
                task_id, "This task was deleted elsewhere and has been removed."
            )
            return WriteResult(WriteOutcome.NOT_FOUND, notice=notice)

        if response.is_success:
            task = _json_body(response)
            if isinstance(task, dict):
                self.reconciler.on_ack(task_id, task)
                return WriteResult(WriteOutcome.ACKED, task)

        outcome, kind, message = _classify_failure(response, "Changes reverted.")
        notice = self.reconciler.rollback(task_id, previous, kind, message)
        return WriteResult(outcome, previous, notice)

    def create_task(self, title: str, description: str = "") -> WriteResult:
        temp_id = self.reconciler.begin_create(title, description)
        try:
            response = self._http.post(
                "/tasks", json={"title": title, "description": description}
            )
        except httpx.TransportError as exc:
            logger.warning("Create failed to reach the server: %s", exc)
            notice = self.reconciler.rollback_create(
                temp_id,
                NoticeKind.NETWORK,
                "Network error: cannot reach server. Task was not created.",
            )
            return WriteResult(WriteOutcome.NETWORK_ERROR, notice=notice)

        if response.status_code == 201:
            task = _json_body(response)
            if isinstance(task, dict):
                self.reconciler.ack_create(temp_id, task)
                return WriteResult(WriteOutcome.ACKED, task)

        outcome, kind, message = _classify_failure(response, "Task was not created.")
        notice = self.reconciler.rollback_create(temp_id, kind, message)
        return WriteResult(outcome, notice=notice)

    def delete_task(self, task_id: str) -> WriteResult:
        removed = self.reconciler.begin_delete(task_id)
        if removed is None:
            return WriteResult(WriteOutcome.SKIPPED)
        try:
            response = self._http.delete(f"/tasks/{task_id}")
        except httpx.TransportError as exc:
            logger.warning("Delete of %s failed to reach the server: %s", task_id, exc)
            notice = self.reconciler.rollback_delete(
                task_id,
                NoticeKind.NETWORK,
                "Network error: cannot reach server. Task restored.",
            )
            return WriteResult(WriteOutcome.NETWORK_ERROR, removed, notice)

        # 404 means someone else already removed it; the goal is met.
        if response.status_code in (204, 404):
            self.reconciler.ack_delete(task_id)
            return WriteResult(WriteOutcome.ACKED, removed)

        outcome, kind, message = _classify_failure(response, "Task restored.")
        notice = self.reconciler.rollback_delete(task_id, kind, message)
        return WriteResult(outcome, removed, notice)


def _json_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _json_field(response: httpx.Response, key: str) -> Any:
    body = _json_body(response)
    if isinstance(body, dict):
        return body.get(key)
    return None


def _classify_failure(
    response: httpx.Response, suffix: str
) -> tuple[WriteOutcome, NoticeKind, str]:
    if response.status_code >= 500 or response.is_success:
        # A 2xx without a usable body is as good as a server fault.
        logger.error("Server error %s on %s", response.status_code, response.request.url)
        return WriteOutcome.SERVER_ERROR, NoticeKind.SERVER, f"Server error: {suffix}"
    error = _json_field(response, "error") or f"HTTP {response.status_code}"
    return WriteOutcome.REJECTED, NoticeKind.REJECTED, f"{error}. {suffix}"
