"""Structured error types for task board responses."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Mapping

if TYPE_CHECKING:
    from entropy_kanban.models import Task


@dataclass(frozen=True)
class ErrorResponse:
    """Serializable error payload returned by task handlers."""

    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class KanbanError(RuntimeError):
    """Exception carrying a structured error response."""

    status_code = 400

    def __init__(
        self, code: str, message: str, details: Mapping[str, Any] | None = None
    ) -> None:
        super().__init__(message)
        self.error = ErrorResponse(
            code=code, message=message, details=dict(details or {})
        )


class ValidationError(KanbanError):
    """A required field is missing or a field value is not acceptable."""

    status_code = 400


class TaskNotFound(KanbanError):
    status_code = 404

    def __init__(self, task_id: str) -> None:
        super().__init__("TASK_NOT_FOUND", "Task not found", {"id": task_id})
        self.task_id = task_id


class VersionConflict(KanbanError):
    """The caller's expected version no longer matches the stored task."""

    status_code = 409

    def __init__(self, current_task: Task, expected_version: int) -> None:
        super().__init__(
            "VERSION_CONFLICT",
            "Version conflict",
            {
                "id": current_task.id,
                "expected_version": expected_version,
            },
        )
        self.current_task = current_task
        self.expected_version = expected_version


def error_response(error: ErrorResponse) -> dict[str, Any]:
    """Wrap an error response in the standard envelope."""
    return {"error": error.message, "code": error.code, "details": error.details}


def conflict_response(exc: VersionConflict) -> dict[str, Any]:
    """Envelope for a 409 that lets the caller reconcile without refetching."""
    body = error_response(exc.error)
    body["current_version"] = exc.current_task.version
    body["current_task"] = exc.current_task.to_dict()
    return body
