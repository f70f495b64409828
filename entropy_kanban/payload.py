"""Payload validation helpers for task endpoints."""

from __future__ import annotations

from typing import Any

from entropy_kanban.errors import ValidationError
from entropy_kanban.models import WRITABLE_FIELDS, TaskStatus

CREATE_FIELDS = {"title", "description"}
UPDATE_FIELDS = WRITABLE_FIELDS | {"version"}


def _ensure_payload_dict(payload: Any) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise ValidationError(
            "INVALID_TYPE",
            "Payload must be an object.",
            {"type": type(payload).__name__},
        )
    return payload


def _reject_unknown_fields(payload: dict[str, Any], allowed_fields: set[str]) -> None:
    unknown_fields = sorted(set(payload) - allowed_fields)
    if unknown_fields:
        raise ValidationError(
            "UNKNOWN_FIELD",
            "Unknown or read-only fields are not allowed.",
            {"fields": unknown_fields},
        )


def parse_create_payload(payload: Any) -> tuple[Any, Any]:
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, CREATE_FIELDS)
    return payload.get("title"), payload.get("description", "")


def parse_update_payload(payload: Any) -> tuple[dict[str, Any], int | None]:
    """Split an update body into its patch and optional expected version."""
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, UPDATE_FIELDS)

    # Only an absent key selects a forced write; an explicit null is an error.
    version = payload.get("version")
    # bool is an int subclass; reject it explicitly.
    if "version" in payload and (
        not isinstance(version, int) or isinstance(version, bool) or version < 0
    ):
        raise ValidationError(
            "INVALID_TYPE",
            "version must be a non-negative integer.",
            {"version": str(version)},
        )

    patch = {key: value for key, value in payload.items() if key != "version"}
    if "title" in patch:
        title = patch["title"]
        if not isinstance(title, str) or not title.strip():
            raise ValidationError(
                "MISSING_TITLE", "Title must not be empty", {"fields": ["title"]}
            )
    if "description" in patch and not isinstance(patch["description"], str):
        raise ValidationError(
            "INVALID_TYPE",
            "description must be a string.",
            {"description": type(patch["description"]).__name__},
        )
    if "status" in patch:
        allowed = [status.value for status in TaskStatus]
        if patch["status"] not in allowed:
            raise ValidationError(
                "INVALID_STATUS",
                "status must be one of Todo, Doing, Done.",
                {"status": str(patch["status"]), "allowed": allowed},
            )
    return patch, version
