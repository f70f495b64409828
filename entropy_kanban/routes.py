"""Task endpoints and the real-time update channel."""

from __future__ import annotations

from typing import Any

from fastapi import Body, Request, Response, WebSocket, WebSocketDisconnect

from entropy_kanban.broadcast import BroadcastScheduler
from entropy_kanban.errors import TaskNotFound, VersionConflict
from entropy_kanban.payload import parse_create_payload, parse_update_payload
from entropy_kanban.router import task_router
from entropy_kanban.scoring import snapshot_payload
from entropy_kanban.store import TaskStore
from entropy_kanban.versioning import UpdateOutcome, VersionGuard


def _store(request: Request) -> TaskStore:
    return request.app.state.store


def _guard(request: Request) -> VersionGuard:
    return request.app.state.guard


def _broadcaster(request: Request) -> BroadcastScheduler:
    return request.app.state.broadcaster


@task_router.get("/tasks")
def list_tasks(request: Request) -> list[dict[str, Any]]:
    """Return every task, scored against now and sorted by urgency."""
    store = _store(request)
    return snapshot_payload(store.list(), store.now())


@task_router.post("/tasks", status_code=201)
def create_task(request: Request, payload: Any = Body(default=None)) -> dict[str, Any]:
    """Create a task in Todo at version 0."""
    title, description = parse_create_payload(payload)
    task = _store(request).create(title, description)
    _broadcaster(request).request_broadcast()
    return task.to_dict()


@task_router.patch("/tasks/{task_id}")
def update_task(
    task_id: str, request: Request, payload: Any = Body(default=None)
) -> dict[str, Any]:
    """Apply a partial update.

    With ``version`` in the body the write only lands if it matches the
    stored version (409 otherwise). Without the key the write is forced;
    ``"version": null`` is rejected with 400 rather than forced.
    """
    patch, expected_version = parse_update_payload(payload)
    result = _guard(request).apply_update(task_id, patch, expected_version)

    if result.outcome is UpdateOutcome.NOT_FOUND:
        raise TaskNotFound(task_id)
    if result.outcome is UpdateOutcome.CONFLICT:
        assert result.task is not None
        raise VersionConflict(result.task, expected_version)

    assert result.task is not None
    _broadcaster(request).request_broadcast()
    return result.task.to_dict()


@task_router.delete("/tasks/{task_id}", status_code=204)
def delete_task(task_id: str, request: Request) -> Response:
    _store(request).delete(task_id)
    _broadcaster(request).request_broadcast()
    return Response(status_code=204)


@task_router.websocket("/ws")
async def task_updates(websocket: WebSocket) -> None:
    """Stream ``tasks_updated`` snapshots until the client goes away."""
    broadcaster: BroadcastScheduler = websocket.app.state.broadcaster
    await websocket.accept()
    await broadcaster.connect(websocket)
    try:
        while True:
            # Inbound messages carry no meaning; reading detects disconnects.
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        broadcaster.disconnect(websocket)
