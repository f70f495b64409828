import asyncio
import threading

import pytest

from entropy_kanban.broadcast import TASKS_UPDATED_EVENT, BroadcastScheduler
from entropy_kanban.versioning import VersionGuard


class RecordingObserver:
    def __init__(self) -> None:
        self.messages = []

    async def send_json(self, data):
        self.messages.append(data)


class BrokenObserver(RecordingObserver):
    """Accepts the first message, then the connection breaks."""

    async def send_json(self, data):
        if self.messages:
            raise ConnectionError("gone")
        self.messages.append(data)


class StuckObserver(RecordingObserver):
    async def send_json(self, data):
        if self.messages:
            await asyncio.sleep(60)
        self.messages.append(data)


def test_snapshot_is_scored_and_sorted(store, clock):
    guard = VersionGuard(store)
    idle = store.create("idle")
    store.create("fresh")
    guard.apply_update(idle.id, {"status": "Doing"}, 0)
    clock.advance(3600)
    store.create("newest")

    payload = BroadcastScheduler(store).snapshot()

    assert payload["event"] == TASKS_UPDATED_EVENT
    titles = [task["title"] for task in payload["tasks"]]
    assert titles[0] in {"idle", "fresh"}
    assert titles[-1] == "newest"
    scores = [task["priority_score"] for task in payload["tasks"]]
    assert scores == sorted(scores, reverse=True)
    assert all("priority_score" not in task.to_dict() for task in store.list())


@pytest.mark.asyncio
async def test_connect_sends_fresh_snapshot(store):
    store.create("A")
    broadcaster = BroadcastScheduler(store)
    observer = RecordingObserver()

    await broadcaster.connect(observer)

    assert len(observer.messages) == 1
    assert observer.messages[0]["tasks"][0]["title"] == "A"
    assert broadcaster.observer_count() == 1


@pytest.mark.asyncio
async def test_broadcast_reaches_every_observer_and_drops_failures(store):
    broadcaster = BroadcastScheduler(store, send_timeout=0.05)
    good = RecordingObserver()
    await broadcaster.connect(good)
    await broadcaster.connect(BrokenObserver())
    await broadcaster.connect(StuckObserver())
    assert broadcaster.observer_count() == 3

    store.create("A")
    await broadcaster.broadcast()

    assert [len(m["tasks"]) for m in good.messages] == [0, 1]
    assert broadcaster.observer_count() == 1


@pytest.mark.asyncio
async def test_disconnected_observer_gets_nothing(store):
    broadcaster = BroadcastScheduler(store)
    observer = RecordingObserver()
    await broadcaster.connect(observer)
    broadcaster.disconnect(observer)

    await broadcaster.broadcast()

    assert len(observer.messages) == 1


@pytest.mark.asyncio
async def test_heartbeat_pushes_without_changes(store):
    broadcaster = BroadcastScheduler(store, heartbeat_interval=0.02)
    observer = RecordingObserver()
    await broadcaster.connect(observer)

    broadcaster.start()
    await asyncio.sleep(0.15)
    await broadcaster.stop()

    assert len(observer.messages) >= 3
    assert broadcaster.running is False


@pytest.mark.asyncio
async def test_request_from_worker_thread_pushes_immediately(store):
    broadcaster = BroadcastScheduler(store, heartbeat_interval=60)
    observer = RecordingObserver()
    await broadcaster.connect(observer)
    broadcaster.start()
    await asyncio.sleep(0)

    def write():
        store.create("from thread")
        broadcaster.request_broadcast()

    worker = threading.Thread(target=write)
    worker.start()
    worker.join()
    for _ in range(50):
        if len(observer.messages) > 1:
            break
        await asyncio.sleep(0.01)
    await broadcaster.stop()

    assert observer.messages[-1]["tasks"][0]["title"] == "from thread"


@pytest.mark.asyncio
async def test_request_before_start_is_ignored(store):
    broadcaster = BroadcastScheduler(store)

    broadcaster.request_broadcast()

    assert broadcaster.push_count == 0


@pytest.mark.asyncio
async def test_without_heartbeat_only_requests_push(store):
    broadcaster = BroadcastScheduler(store, heartbeat_interval=0.01)
    observer = RecordingObserver()
    await broadcaster.connect(observer)

    broadcaster.start(heartbeat=False)
    await asyncio.sleep(0.1)
    assert broadcaster.push_count == 0

    store.create("requested")
    broadcaster.request_broadcast()
    for _ in range(50):
        if broadcaster.push_count:
            break
        await asyncio.sleep(0.01)
    await broadcaster.stop()

    assert broadcaster.push_count == 1
    assert observer.messages[-1]["tasks"][0]["title"] == "requested"
