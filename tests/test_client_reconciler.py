from entropy_kanban.client import NOTICE_TTL_SECONDS, ClientReconciler, NoticeKind


class TickClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def _task(task_id: str, status: str = "Todo", version: int = 0, **extra) -> dict:
    return {"id": task_id, "title": f"task {task_id}", "status": status, "version": version, **extra}


def _reconciler(*tasks) -> ClientReconciler:
    reconciler = ClientReconciler(clock=TickClock())
    reconciler.on_snapshot(list(tasks))
    return reconciler


def test_snapshot_without_shadows_is_verbatim():
    server = [_task("a"), _task("b", "Doing")]
    reconciler = _reconciler(*server)

    assert reconciler.tasks() == server


def test_shadow_survives_snapshots_until_ack():
    reconciler = _reconciler(_task("a"), _task("b"))
    reconciler.apply_optimistic("a", _task("a", "Doing"))

    reconciler.on_snapshot([_task("b", version=4), _task("a")])

    assert reconciler.tasks() == [_task("b", version=4), _task("a", "Doing")]
    assert reconciler.has_shadow("a")

    reconciler.on_ack("a")
    reconciler.on_snapshot([_task("a", "Doing", version=1), _task("b", version=4)])

    assert reconciler.get("a") == _task("a", "Doing", version=1)
    assert reconciler.pending_ids() == set()


def test_ack_with_server_value_adopts_it():
    reconciler = _reconciler(_task("a"))
    reconciler.apply_optimistic("a", _task("a", "Doing"))

    reconciler.on_ack("a", _task("a", "Doing", version=1))

    assert reconciler.get("a")["version"] == 1
    assert not reconciler.has_shadow("a")


def test_conflict_adopts_server_value_and_notifies():
    reconciler = _reconciler(_task("a"))
    reconciler.apply_optimistic("a", _task("a", "Done"))

    notice = reconciler.on_conflict("a", _task("a", "Doing", version=3), attempted_status="Done")

    assert reconciler.get("a") == _task("a", "Doing", version=3)
    assert not reconciler.has_shadow("a")
    assert notice.kind is NoticeKind.CONFLICT
    assert notice.task_title == "task a"
    assert notice.attempted_status == "Done"
    assert notice.server_status == "Doing"
    assert reconciler.notices() == [notice]


def test_rollback_restores_previous_value():
    reconciler = _reconciler(_task("a"))
    previous = reconciler.apply_optimistic("a", _task("a", "Doing"))

    notice = reconciler.rollback("a", previous, NoticeKind.NETWORK, "Network error")

    assert reconciler.get("a") == _task("a")
    assert not reconciler.has_shadow("a")
    assert notice.kind is NoticeKind.NETWORK


def test_notices_expire_by_clock_alone():
    clock = TickClock()
    reconciler = ClientReconciler(clock=clock)
    reconciler.on_snapshot([_task("a")])
    reconciler.apply_optimistic("a", _task("a", "Done"))
    reconciler.on_conflict("a", _task("a", "Doing", version=1))

    clock.now += NOTICE_TTL_SECONDS - 0.1
    assert len(reconciler.notices()) == 1
    clock.now += 0.2
    assert reconciler.notices() == []


def test_dismiss_notice():
    reconciler = _reconciler(_task("a"))
    notice = reconciler.rollback("a", _task("a"), NoticeKind.SERVER, "Server error")

    reconciler.dismiss(notice.id)

    assert reconciler.notices() == []


def test_optimistic_delete_hides_task_from_snapshots():
    reconciler = _reconciler(_task("a"), _task("b"))

    removed = reconciler.begin_delete("a")
    reconciler.on_snapshot([_task("a"), _task("b")])

    assert removed == _task("a")
    assert [task["id"] for task in reconciler.tasks()] == ["b"]

    reconciler.ack_delete("a")
    reconciler.on_snapshot([_task("b")])
    assert reconciler.pending_ids() == set()


def test_failed_delete_restores_task_in_place():
    reconciler = _reconciler(_task("a"), _task("b"), _task("c"))
    reconciler.begin_delete("b")

    notice = reconciler.rollback_delete("b", NoticeKind.SERVER, "Server error")

    assert [task["id"] for task in reconciler.tasks()] == ["a", "b", "c"]
    assert notice.task_title == "task b"
    assert reconciler.pending_ids() == set()


def test_optimistic_create_lifecycle():
    reconciler = _reconciler(_task("a"))

    temp_id = reconciler.begin_create("new", "text")
    reconciler.on_snapshot([_task("a")])
    assert [task["id"] for task in reconciler.tasks()] == ["a", temp_id]
    assert reconciler.get(temp_id)["pending"] is True

    reconciler.ack_create(temp_id, _task("z"))

    assert [task["id"] for task in reconciler.tasks()] == ["a", "z"]
    assert reconciler.pending_ids() == set()


def test_ack_create_after_snapshot_does_not_duplicate():
    reconciler = _reconciler()
    temp_id = reconciler.begin_create("new")
    reconciler.on_snapshot([_task("z")])

    reconciler.ack_create(temp_id, _task("z"))

    assert [task["id"] for task in reconciler.tasks()] == ["z"]


def test_snapshot_before_create_ack_hides_placeholder():
    reconciler = _reconciler(_task("a"))
    temp_id = reconciler.begin_create("new", "text")
    created = _task("z", title="new", description="text")

    reconciler.on_snapshot([_task("a"), created])
    assert [task["id"] for task in reconciler.tasks()] == ["a", "z"]
    assert temp_id in reconciler.pending_ids()

    reconciler.on_snapshot([created, _task("a")])
    assert [task["id"] for task in reconciler.tasks()] == ["z", "a"]

    reconciler.ack_create(temp_id, created)

    assert [task["id"] for task in reconciler.tasks()] == ["z", "a"]
    assert reconciler.pending_ids() == set()


def test_existing_lookalike_task_keeps_placeholder_visible():
    twin = _task("a", title="new", description="text")
    reconciler = _reconciler(twin)
    temp_id = reconciler.begin_create("new", "text")

    reconciler.on_snapshot([twin])

    assert [task["id"] for task in reconciler.tasks()] == ["a", temp_id]


def test_failed_create_removes_placeholder():
    reconciler = _reconciler(_task("a"))
    temp_id = reconciler.begin_create("new")

    notice = reconciler.rollback_create(temp_id, NoticeKind.NETWORK, "Network error")

    assert [task["id"] for task in reconciler.tasks()] == ["a"]
    assert notice.task_title == "new"
    assert reconciler.pending_ids() == set()


def test_handle_message_only_accepts_task_updates():
    reconciler = _reconciler()

    assert reconciler.handle_message({"event": "other", "tasks": [_task("a")]}) is False
    assert reconciler.tasks() == []
    assert reconciler.handle_message({"event": "tasks_updated", "tasks": [_task("a")]})
    assert reconciler.tasks() == [_task("a")]
