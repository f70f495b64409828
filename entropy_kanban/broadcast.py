"""Snapshot broadcasting to connected observers."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Protocol

from entropy_kanban.scoring import snapshot_payload
from entropy_kanban.store import TaskStore

logger = logging.getLogger(__name__)

TASKS_UPDATED_EVENT = "tasks_updated"


class Observer(Protocol):
    async def send_json(self, data: Any) -> None: ...


class BroadcastScheduler:
    """Pushes the full scored task list to every observer.

    A push happens on every heartbeat and as soon as possible after
    ``request_broadcast``. Requests arriving while a push is pending collapse
    into that push; each push is a full state transfer, so nothing is lost.
    Delivery is best-effort: an observer that fails or times out is dropped.
    """

    def __init__(
        self,
        store: TaskStore,
        *,
        heartbeat_interval: float = 2.0,
        send_timeout: float = 5.0,
    ) -> None:
        self._store = store
        self._heartbeat_interval = heartbeat_interval
        self._send_timeout = send_timeout
        self._observers: set[Observer] = set()
        self._observers_lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._wake: asyncio.Event | None = None
        self._runner: asyncio.Task[None] | None = None
        self.push_count = 0

    @property
    def running(self) -> bool:
        return self._runner is not None and not self._runner.done()

    def snapshot(self) -> dict[str, Any]:
        tasks = self._store.list()
        return {
            "event": TASKS_UPDATED_EVENT,
            "tasks": snapshot_payload(tasks, self._store.now()),
        }

    def observer_count(self) -> int:
        with self._observers_lock:
            return len(self._observers)

    async def connect(self, observer: Observer) -> None:
        """Register an observer and send it a fresh snapshot right away."""
        with self._observers_lock:
            self._observers.add(observer)
        logger.info("Observer connected (%d total)", self.observer_count())
        await self._deliver(observer, self.snapshot())

    def disconnect(self, observer: Observer) -> None:
        with self._observers_lock:
            self._observers.discard(observer)
        logger.info("Observer disconnected (%d total)", self.observer_count())

    def request_broadcast(self) -> None:
        """Ask for an immediate push. Safe to call from any thread."""
        loop, wake = self._loop, self._wake
        if loop is None or wake is None or loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            wake.set()
        else:
            loop.call_soon_threadsafe(wake.set)

    async def broadcast(self) -> None:
        payload = self.snapshot()
        with self._observers_lock:
            observers = list(self._observers)
        self.push_count += 1
        if not observers:
            return
        await asyncio.gather(
            *(self._deliver(observer, payload) for observer in observers)
        )

    async def _deliver(self, observer: Observer, payload: dict[str, Any]) -> None:
        try:
            await asyncio.wait_for(
                observer.send_json(payload), timeout=self._send_timeout
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Dropping observer after failed send: %r", exc)
            with self._observers_lock:
                self._observers.discard(observer)

    def start(self, *, heartbeat: bool = True) -> None:
        """Start pushing on request, and on every heartbeat unless disabled."""
        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._wake = asyncio.Event()
        timeout = self._heartbeat_interval if heartbeat else None
        self._runner = self._loop.create_task(self._run(timeout))

    async def stop(self) -> None:
        runner = self._runner
        self._runner = None
        if runner is None:
            return
        runner.cancel()
        try:
            await runner
        except asyncio.CancelledError:
            pass
        self._loop = None
        self._wake = None

    async def _run(self, timeout: float | None) -> None:
        assert self._wake is not None
        wake = self._wake
        while True:
            try:
                await asyncio.wait_for(wake.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                pass
            wake.clear()
            try:
                await self.broadcast()
            except Exception:
                logger.exception("Broadcast failed")
