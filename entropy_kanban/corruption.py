"""Random decay of idle in-progress tasks."""

from __future__ import annotations

import asyncio
import logging
import random
import re
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Callable

from entropy_kanban.errors import TaskNotFound
from entropy_kanban.models import Task, TaskStatus
from entropy_kanban.store import TaskStore

logger = logging.getLogger(__name__)

BLOCK_GLYPH = "█"
CORRUPTION_MARKER = "⚠️ CORRUPTED: "
TRUNCATE_LENGTH = 20
MASK_PROBABILITY = 0.3

_VOWELS = re.compile(r"[aeiou]", re.IGNORECASE)


def shuffle_characters(text: str, rng: random.Random) -> str:
    chars = list(text)
    rng.shuffle(chars)
    return "".join(chars)


def blackout_vowels(text: str, rng: random.Random) -> str:
    return _VOWELS.sub(BLOCK_GLYPH, text)


def mask_characters(text: str, rng: random.Random) -> str:
    return "".join("?" if rng.random() < MASK_PROBABILITY else c for c in text)


def truncate_and_flag(text: str, rng: random.Random) -> str:
    return f"{CORRUPTION_MARKER}{text[:TRUNCATE_LENGTH]}..."


def reverse_words(text: str, rng: random.Random) -> str:
    return " ".join(reversed(text.split(" ")))


Operator = Callable[[str, random.Random], str]

OPERATORS: tuple[Operator, ...] = (
    shuffle_characters,
    blackout_vowels,
    mask_characters,
    truncate_and_flag,
    reverse_words,
)


@dataclass(frozen=True)
class CorruptionEvent:
    task: Task
    operator: str
    previous_description: str


def is_stale(task: Task, now: datetime, threshold: timedelta) -> bool:
    return task.status is TaskStatus.DOING and now - task.updated_at > threshold


class CorruptionScheduler:
    """Every ``interval`` seconds, degrades one stale Doing task at random.

    This is a privileged writer: it skips the version check and leaves
    ``version`` and ``updated_at`` alone, but it still goes through the
    store's per-task lock.
    """

    def __init__(
        self,
        store: TaskStore,
        *,
        rng: random.Random | None = None,
        interval: float = 10.0,
        stale_threshold: float = 30.0,
        on_corrupt: Callable[[CorruptionEvent], None] | None = None,
    ) -> None:
        self._store = store
        self._rng = rng or random.Random()
        self._interval = interval
        self._threshold = timedelta(seconds=stale_threshold)
        self._on_corrupt = on_corrupt
        self._runner: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._runner is not None and not self._runner.done()

    def candidates(self, now: datetime) -> list[Task]:
        stale = [task for task in self._store.list() if is_stale(task, now, self._threshold)]
        # Store order is arbitrary; sort so seeded runs repeat.
        return sorted(stale, key=lambda task: task.id)

    def tick(self, now: datetime | None = None) -> CorruptionEvent | None:
        now = now or self._store.now()
        candidates = self.candidates(now)
        if not candidates:
            return None

        target = self._rng.choice(candidates)
        operator = self._rng.choice(OPERATORS)
        previous: list[str] = []

        def corrupt(current: Task) -> Task:
            # Re-check under the lock: a client may have moved it meanwhile.
            if not current.description or not is_stale(current, now, self._threshold):
                return current
            previous.append(current.description)
            return replace(
                current,
                description=operator(current.description, self._rng),
                corrupted=True,
            )

        try:
            updated = self._store.mutate(target.id, corrupt)
        except TaskNotFound:
            return None
        if not previous:
            return None

        event = CorruptionEvent(updated, operator.__name__, previous[0])
        logger.info("Corrupted task: %s (%s)", updated.title, event.operator)
        if self._on_corrupt is not None:
            self._on_corrupt(event)
        return event

    def start(self) -> None:
        if self.running:
            return
        self._runner = asyncio.get_running_loop().create_task(self._run())

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

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                self.tick()
            except Exception:
                logger.exception("Corruption tick failed")
