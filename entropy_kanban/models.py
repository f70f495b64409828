"""Task record and its wire encoding."""

from __future__ import annotations

import random
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Mapping

DEADLINE_WINDOW = timedelta(days=7)
MIN_VOLATILITY = 0.1
MAX_VOLATILITY = 1.0

# Fields a client may change through an update.
WRITABLE_FIELDS = {"title", "description", "status"}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TaskStatus(str, Enum):
    TODO = "Todo"
    DOING = "Doing"
    DONE = "Done"


@dataclass(frozen=True)
class Task:
    """Immutable snapshot of a task; every mutation produces a new value."""

    id: str
    title: str
    description: str
    status: TaskStatus
    created_at: datetime
    updated_at: datetime
    volatility_factor: float
    deadline: datetime
    version: int = 0
    corrupted: bool = False

    @classmethod
    def new(
        cls,
        title: str,
        description: str,
        *,
        now: datetime,
        rng: random.Random,
    ) -> Task:
        # Draw from (0.1, 1.0]: random() is in [0, 1).
        volatility = MAX_VOLATILITY - rng.random() * (MAX_VOLATILITY - MIN_VOLATILITY)
        return cls(
            id=uuid.UUID(int=rng.getrandbits(128), version=4).hex,
            title=title,
            description=description,
            status=TaskStatus.TODO,
            created_at=now,
            updated_at=now,
            volatility_factor=volatility,
            deadline=now + DEADLINE_WINDOW,
        )

    def with_patch(self, patch: Mapping[str, Any], *, now: datetime) -> Task:
        """Return the accepted-mutation successor of this task."""
        changes = {key: patch[key] for key in WRITABLE_FIELDS if key in patch}
        if "status" in changes:
            changes["status"] = TaskStatus(changes["status"])
        return replace(self, **changes, updated_at=now, version=self.version + 1)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "volatility_factor": self.volatility_factor,
            "deadline": self.deadline.isoformat(),
            "version": self.version,
            "corrupted": self.corrupted,
        }

