"""Time-decay priority scoring."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable

from entropy_kanban.models import Task


@dataclass(frozen=True)
class ScoredTask:
    task: Task
    priority_score: float

    @property
    def overdue(self) -> bool:
        return math.isinf(self.priority_score)

    def to_dict(self) -> dict[str, Any]:
        payload = self.task.to_dict()
        # JSON has no infinity; overdue tasks carry null plus the flag.
        payload["priority_score"] = None if self.overdue else self.priority_score
        payload["overdue"] = self.overdue
        return payload


def score(task: Task, now: datetime) -> float:
    """Urgency grows with idle time, volatility and deadline proximity.

    Returns ``math.inf`` once the deadline has been reached.
    """
    time_since_update = (now - task.updated_at).total_seconds()
    time_until_deadline = (task.deadline - now).total_seconds()
    if time_until_deadline <= 0:
        return math.inf
    return (time_since_update * task.volatility_factor) / time_until_deadline


def rank(tasks: Iterable[Task], now: datetime) -> list[ScoredTask]:
    """Score every task against ``now`` and sort by score, highest first.

    The sort is stable, so equal scores keep their input order; that order
    has no meaning.
    """
    scored = [ScoredTask(task, score(task, now)) for task in tasks]
    return sorted(scored, key=lambda item: item.priority_score, reverse=True)


def snapshot_payload(tasks: Iterable[Task], now: datetime) -> list[dict[str, Any]]:
    return [item.to_dict() for item in rank(tasks, now)]
