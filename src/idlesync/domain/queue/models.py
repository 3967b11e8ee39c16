"""Value objects for the player task queue."""

from __future__ import annotations

import hashlib
import json
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Mapping, Tuple


def now_ms() -> int:
    return int(time.time() * 1000)


class TaskError(ValueError):
    """Raised when a task or queue payload is invalid."""


@dataclass(frozen=True)
class TaskReward:
    type: str
    quantity: int = 1
    item_id: str | None = None

    @property
    def key(self) -> Tuple[str, str]:
        return (self.type, self.item_id or "none")

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": self.type, "quantity": self.quantity}
        if self.item_id is not None:
            payload["itemId"] = self.item_id
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TaskReward":
        if not isinstance(data, Mapping) or not isinstance(data.get("type"), str):
            raise TaskError("reward type missing or invalid")
        item_id = data.get("itemId")
        return cls(
            type=data["type"],
            quantity=int(data.get("quantity", 1)),
            item_id=str(item_id) if item_id is not None else None,
        )


@dataclass(frozen=True)
class Task:
    """A unit of queued work. Replaced wholesale on every update."""

    id: str
    type: str
    duration: int
    name: str = ""
    progress: float = 0.0
    priority: int = 0
    start_time: int = 0
    completed: bool = False
    rewards: Tuple[TaskReward, ...] = ()
    activity_data: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.id:
            raise TaskError("task id must be a non-empty string")
        if not self.type:
            raise TaskError("task type must be a non-empty string")
        if self.duration < 0:
            raise TaskError("task duration must be non-negative")
        if not 0.0 <= self.progress <= 1.0:
            raise TaskError(f"task progress out of range: {self.progress}")

    def with_changes(self, changes: Mapping[str, Any]) -> "Task":
        """Return a copy with wire-format ``changes`` applied."""

        merged = self.to_dict()
        merged.update(changes)
        merged["id"] = self.id
        return Task.from_dict(merged)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "name": self.name,
            "duration": self.duration,
            "progress": self.progress,
            "priority": self.priority,
            "startTime": self.start_time,
            "completed": self.completed,
            "rewards": [reward.to_dict() for reward in self.rewards],
            "activityData": json.loads(json.dumps(self.activity_data)),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Task":
        if not isinstance(data, Mapping):
            raise TaskError("task payload must be an object")
        if "id" not in data or "type" not in data:
            raise TaskError("task payload missing id or type")
        rewards_payload = data.get("rewards") or []
        if not isinstance(rewards_payload, list):
            raise TaskError("task rewards must be a list")
        activity = data.get("activityData") or {}
        if not isinstance(activity, dict):
            raise TaskError("task activityData must be an object")
        try:
            return cls(
                id=str(data["id"]),
                type=str(data["type"]),
                name=str(data.get("name", "")),
                duration=int(data.get("duration", 0)),
                progress=float(data.get("progress", 0.0)),
                priority=int(data.get("priority", 0)),
                start_time=int(data.get("startTime", 0)),
                completed=bool(data.get("completed", False)),
                rewards=tuple(TaskReward.from_dict(item) for item in rewards_payload),
                activity_data=dict(activity),
            )
        except (TypeError, ValueError) as exc:
            if isinstance(exc, TaskError):
                raise
            raise TaskError(f"task payload invalid: {exc}") from exc

    def diff(self, other: "Task") -> Dict[str, Any]:
        """Wire-format fields whose value differs in ``other``."""

        mine = self.to_dict()
        theirs = other.to_dict()
        return {key: value for key, value in theirs.items() if key != "id" and mine.get(key) != value}


@dataclass(frozen=True)
class TaskQueue:
    """Per-player queue aggregate. ``version`` never decreases."""

    player_id: str
    current_task: Task | None = None
    queued_tasks: Tuple[Task, ...] = ()
    is_running: bool = False
    is_paused: bool = False
    pause_reason: str | None = None
    paused_at: int | None = None
    resumed_at: int | None = None
    version: int = 1
    checksum: str = ""
    last_synced: int = 0
    last_updated: int = 0

    @classmethod
    def empty(cls, player_id: str) -> "TaskQueue":
        timestamp = now_ms()
        queue = cls(player_id=player_id, last_synced=timestamp, last_updated=timestamp)
        return queue.sealed()

    def task_ids(self) -> List[str]:
        return [task.id for task in self.queued_tasks]

    def iter_tasks(self) -> Iterable[Task]:
        if self.current_task is not None:
            yield self.current_task
        yield from self.queued_tasks

    def find_task(self, task_id: str) -> Task | None:
        for task in self.iter_tasks():
            if task.id == task_id:
                return task
        return None

    def replace_task(self, task: Task) -> "TaskQueue":
        if self.current_task is not None and self.current_task.id == task.id:
            return replace(self, current_task=task)
        tasks = tuple(task if existing.id == task.id else existing for existing in self.queued_tasks)
        return replace(self, queued_tasks=tasks)

    def without_task(self, task_id: str) -> "TaskQueue":
        current = self.current_task
        if current is not None and current.id == task_id:
            current = None
        tasks = tuple(task for task in self.queued_tasks if task.id != task_id)
        return replace(self, current_task=current, queued_tasks=tasks)

    def with_task(self, task: Task) -> "TaskQueue":
        if self.find_task(task.id) is not None:
            return self.replace_task(task)
        return replace(self, queued_tasks=self.queued_tasks + (task,))

    def compute_checksum(self) -> str:
        return queue_checksum(self)

    def sealed(self) -> "TaskQueue":
        """Copy with the checksum recomputed; every persisted write goes through here."""

        return replace(self, checksum=self.compute_checksum())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "playerId": self.player_id,
            "currentTask": self.current_task.to_dict() if self.current_task else None,
            "queuedTasks": [task.to_dict() for task in self.queued_tasks],
            "isRunning": self.is_running,
            "isPaused": self.is_paused,
            "pauseReason": self.pause_reason,
            "pausedAt": self.paused_at,
            "resumedAt": self.resumed_at,
            "version": self.version,
            "checksum": self.checksum,
            "lastSynced": self.last_synced,
            "lastUpdated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TaskQueue":
        if not isinstance(data, Mapping):
            raise TaskError("queue payload must be an object")
        player_id = data.get("playerId")
        if not isinstance(player_id, str) or not player_id:
            raise TaskError("queue payload missing playerId")
        queued = data.get("queuedTasks") or []
        if not isinstance(queued, list):
            raise TaskError("queue queuedTasks must be a list")
        current = data.get("currentTask")
        return cls(
            player_id=player_id,
            current_task=Task.from_dict(current) if current else None,
            queued_tasks=tuple(Task.from_dict(item) for item in queued),
            is_running=bool(data.get("isRunning", False)),
            is_paused=bool(data.get("isPaused", False)),
            pause_reason=data.get("pauseReason"),
            paused_at=data.get("pausedAt"),
            resumed_at=data.get("resumedAt"),
            version=int(data.get("version", 1)),
            checksum=str(data.get("checksum", "")),
            last_synced=int(data.get("lastSynced", 0) or 0),
            last_updated=int(data.get("lastUpdated", 0) or 0),
        )


def fingerprint(payload: Any) -> str:
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]


def queue_checksum(queue: TaskQueue) -> str:
    return fingerprint(
        {
            "version": queue.version,
            "currentTaskId": queue.current_task.id if queue.current_task else None,
            "queuedTaskIds": queue.task_ids(),
            "isRunning": queue.is_running,
            "isPaused": queue.is_paused,
        }
    )


__all__ = [
    "Task",
    "TaskError",
    "TaskQueue",
    "TaskReward",
    "fingerprint",
    "now_ms",
    "queue_checksum",
]
