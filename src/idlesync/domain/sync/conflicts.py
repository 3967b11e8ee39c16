"""Conflict detection and strategy-driven resolution."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Tuple

from idlesync.domain.queue import Task, TaskQueue, TaskReward, now_ms


class ConflictType(str, Enum):
    TASK_MODIFIED = "task_modified"
    TASK_ADDED = "task_added"
    TASK_REMOVED = "task_removed"
    QUEUE_STATE_CHANGED = "queue_state_changed"


class ResolutionStrategy(str, Enum):
    SERVER_WINS = "server_wins"
    CLIENT_WINS = "client_wins"
    MERGE = "merge"
    MANUAL = "manual"


_TASK_CONFLICTS = {ConflictType.TASK_MODIFIED, ConflictType.TASK_ADDED, ConflictType.TASK_REMOVED}


def _task_or_none(value: Any) -> Task | None:
    if value is None or isinstance(value, Task):
        return value
    return Task.from_dict(value)


@dataclass(frozen=True)
class Conflict:
    """A divergence between local and server state.

    ``server_value``/``client_value`` hold :class:`Task` objects for task conflicts
    and a mapping of queue fields for ``queue_state_changed``. ``None`` means the
    side does not have the task.
    """

    type: ConflictType
    task_id: str | None = None
    server_value: Any = None
    client_value: Any = None
    resolution: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        def _encode(value: Any) -> Any:
            return value.to_dict() if isinstance(value, Task) else value

        return {
            "type": self.type.value,
            "taskId": self.task_id,
            "serverValue": _encode(self.server_value),
            "clientValue": _encode(self.client_value),
            "resolution": self.resolution,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Conflict":
        conflict_type = ConflictType(data["type"])
        server_value = data.get("serverValue")
        client_value = data.get("clientValue")
        if conflict_type in _TASK_CONFLICTS:
            server_value = _task_or_none(server_value)
            client_value = _task_or_none(client_value)
        task_id = data.get("taskId")
        return cls(
            type=conflict_type,
            task_id=str(task_id) if task_id is not None else None,
            server_value=server_value,
            client_value=client_value,
            resolution=data.get("resolution"),
        )


@dataclass(frozen=True)
class ConflictResolutionEntry:
    """Audit record appended for every resolved (or deferred) conflict."""

    timestamp: int
    conflict_type: str
    resolution: str
    task_id: str | None = None
    details: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "conflictType": self.conflict_type,
            "resolution": self.resolution,
            "taskId": self.task_id,
            "details": self.details,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ConflictResolutionEntry":
        return cls(
            timestamp=int(data.get("timestamp", 0)),
            conflict_type=str(data.get("conflictType", "")),
            resolution=str(data.get("resolution", "")),
            task_id=data.get("taskId"),
            details=str(data.get("details", "")),
        )


@dataclass
class ResolutionOutcome:
    queue: TaskQueue
    entries: List[ConflictResolutionEntry] = field(default_factory=list)
    pending: List[Conflict] = field(default_factory=list)


def merge_rewards(server: Iterable[TaskReward], client: Iterable[TaskReward]) -> Tuple[TaskReward, ...]:
    """Union keyed by (type, itemId), keeping the larger quantity per key."""

    merged: Dict[Tuple[str, str], TaskReward] = {}
    for reward in server:
        merged[reward.key] = reward
    for reward in client:
        existing = merged.get(reward.key)
        if existing is None:
            merged[reward.key] = reward
        elif reward.quantity > existing.quantity:
            merged[reward.key] = replace(existing, quantity=reward.quantity)
    return tuple(merged.values())


def merge_tasks(server: Task, client: Task) -> Task:
    return replace(
        server,
        progress=max(server.progress, client.progress),
        priority=client.priority,
        rewards=merge_rewards(server.rewards, client.rewards),
        start_time=max(server.start_time, client.start_time),
        completed=server.completed or client.completed,
    )


def queue_state_fields(queue: TaskQueue) -> Dict[str, Any]:
    return {
        "isPaused": queue.is_paused,
        "isRunning": queue.is_running,
        "pauseReason": queue.pause_reason,
        "currentTask": queue.current_task.to_dict() if queue.current_task else None,
    }


def _apply_queue_fields(queue: TaskQueue, fields: Mapping[str, Any]) -> TaskQueue:
    updates: Dict[str, Any] = {}
    if "isPaused" in fields:
        updates["is_paused"] = bool(fields["isPaused"])
    if "isRunning" in fields:
        updates["is_running"] = bool(fields["isRunning"])
    if "pauseReason" in fields:
        updates["pause_reason"] = fields["pauseReason"]
    if "currentTask" in fields:
        current = fields["currentTask"]
        updates["current_task"] = _task_or_none(current)
    return replace(queue, **updates) if updates else queue


def _tasks_conflict(left: Task, right: Task) -> bool:
    return (
        left.progress != right.progress
        or left.completed != right.completed
        or left.priority != right.priority
        or left.start_time != right.start_time
    )


def detect_conflicts(local: TaskQueue, server: TaskQueue) -> List[Conflict]:
    """Compare two replicas; identical versions are assumed consistent."""

    if local.version == server.version:
        return []
    conflicts: List[Conflict] = []
    local_tasks = {task.id: task for task in local.iter_tasks()}
    server_tasks = {task.id: task for task in server.iter_tasks()}

    for task_id, local_task in local_tasks.items():
        server_task = server_tasks.get(task_id)
        if server_task is None:
            conflicts.append(
                Conflict(ConflictType.TASK_ADDED, task_id, None, local_task, ResolutionStrategy.CLIENT_WINS.value)
            )
        elif _tasks_conflict(local_task, server_task):
            conflicts.append(
                Conflict(ConflictType.TASK_MODIFIED, task_id, server_task, local_task, ResolutionStrategy.MERGE.value)
            )
    for task_id, server_task in server_tasks.items():
        if task_id not in local_tasks:
            conflicts.append(
                Conflict(ConflictType.TASK_REMOVED, task_id, server_task, None, ResolutionStrategy.SERVER_WINS.value)
            )

    if local.is_paused != server.is_paused or local.is_running != server.is_running:
        conflicts.append(
            Conflict(
                ConflictType.QUEUE_STATE_CHANGED,
                None,
                {key: value for key, value in queue_state_fields(server).items() if key != "currentTask"},
                {key: value for key, value in queue_state_fields(local).items() if key != "currentTask"},
                ResolutionStrategy.SERVER_WINS.value,
            )
        )
    return conflicts


class ConflictResolver:
    """Apply a :class:`ResolutionStrategy` to a batch of server-reported conflicts."""

    def __init__(
        self,
        strategy: ResolutionStrategy = ResolutionStrategy.MERGE,
        *,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._strategy = ResolutionStrategy(strategy)
        self._clock = clock

    @property
    def strategy(self) -> ResolutionStrategy:
        return self._strategy

    def resolve(
        self,
        local: TaskQueue,
        server: TaskQueue,
        conflicts: Iterable[Conflict],
        strategy: ResolutionStrategy | str | None = None,
    ) -> ResolutionOutcome:
        chosen = ResolutionStrategy(strategy) if strategy is not None else self._strategy
        timestamp = self._clock()
        outcome = ResolutionOutcome(queue=local)
        for conflict in conflicts:
            if chosen is ResolutionStrategy.MANUAL:
                outcome.pending.append(replace(conflict, resolution=chosen.value))
                outcome.entries.append(
                    ConflictResolutionEntry(
                        timestamp=timestamp,
                        conflict_type=conflict.type.value,
                        resolution=chosen.value,
                        task_id=conflict.task_id,
                        details="deferred to manual resolution",
                    )
                )
                continue
            outcome.queue, details = self.apply(outcome.queue, conflict, chosen)
            outcome.entries.append(
                ConflictResolutionEntry(
                    timestamp=timestamp,
                    conflict_type=conflict.type.value,
                    resolution=chosen.value,
                    task_id=conflict.task_id,
                    details=details,
                )
            )

        version = max(local.version, server.version) + 1
        outcome.queue = replace(outcome.queue, version=version, last_synced=timestamp).sealed()
        return outcome

    def apply(
        self,
        queue: TaskQueue,
        conflict: Conflict,
        strategy: ResolutionStrategy,
    ) -> Tuple[TaskQueue, str]:
        """Resolve a single conflict against ``queue``; return the new queue and a detail line."""

        if strategy is ResolutionStrategy.SERVER_WINS:
            return self._server_wins(queue, conflict)
        if strategy is ResolutionStrategy.CLIENT_WINS:
            return self._client_wins(queue, conflict)
        if strategy is ResolutionStrategy.MERGE:
            return self._merge(queue, conflict)
        raise ValueError(f"strategy {strategy.value} cannot be applied automatically")

    def _server_wins(self, queue: TaskQueue, conflict: Conflict) -> Tuple[TaskQueue, str]:
        if conflict.type is ConflictType.QUEUE_STATE_CHANGED:
            if isinstance(conflict.server_value, Mapping):
                return _apply_queue_fields(queue, conflict.server_value), "queue fields taken from server"
            return queue, "server queue fields missing"
        task_id = conflict.task_id
        server_task = conflict.server_value
        if server_task is None:
            if task_id is None:
                return queue, "conflict without task id ignored"
            return queue.without_task(task_id), f"task {task_id} dropped (absent on server)"
        return queue.with_task(server_task), f"task {server_task.id} taken from server"

    def _client_wins(self, queue: TaskQueue, conflict: Conflict) -> Tuple[TaskQueue, str]:
        if conflict.type is ConflictType.QUEUE_STATE_CHANGED:
            return queue, "local queue fields kept"
        task_id = conflict.task_id
        client_task = conflict.client_value
        if client_task is None:
            if task_id is None:
                return queue, "conflict without task id ignored"
            return queue.without_task(task_id), f"task {task_id} kept absent (removed locally)"
        return queue.with_task(client_task), f"task {client_task.id} kept from client"

    def _merge(self, queue: TaskQueue, conflict: Conflict) -> Tuple[TaskQueue, str]:
        if conflict.type is ConflictType.TASK_ADDED:
            return self._client_wins(queue, conflict)
        if conflict.type is ConflictType.TASK_REMOVED:
            return self._server_wins(queue, conflict)
        if conflict.type is ConflictType.QUEUE_STATE_CHANGED:
            server_fields = conflict.server_value if isinstance(conflict.server_value, Mapping) else {}
            # pause intent stays local; processing state follows the server
            fields = {key: server_fields[key] for key in ("isRunning", "currentTask") if key in server_fields}
            return _apply_queue_fields(queue, fields), "running state from server, pause state kept"
        server_task = conflict.server_value
        client_task = conflict.client_value
        if server_task is None or client_task is None:
            survivor = server_task or client_task
            if survivor is None:
                return queue, "empty task conflict ignored"
            return queue.with_task(survivor), f"task {survivor.id} kept from the only side holding it"
        merged = merge_tasks(server_task, client_task)
        return (
            queue.with_task(merged),
            f"task {merged.id} merged (progress={merged.progress}, priority={merged.priority})",
        )


__all__ = [
    "Conflict",
    "ConflictResolutionEntry",
    "ConflictResolver",
    "ConflictType",
    "ResolutionOutcome",
    "ResolutionStrategy",
    "detect_conflicts",
    "merge_rewards",
    "merge_tasks",
    "queue_state_fields",
]
