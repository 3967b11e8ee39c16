"""Append-only log of local mutation intents awaiting server confirmation."""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping

from .models import now_ms


class OperationType(str, Enum):
    ADD_TASK = "add_task"
    REMOVE_TASK = "remove_task"
    REORDER_TASKS = "reorder_tasks"
    PAUSE_QUEUE = "pause_queue"
    RESUME_QUEUE = "resume_queue"
    UPDATE_TASK = "update_task"
    CLEAR_QUEUE = "clear_queue"


def generate_operation_id() -> str:
    return f"op-{now_ms()}-{secrets.token_hex(5)}"


@dataclass(frozen=True)
class Operation:
    """A recorded intent. ``local_version`` is the queue version after applying it."""

    id: str
    type: OperationType
    player_id: str
    local_version: int
    payload: Dict[str, Any] = field(default_factory=dict)
    task_id: str | None = None
    timestamp: int = field(default_factory=now_ms)
    applied: bool = False

    @classmethod
    def create(
        cls,
        op_type: OperationType,
        player_id: str,
        local_version: int,
        payload: Mapping[str, Any] | None = None,
        *,
        task_id: str | None = None,
    ) -> "Operation":
        return cls(
            id=generate_operation_id(),
            type=op_type,
            player_id=player_id,
            local_version=local_version,
            payload=dict(payload or {}),
            task_id=task_id,
        )

    def mark_applied(self) -> "Operation":
        return replace(self, applied=True)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "type": self.type.value,
            "playerId": self.player_id,
            "timestamp": self.timestamp,
            "data": self.payload,
            "localVersion": self.local_version,
            "applied": self.applied,
        }
        if self.task_id is not None:
            payload["taskId"] = self.task_id
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Operation":
        return cls(
            id=str(data["id"]),
            type=OperationType(data["type"]),
            player_id=str(data["playerId"]),
            local_version=int(data["localVersion"]),
            payload=dict(data.get("data") or {}),
            task_id=data.get("taskId"),
            timestamp=int(data.get("timestamp", 0)),
            applied=bool(data.get("applied", False)),
        )


class OperationLog:
    """Ordered operations for one player.

    A new ``reorder_tasks`` entry supersedes earlier unapplied reorders. Once the
    log grows past ``max_size`` the oldest entries are evicted whether or not they
    were applied.
    """

    def __init__(self, operations: Iterable[Operation] = (), *, max_size: int = 1000) -> None:
        if max_size < 1:
            raise ValueError("operation log max_size must be positive")
        self._max_size = max_size
        self._entries: List[Operation] = list(operations)
        self._evicted = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(list(self._entries))

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def evicted_count(self) -> int:
        return self._evicted

    def append(self, operation: Operation) -> List[Operation]:
        """Record ``operation``; return any entries evicted by the size cap."""

        if operation.type is OperationType.REORDER_TASKS:
            self._entries = [
                entry
                for entry in self._entries
                if entry.applied or entry.type is not OperationType.REORDER_TASKS
            ]
        self._entries.append(operation)
        overflow = len(self._entries) - self._max_size
        if overflow <= 0:
            return []
        evicted = self._entries[:overflow]
        self._entries = self._entries[overflow:]
        self._evicted += len(evicted)
        return evicted

    def pending(self) -> List[Operation]:
        return [entry for entry in self._entries if not entry.applied]

    def pending_count(self) -> int:
        return sum(1 for entry in self._entries if not entry.applied)

    def applied_count(self) -> int:
        return sum(1 for entry in self._entries if entry.applied)

    def get(self, operation_id: str) -> Operation | None:
        for entry in self._entries:
            if entry.id == operation_id:
                return entry
        return None

    def mark_applied(self, operation_ids: Iterable[str]) -> int:
        wanted = set(operation_ids)
        marked = 0
        updated: List[Operation] = []
        for entry in self._entries:
            if entry.id in wanted and not entry.applied:
                entry = entry.mark_applied()
                marked += 1
            updated.append(entry)
        self._entries = updated
        return marked

    def drop(self, operation_id: str) -> Operation | None:
        for index, entry in enumerate(self._entries):
            if entry.id == operation_id:
                return self._entries.pop(index)
        return None

    def to_list(self) -> List[Dict[str, Any]]:
        return [entry.to_dict() for entry in self._entries]

    @classmethod
    def from_list(cls, items: Iterable[Mapping[str, Any]], *, max_size: int = 1000) -> "OperationLog":
        return cls((Operation.from_dict(item) for item in items), max_size=max_size)


__all__ = ["Operation", "OperationLog", "OperationType", "generate_operation_id"]
