"""Wire format for incremental synchronisation rounds."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from idlesync.domain.queue import Operation, OperationType, TaskQueue, fingerprint, now_ms

from .conflicts import Conflict

_ADD_TASK_FIELDS = ("id", "type", "name", "duration", "activityData", "priority")


def minimize_payload(operation: Operation) -> Dict[str, Any]:
    """Strip an operation payload down to what the server needs to replay it."""

    data = operation.payload
    if operation.type is OperationType.ADD_TASK:
        return {key: data[key] for key in _ADD_TASK_FIELDS if key in data}
    if operation.type is OperationType.REMOVE_TASK:
        return {"taskId": operation.task_id}
    if operation.type is OperationType.UPDATE_TASK:
        # update payloads are recorded as a diff already
        return {key: value for key, value in data.items() if key != "id"}
    return dict(data)


def operations_checksum(operations: Iterable[Operation]) -> str:
    return fingerprint(
        [
            {"id": op.id, "type": op.type.value, "timestamp": op.timestamp, "taskId": op.task_id}
            for op in operations
        ]
    )


@dataclass(frozen=True)
class SyncPacket:
    player_id: str
    from_version: int
    to_version: int
    operations: List[Operation]
    checksum: str
    timestamp: int

    @property
    def operation_ids(self) -> List[str]:
        return [op.id for op in self.operations]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "playerId": self.player_id,
            "fromVersion": self.from_version,
            "toVersion": self.to_version,
            "operations": [op.to_dict() for op in self.operations],
            "checksum": self.checksum,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SyncPacket":
        return cls(
            player_id=str(data["playerId"]),
            from_version=int(data["fromVersion"]),
            to_version=int(data["toVersion"]),
            operations=[Operation.from_dict(item) for item in data.get("operations", [])],
            checksum=str(data.get("checksum", "")),
            timestamp=int(data.get("timestamp", 0)),
        )


def build_packet(
    player_id: str,
    pending: Sequence[Operation],
    *,
    batch_size: int | None = None,
    timestamp: int | None = None,
) -> SyncPacket:
    """Build a packet from the oldest ``batch_size`` unapplied operations."""

    batch = list(pending)
    if batch_size is not None and batch_size > 0:
        batch = batch[:batch_size]
    if not batch:
        raise ValueError("cannot build a sync packet without pending operations")
    minimized = [replace(op, payload=minimize_payload(op)) for op in batch]
    return SyncPacket(
        player_id=player_id,
        from_version=max(batch[0].local_version - 1, 0),
        to_version=batch[-1].local_version,
        operations=minimized,
        checksum=operations_checksum(batch),
        timestamp=timestamp if timestamp is not None else now_ms(),
    )


@dataclass(frozen=True)
class SyncResponse:
    success: bool
    server_queue: TaskQueue
    conflicts: List[Conflict] = field(default_factory=list)
    applied_operations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "conflicts": [conflict.to_dict() for conflict in self.conflicts],
            "serverQueue": self.server_queue.to_dict(),
            "appliedOperations": list(self.applied_operations),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SyncResponse":
        if not isinstance(data, Mapping):
            raise ValueError("sync response must be an object")
        if "serverQueue" not in data or not isinstance(data["serverQueue"], Mapping):
            raise ValueError("sync response missing serverQueue")
        conflicts = data.get("conflicts") or []
        applied = data.get("appliedOperations") or []
        if not isinstance(conflicts, list) or not isinstance(applied, list):
            raise ValueError("sync response conflicts/appliedOperations must be lists")
        return cls(
            success=bool(data.get("success", False)),
            server_queue=TaskQueue.from_dict(data["serverQueue"]),
            conflicts=[Conflict.from_dict(item) for item in conflicts],
            applied_operations=[str(item) for item in applied],
        )


@dataclass(frozen=True)
class SyncResult:
    success: bool
    resolved_queue: TaskQueue
    sync_timestamp: int
    conflicts: List[Conflict] = field(default_factory=list)
    applied_operations: List[str] = field(default_factory=list)
    pending_conflicts: List[Conflict] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "conflicts": [conflict.to_dict() for conflict in self.conflicts],
            "resolvedQueue": self.resolved_queue.to_dict(),
            "syncTimestamp": self.sync_timestamp,
            "appliedOperations": list(self.applied_operations),
            "pendingConflicts": [conflict.to_dict() for conflict in self.pending_conflicts],
        }


__all__ = [
    "SyncPacket",
    "SyncResponse",
    "SyncResult",
    "build_packet",
    "minimize_payload",
    "operations_checksum",
]
