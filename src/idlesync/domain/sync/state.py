"""Per-player offline bookkeeping persisted between sessions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

from idlesync.domain.queue import OperationLog, TaskQueue, now_ms

from .conflicts import Conflict, ConflictResolutionEntry


@dataclass
class SyncErrorRecord:
    timestamp: int
    error: str
    operation_id: str | None = None
    retry_count: int = 0
    resolved: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "error": self.error,
            "operationId": self.operation_id,
            "retryCount": self.retry_count,
            "resolved": self.resolved,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SyncErrorRecord":
        return cls(
            timestamp=int(data.get("timestamp", 0)),
            error=str(data.get("error", "")),
            operation_id=data.get("operationId"),
            retry_count=int(data.get("retryCount", 0)),
            resolved=bool(data.get("resolved", False)),
        )


@dataclass
class SyncStatus:
    is_online: bool = True
    last_sync_attempt: int = 0
    last_successful_sync: int = 0
    sync_in_progress: bool = False
    pending_operations_count: int = 0
    conflicts_detected: int = 0
    sync_errors: List[SyncErrorRecord] = field(default_factory=list)
    next_sync_scheduled: int | None = None
    manual_sync_requested: bool = False
    consecutive_failures: int = 0

    def record_error(self, message: str, *, limit: int, operation_id: str | None = None) -> SyncErrorRecord:
        """Append to the capped ring buffer of recent errors."""

        record = SyncErrorRecord(
            timestamp=now_ms(),
            error=message,
            operation_id=operation_id,
            retry_count=self.consecutive_failures,
        )
        self.sync_errors.append(record)
        if len(self.sync_errors) > limit:
            del self.sync_errors[: len(self.sync_errors) - limit]
        return record

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isOnline": self.is_online,
            "lastSyncAttempt": self.last_sync_attempt,
            "lastSuccessfulSync": self.last_successful_sync,
            "syncInProgress": self.sync_in_progress,
            "pendingOperationsCount": self.pending_operations_count,
            "conflictsDetected": self.conflicts_detected,
            "syncErrors": [record.to_dict() for record in self.sync_errors],
            "nextSyncScheduled": self.next_sync_scheduled,
            "manualSyncRequested": self.manual_sync_requested,
            "consecutiveFailures": self.consecutive_failures,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SyncStatus":
        return cls(
            is_online=bool(data.get("isOnline", True)),
            last_sync_attempt=int(data.get("lastSyncAttempt", 0)),
            last_successful_sync=int(data.get("lastSuccessfulSync", 0)),
            # the in-flight flag never survives a restart
            sync_in_progress=False,
            pending_operations_count=int(data.get("pendingOperationsCount", 0)),
            conflicts_detected=int(data.get("conflictsDetected", 0)),
            sync_errors=[SyncErrorRecord.from_dict(item) for item in data.get("syncErrors", [])],
            next_sync_scheduled=data.get("nextSyncScheduled"),
            manual_sync_requested=False,
            consecutive_failures=int(data.get("consecutiveFailures", 0)),
        )


@dataclass
class OfflineQueueState:
    player_id: str
    queue: TaskQueue
    log: OperationLog
    sync_status: SyncStatus = field(default_factory=SyncStatus)
    last_online_sync: int = field(default_factory=now_ms)
    offline_start_time: int = 0
    is_offline: bool = False
    conflict_resolution_log: List[ConflictResolutionEntry] = field(default_factory=list)
    pending_conflicts: List[Conflict] = field(default_factory=list)

    @classmethod
    def create(cls, player_id: str, *, max_pending_operations: int = 1000, is_online: bool = True) -> "OfflineQueueState":
        return cls(
            player_id=player_id,
            queue=TaskQueue.empty(player_id),
            log=OperationLog(max_size=max_pending_operations),
            sync_status=SyncStatus(is_online=is_online),
            is_offline=not is_online,
        )

    def refresh_pending_count(self) -> int:
        self.sync_status.pending_operations_count = self.log.pending_count()
        return self.sync_status.pending_operations_count

    def append_resolutions(self, entries: List[ConflictResolutionEntry], *, limit: int) -> None:
        self.conflict_resolution_log.extend(entries)
        if len(self.conflict_resolution_log) > limit:
            del self.conflict_resolution_log[: len(self.conflict_resolution_log) - limit]

    def sync_progress(self) -> float:
        total = len(self.log)
        if total == 0:
            return 0.0
        return self.log.applied_count() / total * 100

    def to_dict(self) -> Dict[str, Any]:
        return {
            "playerId": self.player_id,
            "queue": self.queue.to_dict(),
            "pendingOperations": self.log.to_list(),
            "lastOnlineSync": self.last_online_sync,
            "offlineStartTime": self.offline_start_time,
            "isOffline": self.is_offline,
            "localVersion": self.queue.version,
            "syncStatus": self.sync_status.to_dict(),
            "conflictResolutionLog": [entry.to_dict() for entry in self.conflict_resolution_log],
            "pendingConflicts": [conflict.to_dict() for conflict in self.pending_conflicts],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], *, max_pending_operations: int = 1000) -> "OfflineQueueState":
        player_id = data.get("playerId")
        if not isinstance(player_id, str) or not player_id:
            raise ValueError("offline state missing playerId")
        return cls(
            player_id=player_id,
            queue=TaskQueue.from_dict(data["queue"]),
            log=OperationLog.from_list(data.get("pendingOperations", []), max_size=max_pending_operations),
            sync_status=SyncStatus.from_dict(data.get("syncStatus", {})),
            last_online_sync=int(data.get("lastOnlineSync", 0)),
            offline_start_time=int(data.get("offlineStartTime", 0)),
            is_offline=bool(data.get("isOffline", False)),
            conflict_resolution_log=[
                ConflictResolutionEntry.from_dict(item) for item in data.get("conflictResolutionLog", [])
            ],
            pending_conflicts=[Conflict.from_dict(item) for item in data.get("pendingConflicts", [])],
        )


__all__ = ["OfflineQueueState", "SyncErrorRecord", "SyncStatus"]
