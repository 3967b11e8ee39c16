from __future__ import annotations

from idlesync.domain.queue import Operation, OperationType
from idlesync.domain.sync import (
    Conflict,
    ConflictResolutionEntry,
    ConflictType,
    OfflineQueueState,
    SyncStatus,
)


def test_error_ring_buffer_keeps_latest_entries() -> None:
    status = SyncStatus()
    for index in range(13):
        status.record_error(f"failure {index}", limit=10)
    assert len(status.sync_errors) == 10
    assert status.sync_errors[0].error == "failure 3"


def test_restored_state_is_never_in_flight() -> None:
    state = OfflineQueueState.create("p1")
    state.sync_status.sync_in_progress = True
    state.sync_status.manual_sync_requested = True
    state.pending_conflicts.append(Conflict(ConflictType.TASK_REMOVED, "T1"))
    state.append_resolutions([ConflictResolutionEntry(1, "task_added", "client_wins", "T2")], limit=5)

    restored = OfflineQueueState.from_dict(state.to_dict())

    assert restored.sync_status.sync_in_progress is False
    assert restored.sync_status.manual_sync_requested is False
    assert restored.pending_conflicts == state.pending_conflicts
    assert restored.conflict_resolution_log == state.conflict_resolution_log
    assert restored.to_dict()["localVersion"] == state.queue.version


def test_progress_and_pending_count_follow_the_log() -> None:
    state = OfflineQueueState.create("p1", is_online=False)
    assert state.is_offline and not state.sync_status.is_online
    assert state.sync_progress() == 0.0
    ops = [Operation.create(OperationType.RESUME_QUEUE, "p1", version) for version in range(2, 6)]
    for op in ops:
        state.log.append(op)
    state.log.mark_applied([ops[0].id])
    assert state.refresh_pending_count() == 3
    assert state.sync_progress() == 25.0


def test_resolution_log_is_capped() -> None:
    state = OfflineQueueState.create("p1")
    entries = [ConflictResolutionEntry(index, "task_modified", "merge") for index in range(8)]
    state.append_resolutions(entries, limit=5)
    assert [entry.timestamp for entry in state.conflict_resolution_log] == [3, 4, 5, 6, 7]
