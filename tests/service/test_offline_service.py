from __future__ import annotations

import pytest

from idlesync.adapters.memory_store import InMemoryQueueStateStore
from idlesync.app.sync import OfflineQueueService, QueueEvent, QueueEventStream, SyncConfiguration
from idlesync.domain.queue import OperationType, OperationValidationError, Task, TaskError
from idlesync.domain.sync import IndicatorStatus, OfflineQueueState
from idlesync.ports.store import QueueStoreError
from idlesync.settings import RuntimeSettings
from idlesync.utils.telemetry import TelemetryWriteWarning, iter_events


def _task(task_id: str, **extra) -> dict:
    payload = {"id": task_id, "type": "woodcutting", "name": f"Chop {task_id}", "duration": 60_000}
    payload.update(extra)
    return payload


class FailingStore(InMemoryQueueStateStore):
    def save(self, player_id: str, state: OfflineQueueState) -> None:
        raise QueueStoreError("disk full")


def test_mutations_apply_locally_and_log_operations(service: OfflineQueueService, memory_store) -> None:
    service.add_task("p1", _task("T1"))
    service.add_task("p1", Task(id="T2", type="mining", duration=1_000))
    service.reorder_tasks("p1", ["T2", "T1"])
    service.pause_queue("p1", "raid")

    queue = service.get_queue_state("p1")
    assert queue.task_ids() == ["T2", "T1"]
    assert queue.is_paused and queue.pause_reason == "raid"
    assert queue.version == 5
    assert queue.checksum == queue.compute_checksum()

    state = service.get_offline_state("p1")
    assert [op.type for op in state.log] == [
        OperationType.ADD_TASK,
        OperationType.ADD_TASK,
        OperationType.REORDER_TASKS,
        OperationType.PAUSE_QUEUE,
    ]
    assert [op.local_version for op in state.log] == [2, 3, 4, 5]
    assert state.sync_status.pending_operations_count == 4
    assert memory_store.save_count == 4


def test_remove_resume_and_clear(service: OfflineQueueService) -> None:
    service.add_task("p1", _task("T1"))
    service.add_task("p1", _task("T2"))
    service.pause_queue("p1")
    service.remove_task("p1", "T1")
    service.resume_queue("p1")
    queue = service.get_queue_state("p1")
    assert queue.task_ids() == ["T2"]
    assert not queue.is_paused and queue.resumed_at is not None

    cleared = service.clear_queue("p1")
    assert cleared.queued_tasks == ()
    assert cleared.version == queue.version + 1


def test_update_task_records_only_changed_fields(service: OfflineQueueService) -> None:
    service.add_task("p1", _task("T1", priority=1))
    updated = service.update_task("p1", "T1", {"priority": 4, "name": "Chop T1"})
    assert updated.priority == 4

    last = list(service.get_offline_state("p1").log)[-1]
    assert last.type is OperationType.UPDATE_TASK
    assert last.payload == {"priority": 4}
    assert last.task_id == "T1"

    version = service.get_queue_state("p1").version
    service.update_task("p1", "T1", {"priority": 4})
    assert service.get_queue_state("p1").version == version


def test_invalid_input_is_rejected_before_state_changes(service: OfflineQueueService) -> None:
    service.add_task("p1", _task("T1"))
    before = service.get_queue_state("p1")

    with pytest.raises(TaskError):
        service.add_task("p1", _task("T1"))
    with pytest.raises(TaskError):
        service.remove_task("p1", "missing")
    with pytest.raises(TaskError):
        service.update_task("p1", "T1", {"progress": 3})
    with pytest.raises(TaskError):
        service.reorder_tasks("p1", "T1")
    with pytest.raises(OperationValidationError):
        service.pause_queue("p1", 42)  # type: ignore[arg-type]

    assert service.get_queue_state("p1") == before
    assert service.get_offline_state("p1").log.pending_count() == 1


def test_state_is_loaded_lazily_from_the_store(
    memory_store: InMemoryQueueStateStore, fake_remote, runtime_settings: RuntimeSettings
) -> None:
    first = OfflineQueueService(memory_store, fake_remote, runtime_settings)
    first.add_task("p1", _task("T1"))
    first.shutdown()

    second = OfflineQueueService(memory_store, fake_remote, runtime_settings)
    assert second.player_ids() == []
    assert second.get_queue_state("p1").task_ids() == ["T1"]
    assert second.get_sync_indicator("p1").pending_count == 1
    assert second.load_all() == ["p1"]


def test_corrupted_state_falls_back_to_empty_queue(
    memory_store: InMemoryQueueStateStore, fake_remote, runtime_settings: RuntimeSettings
) -> None:
    memory_store.put_raw("p1", {"playerId": "p1", "queue": "garbage"})
    service = OfflineQueueService(memory_store, fake_remote, runtime_settings)

    queue = service.get_queue_state("p1")

    assert queue.queued_tasks == ()
    warnings = [event for event in iter_events(runtime_settings) if event["event"] == "store.load_corrupted"]
    assert warnings and warnings[0]["level"] == "warn"


def test_persistence_failures_never_roll_back(fake_remote, runtime_settings: RuntimeSettings) -> None:
    service = OfflineQueueService(FailingStore(), fake_remote, runtime_settings)
    service.add_task("p1", _task("T1"))
    assert service.get_queue_state("p1").task_ids() == ["T1"]
    failures = [event for event in iter_events(runtime_settings) if event["event"] == "store.save_failed"]
    assert len(failures) == 1


def test_unwritable_telemetry_never_breaks_mutations(fake_remote, tmp_path) -> None:
    blocked = tmp_path / "logs"
    blocked.write_text("not a directory", encoding="utf-8")
    settings = RuntimeSettings(home_dir=tmp_path, state_dir=tmp_path / "state", log_dir=blocked)
    service = OfflineQueueService(FailingStore(), fake_remote, settings)

    with pytest.warns(TelemetryWriteWarning):
        service.add_task("p1", _task("T1"))

    assert service.get_queue_state("p1").task_ids() == ["T1"]
    assert service.get_offline_state("p1").log.pending_count() == 1


def test_log_cap_drops_oldest_operations_with_warning(
    memory_store: InMemoryQueueStateStore, fake_remote, runtime_settings: RuntimeSettings
) -> None:
    service = OfflineQueueService(
        memory_store, fake_remote, runtime_settings, config=SyncConfiguration(max_pending_operations=3)
    )
    for index in range(5):
        service.add_task("p1", _task(f"T{index}"))

    state = service.get_offline_state("p1")
    assert len(state.log) == 3
    assert state.log.evicted_count == 2
    assert state.sync_status.pending_operations_count == 3
    dropped = [event for event in iter_events(runtime_settings) if event["event"] == "operation.dropped"]
    assert [event["payload"]["reason"] for event in dropped] == ["capacity", "capacity"]


def test_subscribers_receive_events_until_unsubscribed(
    memory_store: InMemoryQueueStateStore, fake_remote, runtime_settings: RuntimeSettings
) -> None:
    stream = QueueEventStream(runtime_settings)
    service = OfflineQueueService(memory_store, fake_remote, runtime_settings, events=stream)
    first: list[QueueEvent] = []
    second: list[QueueEvent] = []
    subscription = service.subscribe("p1", first.append)
    service.subscribe("p1", second.append)
    other: list[QueueEvent] = []
    service.subscribe("p2", other.append)

    service.add_task("p1", _task("T1"))
    subscription.unsubscribe()
    service.add_task("p1", _task("T2"))

    assert [event.payload["taskId"] for event in first] == ["T1"]
    assert [event.payload["taskId"] for event in second] == ["T1", "T2"]
    assert other == []
    assert stream.subscriber_count("p1") == 1


def test_failing_subscriber_does_not_break_mutation(service: OfflineQueueService, runtime_settings) -> None:
    def explode(event: QueueEvent) -> None:
        raise RuntimeError("ui crashed")

    service.subscribe("p1", explode)
    service.add_task("p1", _task("T1"))

    assert service.get_queue_state("p1").task_ids() == ["T1"]
    assert any(event["event"] == "events.subscriber_failed" for event in iter_events(runtime_settings))


def test_indicator_reflects_offline_and_pending(service: OfflineQueueService) -> None:
    service.add_task("p1", _task("T1"))
    assert service.get_sync_indicator("p1").message == "1 changes to sync"

    assert service.set_online("p1", False) is False
    service.add_task("p1", _task("T2"))
    indicator = service.get_sync_indicator("p1")
    assert indicator.status is IndicatorStatus.OFFLINE
    assert indicator.message == "Offline - 2 changes pending"
    assert service.get_offline_state("p1").is_offline is True
    assert service.set_online("p1", True) is True
    assert service.set_online("p1", True) is False


def test_player_id_must_be_present(service: OfflineQueueService) -> None:
    with pytest.raises(ValueError):
        service.get_queue_state("")
