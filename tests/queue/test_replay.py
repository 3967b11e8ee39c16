from __future__ import annotations

from idlesync.domain.queue import Operation, OperationType, Task, TaskQueue, apply_operation, reorder, replay


def _task(task_id: str) -> Task:
    return Task(id=task_id, type="fishing", duration=1_000)


def _queue(*task_ids: str) -> TaskQueue:
    return TaskQueue(player_id="p1", queued_tasks=tuple(_task(task_id) for task_id in task_ids))


def test_reorder_keeps_unlisted_tasks_at_the_end() -> None:
    tasks = [_task("a"), _task("b"), _task("c"), _task("d")]
    ordered = reorder(tasks, ["c", "missing", "a"])
    assert [task.id for task in ordered] == ["c", "a", "b", "d"]


def test_add_task_is_skipped_when_already_present() -> None:
    queue = _queue("a")
    op = Operation.create(OperationType.ADD_TASK, "p1", 2, _task("a").to_dict(), task_id="a")
    assert apply_operation(queue, op) == queue


def test_pause_and_resume_record_timestamps() -> None:
    pause = Operation.create(OperationType.PAUSE_QUEUE, "p1", 2, {"reason": "raid"})
    paused = apply_operation(_queue(), pause)
    assert paused.is_paused and paused.pause_reason == "raid"
    assert paused.paused_at == pause.timestamp

    resume = Operation.create(OperationType.RESUME_QUEUE, "p1", 3, {})
    resumed = apply_operation(paused, resume)
    assert not resumed.is_paused
    assert resumed.pause_reason is None
    assert resumed.resumed_at == resume.timestamp


def test_update_and_remove_target_task_id() -> None:
    queue = _queue("a", "b")
    update = Operation.create(OperationType.UPDATE_TASK, "p1", 2, {"progress": 0.4}, task_id="b")
    remove = Operation.create(OperationType.REMOVE_TASK, "p1", 3, {"taskId": "a"}, task_id="a")
    result = replay(queue, [update, remove])
    assert result.task_ids() == ["b"]
    assert result.find_task("b").progress == 0.4


def test_clear_stops_processing_and_keeps_version() -> None:
    queue = TaskQueue(player_id="p1", current_task=_task("x"), queued_tasks=(_task("y"),), is_running=True, version=4)
    cleared = apply_operation(queue, Operation.create(OperationType.CLEAR_QUEUE, "p1", 5, {}))
    assert cleared.current_task is None and cleared.queued_tasks == ()
    assert cleared.is_running is False
    assert cleared.version == 4
