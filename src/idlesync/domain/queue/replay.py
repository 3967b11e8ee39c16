"""Pure application of operations to a queue projection."""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable, List

from .models import Task, TaskQueue
from .operations import Operation, OperationType


def reorder(tasks: Iterable[Task], task_ids: Iterable[str]) -> tuple[Task, ...]:
    """Order ``tasks`` by ``task_ids``; unlisted tasks keep their relative order at the end."""

    index = {task.id: task for task in tasks}
    ordered: List[Task] = []
    for task_id in task_ids:
        task = index.pop(task_id, None)
        if task is not None:
            ordered.append(task)
    ordered.extend(index.values())
    return tuple(ordered)


def apply_operation(queue: TaskQueue, operation: Operation) -> TaskQueue:
    """Apply ``operation`` to ``queue`` without touching version or checksum."""

    payload = operation.payload
    op_type = operation.type

    if op_type is OperationType.ADD_TASK:
        task = Task.from_dict(payload)
        if queue.find_task(task.id) is not None:
            return queue
        return queue.with_task(task)

    if op_type is OperationType.REMOVE_TASK:
        task_id = operation.task_id or payload.get("id")
        if not task_id:
            return queue
        return queue.without_task(str(task_id))

    if op_type is OperationType.REORDER_TASKS:
        return replace(queue, queued_tasks=reorder(queue.queued_tasks, payload.get("taskIds", [])))

    if op_type is OperationType.PAUSE_QUEUE:
        return replace(
            queue,
            is_paused=True,
            pause_reason=payload.get("reason"),
            paused_at=operation.timestamp,
        )

    if op_type is OperationType.RESUME_QUEUE:
        return replace(queue, is_paused=False, pause_reason=None, resumed_at=operation.timestamp)

    if op_type is OperationType.UPDATE_TASK:
        current = queue.find_task(operation.task_id or "")
        if current is None:
            return queue
        return queue.replace_task(current.with_changes(payload))

    if op_type is OperationType.CLEAR_QUEUE:
        return replace(queue, current_task=None, queued_tasks=(), is_running=False)

    raise ValueError(f"unsupported operation type: {op_type}")


def replay(queue: TaskQueue, operations: Iterable[Operation]) -> TaskQueue:
    for operation in operations:
        queue = apply_operation(queue, operation)
    return queue


__all__ = ["apply_operation", "reorder", "replay"]
