from __future__ import annotations

import pytest

from idlesync.domain.queue import Operation, OperationLog, OperationType


def _op(op_type: OperationType, version: int, **payload) -> Operation:
    return Operation.create(op_type, "p1", version, payload, task_id=payload.get("id"))


def test_reorder_supersedes_unapplied_reorders_only() -> None:
    log = OperationLog()
    applied_reorder = _op(OperationType.REORDER_TASKS, 1, taskIds=["a"])
    log.append(applied_reorder)
    log.mark_applied([applied_reorder.id])
    add = _op(OperationType.ADD_TASK, 2, id="b", type="mining", duration=1)
    first = _op(OperationType.REORDER_TASKS, 3, taskIds=["b", "a"])
    second = _op(OperationType.REORDER_TASKS, 4, taskIds=["a", "b"])
    for op in (add, first, second):
        log.append(op)

    ids = [op.id for op in log]
    assert ids == [applied_reorder.id, add.id, second.id]
    assert [op.id for op in log.pending()] == [add.id, second.id]


def test_other_types_are_never_deduplicated() -> None:
    log = OperationLog()
    log.append(_op(OperationType.PAUSE_QUEUE, 1, reason=None))
    log.append(_op(OperationType.PAUSE_QUEUE, 2, reason=None))
    assert log.pending_count() == 2


def test_cap_evicts_oldest_entries_regardless_of_status() -> None:
    log = OperationLog(max_size=3)
    ops = [_op(OperationType.RESUME_QUEUE, version) for version in range(1, 6)]
    log.append(ops[0])
    log.mark_applied([ops[0].id])
    evicted = []
    for op in ops[1:]:
        evicted.extend(log.append(op))

    assert [op.id for op in evicted] == [ops[0].id, ops[1].id]
    assert [op.id for op in log] == [op.id for op in ops[2:]]
    assert log.evicted_count == 2


def test_mark_applied_counts_only_new_confirmations() -> None:
    log = OperationLog()
    op = _op(OperationType.CLEAR_QUEUE, 1)
    log.append(op)
    assert log.mark_applied([op.id, "unknown"]) == 1
    assert log.mark_applied([op.id]) == 0
    assert log.applied_count() == 1
    assert log.get(op.id).applied is True


def test_drop_and_round_trip() -> None:
    log = OperationLog(max_size=10)
    keep = _op(OperationType.ADD_TASK, 1, id="T1", type="mining", duration=5)
    drop = _op(OperationType.REMOVE_TASK, 2, id="T1")
    log.append(keep)
    log.append(drop)
    assert log.drop(drop.id) == drop
    assert log.drop("missing") is None

    restored = OperationLog.from_list(log.to_list(), max_size=10)
    assert list(restored) == [keep]
    assert restored.max_size == 10


def test_max_size_must_be_positive() -> None:
    with pytest.raises(ValueError):
        OperationLog(max_size=0)
