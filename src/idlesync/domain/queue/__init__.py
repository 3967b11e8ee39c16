"""Task queue domain exports."""

from .models import Task, TaskError, TaskQueue, TaskReward, fingerprint, now_ms, queue_checksum
from .operations import Operation, OperationLog, OperationType, generate_operation_id
from .replay import apply_operation, reorder, replay
from .schema import OperationValidationError, iter_operation_errors, validate_operation

__all__ = [
    "Operation",
    "OperationLog",
    "OperationType",
    "OperationValidationError",
    "Task",
    "TaskError",
    "TaskQueue",
    "TaskReward",
    "apply_operation",
    "fingerprint",
    "generate_operation_id",
    "iter_operation_errors",
    "now_ms",
    "queue_checksum",
    "reorder",
    "replay",
    "validate_operation",
]
