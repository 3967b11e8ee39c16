"""Synchronisation domain exports."""

from .conflicts import (
    Conflict,
    ConflictResolutionEntry,
    ConflictResolver,
    ConflictType,
    ResolutionOutcome,
    ResolutionStrategy,
    detect_conflicts,
    merge_rewards,
    merge_tasks,
    queue_state_fields,
)
from .errors import ConflictUnresolvedError, SyncConcurrencyError, SyncError, SyncNetworkError
from .protocol import (
    SyncPacket,
    SyncResponse,
    SyncResult,
    build_packet,
    minimize_payload,
    operations_checksum,
)
from .state import OfflineQueueState, SyncErrorRecord, SyncStatus
from .status import IndicatorStatus, SyncIndicator, project_indicator

__all__ = [
    "Conflict",
    "ConflictResolutionEntry",
    "ConflictResolver",
    "ConflictType",
    "ConflictUnresolvedError",
    "IndicatorStatus",
    "OfflineQueueState",
    "ResolutionOutcome",
    "ResolutionStrategy",
    "SyncConcurrencyError",
    "SyncError",
    "SyncErrorRecord",
    "SyncIndicator",
    "SyncNetworkError",
    "SyncPacket",
    "SyncResponse",
    "SyncResult",
    "SyncStatus",
    "build_packet",
    "detect_conflicts",
    "merge_rewards",
    "merge_tasks",
    "minimize_payload",
    "operations_checksum",
    "project_indicator",
    "queue_state_fields",
]
