"""UI-facing summary derived from sync bookkeeping."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict

from .state import SyncStatus


class IndicatorStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    SYNCING = "syncing"
    ERROR = "error"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class SyncIndicator:
    status: IndicatorStatus
    message: str
    last_sync: int
    pending_count: int
    can_manual_sync: bool
    progress: float | None = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "status": self.status.value,
            "message": self.message,
            "lastSync": self.last_sync,
            "pendingCount": self.pending_count,
            "canManualSync": self.can_manual_sync,
        }
        if self.progress is not None:
            payload["progress"] = self.progress
        return payload


def project_indicator(status: SyncStatus, *, progress: float | None = None) -> SyncIndicator:
    """First match wins: in flight, offline, errors, conflicts, pending work, idle."""

    pending = status.pending_operations_count
    can_manual_sync = status.is_online and not status.sync_in_progress
    last_sync = status.last_successful_sync

    if status.sync_in_progress:
        return SyncIndicator(
            status=IndicatorStatus.SYNCING,
            message="Synchronizing with server...",
            last_sync=last_sync,
            pending_count=pending,
            can_manual_sync=False,
            progress=progress if progress is not None else 0.0,
        )
    if not status.is_online:
        return SyncIndicator(
            status=IndicatorStatus.OFFLINE,
            message=f"Offline - {pending} changes pending",
            last_sync=last_sync,
            pending_count=pending,
            can_manual_sync=False,
        )
    if status.sync_errors:
        return SyncIndicator(
            status=IndicatorStatus.ERROR,
            message=f"Sync error - {len(status.sync_errors)} errors",
            last_sync=last_sync,
            pending_count=pending,
            can_manual_sync=can_manual_sync,
        )
    if status.conflicts_detected > 0:
        return SyncIndicator(
            status=IndicatorStatus.CONFLICT,
            message=f"{status.conflicts_detected} conflicts detected",
            last_sync=last_sync,
            pending_count=pending,
            can_manual_sync=can_manual_sync,
        )
    if pending > 0:
        return SyncIndicator(
            status=IndicatorStatus.SYNCING,
            message=f"{pending} changes to sync",
            last_sync=last_sync,
            pending_count=pending,
            can_manual_sync=can_manual_sync,
        )
    return SyncIndicator(
        status=IndicatorStatus.ONLINE,
        message="All changes synchronized",
        last_sync=last_sync,
        pending_count=0,
        can_manual_sync=can_manual_sync,
    )


__all__ = ["IndicatorStatus", "SyncIndicator", "project_indicator"]
