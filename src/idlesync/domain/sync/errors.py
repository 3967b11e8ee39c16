"""Error taxonomy for synchronisation rounds."""

from __future__ import annotations

from typing import TYPE_CHECKING, List

if TYPE_CHECKING:  # pragma: no cover
    from .conflicts import Conflict


class SyncError(RuntimeError):
    """Base class for synchronisation failures."""

    retryable = False


class SyncNetworkError(SyncError):
    """Timeout, offline device, transport failure or server rejection."""

    retryable = True


class SyncConcurrencyError(SyncError):
    """A sync for the same player is already in flight."""


class ConflictUnresolvedError(SyncError):
    """Conflicts were recorded for manual resolution and left pending."""

    def __init__(self, player_id: str, conflicts: List["Conflict"]) -> None:
        self.player_id = player_id
        self.conflicts = list(conflicts)
        super().__init__(
            f"{len(self.conflicts)} conflict(s) awaiting manual resolution for player {player_id}"
        )


__all__ = [
    "ConflictUnresolvedError",
    "SyncConcurrencyError",
    "SyncError",
    "SyncNetworkError",
]
