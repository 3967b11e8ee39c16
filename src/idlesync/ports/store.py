"""Port for durable per-player offline state."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable

from idlesync.domain.sync import OfflineQueueState


class QueueStateStore(ABC):
    @abstractmethod
    def load(self, player_id: str) -> OfflineQueueState | None:
        """Return the stored state or ``None`` when the player has none."""

    @abstractmethod
    def save(self, player_id: str, state: OfflineQueueState) -> None:
        """Persist ``state`` synchronously."""

    @abstractmethod
    def player_ids(self) -> Iterable[str]:
        """Players with stored state."""


class QueueStoreError(RuntimeError):
    """Raised when state cannot be read or written."""


class QueueStateCorruptedError(QueueStoreError):
    """Raised when stored state exists but cannot be decoded."""
