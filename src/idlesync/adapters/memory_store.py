"""Process-local store, serialising through the same dict format as the file store."""

from __future__ import annotations

import copy
from typing import Any, Dict, Iterable

from idlesync.domain.sync import OfflineQueueState
from idlesync.ports.store import QueueStateCorruptedError, QueueStateStore


class InMemoryQueueStateStore(QueueStateStore):
    def __init__(self, *, max_pending_operations: int = 1000) -> None:
        self._documents: Dict[str, Dict[str, Any]] = {}
        self._max_pending_operations = max_pending_operations
        self.save_count = 0

    def load(self, player_id: str) -> OfflineQueueState | None:
        document = self._documents.get(player_id)
        if document is None:
            return None
        try:
            return OfflineQueueState.from_dict(
                copy.deepcopy(document), max_pending_operations=self._max_pending_operations
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise QueueStateCorruptedError(f"offline state unreadable for {player_id}: {exc}") from exc

    def save(self, player_id: str, state: OfflineQueueState) -> None:
        self._documents[player_id] = copy.deepcopy(state.to_dict())
        self.save_count += 1

    def player_ids(self) -> Iterable[str]:
        return sorted(self._documents)

    def put_raw(self, player_id: str, document: Dict[str, Any]) -> None:
        """Store a raw document as-is, bypassing serialisation."""
        self._documents[player_id] = document

    def raw(self, player_id: str) -> Dict[str, Any] | None:
        return self._documents.get(player_id)


__all__ = ["InMemoryQueueStateStore"]
