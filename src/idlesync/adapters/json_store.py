"""JSON file store keeping one document per player."""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Iterable, List

from idlesync.domain.sync import OfflineQueueState
from idlesync.ports.store import QueueStateCorruptedError, QueueStateStore, QueueStoreError

STORAGE_PREFIX = "offline_queue_"
_PLAYER_ID_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class JsonQueueStateStore(QueueStateStore):
    def __init__(self, state_dir: Path, *, max_pending_operations: int = 1000) -> None:
        self._dir = state_dir
        self._max_pending_operations = max_pending_operations

    @property
    def path(self) -> Path:
        return self._dir

    def path_for(self, player_id: str) -> Path:
        if not _PLAYER_ID_RE.match(player_id) or player_id in {".", ".."}:
            raise QueueStoreError(f"player id not usable as a file name: {player_id!r}")
        return self._dir / f"{STORAGE_PREFIX}{player_id}.json"

    def load(self, player_id: str) -> OfflineQueueState | None:
        path = self.path_for(player_id)
        if not path.exists():
            return None
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise QueueStoreError(f"cannot read {path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise QueueStateCorruptedError(f"offline state invalid JSON at {path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise QueueStateCorruptedError(f"offline state root must be an object at {path}")
        try:
            return OfflineQueueState.from_dict(raw, max_pending_operations=self._max_pending_operations)
        except (KeyError, TypeError, ValueError) as exc:
            raise QueueStateCorruptedError(f"offline state unreadable at {path}: {exc}") from exc

    def save(self, player_id: str, state: OfflineQueueState) -> None:
        path = self.path_for(player_id)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(state.to_dict(), ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as exc:
            raise QueueStoreError(f"cannot write {path}: {exc}") from exc

    def player_ids(self) -> Iterable[str]:
        if not self._dir.exists():
            return []
        players: List[str] = []
        for entry in sorted(self._dir.glob(f"{STORAGE_PREFIX}*.json")):
            players.append(entry.name[len(STORAGE_PREFIX) : -len(".json")])
        return players


__all__ = ["JsonQueueStateStore", "STORAGE_PREFIX"]
