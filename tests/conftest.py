from __future__ import annotations

import asyncio
import os
import sys
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Set

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
SANDBOX_HOME = ROOT / ".test_place" / "idlesync-home"
os.environ.setdefault("IDLESYNC_HOME", str(SANDBOX_HOME))
SANDBOX_HOME.mkdir(parents=True, exist_ok=True)
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from idlesync.adapters.memory_store import InMemoryQueueStateStore  # noqa: E402
from idlesync.app.sync import OfflineQueueService, SyncConfiguration  # noqa: E402
from idlesync.domain.queue import TaskQueue, apply_operation  # noqa: E402
from idlesync.domain.sync import Conflict, SyncPacket, SyncResponse  # noqa: E402
from idlesync.ports.remote import RemoteQueueService, RemoteServiceError  # noqa: E402
from idlesync.settings import RuntimeSettings  # noqa: E402


class FakeRemote(RemoteQueueService):
    """In-process queue server that deduplicates operations by id."""

    def __init__(self) -> None:
        self.server_queues: Dict[str, TaskQueue] = {}
        self.seen: Dict[str, Set[str]] = {}
        self.packets: List[SyncPacket] = []
        self.conflicts: Dict[str, List[Conflict]] = {}
        self.apply_operations = True
        self.delay = 0.0
        self.gate: asyncio.Event | None = None
        self.fail_with: Exception | None = None
        self.fail_after_apply = 0
        self.reject = False

    def seed(self, queue: TaskQueue) -> None:
        self.server_queues[queue.player_id] = queue

    def script_conflicts(self, player_id: str, conflicts: List[Conflict]) -> None:
        self.conflicts[player_id] = list(conflicts)

    async def incremental_sync(self, packet: SyncPacket) -> SyncResponse:
        self.packets.append(packet)
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        player_id = packet.player_id
        queue = self.server_queues.get(player_id) or TaskQueue.empty(player_id)
        seen = self.seen.setdefault(player_id, set())
        applied: List[str] = []
        for operation in packet.operations:
            if operation.id not in seen:
                if self.apply_operations:
                    queue = apply_operation(queue, operation)
                seen.add(operation.id)
            applied.append(operation.id)
        queue = replace(queue, version=max(queue.version, packet.to_version)).sealed()
        self.server_queues[player_id] = queue
        if self.fail_after_apply > 0:
            self.fail_after_apply -= 1
            raise RemoteServiceError("connection reset after apply")
        return SyncResponse(
            success=not self.reject,
            server_queue=queue,
            conflicts=self.conflicts.pop(player_id, []),
            applied_operations=applied,
        )


class FakeClock:
    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += int(seconds * 1000)


@pytest.fixture()
def runtime_settings(tmp_path: Path) -> RuntimeSettings:
    home = tmp_path / "home"
    return RuntimeSettings(home_dir=home, state_dir=home / "state", log_dir=home / "logs")


@pytest.fixture()
def fake_remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def memory_store() -> InMemoryQueueStateStore:
    return InMemoryQueueStateStore()


@pytest.fixture()
def sync_config() -> SyncConfiguration:
    return SyncConfiguration(sync_timeout_seconds=2.0)


@pytest.fixture()
def service(
    memory_store: InMemoryQueueStateStore,
    fake_remote: FakeRemote,
    runtime_settings: RuntimeSettings,
    sync_config: SyncConfiguration,
) -> OfflineQueueService:
    return OfflineQueueService(memory_store, fake_remote, runtime_settings, config=sync_config)
