"""Decides when a sync round should run."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Callable, List

from idlesync.domain.queue import now_ms
from idlesync.domain.sync import SyncError
from idlesync.settings import RuntimeSettings
from idlesync.utils.telemetry import record_sync_event

if TYPE_CHECKING:  # pragma: no cover
    from .service import OfflineQueueService


class SyncScheduler:
    """Periodic driver plus reconnect edge handling.

    A player is due when it is online, has no round in flight, holds at least one
    unapplied operation, the interval since the last attempt has elapsed and any
    failure backoff has expired.
    """

    def __init__(
        self,
        service: "OfflineQueueService",
        settings: RuntimeSettings,
        *,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._service = service
        self._settings = settings
        self._clock = clock
        self._interval = service.config.sync_interval_seconds
        self._task: asyncio.Task | None = None
        self._stopped = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def is_due(self, player_id: str) -> bool:
        state = self._service.get_offline_state(player_id)
        status = state.sync_status
        if not status.is_online or self._service.is_sync_active(player_id):
            return False
        if state.log.pending_count() == 0:
            return False
        now = self._clock()
        if status.next_sync_scheduled is not None and now < status.next_sync_scheduled:
            return False
        return now - status.last_sync_attempt >= self._interval * 1000

    async def tick(self) -> List[str]:
        """Run one round for every due player; return the players attempted."""

        attempted = [player_id for player_id in self._service.player_ids() if self.is_due(player_id)]
        await self._attempt_all(attempted, trigger="scheduled")
        return attempted

    async def on_connectivity_change(self, is_online: bool, player_id: str | None = None) -> List[str]:
        """Apply a connectivity edge; a reconnect syncs pending players at once."""

        if player_id is None:
            self._service.set_device_online(is_online)
            players = list(self._service.player_ids())
        else:
            players = [player_id]
        reconnected: List[str] = []
        for pid in players:
            if self._service.set_online(pid, is_online):
                reconnected.append(pid)
        if not is_online:
            return []
        attempted = [
            pid
            for pid in reconnected
            if self._service.get_offline_state(pid).log.pending_count() > 0 and not self._service.is_sync_active(pid)
        ]
        await self._attempt_all(attempted, trigger="reconnect")
        return attempted

    def start(self) -> asyncio.Task:
        if self.running:
            assert self._task is not None
            return self._task
        self._stopped = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(self._run())
        return self._task

    async def stop(self) -> None:
        self._stopped.set()
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while not self._stopped.is_set():
            await self.tick()
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                continue

    async def _attempt_all(self, player_ids: List[str], *, trigger: str) -> None:
        # rounds for different players run side by side
        await asyncio.gather(*(self._attempt(pid, trigger=trigger) for pid in player_ids))

    async def _attempt(self, player_id: str, *, trigger: str) -> None:
        try:
            await self._service.sync_player(player_id, trigger=trigger)
        except SyncError:
            # recorded in sync status and telemetry by the engine
            return
        except Exception as exc:
            record_sync_event(
                self._settings,
                "scheduler.tick_failed",
                player_id,
                component="scheduler",
                level="error",
                trigger=trigger,
                error=str(exc),
            )


__all__ = ["SyncScheduler"]
