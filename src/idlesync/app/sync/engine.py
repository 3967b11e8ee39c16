"""One incremental synchronisation round per call."""

from __future__ import annotations

import asyncio
import json
import secrets
import threading
import time
from dataclasses import asdict, dataclass, replace
from typing import Any, Callable, ContextManager, Dict, List, Set

from idlesync.domain.queue import OperationValidationError, now_ms, replay, validate_operation
from idlesync.domain.sync import (
    Conflict,
    ConflictResolver,
    ConflictUnresolvedError,
    OfflineQueueState,
    SyncConcurrencyError,
    SyncNetworkError,
    SyncPacket,
    SyncResponse,
    SyncResult,
    build_packet,
)
from idlesync.ports.remote import RemoteQueueService, RemoteServiceError
from idlesync.settings import RuntimeSettings
from idlesync.utils.telemetry import record_sync_event

from .config import SyncConfiguration


@dataclass
class SyncMetrics:
    total_syncs: int = 0
    successful_syncs: int = 0
    failed_syncs: int = 0
    conflicts_resolved: int = 0
    average_sync_time: float = 0.0
    last_sync_duration: float = 0.0
    data_transferred: int = 0
    operations_synced: int = 0

    def record_duration(self, duration_ms: float) -> None:
        self.last_sync_duration = duration_ms
        completed = self.successful_syncs + self.failed_syncs
        if completed <= 1:
            self.average_sync_time = duration_ms
        else:
            self.average_sync_time = (self.average_sync_time * (completed - 1) + duration_ms) / completed

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SyncEngine:
    """Builds a packet from unapplied operations, sends it and folds the answer into local state.

    At most one round per player is in flight; a second call for the same player
    raises :class:`SyncConcurrencyError` instead of waiting. The caller passes the
    per-player lock that also guards local mutations; it is held only while local
    state is read or swapped, never across the network await.
    """

    def __init__(
        self,
        remote: RemoteQueueService,
        settings: RuntimeSettings,
        *,
        config: SyncConfiguration | None = None,
        resolver: ConflictResolver | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._remote = remote
        self._settings = settings
        self._config = config or SyncConfiguration()
        self._resolver = resolver or ConflictResolver(self._config.conflict_strategy, clock=clock)
        self._clock = clock
        self._in_flight: Set[str] = set()
        self._guard = threading.Lock()
        self._metrics: Dict[str, SyncMetrics] = {}

    @property
    def config(self) -> SyncConfiguration:
        return self._config

    @property
    def resolver(self) -> ConflictResolver:
        return self._resolver

    def is_sync_active(self, player_id: str) -> bool:
        with self._guard:
            return player_id in self._in_flight

    def get_sync_metrics(self, player_id: str) -> SyncMetrics:
        return self._metrics.setdefault(player_id, SyncMetrics())

    def reset_sync_metrics(self, player_id: str) -> None:
        self._metrics[player_id] = SyncMetrics()

    def clear(self) -> None:
        self._metrics.clear()

    async def sync(
        self,
        state: OfflineQueueState,
        lock: ContextManager[Any],
        *,
        trigger: str = "scheduled",
    ) -> SyncResult:
        player_id = state.player_id
        self._acquire(player_id)
        try:
            with lock:
                self._drop_invalid(state)
                pending = state.log.pending()
                if not pending:
                    state.refresh_pending_count()
                    state.sync_status.conflicts_detected = len(state.pending_conflicts)
                    return SyncResult(success=True, resolved_queue=state.queue, sync_timestamp=self._clock())
                packet = build_packet(player_id, pending, batch_size=self._config.sync_batch_size)
                state.sync_status.sync_in_progress = True
                state.sync_status.last_sync_attempt = self._clock()
            return await self._round_trip(state, lock, packet, trigger)
        finally:
            with lock:
                state.sync_status.sync_in_progress = False
            self._release(player_id)

    async def _round_trip(
        self,
        state: OfflineQueueState,
        lock: ContextManager[Any],
        packet: SyncPacket,
        trigger: str,
    ) -> SyncResult:
        player_id = state.player_id
        metrics = self.get_sync_metrics(player_id)
        metrics.total_syncs += 1
        correlation_id = secrets.token_hex(6)
        self._emit(
            "sync.started",
            player_id,
            correlation_id=correlation_id,
            trigger=trigger,
            operations=len(packet.operations),
            fromVersion=packet.from_version,
            toVersion=packet.to_version,
        )
        started = time.perf_counter()
        try:
            response = await asyncio.wait_for(
                self._remote.incremental_sync(packet),
                timeout=self._config.sync_timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise self._fail(state, lock, metrics, started, correlation_id, "Sync timeout") from None
        except RemoteServiceError as exc:
            raise self._fail(state, lock, metrics, started, correlation_id, str(exc)) from exc
        if not response.success:
            raise self._fail(state, lock, metrics, started, correlation_id, "Server rejected sync packet")

        with lock:
            result = self._apply(state, packet, response)
        duration_ms = (time.perf_counter() - started) * 1000
        metrics.successful_syncs += 1
        metrics.record_duration(duration_ms)
        metrics.operations_synced += len(result.applied_operations)
        metrics.data_transferred += len(json.dumps(packet.to_dict(), separators=(",", ":")).encode("utf-8"))
        if response.conflicts and not result.pending_conflicts:
            metrics.conflicts_resolved += len(response.conflicts)
            self._emit(
                "sync.conflicts_resolved",
                player_id,
                correlation_id=correlation_id,
                count=len(response.conflicts),
                strategy=self._resolver.strategy.value,
            )
        self._emit(
            "sync.completed",
            player_id,
            status="success",
            correlation_id=correlation_id,
            duration_ms=duration_ms,
            applied=len(result.applied_operations),
            pending=state.sync_status.pending_operations_count,
            version=result.resolved_queue.version,
        )
        if result.pending_conflicts:
            self._emit(
                "sync.manual_pending",
                player_id,
                level="warn",
                correlation_id=correlation_id,
                count=len(result.pending_conflicts),
            )
            raise ConflictUnresolvedError(player_id, result.pending_conflicts)
        return result

    def _apply(self, state: OfflineQueueState, packet: SyncPacket, response: SyncResponse) -> SyncResult:
        timestamp = self._clock()
        sent = set(packet.operation_ids)
        applied = [op_id for op_id in response.applied_operations if op_id in sent]
        state.log.mark_applied(applied)
        server = replace(response.server_queue, player_id=state.player_id)
        local = state.queue

        pending_conflicts: List[Conflict] = []
        if response.conflicts:
            outcome = self._resolver.resolve(local, server, response.conflicts)
            state.append_resolutions(outcome.entries, limit=self._config.max_resolution_log)
            queue = replace(outcome.queue, last_updated=timestamp)
            pending_conflicts = outcome.pending
            _merge_pending(state, pending_conflicts)
        else:
            queue = replay(server, state.log.pending())
            queue = replace(
                queue,
                version=max(local.version, server.version) + 1,
                last_synced=timestamp,
                last_updated=timestamp,
            )
        state.queue = queue.sealed()

        status = state.sync_status
        status.last_successful_sync = timestamp
        status.sync_errors = []
        status.consecutive_failures = 0
        status.next_sync_scheduled = None
        status.conflicts_detected = len(state.pending_conflicts)
        state.last_online_sync = timestamp
        state.refresh_pending_count()
        return SyncResult(
            success=True,
            resolved_queue=state.queue,
            sync_timestamp=timestamp,
            conflicts=list(response.conflicts),
            applied_operations=applied,
            pending_conflicts=list(pending_conflicts),
        )

    def _fail(
        self,
        state: OfflineQueueState,
        lock: ContextManager[Any],
        metrics: SyncMetrics,
        started: float,
        correlation_id: str,
        message: str,
    ) -> SyncNetworkError:
        duration_ms = (time.perf_counter() - started) * 1000
        metrics.failed_syncs += 1
        metrics.record_duration(duration_ms)
        with lock:
            status = state.sync_status
            status.consecutive_failures += 1
            status.record_error(message, limit=self._config.max_sync_errors)
            delay = self._config.backoff_seconds(status.consecutive_failures)
            status.next_sync_scheduled = self._clock() + int(delay * 1000)
            failures = status.consecutive_failures
        self._emit(
            "sync.failed",
            state.player_id,
            level="error",
            status="failure",
            correlation_id=correlation_id,
            duration_ms=duration_ms,
            error=message,
            consecutiveFailures=failures,
        )
        return SyncNetworkError(message)

    def _drop_invalid(self, state: OfflineQueueState) -> None:
        for operation in state.log.pending():
            try:
                validate_operation(operation)
            except OperationValidationError as exc:
                state.log.drop(operation.id)
                self._emit(
                    "operation.dropped",
                    state.player_id,
                    level="warn",
                    operationId=operation.id,
                    type=operation.type.value,
                    reason="invalid",
                    problems=[f"{path}: {message}" for path, message in exc.problems],
                )
        state.refresh_pending_count()

    def _emit(self, event: str, player_id: str, **kwargs: Any) -> None:
        record_sync_event(self._settings, event, player_id, component="engine", **kwargs)

    def _acquire(self, player_id: str) -> None:
        with self._guard:
            if player_id in self._in_flight:
                raise SyncConcurrencyError(f"sync already in progress for player {player_id}")
            self._in_flight.add(player_id)

    def _release(self, player_id: str) -> None:
        with self._guard:
            self._in_flight.discard(player_id)


def _merge_pending(state: OfflineQueueState, conflicts: List[Conflict]) -> None:
    """Keep one pending entry per (type, task); a repeated report replaces the stored one."""

    index = {(item.type, item.task_id): pos for pos, item in enumerate(state.pending_conflicts)}
    for conflict in conflicts:
        key = (conflict.type, conflict.task_id)
        if key in index:
            state.pending_conflicts[index[key]] = conflict
        else:
            index[key] = len(state.pending_conflicts)
            state.pending_conflicts.append(conflict)


__all__ = ["SyncEngine", "SyncMetrics"]
