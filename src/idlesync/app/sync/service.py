"""Application service: optimistic local mutations plus deferred reconciliation."""

from __future__ import annotations

import threading
from dataclasses import replace
from typing import Any, Callable, Dict, List, Mapping, Sequence

from idlesync.domain.queue import (
    Operation,
    OperationType,
    Task,
    TaskError,
    TaskQueue,
    apply_operation,
    now_ms,
    validate_operation,
)
from idlesync.domain.sync import (
    ConflictResolutionEntry,
    ConflictResolver,
    ConflictUnresolvedError,
    OfflineQueueState,
    ResolutionStrategy,
    SyncConcurrencyError,
    SyncError,
    SyncIndicator,
    SyncNetworkError,
    SyncResult,
    project_indicator,
)
from idlesync.ports.remote import RemoteQueueService
from idlesync.ports.store import QueueStateCorruptedError, QueueStateStore, QueueStoreError
from idlesync.settings import RuntimeSettings
from idlesync.utils.telemetry import record_sync_event

from .config import SyncConfiguration
from .engine import SyncEngine, SyncMetrics
from .events import (
    CONFLICT_RESOLVED,
    CONFLICTS_PENDING,
    QUEUE_CHANGED,
    SYNC_COMPLETED,
    SYNC_FAILED,
    QueueEvent,
    QueueEventStream,
    Subscription,
)


class OfflineQueueService:
    """Per-player task queues that keep working offline.

    Mutations apply to the local projection at once, append an operation to the
    player's log and persist synchronously. Reconciliation with the remote service
    happens later through :meth:`trigger_manual_sync` or the scheduler. Calls for
    one player are serialised by a per-player lock; players are independent.
    """

    def __init__(
        self,
        store: QueueStateStore,
        remote: RemoteQueueService,
        settings: RuntimeSettings,
        *,
        config: SyncConfiguration | None = None,
        resolver: ConflictResolver | None = None,
        events: QueueEventStream | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._store = store
        self._settings = settings
        self._config = config or SyncConfiguration()
        self._clock = clock
        self._resolver = resolver or ConflictResolver(self._config.conflict_strategy, clock=clock)
        self._engine = SyncEngine(remote, settings, config=self._config, resolver=self._resolver, clock=clock)
        self._events = events or QueueEventStream(settings)
        self._states: Dict[str, OfflineQueueState] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._online = True

    @property
    def config(self) -> SyncConfiguration:
        return self._config

    @property
    def events(self) -> QueueEventStream:
        return self._events

    # ------------------------------------------------------------------
    # mutations (phase 1)

    def add_task(self, player_id: str, task: Task | Mapping[str, Any]) -> Task:
        if not isinstance(task, Task):
            task = Task.from_dict(task)
        with self._lock_for(player_id):
            state = self._load_state(player_id)
            if state.queue.find_task(task.id) is not None:
                raise TaskError(f"task {task.id} already queued for player {player_id}")
            operation = self._record(state, OperationType.ADD_TASK, task.to_dict(), task_id=task.id)
        self._publish_change(operation)
        return task

    def remove_task(self, player_id: str, task_id: str) -> None:
        with self._lock_for(player_id):
            state = self._load_state(player_id)
            if state.queue.find_task(task_id) is None:
                raise TaskError(f"task {task_id} not found for player {player_id}")
            operation = self._record(state, OperationType.REMOVE_TASK, {"taskId": task_id}, task_id=task_id)
        self._publish_change(operation)

    def reorder_tasks(self, player_id: str, task_ids: Sequence[str]) -> TaskQueue:
        if isinstance(task_ids, str) or not all(isinstance(item, str) for item in task_ids):
            raise TaskError("reorder expects a sequence of task ids")
        with self._lock_for(player_id):
            state = self._load_state(player_id)
            operation = self._record(state, OperationType.REORDER_TASKS, {"taskIds": list(task_ids)})
            queue = state.queue
        self._publish_change(operation)
        return queue

    def update_task(self, player_id: str, task_id: str, changes: Mapping[str, Any]) -> Task:
        with self._lock_for(player_id):
            state = self._load_state(player_id)
            current = state.queue.find_task(task_id)
            if current is None:
                raise TaskError(f"task {task_id} not found for player {player_id}")
            updated = current.with_changes(changes)
            diff = current.diff(updated)
            if not diff:
                return current
            operation = self._record(state, OperationType.UPDATE_TASK, diff, task_id=task_id)
        self._publish_change(operation)
        return updated

    def pause_queue(self, player_id: str, reason: str | None = None) -> TaskQueue:
        with self._lock_for(player_id):
            state = self._load_state(player_id)
            operation = self._record(state, OperationType.PAUSE_QUEUE, {"reason": reason})
            queue = state.queue
        self._publish_change(operation)
        return queue

    def resume_queue(self, player_id: str) -> TaskQueue:
        with self._lock_for(player_id):
            state = self._load_state(player_id)
            operation = self._record(state, OperationType.RESUME_QUEUE, {})
            queue = state.queue
        self._publish_change(operation)
        return queue

    def clear_queue(self, player_id: str) -> TaskQueue:
        with self._lock_for(player_id):
            state = self._load_state(player_id)
            operation = self._record(state, OperationType.CLEAR_QUEUE, {})
            queue = state.queue
        self._publish_change(operation)
        return queue

    # ------------------------------------------------------------------
    # queries

    def get_queue_state(self, player_id: str) -> TaskQueue:
        with self._lock_for(player_id):
            return self._load_state(player_id).queue

    def get_offline_state(self, player_id: str) -> OfflineQueueState:
        with self._lock_for(player_id):
            return self._load_state(player_id)

    def get_sync_indicator(self, player_id: str) -> SyncIndicator:
        with self._lock_for(player_id):
            state = self._load_state(player_id)
            progress = state.sync_progress() if state.sync_status.sync_in_progress else None
            return project_indicator(state.sync_status, progress=progress)

    def player_ids(self) -> List[str]:
        with self._registry_lock:
            return list(self._states)

    def load_all(self) -> List[str]:
        """Bring every stored player into memory; return their ids."""

        try:
            stored = list(self._store.player_ids())
        except QueueStoreError as exc:
            self._telemetry("store.load_failed", None, level="warn", error=str(exc))
            stored = []
        for player_id in stored:
            with self._lock_for(player_id):
                self._load_state(player_id)
        return self.player_ids()

    def is_sync_active(self, player_id: str) -> bool:
        return self._engine.is_sync_active(player_id)

    def get_sync_metrics(self, player_id: str) -> SyncMetrics:
        return self._engine.get_sync_metrics(player_id)

    def reset_sync_metrics(self, player_id: str) -> None:
        self._engine.reset_sync_metrics(player_id)

    def subscribe(self, player_id: str, callback: Callable[[QueueEvent], None]) -> Subscription:
        return self._events.subscribe(player_id, callback)

    # ------------------------------------------------------------------
    # connectivity and reconciliation (phase 2)

    def set_online(self, player_id: str, is_online: bool) -> bool:
        """Record connectivity for ``player_id``; return True on an offline to online edge."""

        with self._lock_for(player_id):
            state = self._load_state(player_id)
            was_online = state.sync_status.is_online
            if was_online == is_online:
                return False
            state.sync_status.is_online = is_online
            state.is_offline = not is_online
            if is_online:
                state.offline_start_time = 0
            else:
                state.offline_start_time = self._clock()
            self._persist(state)
            return is_online

    def set_device_online(self, is_online: bool) -> None:
        """Default connectivity for players not yet loaded."""
        self._online = is_online

    async def trigger_manual_sync(self, player_id: str) -> SyncResult:
        with self._lock_for(player_id):
            state = self._load_state(player_id)
            state.sync_status.manual_sync_requested = True
        try:
            return await self.sync_player(player_id, trigger="manual")
        finally:
            with self._lock_for(player_id):
                state.sync_status.manual_sync_requested = False

    async def sync_player(self, player_id: str, *, trigger: str = "scheduled") -> SyncResult:
        lock = self._lock_for(player_id)
        with lock:
            state = self._load_state(player_id)
            if not state.sync_status.is_online:
                raise SyncNetworkError(f"device offline; cannot sync player {player_id}")
        try:
            result = await self._engine.sync(state, lock, trigger=trigger)
        except SyncConcurrencyError:
            raise
        except ConflictUnresolvedError as exc:
            with lock:
                self._persist(state)
            self._events.publish(
                QueueEvent(player_id, CONFLICTS_PENDING, {"conflicts": [c.to_dict() for c in exc.conflicts]})
            )
            raise
        except SyncError as exc:
            with lock:
                self._persist(state)
            self._events.publish(QueueEvent(player_id, SYNC_FAILED, {"error": str(exc)}))
            raise
        with lock:
            self._persist(state)
        self._events.publish(
            QueueEvent(
                player_id,
                SYNC_COMPLETED,
                {
                    "appliedOperations": list(result.applied_operations),
                    "conflicts": len(result.conflicts),
                    "version": result.resolved_queue.version,
                },
            )
        )
        return result

    def resolve_manual_conflict(
        self,
        player_id: str,
        task_id: str | None,
        strategy: ResolutionStrategy | str,
    ) -> TaskQueue:
        """Settle a conflict left pending by the manual strategy."""

        chosen = ResolutionStrategy(strategy)
        if chosen is ResolutionStrategy.MANUAL:
            raise ValueError("pick server_wins, client_wins or merge to settle a manual conflict")
        with self._lock_for(player_id):
            state = self._load_state(player_id)
            conflict = next((item for item in state.pending_conflicts if item.task_id == task_id), None)
            if conflict is None:
                raise KeyError(f"no pending conflict for task {task_id} of player {player_id}")
            queue, details = self._resolver.apply(state.queue, conflict, chosen)
            timestamp = self._clock()
            state.queue = replace(queue, version=state.queue.version + 1, last_updated=timestamp).sealed()
            state.pending_conflicts.remove(conflict)
            state.sync_status.conflicts_detected = len(state.pending_conflicts)
            state.append_resolutions(
                [
                    ConflictResolutionEntry(
                        timestamp=timestamp,
                        conflict_type=conflict.type.value,
                        resolution=chosen.value,
                        task_id=task_id,
                        details=details,
                    )
                ],
                limit=self._config.max_resolution_log,
            )
            self._persist(state)
            queue = state.queue
        self._events.publish(
            QueueEvent(player_id, CONFLICT_RESOLVED, {"taskId": task_id, "resolution": chosen.value})
        )
        return queue

    def shutdown(self) -> None:
        """Drop in-memory bookkeeping. Every mutation has already been persisted."""

        with self._registry_lock:
            self._states.clear()
            self._locks.clear()
        self._engine.clear()
        self._events.clear()

    # ------------------------------------------------------------------
    # internals

    def _lock_for(self, player_id: str) -> threading.Lock:
        if not isinstance(player_id, str) or not player_id:
            raise ValueError("player_id must be a non-empty string")
        with self._registry_lock:
            lock = self._locks.get(player_id)
            if lock is None:
                lock = self._locks[player_id] = threading.Lock()
            return lock

    def _load_state(self, player_id: str) -> OfflineQueueState:
        """Caller holds the player lock."""

        with self._registry_lock:
            state = self._states.get(player_id)
        if state is not None:
            return state
        try:
            state = self._store.load(player_id)
        except QueueStateCorruptedError as exc:
            self._telemetry("store.load_corrupted", player_id, level="warn", error=str(exc))
            state = None
        except QueueStoreError as exc:
            self._telemetry("store.load_failed", player_id, level="warn", error=str(exc))
            state = None
        if state is None:
            state = OfflineQueueState.create(
                player_id,
                max_pending_operations=self._config.max_pending_operations,
                is_online=self._online,
            )
        state.refresh_pending_count()
        with self._registry_lock:
            self._states[player_id] = state
        return state

    def _record(
        self,
        state: OfflineQueueState,
        op_type: OperationType,
        payload: Dict[str, Any],
        *,
        task_id: str | None = None,
    ) -> Operation:
        version = state.queue.version + 1
        operation = Operation.create(op_type, state.player_id, version, payload, task_id=task_id)
        validate_operation(operation)
        queue = apply_operation(state.queue, operation)
        state.queue = replace(queue, version=version, last_updated=operation.timestamp).sealed()
        evicted = state.log.append(operation)
        for dropped in evicted:
            if dropped.applied:
                continue
            self._telemetry(
                "operation.dropped",
                state.player_id,
                level="warn",
                operationId=dropped.id,
                type=dropped.type.value,
                reason="capacity",
            )
        state.refresh_pending_count()
        self._persist(state)
        return operation

    def _persist(self, state: OfflineQueueState) -> None:
        try:
            self._store.save(state.player_id, state)
        except QueueStoreError as exc:
            self._telemetry("store.save_failed", state.player_id, level="warn", error=str(exc))

    def _publish_change(self, operation: Operation) -> None:
        self._events.publish(
            QueueEvent(
                operation.player_id,
                QUEUE_CHANGED,
                {
                    "operationId": operation.id,
                    "type": operation.type.value,
                    "taskId": operation.task_id,
                    "version": operation.local_version,
                },
            )
        )

    def _telemetry(self, event: str, player_id: str | None, *, level: str = "info", **fields: Any) -> None:
        record_sync_event(self._settings, event, player_id, component="service", level=level, **fields)


__all__ = ["OfflineQueueService"]
