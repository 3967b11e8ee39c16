"""Per-player notification stream for queue and sync changes."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List

from idlesync.domain.queue import now_ms
from idlesync.settings import RuntimeSettings
from idlesync.utils.telemetry import record_sync_event

QUEUE_CHANGED = "queue_changed"
SYNC_COMPLETED = "sync_completed"
SYNC_FAILED = "sync_failed"
CONFLICTS_PENDING = "conflicts_pending"
CONFLICT_RESOLVED = "conflict_resolved"


@dataclass(frozen=True)
class QueueEvent:
    player_id: str
    kind: str
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: int = field(default_factory=now_ms)


Subscriber = Callable[[QueueEvent], None]


class Subscription:
    def __init__(self, stream: "QueueEventStream", player_id: str, callback: Subscriber) -> None:
        self._stream = stream
        self.player_id = player_id
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._stream._remove(self)
            self.active = False


class QueueEventStream:
    """Multiple subscribers per player, each detachable through its :class:`Subscription`."""

    def __init__(self, settings: RuntimeSettings | None = None) -> None:
        self._settings = settings
        self._subscriptions: Dict[str, List[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, player_id: str, callback: Subscriber) -> Subscription:
        subscription = Subscription(self, player_id, callback)
        with self._lock:
            self._subscriptions.setdefault(player_id, []).append(subscription)
        return subscription

    def subscriber_count(self, player_id: str) -> int:
        with self._lock:
            return len(self._subscriptions.get(player_id, []))

    def publish(self, event: QueueEvent) -> int:
        with self._lock:
            targets = list(self._subscriptions.get(event.player_id, []))
        delivered = 0
        for subscription in targets:
            try:
                subscription.callback(event)
            except Exception as exc:  # change already committed
                if self._settings is not None:
                    record_sync_event(
                        self._settings,
                        "events.subscriber_failed",
                        event.player_id,
                        component="events",
                        level="warn",
                        kind=event.kind,
                        error=str(exc),
                    )
                continue
            delivered += 1
        return delivered

    def clear(self) -> None:
        with self._lock:
            for subscriptions in self._subscriptions.values():
                for subscription in subscriptions:
                    subscription.active = False
            self._subscriptions.clear()

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            subscriptions = self._subscriptions.get(subscription.player_id, [])
            if subscription in subscriptions:
                subscriptions.remove(subscription)
            if not subscriptions:
                self._subscriptions.pop(subscription.player_id, None)


__all__ = [
    "CONFLICTS_PENDING",
    "CONFLICT_RESOLVED",
    "QUEUE_CHANGED",
    "QueueEvent",
    "QueueEventStream",
    "SYNC_COMPLETED",
    "SYNC_FAILED",
    "Subscription",
]
