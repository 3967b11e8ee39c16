"""Offline queue application layer."""

from .config import SyncConfigError, SyncConfiguration, config_from_mapping, load_sync_config
from .engine import SyncEngine, SyncMetrics
from .events import QueueEvent, QueueEventStream, Subscription
from .scheduler import SyncScheduler
from .service import OfflineQueueService

__all__ = [
    "OfflineQueueService",
    "QueueEvent",
    "QueueEventStream",
    "Subscription",
    "SyncConfigError",
    "SyncConfiguration",
    "SyncEngine",
    "SyncMetrics",
    "SyncScheduler",
    "config_from_mapping",
    "load_sync_config",
]
