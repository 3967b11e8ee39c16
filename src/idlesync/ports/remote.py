"""Port for the authoritative remote queue service."""

from __future__ import annotations

from abc import ABC, abstractmethod

from idlesync.domain.sync import SyncPacket, SyncResponse


class RemoteQueueService(ABC):
    """Applies incremental packets server-side.

    Implementations must treat operation ids idempotently: a packet re-sent after
    a client timeout must not apply the same operation twice.
    """

    @abstractmethod
    async def incremental_sync(self, packet: SyncPacket) -> SyncResponse:
        """Send ``packet`` and return the server verdict."""


class RemoteServiceError(RuntimeError):
    """Raised when the transport or the server fails to answer a sync request."""
