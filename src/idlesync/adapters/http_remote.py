"""HTTP adapter for the remote queue service."""

from __future__ import annotations

import asyncio
import os
from typing import Any, Dict

import requests

from idlesync.domain.sync import SyncPacket, SyncResponse
from idlesync.ports.remote import RemoteQueueService, RemoteServiceError

SYNC_ENDPOINT = "/api/task-queue/incremental-sync"


class HttpQueueService(RemoteQueueService):
    def __init__(
        self,
        base_url: str,
        *,
        token_env: str | None = None,
        batch_size: int = 50,
        conflict_strategy: str = "merge",
        request_timeout: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        if not base_url:
            raise RemoteServiceError("http remote requires a base_url")
        self._url = base_url.rstrip("/") + SYNC_ENDPOINT
        self._token_env = token_env
        self._batch_size = batch_size
        self._conflict_strategy = conflict_strategy
        self._request_timeout = request_timeout
        self._session = session or requests.Session()

    @property
    def url(self) -> str:
        return self._url

    async def incremental_sync(self, packet: SyncPacket) -> SyncResponse:
        return await asyncio.to_thread(self._post, packet)

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self._token_env:
            token = os.environ.get(self._token_env)
            if not token:
                raise RemoteServiceError(
                    f"http remote token missing in environment variable '{self._token_env}'"
                )
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _post(self, packet: SyncPacket) -> SyncResponse:
        body: Dict[str, Any] = {
            "syncData": packet.to_dict(),
            "config": {
                "batchSize": self._batch_size,
                "conflictStrategy": self._conflict_strategy,
            },
        }
        try:
            response = self._session.post(
                self._url,
                json=body,
                headers=self._headers(),
                timeout=self._request_timeout,
            )
        except requests.RequestException as exc:
            raise RemoteServiceError(f"sync request failed: {exc}") from exc
        if response.status_code >= 400:
            raise RemoteServiceError(f"sync request failed: {response.status_code} {response.text}")
        try:
            return SyncResponse.from_dict(response.json())
        except ValueError as exc:
            raise RemoteServiceError(f"sync response invalid: {exc}") from exc


__all__ = ["HttpQueueService", "SYNC_ENDPOINT"]
