"""Session store adapter speaking to the OnlineXO service over HTTP and WebSocket."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Dict, Optional, Tuple

import httpx
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from .store import Record, SessionNotFoundError, SessionStore, StoreError, Subscription, UpdateCallback

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class HttpSessionStore(SessionStore):
    """Reads and writes go through ``/api/sessions``; pushes come from ``/ws/sessions``.

    Each subscription owns one websocket connection and a reader task that
    hands every ``update`` message to the subscriber's callback.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)
        self._streams: Dict[str, Tuple[asyncio.Task, object]] = {}

    @property
    def ws_url(self) -> str:
        if self.base_url.startswith("https://"):
            return "wss://" + self.base_url[len("https://"):]
        if self.base_url.startswith("http://"):
            return "ws://" + self.base_url[len("http://"):]
        return self.base_url

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            return await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise StoreError(f"{method} {path} failed: {exc}") from exc

    @staticmethod
    def _json(response: httpx.Response) -> Record:
        if response.status_code >= 400:
            raise StoreError(f"Store answered {response.status_code}: {response.text}")
        try:
            return response.json()
        except ValueError as exc:
            raise StoreError("Store answered with invalid JSON") from exc

    async def create(self, initial: Record) -> Record:
        return self._json(await self._request("POST", "/api/sessions", json=initial))

    async def get(self, session_id: str) -> Optional[Record]:
        response = await self._request("GET", f"/api/sessions/{session_id}")
        if response.status_code == 404:
            return None
        return self._json(response)

    async def update(self, session_id: str, fields: Record) -> Record:
        response = await self._request("PATCH", f"/api/sessions/{session_id}", json=fields)
        if response.status_code == 404:
            raise SessionNotFoundError(f"Session {session_id} not found")
        return self._json(response)

    async def subscribe(self, session_id: str, on_update: UpdateCallback) -> Subscription:
        url = f"{self.ws_url}/ws/sessions/{session_id}"
        try:
            connection = await websockets.connect(
                url, open_timeout=self.timeout, close_timeout=self.timeout
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            raise StoreError(f"Cannot subscribe to session {session_id}: {exc}") from exc

        try:
            first = json.loads(await asyncio.wait_for(connection.recv(), timeout=self.timeout))
        except ConnectionClosed as exc:
            await connection.close()
            raise SessionNotFoundError(f"Session {session_id} not found") from exc
        except (asyncio.TimeoutError, ValueError) as exc:
            await connection.close()
            raise StoreError(f"No snapshot for session {session_id}") from exc
        if first.get("type") != "snapshot":
            await connection.close()
            raise StoreError(f"Unexpected first message for session {session_id}")

        subscription = Subscription(session_id=session_id, callback=on_update)
        reader = asyncio.create_task(self._read_updates(subscription, connection))
        self._streams[subscription.subscription_id] = (reader, connection)
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        subscription.active = False
        stream = self._streams.pop(subscription.subscription_id, None)
        if stream is None:
            return
        reader, connection = stream
        reader.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await reader
        await connection.close()

    async def aclose(self) -> None:
        for subscription_id in list(self._streams):
            reader, connection = self._streams.pop(subscription_id)
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
            await connection.close()
        await self._client.aclose()

    async def _read_updates(self, subscription: Subscription, connection) -> None:
        try:
            async for raw in connection:
                try:
                    message = json.loads(raw)
                except ValueError:
                    logger.warning("Dropping undecodable push for session %s", subscription.session_id)
                    continue
                if message.get("type") != "update" or not subscription.active:
                    continue
                try:
                    subscription.callback(message.get("record"))
                except Exception:
                    logger.exception(
                        "Update listener %s failed for session %s",
                        subscription.subscription_id,
                        subscription.session_id,
                    )
        except ConnectionClosed as exc:
            if subscription.active:
                logger.error("Update stream for session %s closed: %s", subscription.session_id, exc)
