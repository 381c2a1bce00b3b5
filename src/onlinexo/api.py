"""FastAPI service exposing the shared session store over HTTP and WebSocket.

The service is passive: it stores whatever fields clients send
and broadcasts every change. Move legality is enforced by the clients.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect

from .store import InMemorySessionStore, SessionNotFoundError, StoreError

logger = logging.getLogger(__name__)

STORE = InMemorySessionStore()
app = FastAPI(title="OnlineXO", description="Shared session records for online tic-tac-toe")

SESSION_NOT_FOUND_CLOSE_CODE = 4404


def _store_unavailable(exc: StoreError) -> HTTPException:
    logger.error("Session store failure: %s", exc)
    return HTTPException(status_code=503, detail="Session store unavailable")


async def _get_record(session_id: str) -> Dict[str, object]:
    try:
        record = await STORE.get(session_id)
    except StoreError as exc:
        raise _store_unavailable(exc) from exc
    if record is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return record


def _resolve_join_base_url(request: Request) -> str:
    """Determine the best base URL for shareable invite links."""

    origin = request.headers.get("origin")
    if origin:
        return origin.rstrip("/")

    forwarded_host = request.headers.get("x-forwarded-host")
    if forwarded_host:
        scheme = request.headers.get("x-forwarded-proto") or request.url.scheme
        return f"{scheme}://{forwarded_host}".rstrip("/")

    host = request.headers.get("host")
    if host:
        return f"{request.url.scheme}://{host}".rstrip("/")

    return str(request.base_url).rstrip("/")


def invite_link(base_url: str, session_id: str) -> str:
    return f"{base_url.rstrip('/')}/?gameId={session_id}"


@app.post("/api/sessions")
async def create_session(fields: Dict[str, Any]) -> Dict[str, object]:
    try:
        return await STORE.create(fields)
    except StoreError as exc:
        raise _store_unavailable(exc) from exc


@app.get("/api/sessions/{session_id}")
async def get_session(session_id: str) -> Dict[str, object]:
    return await _get_record(session_id)


@app.patch("/api/sessions/{session_id}")
async def update_session(session_id: str, fields: Dict[str, Any]) -> Dict[str, object]:
    try:
        return await STORE.update(session_id, fields)
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Session not found") from exc
    except StoreError as exc:
        raise _store_unavailable(exc) from exc


@app.get("/api/sessions/{session_id}/invite")
async def get_invite(session_id: str, request: Request) -> Dict[str, str]:
    record = await _get_record(session_id)
    base_url = _resolve_join_base_url(request)
    return {"gameId": str(record["id"]), "joinUrl": invite_link(base_url, session_id)}


async def _forward_updates(websocket: WebSocket, queue: "asyncio.Queue[Dict[str, object]]") -> None:
    while True:
        record = await queue.get()
        await websocket.send_json({"type": "update", "record": record})


async def _drain_client(websocket: WebSocket) -> None:
    while True:
        await websocket.receive_text()


@app.websocket("/ws/sessions/{session_id}")
async def session_updates(websocket: WebSocket, session_id: str) -> None:
    loop = asyncio.get_running_loop()
    queue: "asyncio.Queue[Dict[str, object]]" = asyncio.Queue()

    # Writers may run on another thread's loop (sync routes, test clients).
    def on_update(record: Dict[str, object]) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, record)

    try:
        subscription = await STORE.subscribe(session_id, on_update)
    except StoreError as exc:
        logger.error("Cannot stream session %s: %s", session_id, exc)
        await websocket.close(code=1011)
        return
    try:
        record = await STORE.get(session_id)
    except StoreError as exc:
        logger.error("Cannot stream session %s: %s", session_id, exc)
        await STORE.unsubscribe(subscription)
        await websocket.close(code=1011)
        return

    if record is None:
        await STORE.unsubscribe(subscription)
        await websocket.close(code=SESSION_NOT_FOUND_CLOSE_CODE)
        return

    await websocket.accept()
    await websocket.send_json({"type": "snapshot", "record": record})
    sender = asyncio.create_task(_forward_updates(websocket, queue))
    receiver = asyncio.create_task(_drain_client(websocket))
    try:
        await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        sender.cancel()
        receiver.cancel()
        results = await asyncio.gather(sender, receiver, return_exceptions=True)
        await STORE.unsubscribe(subscription)
    for result in results:
        # disconnects surface from either direction
        if isinstance(result, Exception) and not isinstance(
            result, (WebSocketDisconnect, RuntimeError)
        ):
            logger.error("Update stream for session %s failed: %r", session_id, result)


@app.get("/")
def read_root() -> Dict[str, str]:
    return {"message": "OnlineXO session store running"}
