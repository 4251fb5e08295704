"""WebSocket transport for the realtime channel.

Frames in both directions are JSON envelopes ``{"event": ..., "data": {...}}``.
Client events: ``join``, ``leave``, ``typing``. Server events: ``message``,
``user_typing``, ``error``.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from chatrelay.realtime.router import SessionRouter

logger = logging.getLogger(__name__)

SOCKET_PATH = "/socket.io"


class WebSocketConnection:
    """Adapts a Starlette WebSocket to the router's connection protocol."""

    def __init__(self, websocket: WebSocket) -> None:
        self._ws = websocket
        self._id = uuid.uuid4().hex
        self._origin = websocket.headers.get("origin")

    @property
    def id(self) -> str:
        return self._id

    @property
    def origin(self) -> str | None:
        return self._origin

    async def send(self, event: str, data: dict[str, Any]) -> None:
        await self._ws.send_json({"event": event, "data": data})


def _ids(data: dict[str, Any]) -> tuple[str, str]:
    return str(data.get("chatbotId") or ""), str(data.get("sessionId") or "")


async def _dispatch(
    router: SessionRouter,
    conn: WebSocketConnection,
    event: str,
    data: dict[str, Any],
) -> None:
    chatbot_id, session_id = _ids(data)

    if event == "join":
        if not chatbot_id or not session_id:
            return
        result = router.join(conn, chatbot_id, session_id)
        if not result.admitted:
            await conn.send("error", {"message": result.reason or "Join rejected"})

    elif event == "leave":
        router.leave(conn, chatbot_id, session_id)

    elif event == "typing":
        await router.relay_typing(conn, chatbot_id, session_id, bool(data.get("isTyping")))

    else:
        await conn.send("error", {"message": f"Unknown event: {event}"})


def create_realtime_router(router: SessionRouter) -> APIRouter:
    """Router exposing the WebSocket endpoint bound to ``router``."""
    api = APIRouter()

    @api.websocket(SOCKET_PATH)
    async def socket_endpoint(websocket: WebSocket) -> None:
        await websocket.accept()
        conn = WebSocketConnection(websocket)
        logger.info("Client connected: %s", conn.id)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                raw = message.get("text")
                if raw is None:
                    await conn.send("error", {"message": "Invalid frame"})
                    continue
                try:
                    frame = json.loads(raw)
                except json.JSONDecodeError:
                    await conn.send("error", {"message": "Invalid frame"})
                    continue
                if not isinstance(frame, dict) or not isinstance(frame.get("data", {}), dict):
                    await conn.send("error", {"message": "Invalid frame"})
                    continue
                await _dispatch(router, conn, str(frame.get("event", "")), frame.get("data") or {})
        except WebSocketDisconnect:
            pass
        finally:
            router.disconnect(conn)
            logger.info("Client disconnected: %s", conn.id)

    return api
