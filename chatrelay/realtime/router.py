"""Session routing: which live connections belong to which visitor session.

A room is keyed by ``"{chatbot_id}:{session_id}"`` and exists only while at
least one connection is in it. All mutation happens on the event loop
thread, and every broadcast walks a snapshot of the room, so no locking is
needed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from chatrelay.models import AuditEventType, BotMessageEvent, RiskLevel

if TYPE_CHECKING:
    from chatrelay.audit.logger import AuditLogger
    from chatrelay.security.origins import ChatbotLookup, OriginValidator

logger = logging.getLogger(__name__)


class Connection(Protocol):
    """A live realtime connection as seen by the router."""

    @property
    def id(self) -> str: ...

    @property
    def origin(self) -> str | None: ...

    async def send(self, event: str, data: dict[str, Any]) -> None: ...


@dataclass(frozen=True)
class JoinResult:
    admitted: bool
    reason: str | None = None


def room_key(chatbot_id: str, session_id: str) -> str:
    return f"{chatbot_id}:{session_id}"


class SessionRouter:
    """Owns the room map. Build one per application; tests build their own."""

    def __init__(
        self,
        chatbots: ChatbotLookup,
        origin_validator: OriginValidator,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._chatbots = chatbots
        self._validator = origin_validator
        self._audit = audit_logger
        self._rooms: dict[str, dict[str, Connection]] = {}

    def join(self, connection: Connection, chatbot_id: str, session_id: str) -> JoinResult:
        if not chatbot_id or not session_id:
            return JoinResult(admitted=False, reason="chatbotId and sessionId are required")

        if self._chatbots.get_chatbot(chatbot_id) is None:
            return JoinResult(admitted=False, reason="Invalid chatbot")

        decision = self._validator.check(connection.origin, chatbot_id)
        if not decision.allowed:
            logger.warning(
                "Connection %s rejected: origin %s not allowed for chatbot %s",
                connection.id, connection.origin, chatbot_id,
            )
            if self._audit:
                self._audit.record(
                    AuditEventType.ORIGIN_REJECTED,
                    action="room_join",
                    result="blocked",
                    risk_level=RiskLevel.MEDIUM,
                    chatbot_id=chatbot_id,
                    details={"origin": connection.origin},
                )
            return JoinResult(admitted=False, reason=decision.reason)

        key = room_key(chatbot_id, session_id)
        self._rooms.setdefault(key, {})[connection.id] = connection
        logger.info("Connection %s joined room %s", connection.id, key)
        if self._audit:
            self._audit.record(
                AuditEventType.ROOM_JOIN,
                action="room_join",
                result="success",
                chatbot_id=chatbot_id,
                details={"session_id": session_id, "origin": connection.origin},
            )
        return JoinResult(admitted=True)

    def leave(self, connection: Connection, chatbot_id: str, session_id: str) -> None:
        """Remove the connection from one room. Unknown rooms are a no-op."""
        self._discard(room_key(chatbot_id, session_id), connection.id)

    def disconnect(self, connection: Connection) -> None:
        """Remove the connection from every room it is in."""
        for key in [k for k, members in self._rooms.items() if connection.id in members]:
            self._discard(key, connection.id)

    async def relay_typing(
        self,
        connection: Connection,
        chatbot_id: str,
        session_id: str,
        is_typing: bool,
    ) -> int:
        """Tell the other tabs of a session that the visitor is typing.

        Only members of the room may signal it; the sender never gets an echo.
        """
        members = self._rooms.get(room_key(chatbot_id, session_id), {})
        if connection.id not in members:
            return 0
        peers = [c for cid, c in members.items() if cid != connection.id]
        return await self._broadcast(peers, "user_typing", {"isTyping": bool(is_typing)})

    async def deliver(
        self,
        chatbot_id: str,
        session_id: str,
        event: BotMessageEvent | dict[str, Any],
    ) -> int:
        """Push ``event`` to everyone in the session room.

        Nothing is queued: with no live connection the event is dropped.
        Returns the number of connections that received it.
        """
        key = room_key(chatbot_id, session_id)
        members = self._rooms.get(key)
        if not members:
            logger.debug("No live connection for room %s; dropping event", key)
            return 0
        data = event.to_wire() if isinstance(event, BotMessageEvent) else event
        return await self._broadcast(list(members.values()), "message", data)

    def connection_count(self, chatbot_id: str, session_id: str) -> int:
        return len(self._rooms.get(room_key(chatbot_id, session_id), {}))

    def has_room(self, chatbot_id: str, session_id: str) -> bool:
        return room_key(chatbot_id, session_id) in self._rooms

    @property
    def room_keys(self) -> list[str]:
        return list(self._rooms)

    def close(self) -> None:
        """Drop every room. Called on application shutdown."""
        self._rooms.clear()

    def _discard(self, key: str, connection_id: str) -> None:
        members = self._rooms.get(key)
        if members is None:
            return
        members.pop(connection_id, None)
        if not members:
            del self._rooms[key]

    async def _broadcast(
        self, connections: list[Connection], event: str, data: dict[str, Any],
    ) -> int:
        sent = 0
        for conn in connections:
            try:
                await conn.send(event, data)
                sent += 1
            except Exception:
                logger.warning("Dropping connection %s after failed send", conn.id, exc_info=True)
                self.disconnect(conn)
        return sent
