"""Asynchronous webhook callbacks: verify, extract, push to the session room.

The external automation calls back independently of the original widget
request. The signature check here is the trust boundary for that path; it
is skipped only when the operator configured no secret for the chatbot.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from chatrelay.errors import AuthError, NotFoundError, ValidationError
from chatrelay.models import AuditEventType, BotMessageEvent, RiskLevel
from chatrelay.security.signing import verify_signature
from chatrelay.webhook.forwarder import to_json_text

if TYPE_CHECKING:
    from chatrelay.audit.logger import AuditLogger
    from chatrelay.realtime.router import SessionRouter
    from chatrelay.security.origins import ChatbotLookup

logger = logging.getLogger(__name__)

_SESSION_FIELDS = ("sessionId", "session_id")
_MESSAGE_FIELDS = ("message", "text", "output", "response")


def extract_session_id(body: dict[str, Any]) -> str | None:
    """Session id from ``sessionId`` / ``session_id``, top level or in ``metadata``."""
    candidates = [body]
    if isinstance(body.get("metadata"), dict):
        candidates.append(body["metadata"])
    for source in candidates:
        for name in _SESSION_FIELDS:
            value = source.get(name)
            if value:
                return str(value)
    return None


def extract_message(body: dict[str, Any]) -> str:
    for name in _MESSAGE_FIELDS:
        value = body.get(name)
        if value:
            return value if isinstance(value, str) else to_json_text(value)
    return ""


def build_bot_event(body: dict[str, Any]) -> BotMessageEvent:
    quick_replies = body.get("quickReplies") or body.get("quick_replies") or []
    metadata = body.get("metadata")
    return BotMessageEvent(
        message=extract_message(body),
        quick_replies=[str(q) for q in quick_replies] if isinstance(quick_replies, list) else [],
        metadata=metadata if isinstance(metadata, dict) else {},
    )


class WebhookCallbackRelay:
    """Handles ``POST /webhook/{chatbot_id}/response``."""

    def __init__(
        self,
        chatbots: ChatbotLookup,
        router: SessionRouter,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._chatbots = chatbots
        self._router = router
        self._audit = audit_logger

    def verify(self, secret: str | None, raw_body: bytes, signature: str | None) -> None:
        """Raise :class:`AuthError` unless the body carries a valid signature."""
        if not secret:
            return
        if not signature:
            raise AuthError("Missing signature")
        if not verify_signature(secret, raw_body, signature):
            raise AuthError("Invalid signature")

    async def handle(
        self,
        chatbot_id: str,
        raw_body: bytes,
        signature: str | None,
        source_ip: str | None = None,
    ) -> int:
        """Verify and deliver one callback; returns connections reached."""
        chatbot = self._chatbots.get_chatbot(chatbot_id)
        if chatbot is None:
            raise NotFoundError()

        try:
            self.verify(chatbot.webhook_secret, raw_body, signature)
        except AuthError as exc:
            logger.warning("Rejected callback for chatbot %s: %s", chatbot_id, exc.public_message)
            if self._audit:
                self._audit.record(
                    AuditEventType.SIGNATURE_FAILURE,
                    action="webhook_callback",
                    result="failure",
                    risk_level=RiskLevel.HIGH,
                    source_ip=source_ip,
                    chatbot_id=chatbot_id,
                    details={"reason": exc.public_message},
                )
            raise

        try:
            body = json.loads(raw_body)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ValidationError("Invalid JSON body") from exc
        if not isinstance(body, dict):
            raise ValidationError("Invalid JSON body")

        session_id = extract_session_id(body)
        if not session_id:
            raise ValidationError("sessionId is required")

        delivered = await self._router.deliver(chatbot_id, session_id, build_bot_event(body))
        if self._audit:
            self._audit.record(
                AuditEventType.WEBHOOK_CALLBACK,
                action="deliver",
                result="success" if delivered else "dropped",
                source_ip=source_ip,
                chatbot_id=chatbot_id,
                details={"session_id": session_id, "connections": delivered},
            )
        return delivered
