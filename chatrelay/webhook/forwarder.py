"""Forward widget messages to a chatbot's external webhook.

The webhook may answer in the HTTP response (synchronous path) or reply
with an empty body and call back later (asynchronous path). Bodies come
in several shapes depending on the automation tool behind the webhook,
so :func:`parse_webhook_response` probes them in a fixed order.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any

import httpx

from chatrelay.errors import (
    NotFoundError,
    RelayError,
    UpstreamRateLimited,
    UpstreamTimeout,
    UpstreamUnavailable,
)
from chatrelay.models import AuditEventType, RiskLevel, utc_timestamp
from chatrelay.security.signing import SIGNATURE_HEADER, sign_payload
from chatrelay.webhook.models import ForwardResult, WebhookReply

if TYPE_CHECKING:
    from chatrelay.audit.logger import AuditLogger
    from chatrelay.security.origins import ChatbotLookup

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0

# Field probe order for object bodies
_MESSAGE_FIELDS = ("output", "text", "message", "response")

_BACKEND_FAILURE = "Failed to communicate with backend"


def to_json_text(value: Any) -> str:
    """Compact JSON text, the same form a browser's JSON.stringify yields."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def _as_message(value: Any) -> str:
    return value if isinstance(value, str) else to_json_text(value)


def _quick_replies(value: Any) -> list[str] | None:
    if isinstance(value, list):
        return [str(item) for item in value]
    return None


def parse_webhook_response(text: str) -> WebhookReply | None:
    """Turn a raw 2xx body into a bot reply.

    * empty / whitespace: ``None`` (the answer arrives via callback)
    * JSON array: its first element is parsed as below
    * JSON string: the string is the message
    * JSON object: first truthy field of ``output``, ``text``, ``message``,
      ``response``; ``quickReplies`` rides along
    * any other JSON value: its JSON text
    * not JSON: the stripped raw text
    """
    if not text or not text.strip():
        return None

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return WebhookReply(message=text.strip())

    if isinstance(parsed, list) and parsed:
        parsed = parsed[0]

    if isinstance(parsed, str):
        return WebhookReply(message=parsed)

    if isinstance(parsed, dict):
        for name in _MESSAGE_FIELDS:
            value = parsed.get(name)
            if value:
                return WebhookReply(
                    message=_as_message(value),
                    quick_replies=_quick_replies(parsed.get("quickReplies")),
                )

    return WebhookReply(message=to_json_text(parsed))


class WebhookForwarder:
    """Sends one visitor message to the chatbot's webhook and parses the reply."""

    def __init__(
        self,
        chatbots: ChatbotLookup,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._chatbots = chatbots
        self._timeout = timeout_seconds
        self._transport = transport
        self._audit = audit_logger

    @staticmethod
    def build_payload(
        chatbot_id: str,
        session_id: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> bytes:
        """Serialize the outbound body once; these bytes are signed and sent."""
        payload = {
            "chatbotId": chatbot_id,
            "sessionId": session_id,
            "message": message,
            "metadata": metadata or {},
            "timestamp": utc_timestamp(),
        }
        return to_json_text(payload).encode()

    async def forward(
        self,
        chatbot_id: str,
        session_id: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> ForwardResult:
        """Forward a message.

        Timeouts and non-2xx answers come back as failed results with a
        normalized status code. Other transport errors propagate.
        """
        chatbot = self._chatbots.get_chatbot(chatbot_id)
        if chatbot is None:
            return self._failure(NotFoundError())

        body = self.build_payload(chatbot_id, session_id, message, metadata)
        headers = {"Content-Type": "application/json"}
        if chatbot.webhook_secret:
            headers[SIGNATURE_HEADER] = sign_payload(chatbot.webhook_secret, body)

        try:
            async with httpx.AsyncClient(
                transport=self._transport, follow_redirects=True,
            ) as client:
                resp = await asyncio.wait_for(
                    client.post(
                        chatbot.webhook_url,
                        content=body,
                        headers=headers,
                        timeout=self._timeout,
                    ),
                    timeout=self._timeout,
                )
        except (httpx.TimeoutException, TimeoutError):
            logger.error("Webhook timeout: %s", chatbot.webhook_url)
            self._log_outcome(chatbot_id, "timeout", 504)
            return self._failure(UpstreamTimeout())

        if not resp.is_success:
            logger.error(
                "Webhook error for chatbot %s: %s %s",
                chatbot_id, resp.status_code, resp.text[:500],
            )
            self._log_outcome(chatbot_id, "error", resp.status_code)
            if resp.status_code == 429:
                return self._failure(UpstreamRateLimited())
            if resp.status_code >= 500:
                return self._failure(UpstreamUnavailable())
            return self._failure(UpstreamUnavailable(_BACKEND_FAILURE))

        reply = parse_webhook_response(resp.text)
        self._log_outcome(chatbot_id, "success" if reply else "pending", resp.status_code)
        return ForwardResult(success=True, response=reply)

    @staticmethod
    def _failure(error: RelayError) -> ForwardResult:
        return ForwardResult(
            success=False,
            error=error.public_message,
            status_code=error.status_code,
        )

    def _log_outcome(self, chatbot_id: str, result: str, upstream_status: int) -> None:
        if self._audit:
            self._audit.record(
                AuditEventType.WEBHOOK_FORWARD,
                action="forward",
                result=result,
                risk_level=RiskLevel.INFO if result in ("success", "pending") else RiskLevel.LOW,
                chatbot_id=chatbot_id,
                details={"upstream_status": upstream_status},
            )
