"""Public widget endpoints: configuration and the synchronous message path."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from chatrelay.errors import RateLimitExceeded
from chatrelay.models import AuditEventType, RiskLevel
from chatrelay.server.http import NO_STORE, client_ip, rate_limit_headers

if TYPE_CHECKING:
    from chatrelay.audit.logger import AuditLogger
    from chatrelay.store.chatbots import ChatbotStore
    from chatrelay.webhook.forwarder import WebhookForwarder
    from chatrelay.webhook.rate_limiter import WebhookRateLimiter

logger = logging.getLogger(__name__)


def create_widget_router(
    chatbots: ChatbotStore,
    forwarder: WebhookForwarder,
    limiter: WebhookRateLimiter,
    max_message_length: int = 4096,
    audit_logger: AuditLogger | None = None,
) -> APIRouter:
    router = APIRouter(prefix="/widget")

    @router.get("/{chatbot_id}/config")
    async def widget_config(chatbot_id: str) -> JSONResponse:
        config = chatbots.get_widget_config(chatbot_id)
        if config is None:
            return JSONResponse({"error": "Chatbot not found"}, status_code=404)
        return JSONResponse(config)

    @router.post("/{chatbot_id}/message")
    async def send_message(chatbot_id: str, request: Request) -> JSONResponse:
        """Forward a visitor message; ``response: null`` means await the callback."""
        ip = client_ip(request)
        hit = limiter.hit(ip)
        headers = {**NO_STORE, **rate_limit_headers(limiter, hit)}
        if not limiter.allows(hit):
            logger.info("Widget rate limit exceeded for %s", ip)
            if audit_logger:
                audit_logger.record(
                    AuditEventType.RATE_LIMITED,
                    action="widget_message",
                    result="blocked",
                    risk_level=RiskLevel.LOW,
                    source_ip=ip,
                    chatbot_id=chatbot_id,
                    details={"bucket": limiter.bucket},
                )
            error = RateLimitExceeded("Rate limit exceeded. Please slow down.")
            return JSONResponse(
                {"error": error.public_message},
                status_code=error.status_code,
                headers=headers,
            )

        try:
            body: Any = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            body = None
        if not isinstance(body, dict):
            return JSONResponse(
                {"error": "Invalid JSON body"}, status_code=400, headers=headers,
            )

        session_id = body.get("sessionId")
        message = body.get("message")
        metadata = body.get("metadata")
        if not session_id or not message:
            return JSONResponse(
                {"error": "sessionId and message are required"},
                status_code=400,
                headers=headers,
            )
        if not isinstance(session_id, str) or not isinstance(message, str):
            return JSONResponse(
                {"error": "sessionId and message must be strings"},
                status_code=400,
                headers=headers,
            )
        if len(message) > max_message_length:
            return JSONResponse(
                {"error": f"Message too long. Maximum {max_message_length} characters allowed."},
                status_code=400,
                headers=headers,
            )
        if metadata is not None and not isinstance(metadata, dict):
            return JSONResponse(
                {"error": "metadata must be an object"}, status_code=400, headers=headers,
            )

        try:
            result = await forwarder.forward(chatbot_id, session_id, message, metadata)
        except Exception:
            logger.exception("Message forward failed for chatbot %s", chatbot_id)
            return JSONResponse(
                {"error": "Internal server error"}, status_code=500, headers=headers,
            )

        if not result.success:
            return JSONResponse(
                {"error": result.error},
                status_code=result.status_code or 500,
                headers=headers,
            )

        return JSONResponse(
            {
                "success": True,
                "response": result.response.to_wire() if result.response else None,
            },
            headers=headers,
        )

    return router
