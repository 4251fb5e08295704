"""Inbound callback endpoint used by the external automation."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from chatrelay.errors import RateLimitExceeded, RelayError
from chatrelay.models import AuditEventType, RiskLevel
from chatrelay.security.signing import SIGNATURE_HEADER
from chatrelay.server.http import NO_STORE, client_ip, rate_limit_headers

if TYPE_CHECKING:
    from chatrelay.audit.logger import AuditLogger
    from chatrelay.webhook.callback import WebhookCallbackRelay
    from chatrelay.webhook.rate_limiter import WebhookRateLimiter

logger = logging.getLogger(__name__)


def create_webhook_router(
    relay: WebhookCallbackRelay,
    limiter: WebhookRateLimiter,
    audit_logger: AuditLogger | None = None,
) -> APIRouter:
    router = APIRouter(prefix="/webhook")

    @router.post("/{chatbot_id}/response")
    async def webhook_response(chatbot_id: str, request: Request) -> JSONResponse:
        """Deliver an asynchronous bot answer to the visitor's open tabs."""
        ip = client_ip(request)
        hit = limiter.hit(ip)
        headers = {**NO_STORE, **rate_limit_headers(limiter, hit)}
        if not limiter.allows(hit):
            if audit_logger:
                audit_logger.record(
                    AuditEventType.RATE_LIMITED,
                    action="webhook_callback",
                    result="blocked",
                    risk_level=RiskLevel.LOW,
                    source_ip=ip,
                    chatbot_id=chatbot_id,
                    details={"bucket": limiter.bucket},
                )
            error = RateLimitExceeded("Too many requests")
            return JSONResponse(
                {"error": error.public_message},
                status_code=error.status_code,
                headers=headers,
            )

        raw_body = await request.body()
        try:
            await relay.handle(
                chatbot_id,
                raw_body,
                request.headers.get(SIGNATURE_HEADER),
                source_ip=ip,
            )
        except RelayError as exc:
            return JSONResponse(
                {"error": exc.public_message},
                status_code=exc.status_code,
                headers=headers,
            )
        except Exception:
            logger.exception("Webhook response error for chatbot %s", chatbot_id)
            return JSONResponse(
                {"error": "Internal server error"}, status_code=500, headers=headers,
            )

        return JSONResponse({"success": True}, headers=headers)

    return router
