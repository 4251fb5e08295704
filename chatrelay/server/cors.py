"""ASGI middleware applying the shared origin policy to HTTP requests."""

from __future__ import annotations

import re

from starlette.datastructures import MutableHeaders
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from chatrelay.audit.logger import AuditLogger
from chatrelay.models import AuditEventType, RiskLevel
from chatrelay.security.origins import OriginDecision, OriginValidator

# Paths (relative to the base path) that carry no browser CORS policy
PUBLIC_PATHS = {"/health"}

# Server-to-server callbacks authenticate by signature, not origin
PUBLIC_PREFIXES = ("/webhook/",)

_WIDGET_PATH = re.compile(r"^/widget/([^/]+)(?:/|$)")


class OriginMiddleware:
    """Admit, reject or answer preflight for cross-origin HTTP requests.

    Widget paths (``/widget/{chatbot_id}/...``) are checked against that
    chatbot's policy; any other non-public path is the operator surface.
    """

    def __init__(
        self,
        app: ASGIApp,
        validator: OriginValidator,
        base_path: str = "",
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self.app = app
        self._validator = validator
        self._base_path = base_path
        self.audit_logger = audit_logger

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        path = request.url.path
        if self._base_path and path.startswith(self._base_path):
            path = path[len(self._base_path):] or "/"

        if path in PUBLIC_PATHS or path.startswith(PUBLIC_PREFIXES):
            await self.app(scope, receive, send)
            return

        match = _WIDGET_PATH.match(path)
        chatbot_id = match.group(1) if match else None
        origin = request.headers.get("origin")
        decision = self._validator.check(origin, chatbot_id)

        if not decision.allowed:
            self._log_rejection(request, origin, chatbot_id, decision)
            response: Response = JSONResponse(
                {"error": decision.reason}, status_code=decision.status_code,
            )
            await response(scope, receive, send)
            return

        cors_headers = _cors_headers(decision, admin=chatbot_id is None)

        if request.method == "OPTIONS":
            response = Response(status_code=204, headers=cors_headers)
            await response(scope, receive, send)
            return

        if not cors_headers:
            await self.app(scope, receive, send)
            return

        async def send_with_cors(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                for name, value in cors_headers.items():
                    headers[name] = value
            await send(message)

        await self.app(scope, receive, send_with_cors)

    def _log_rejection(
        self,
        request: Request,
        origin: str | None,
        chatbot_id: str | None,
        decision: OriginDecision,
    ) -> None:
        if self.audit_logger:
            self.audit_logger.record(
                AuditEventType.ORIGIN_REJECTED,
                action=f"{request.method} {request.url.path}",
                result="blocked",
                risk_level=RiskLevel.MEDIUM,
                source_ip=request.client.host if request.client else None,
                chatbot_id=chatbot_id,
                details={"origin": origin, "reason": decision.reason},
            )


def _cors_headers(decision: OriginDecision, admin: bool) -> dict[str, str]:
    if decision.allow_origin is None:
        return {}
    return {
        "Access-Control-Allow-Origin": decision.allow_origin,
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Allow-Methods": ", ".join((*decision.methods, "OPTIONS")),
        "Access-Control-Allow-Headers": (
            "Content-Type, Authorization" if admin else "Content-Type"
        ),
        "Vary": "Origin",
    }
