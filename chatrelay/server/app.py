"""FastAPI application wiring the relay core together."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from chatrelay.audit.logger import AuditLogger
from chatrelay.config import Settings
from chatrelay.realtime.router import SessionRouter
from chatrelay.realtime.transport import create_realtime_router
from chatrelay.security.origins import OriginValidator
from chatrelay.server.cors import OriginMiddleware
from chatrelay.server.webhook_routes import create_webhook_router
from chatrelay.server.widget_routes import create_widget_router
from chatrelay.store.chatbots import ChatbotStore
from chatrelay.store.db import Database
from chatrelay.store.rate_limits import RateLimitStore
from chatrelay.webhook.callback import WebhookCallbackRelay
from chatrelay.webhook.forwarder import WebhookForwarder
from chatrelay.webhook.rate_limiter import WebhookRateLimiter

logger = logging.getLogger(__name__)

WIDGET_BUCKET = "widget"
WEBHOOK_BUCKET = "webhook"


def create_app_from_env() -> FastAPI:
    """Factory for ``uvicorn --factory``: reads config from environment variables."""
    settings = Settings.from_env()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    audit_logger = (
        AuditLogger.from_env(settings.audit_log_path) if settings.audit_log_path else None
    )
    return create_app(settings, audit_logger=audit_logger)


async def _sweep_rate_limits(store: RateLimitStore, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            removed = store.sweep_expired()
        except Exception:
            logger.exception("Rate-limit sweep failed")
            continue
        if removed:
            logger.debug("Swept %d expired rate-limit counters", removed)


def create_app(
    settings: Settings,
    db: Database | None = None,
    audit_logger: AuditLogger | None = None,
    webhook_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build the relay app.

    ``webhook_transport`` replaces the outbound HTTP transport (tests use
    ``httpx.MockTransport``).
    """
    db = db or Database(settings.database_path)
    chatbots = ChatbotStore(db)
    chatbots.ensure_default_theme()
    rate_store = RateLimitStore(db)

    validator = OriginValidator(settings, chatbots)
    session_router = SessionRouter(chatbots, validator, audit_logger=audit_logger)
    forwarder = WebhookForwarder(
        chatbots,
        timeout_seconds=settings.webhook_timeout_seconds,
        transport=webhook_transport,
        audit_logger=audit_logger,
    )
    callback_relay = WebhookCallbackRelay(chatbots, session_router, audit_logger=audit_logger)
    widget_limiter = WebhookRateLimiter(
        rate_store,
        WIDGET_BUCKET,
        max_requests=settings.widget_rate_limit_max,
        window_seconds=settings.widget_rate_limit_window_seconds,
    )
    webhook_limiter = WebhookRateLimiter(
        rate_store,
        WEBHOOK_BUCKET,
        max_requests=settings.webhook_rate_limit_max,
        window_seconds=settings.webhook_rate_limit_window_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        sweeper: asyncio.Task[None] | None = None
        if settings.rate_limit_sweep_seconds > 0:
            sweeper = asyncio.create_task(
                _sweep_rate_limits(rate_store, settings.rate_limit_sweep_seconds),
            )
        logger.info("Relay started (base path %r)", settings.base_path or "/")
        try:
            yield
        finally:
            if sweeper is not None:
                sweeper.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await sweeper
            session_router.close()
            logger.info("Relay stopped")

    app = FastAPI(docs_url=None, redoc_url=None, lifespan=lifespan)
    app.state.settings = settings
    app.state.db = db
    app.state.chatbots = chatbots
    app.state.session_router = session_router
    app.state.forwarder = forwarder
    app.state.origin_validator = validator

    @app.get(f"{settings.base_path}/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    prefix = settings.base_path
    app.include_router(
        create_widget_router(
            chatbots,
            forwarder,
            widget_limiter,
            max_message_length=settings.max_message_length,
            audit_logger=audit_logger,
        ),
        prefix=prefix,
    )
    app.include_router(
        create_webhook_router(callback_relay, webhook_limiter, audit_logger=audit_logger),
        prefix=prefix,
    )
    app.include_router(create_realtime_router(session_router), prefix=prefix)

    app.add_middleware(
        OriginMiddleware,
        validator=validator,
        base_path=settings.base_path,
        audit_logger=audit_logger,
    )

    return app
