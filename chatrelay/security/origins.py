"""Origin admission shared by HTTP CORS handling and realtime room joins.

Both transports call :meth:`OriginValidator.check`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from chatrelay.errors import NotFoundError, OriginRejected, RelayError

if TYPE_CHECKING:
    from chatrelay.config import Settings
    from chatrelay.models import Chatbot

logger = logging.getLogger(__name__)

BROAD_METHODS = ("GET", "POST", "PUT", "DELETE")
WIDGET_METHODS = ("GET", "POST")


class ChatbotLookup(Protocol):
    def get_chatbot(self, chatbot_id: str) -> Chatbot | None: ...


@dataclass(frozen=True)
class OriginDecision:
    """Outcome of an origin check.

    ``allow_origin`` is the value to echo in ``Access-Control-Allow-Origin``
    (None when no CORS headers should be sent, e.g. same-origin requests).
    """

    allowed: bool
    allow_origin: str | None = None
    methods: tuple[str, ...] = ()
    error: RelayError | None = None

    @property
    def reason(self) -> str | None:
        return self.error.public_message if self.error else None

    @property
    def status_code(self) -> int:
        return self.error.status_code if self.error else 200

    @classmethod
    def allow(cls, origin: str | None, methods: tuple[str, ...]) -> OriginDecision:
        return cls(allowed=True, allow_origin=origin, methods=methods)

    @classmethod
    def reject(cls, error: RelayError) -> OriginDecision:
        return cls(allowed=False, error=error)


def normalize_origin(origin: str) -> str:
    """Strip a single trailing slash."""
    return origin[:-1] if origin.endswith("/") else origin


def origin_matches(origin: str, pattern: str) -> bool:
    """Match a normalized origin against one allow-list pattern.

    ``*.example.com`` admits any origin ending in ``.example.com`` as well as
    the bare ``http://example.com`` and ``https://example.com``. The dot is
    part of the suffix, so ``notexample.com`` does not match.
    """
    if pattern.startswith("*."):
        domain = normalize_origin(pattern[2:])
        return (
            origin.endswith(f".{domain}")
            or origin == f"https://{domain}"
            or origin == f"http://{domain}"
        )
    return origin == normalize_origin(pattern)


class OriginValidator:
    """Layered origin allow-list.

    Precedence for widget requests: global operator list, then the chatbot's
    own ``allowed_origins``, then the admin / self-origin exemption.
    """

    def __init__(self, settings: Settings, chatbots: ChatbotLookup) -> None:
        self._settings = settings
        self._chatbots = chatbots
        self._global = [normalize_origin(o) for o in settings.cors_allowed_origins]
        self._exempt = {
            normalize_origin(o)
            for o in (settings.admin_origin, settings.self_origin)
            if o
        }

    def check(self, origin: str | None, chatbot_id: str | None) -> OriginDecision:
        if not origin:
            return OriginDecision.allow(None, BROAD_METHODS)

        if not chatbot_id:
            return self._check_admin(origin)

        normalized = normalize_origin(origin)
        if normalized in self._global:
            return OriginDecision.allow(origin, BROAD_METHODS)

        chatbot = self._chatbots.get_chatbot(chatbot_id)
        if chatbot is None:
            return OriginDecision.reject(NotFoundError())

        if any(origin_matches(normalized, p) for p in chatbot.allowed_origins):
            return OriginDecision.allow(origin, WIDGET_METHODS)

        if normalized in self._exempt:
            return OriginDecision.allow(origin, WIDGET_METHODS)

        logger.info("Origin %s not allowed for chatbot %s", origin, chatbot_id)
        return OriginDecision.reject(OriginRejected(detail=f"{origin} -> {chatbot_id}"))

    def is_origin_allowed(self, origin: str | None, chatbot_id: str | None) -> bool:
        return self.check(origin, chatbot_id).allowed

    def _check_admin(self, origin: str) -> OriginDecision:
        admin = self._settings.admin_origin
        if admin and normalize_origin(origin) == normalize_origin(admin):
            return OriginDecision.allow(origin, BROAD_METHODS)
        if not self._settings.is_production:
            return OriginDecision.allow(origin, BROAD_METHODS)
        return OriginDecision.reject(OriginRejected(detail=f"admin surface: {origin}"))
