"""Shared test fixtures for chatflow-relay."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest

from chatrelay.audit.logger import AuditLogger
from chatrelay.config import Settings
from chatrelay.models import AuditEvent, AuditEventType, Chatbot, RiskLevel
from chatrelay.security.origins import OriginValidator
from chatrelay.store.chatbots import ChatbotStore
from chatrelay.store.db import Database

WIDGET_ORIGIN = "https://shop.example.com"
SECRET = "s3cret-key"


class FakeConnection:
    """In-memory stand-in for a realtime connection."""

    def __init__(self, conn_id: str, origin: str | None = WIDGET_ORIGIN) -> None:
        self._id = conn_id
        self._origin = origin
        self.sent: list[tuple[str, dict[str, Any]]] = []
        self.fail = False

    @property
    def id(self) -> str:
        return self._id

    @property
    def origin(self) -> str | None:
        return self._origin

    async def send(self, event: str, data: dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionError("socket closed")
        self.sent.append((event, data))

    def events(self, name: str) -> list[dict[str, Any]]:
        return [data for event, data in self.sent if event == name]


@pytest.fixture
def mock_audit_logger() -> MagicMock:
    return MagicMock(spec=AuditLogger)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def db(settings: Settings) -> Iterator[Database]:
    database = Database(settings.database_path)
    yield database
    database.close()


@pytest.fixture
def store(db: Database) -> ChatbotStore:
    chatbot_store = ChatbotStore(db)
    chatbot_store.ensure_default_theme()
    chatbot_store.save_chatbot(make_chatbot())
    return chatbot_store


@pytest.fixture
def validator(settings: Settings, store: ChatbotStore) -> OriginValidator:
    return OriginValidator(settings, store)


# --- Factory functions for test data ---


def make_settings(tmp_path: Path, **kwargs: Any) -> Settings:
    defaults: dict[str, Any] = {
        "environment": "test",
        "database_path": str(tmp_path / "relay.db"),
        "public_origin": "http://relay.local:7861",
        "rate_limit_sweep_seconds": 0,
    }
    defaults.update(kwargs)
    return Settings(**defaults)


def make_chatbot(**kwargs: Any) -> Chatbot:
    """Factory for Chatbot with sensible defaults."""
    defaults: dict[str, Any] = {
        "id": "c1",
        "name": "Support",
        "webhook_url": "https://hooks.example.net/c1",
        "webhook_secret": None,
        "allowed_origins": [WIDGET_ORIGIN],
    }
    defaults.update(kwargs)
    return Chatbot(**defaults)


def make_audit_event(**kwargs: Any) -> AuditEvent:
    """Factory for AuditEvent with sensible defaults."""
    defaults: dict[str, Any] = {
        "event_type": AuditEventType.SIGNATURE_FAILURE,
        "action": "test_action",
        "result": "failure",
        "risk_level": RiskLevel.HIGH,
    }
    defaults.update(kwargs)
    return AuditEvent(**defaults)
