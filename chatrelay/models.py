"""Shared Pydantic data models for chatflow-relay."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# --- Enums ---


class AuditEventType(str, Enum):
    ORIGIN_REJECTED = "origin_rejected"
    SIGNATURE_FAILURE = "signature_failure"
    RATE_LIMITED = "rate_limited"
    WEBHOOK_FORWARD = "webhook_forward"
    WEBHOOK_CALLBACK = "webhook_callback"
    ROOM_JOIN = "room_join"


class RiskLevel(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


def utc_timestamp() -> str:
    """ISO-8601 UTC with millisecond precision and a ``Z`` suffix."""
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# --- Chatbot Models ---


class Chatbot(BaseModel):
    """Chatbot record as read from the persistence layer."""

    model_config = ConfigDict(frozen=True)

    id: str
    webhook_url: str
    webhook_secret: str | None = None
    allowed_origins: list[str] = Field(default_factory=list)
    name: str = ""
    theme_id: str | None = None
    custom_css: str | None = None
    pre_chat_form: dict[str, Any] | None = None
    settings: dict[str, Any] = Field(default_factory=dict)
    launcher_logo: str | None = None
    header_logo: str | None = None


class Theme(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    config: dict[str, Any]


# --- Realtime Models ---


class BotMessageEvent(BaseModel):
    """Outbound event pushed to every connection in a session room."""

    model_config = ConfigDict(populate_by_name=True)

    type: str = "bot_message"
    message: str
    quick_replies: list[str] = Field(default_factory=list, alias="quickReplies")
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=utc_timestamp)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


# --- Audit Models ---


class AuditEvent(BaseModel):
    timestamp: str = Field(default_factory=utc_timestamp)
    event_type: AuditEventType
    source_ip: str | None = None
    chatbot_id: str | None = None
    action: str
    result: str  # "success" | "failure" | "blocked"
    risk_level: RiskLevel
    details: dict[str, object] | None = None
