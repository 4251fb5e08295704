"""Data models for the webhook relay pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class WebhookReply:
    """Bot answer parsed out of a synchronous webhook response body."""

    message: str
    quick_replies: list[str] | None = None

    def to_wire(self) -> dict[str, Any]:
        data: dict[str, Any] = {"message": self.message}
        if self.quick_replies is not None:
            data["quickReplies"] = self.quick_replies
        return data


@dataclass
class ForwardResult:
    """Outcome of one forward to a chatbot webhook.

    ``success`` with ``response=None`` means the webhook accepted the message
    and will answer later through the callback endpoint.
    """

    success: bool
    response: WebhookReply | None = None
    error: str | None = None
    status_code: int | None = None
