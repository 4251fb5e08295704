"""Read access to chatbot and theme records.

Chatbot CRUD belongs to the admin surface; the relay only needs lookups.
``save_chatbot`` and ``save_theme`` exist for seeding and the CLI.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from chatrelay.models import Chatbot, Theme
from chatrelay.store.db import Database

logger = logging.getLogger(__name__)

DEFAULT_THEME_ID = "default"

DEFAULT_THEME_CONFIG: dict[str, Any] = {
    "name": "Default",
    "colors": {
        "primary": "#6366f1",
        "primaryHover": "#4f46e5",
        "background": "#ffffff",
        "headerBg": "#6366f1",
        "headerText": "#ffffff",
        "userMessageBg": "#6366f1",
        "userMessageText": "#ffffff",
        "botMessageBg": "#f3f4f6",
        "botMessageText": "#1f2937",
        "inputBg": "#ffffff",
        "inputText": "#1f2937",
        "inputBorder": "#d1d5db",
        "userAvatarBg": "#64748b",
    },
    "typography": {
        "fontFamily": "'Inter', -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif",
        "fontSize": "14px",
        "headerFontSize": "16px",
    },
    "dimensions": {
        "width": "380px",
        "height": "600px",
        "borderRadius": "16px",
        "buttonSize": "60px",
    },
    "position": {"placement": "bottom-right", "offsetX": "20px", "offsetY": "20px"},
    "branding": {
        "title": "Chat with us",
        "subtitle": "We typically reply within minutes",
        "welcomeMessage": "Hello! How can I help you today?",
        "inputPlaceholder": "Type a message...",
    },
    "features": {"soundEnabled": True, "typingIndicator": True, "showTimestamps": True},
}

# (pattern, replacement) pairs applied in order to operator-supplied CSS
_CSS_RULES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"url\s*\([^)]*\)", re.IGNORECASE), "/* url removed */"),
    (re.compile(r"@import\s+[^;]+;?", re.IGNORECASE), "/* import removed */"),
    (re.compile(r"expression\s*\([^)]*\)", re.IGNORECASE), "/* expression removed */"),
    (re.compile(r"javascript\s*:", re.IGNORECASE), "/* removed */"),
    (re.compile(r"behavior\s*:", re.IGNORECASE), "/* removed */"),
    (re.compile(r"-moz-binding\s*:", re.IGNORECASE), "/* removed */"),
]


def sanitize_css(css: str) -> str:
    """Neutralize CSS constructs that can load resources or run script."""
    for pattern, replacement in _CSS_RULES:
        css = pattern.sub(replacement, css)
    return css


def _load_json(raw: str | None, default: Any) -> Any:
    if not raw:
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring malformed JSON column value")
        return default


def _load_json_object(raw: str | None, default: dict[str, Any] | None) -> dict[str, Any] | None:
    value = _load_json(raw, default)
    if not isinstance(value, dict):
        logger.warning("Ignoring non-object JSON column value")
        return default
    return value


class ChatbotStore:
    """Chatbot and theme lookups backed by :class:`Database`."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def get_chatbot(self, chatbot_id: str) -> Chatbot | None:
        row = self._db.fetch_one("SELECT * FROM chatbots WHERE id = ?", (chatbot_id,))
        if row is None:
            return None
        return self._row_to_chatbot(row)

    def list_chatbots(self) -> list[Chatbot]:
        rows = self._db.fetch_all("SELECT * FROM chatbots ORDER BY created_at, id")
        return [self._row_to_chatbot(row) for row in rows]

    def save_chatbot(self, chatbot: Chatbot) -> None:
        self._db.execute(
            """INSERT INTO chatbots
               (id, name, webhook_url, webhook_secret, allowed_origins, theme_id,
                custom_css, pre_chat_form, settings, launcher_logo, header_logo)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                 name = excluded.name,
                 webhook_url = excluded.webhook_url,
                 webhook_secret = excluded.webhook_secret,
                 allowed_origins = excluded.allowed_origins,
                 theme_id = excluded.theme_id,
                 custom_css = excluded.custom_css,
                 pre_chat_form = excluded.pre_chat_form,
                 settings = excluded.settings,
                 launcher_logo = excluded.launcher_logo,
                 header_logo = excluded.header_logo,
                 updated_at = CURRENT_TIMESTAMP""",
            (
                chatbot.id,
                chatbot.name,
                chatbot.webhook_url,
                chatbot.webhook_secret,
                json.dumps(chatbot.allowed_origins),
                chatbot.theme_id,
                chatbot.custom_css,
                json.dumps(chatbot.pre_chat_form) if chatbot.pre_chat_form else None,
                json.dumps(chatbot.settings),
                chatbot.launcher_logo,
                chatbot.header_logo,
            ),
        )

    def get_theme(self, theme_id: str) -> Theme | None:
        row = self._db.fetch_one("SELECT id, name, config FROM themes WHERE id = ?", (theme_id,))
        if row is None:
            return None
        config = _load_json_object(row["config"], {}) or {}
        return Theme(id=row["id"], name=row["name"], config=config)

    def save_theme(self, theme: Theme, *, preset: bool = False) -> None:
        self._db.execute(
            """INSERT INTO themes (id, name, config, is_preset) VALUES (?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                 name = excluded.name,
                 config = excluded.config,
                 updated_at = CURRENT_TIMESTAMP""",
            (theme.id, theme.name, json.dumps(theme.config), int(preset)),
        )

    def ensure_default_theme(self) -> None:
        if self.get_theme(DEFAULT_THEME_ID) is None:
            self.save_theme(
                Theme(id=DEFAULT_THEME_ID, name="Default", config=DEFAULT_THEME_CONFIG),
                preset=True,
            )

    def get_widget_config(self, chatbot_id: str) -> dict[str, Any] | None:
        """Public widget configuration, or None for an unknown chatbot.

        Falls back to the ``default`` theme when the chatbot has none or its
        theme was deleted. Logos are folded into ``settings``.
        """
        chatbot = self.get_chatbot(chatbot_id)
        if chatbot is None:
            return None

        theme = self.get_theme(chatbot.theme_id) if chatbot.theme_id else None
        if theme is None:
            theme = self.get_theme(DEFAULT_THEME_ID)

        settings = dict(chatbot.settings)
        if chatbot.launcher_logo:
            settings["launcherLogo"] = chatbot.launcher_logo
        if chatbot.header_logo:
            settings["headerLogo"] = chatbot.header_logo

        return {
            "chatbotId": chatbot.id,
            "name": chatbot.name,
            "theme": theme.config if theme else None,
            "customCss": sanitize_css(chatbot.custom_css) if chatbot.custom_css else None,
            "preChatForm": chatbot.pre_chat_form,
            "settings": settings,
        }

    @staticmethod
    def _row_to_chatbot(row: dict[str, Any]) -> Chatbot:
        origins = _load_json(row["allowed_origins"], [])
        if not isinstance(origins, list):
            origins = []
        return Chatbot(
            id=row["id"],
            name=row["name"] or "",
            webhook_url=row["webhook_url"],
            webhook_secret=row["webhook_secret"] or None,
            allowed_origins=[str(o) for o in origins],
            theme_id=row["theme_id"],
            custom_css=row["custom_css"],
            pre_chat_form=_load_json_object(row["pre_chat_form"], None),
            settings=_load_json_object(row["settings"], {}) or {},
            launcher_logo=row["launcher_logo"],
            header_logo=row["header_logo"],
        )
