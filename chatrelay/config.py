"""Runtime settings loaded from environment variables."""

from __future__ import annotations

import os
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _split_origins(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [o.strip() for o in raw.split(",") if o.strip()]


class Settings(BaseModel):
    """Validated server configuration.

    Construct directly in tests; use :meth:`from_env` for the running server.
    """

    model_config = ConfigDict(frozen=True)

    host: str = "0.0.0.0"
    port: int = 7861
    environment: Literal["development", "production", "test"] = "development"
    database_path: str = "data/chatflowui.db"
    base_path: str = ""
    cors_allowed_origins: list[str] = Field(default_factory=list)
    admin_origin: str | None = None
    public_origin: str | None = None
    webhook_timeout_seconds: float = Field(default=30.0, gt=0)
    max_message_length: int = Field(default=4096, ge=1)
    widget_rate_limit_max: int = Field(default=30, ge=1)
    widget_rate_limit_window_seconds: int = Field(default=60, ge=1)
    webhook_rate_limit_max: int = Field(default=60, ge=1)
    webhook_rate_limit_window_seconds: int = Field(default=60, ge=1)
    rate_limit_sweep_seconds: int = Field(default=300, ge=0)
    audit_log_path: str | None = None
    log_level: str = "INFO"

    @field_validator("base_path")
    @classmethod
    def _normalize_base_path(cls, value: str) -> str:
        # "/" and "" both mean mounted at root
        value = value.strip().rstrip("/")
        if value and not value.startswith("/"):
            value = f"/{value}"
        return value

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def self_origin(self) -> str:
        """Origin the server itself is reachable on (admin preview pages)."""
        if self.public_origin:
            return self.public_origin.rstrip("/")
        host = "localhost" if self.host in ("0.0.0.0", "") else self.host
        return f"http://{host}:{self.port}"

    @classmethod
    def from_env(cls) -> Settings:
        """Build settings from the process environment."""
        env = os.environ
        return cls(
            host=env.get("HOST", "0.0.0.0"),
            port=int(env.get("PORT", "7861")),
            environment=env.get("NODE_ENV", "development"),  # type: ignore[arg-type]
            database_path=env.get("DATABASE_PATH", "data/chatflowui.db"),
            base_path=env.get("BASE_PATH", "/"),
            cors_allowed_origins=_split_origins(env.get("CORS_ALLOWED_ORIGINS")),
            admin_origin=env.get("ADMIN_ORIGIN") or None,
            public_origin=env.get("PUBLIC_ORIGIN") or None,
            webhook_timeout_seconds=float(env.get("WEBHOOK_TIMEOUT_SECONDS", "30")),
            max_message_length=int(env.get("MAX_MESSAGE_LENGTH", "4096")),
            widget_rate_limit_max=int(env.get("WIDGET_RATE_LIMIT_MAX", "30")),
            widget_rate_limit_window_seconds=int(
                env.get("WIDGET_RATE_LIMIT_WINDOW_SECONDS", "60"),
            ),
            webhook_rate_limit_max=int(env.get("WEBHOOK_RATE_LIMIT_MAX", "60")),
            webhook_rate_limit_window_seconds=int(
                env.get("WEBHOOK_RATE_LIMIT_WINDOW_SECONDS", "60"),
            ),
            rate_limit_sweep_seconds=int(env.get("RATE_LIMIT_SWEEP_SECONDS", "300")),
            audit_log_path=env.get("AUDIT_LOG_PATH") or None,
            log_level=env.get("LOG_LEVEL", "INFO"),
        )
