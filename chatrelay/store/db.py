"""SQLite connection wrapper shared by the chatbot and rate-limit stores."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS themes (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    config TEXT NOT NULL,
    is_preset INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS chatbots (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL DEFAULT '',
    webhook_url TEXT NOT NULL,
    webhook_secret TEXT,
    allowed_origins TEXT NOT NULL DEFAULT '[]',
    theme_id TEXT,
    custom_css TEXT,
    pre_chat_form TEXT,
    settings TEXT NOT NULL DEFAULT '{}',
    launcher_logo TEXT,
    header_logo TEXT,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (theme_id) REFERENCES themes(id) ON DELETE SET NULL
);

CREATE INDEX IF NOT EXISTS idx_chatbots_theme ON chatbots(theme_id);

-- Fixed-window counters, partitioned by bucket (widget, webhook, api, auth)
CREATE TABLE IF NOT EXISTS rate_limits (
    bucket TEXT NOT NULL,
    client_key TEXT NOT NULL,
    points INTEGER NOT NULL,
    expiry REAL NOT NULL,
    PRIMARY KEY (bucket, client_key)
);

CREATE INDEX IF NOT EXISTS idx_rate_limits_expiry ON rate_limits(expiry);
"""


class Database:
    """Thin sqlite3 wrapper: WAL mode, parameterized queries, dict rows."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._initialize()

    @property
    def path(self) -> str:
        return self._db_path

    def _initialize(self) -> None:
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        # The app runs on one event loop but uvicorn may build it in another thread
        self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.executescript(SCHEMA_SQL)
        self._conn.commit()

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise sqlite3.ProgrammingError("Database connection is closed")
        return self._conn

    def execute(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Cursor:
        conn = self._connection()
        cursor = conn.execute(sql, params)
        conn.commit()
        return cursor

    def execute_returning(
        self, sql: str, params: tuple[Any, ...] = ()
    ) -> dict[str, Any] | None:
        """Run a statement with a RETURNING clause.

        The row is fetched before the commit; SQLite discards it otherwise.
        """
        conn = self._connection()
        cursor = conn.execute(sql, params)
        row = cursor.fetchone()
        conn.commit()
        return dict(row) if row is not None else None

    def fetch_one(self, sql: str, params: tuple[Any, ...] = ()) -> dict[str, Any] | None:
        row = self._connection().execute(sql, params).fetchone()
        return dict(row) if row is not None else None

    def fetch_all(self, sql: str, params: tuple[Any, ...] = ()) -> list[dict[str, Any]]:
        cursor = self._connection().execute(sql, params)
        return [dict(row) for row in cursor.fetchall()]

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> Database:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        self.close()
