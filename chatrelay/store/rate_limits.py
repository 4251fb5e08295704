"""Persistent fixed-window rate-limit counters.

A counter is keyed by ``(bucket, client_key)``. Once ``now`` passes its
``expiry`` the next hit restarts the window at one point; otherwise the hit
increments ``points``. Expired rows are overwritten lazily and removed by
:meth:`RateLimitStore.sweep_expired`.
"""

from __future__ import annotations

import sqlite3
import time
from dataclasses import dataclass

from chatrelay.store.db import Database


@dataclass(frozen=True)
class RateLimitHit:
    total_hits: int
    reset_time: float  # epoch seconds


class RateLimitStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    def increment(self, bucket: str, client_key: str, window_seconds: float) -> RateLimitHit:
        """Record one hit and return the counter state after it."""
        now = time.time()
        row = self._db.execute_returning(
            """INSERT INTO rate_limits (bucket, client_key, points, expiry)
               VALUES (?, ?, 1, ?)
               ON CONFLICT(bucket, client_key) DO UPDATE SET
                 points = CASE WHEN ? > rate_limits.expiry THEN 1
                               ELSE rate_limits.points + 1 END,
                 expiry = CASE WHEN ? > rate_limits.expiry THEN excluded.expiry
                               ELSE rate_limits.expiry END
               RETURNING points, expiry""",
            (bucket, client_key, now + window_seconds, now, now),
        )
        if row is None:
            raise sqlite3.DatabaseError(f"rate-limit upsert returned no row for {bucket}/{client_key}")
        return RateLimitHit(total_hits=int(row["points"]), reset_time=float(row["expiry"]))

    def sweep_expired(self, now: float | None = None) -> int:
        """Delete counters whose window has passed. Returns the number removed."""
        cutoff = time.time() if now is None else now
        cursor = self._db.execute("DELETE FROM rate_limits WHERE expiry < ?", (cutoff,))
        return cursor.rowcount
