"""Fixed-window rate limiter per client IP, one bucket per endpoint class."""

from __future__ import annotations

from chatrelay.store.rate_limits import RateLimitHit, RateLimitStore


class WebhookRateLimiter:
    """Fixed window rate limiter per source IP.

    Counters live in :class:`RateLimitStore` under ``bucket`` so the widget
    and webhook endpoints never consume each other's budget.
    Default: 60 requests per 60 seconds per IP.
    """

    def __init__(
        self,
        store: RateLimitStore,
        bucket: str,
        max_requests: int = 60,
        window_seconds: int = 60,
    ) -> None:
        self._store = store
        self._bucket = bucket
        self._max_requests = max_requests
        self._window_seconds = window_seconds

    @property
    def bucket(self) -> str:
        return self._bucket

    @property
    def max_requests(self) -> int:
        return self._max_requests

    def hit(self, source_ip: str) -> RateLimitHit:
        return self._store.increment(self._bucket, source_ip, self._window_seconds)

    def check(self, source_ip: str) -> bool:
        """Count this request and return True if it is within the limit."""
        return self.allows(self.hit(source_ip))

    def allows(self, hit: RateLimitHit) -> bool:
        return hit.total_hits <= self._max_requests
