"""Response helpers shared by the widget and webhook endpoints."""

from __future__ import annotations

import math
import time
from typing import TYPE_CHECKING

from fastapi import Request

if TYPE_CHECKING:
    from chatrelay.store.rate_limits import RateLimitHit
    from chatrelay.webhook.rate_limiter import WebhookRateLimiter

NO_STORE = {"Cache-Control": "no-store, no-cache, must-revalidate, private"}


def rate_limit_headers(limiter: WebhookRateLimiter, hit: RateLimitHit) -> dict[str, str]:
    """Draft-standard ``RateLimit-*`` headers, plus ``Retry-After`` once over the limit."""
    remaining = max(limiter.max_requests - hit.total_hits, 0)
    reset_in = max(math.ceil(hit.reset_time - time.time()), 0)
    headers = {
        "RateLimit-Limit": str(limiter.max_requests),
        "RateLimit-Remaining": str(remaining),
        "RateLimit-Reset": str(reset_in),
    }
    if not limiter.allows(hit):
        headers["Retry-After"] = str(reset_in)
    return headers


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"
