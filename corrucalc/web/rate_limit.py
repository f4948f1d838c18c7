"""Fixed-window rate limiting for the public API.

Counters live in the injected `Cache`, keyed by credential hash for
authenticated callers or by client address otherwise. Each request performs a
single atomic increment-or-create, so parallel requests cannot lose updates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from fastapi import Request

from corrucalc.core.cache import Cache
from corrucalc.exceptions import RateLimited

logger = logging.getLogger(__name__)

# Rate limit window in seconds
RATE_LIMIT_WINDOW = 60


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one counted request."""

    allowed: bool
    limit: int
    remaining: int
    reset_at: datetime

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": self.reset_at.isoformat(),
        }


def get_client_identifier(request: Request) -> str:
    """Extract client identifier for rate limiting.

    Uses X-Forwarded-For header if behind proxy, then X-Real-IP, then the
    socket peer.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP in the chain (client's IP)
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client:
        return request.client.host

    return "unknown"


def rate_limit_key(client_ip: str, credential_hash: str | None = None) -> str:
    if credential_hash:
        return f"rate_limit:key:{credential_hash}"
    return f"rate_limit:ip:{client_ip}"


class RateLimiter:
    """Counts requests per key in fixed windows.

    Args:
        cache: Shared cache providing atomic windowed counters
        window_seconds: Window length
    """

    def __init__(self, cache: Cache, window_seconds: int = RATE_LIMIT_WINDOW):
        self.cache = cache
        self.window_seconds = window_seconds

    async def hit(self, key: str, limit: int) -> RateLimitDecision:
        """Count one request for `key` and decide whether it is allowed.

        The (limit + 1)th request in a window is the first one rejected.
        """
        try:
            count, reset_epoch = await self.cache.incr_window(key, self.window_seconds)
        except Exception as e:
            # Counter store down: let the request through on the caller's tier
            logger.error("rate_limit_store_error key=%s error=%s", key, e)
            reset_at = datetime.now(timezone.utc) + timedelta(seconds=self.window_seconds)
            return RateLimitDecision(True, limit, limit, reset_at)

        reset_at = datetime.fromtimestamp(reset_epoch, tz=timezone.utc)
        if count > limit:
            logger.warning("rate_limit_exceeded key=%s count=%s limit=%s", key, count, limit)
            return RateLimitDecision(False, limit, 0, reset_at)
        return RateLimitDecision(True, limit, limit - count, reset_at)

    async def enforce(self, key: str, limit: int) -> RateLimitDecision:
        """Like `hit`, but raises RateLimited when the request is rejected."""
        decision = await self.hit(key, limit)
        if not decision.allowed:
            raise RateLimited(limit, decision.reset_at)
        return decision
