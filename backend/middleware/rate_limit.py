"""
In-memory rate limiting for buyer-facing write endpoints.

Sliding-window counter per (client IP, route path). Applied to order
creation and checkout-token issuance; never to the gateway callback, which
must always be acknowledged.

Per-process only: with several workers each enforces its own window.
"""
import logging
import time
from collections import defaultdict, deque
from typing import Callable

from fastapi import Request

from domain.errors import RateLimitError

logger = logging.getLogger(__name__)


class RateLimiter:
    """Sliding-window limiter; timestamps kept oldest-first per key."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._hits: dict[str, deque[float]] = defaultdict(deque)

    def _window(self, key: str, window_seconds: int) -> deque[float]:
        hits = self._hits[key]
        cutoff = self._clock() - window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()
        return hits

    def check(self, key: str, max_requests: int, window_seconds: int) -> bool:
        """Record a hit and return True, or return False if the window is full."""
        hits = self._window(key, window_seconds)
        if len(hits) >= max_requests:
            return False
        hits.append(self._clock())
        return True

    def remaining(self, key: str, max_requests: int, window_seconds: int) -> int:
        return max(0, max_requests - len(self._window(key, window_seconds)))

    def retry_after(self, key: str, window_seconds: int) -> int:
        """Seconds until the oldest hit leaves the window."""
        hits = self._window(key, window_seconds)
        if not hits:
            return 0
        return max(1, int(hits[0] + window_seconds - self._clock()) + 1)

    def reset(self) -> None:
        self._hits.clear()


_limiter = RateLimiter()


def reset_limits() -> None:
    """Forget every recorded hit (used by tests)."""
    _limiter.reset()


def rate_limit(max_requests: int = 10, window_seconds: int = 60):
    """
    FastAPI dependency factory for rate limiting.

    Usage:
        @router.post("/orders")
        async def create(..., _rate=Depends(rate_limit(20, 60))):
            ...
    """
    async def _check_rate_limit(request: Request):
        client_ip = request.client.host if request.client else "unknown"
        key = f"{client_ip}:{request.url.path}"

        if not _limiter.check(key, max_requests, window_seconds):
            retry_after = _limiter.retry_after(key, window_seconds)
            logger.warning(
                f"Rate limit exceeded: {client_ip} on {request.url.path} "
                f"({max_requests}/{window_seconds}s)"
            )
            raise RateLimitError(
                f"Rate limit exceeded. Maximum {max_requests} requests "
                f"per {window_seconds} seconds. Try again later.",
                details={"limit": max_requests, "windowSeconds": window_seconds},
                headers={
                    "Retry-After": str(retry_after),
                    "X-RateLimit-Limit": str(max_requests),
                    "X-RateLimit-Remaining": "0",
                },
            )

    return _check_rate_limit
