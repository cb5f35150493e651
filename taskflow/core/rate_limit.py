"""
Rate Limiting
=============

Redis-based fixed-window rate limiting for write endpoints.
"""

import logging
from typing import Optional

from fastapi import Request

from taskflow.core.errors import RateLimitError
from taskflow.services.cache import get_redis

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Fixed-window rate limiter using Redis.

    Limits are applied per bearer token (if present) or per client IP.
    An offline client flushing its queue issues one request per queued
    operation, so the write limit is generous.

    Default limits:
        - Task writes: 120 requests/minute
        - Push registry: 20 requests/minute
    """

    LIMITS = {
        "write": {"max_requests": 120, "window_seconds": 60},
        "push": {"max_requests": 20, "window_seconds": 60},
    }

    @staticmethod
    def _get_key(identifier: str, action: str) -> str:
        """Generate rate limit key."""
        return f"ratelimit:{action}:{identifier}"

    @staticmethod
    async def check_rate_limit(
        identifier: str,
        action: str,
        max_requests: Optional[int] = None,
        window_seconds: Optional[int] = None,
    ) -> dict:
        """
        Check if request is within rate limit.

        Returns:
            Dict with 'allowed', 'remaining', 'reset_in' keys
        """
        limits = RateLimiter.LIMITS.get(action, RateLimiter.LIMITS["write"])
        max_req = max_requests or limits["max_requests"]
        window = window_seconds or limits["window_seconds"]

        key = RateLimiter._get_key(identifier, action)

        try:
            client = await get_redis()

            current = await client.get(key)

            if current is None:
                await client.setex(key, window, 1)
                return {
                    "allowed": True,
                    "remaining": max_req - 1,
                    "reset_in": window,
                }

            current_count = int(current)

            if current_count >= max_req:
                ttl = await client.ttl(key)
                return {
                    "allowed": False,
                    "remaining": 0,
                    "reset_in": ttl if ttl > 0 else window,
                }

            await client.incr(key)
            ttl = await client.ttl(key)

            return {
                "allowed": True,
                "remaining": max_req - current_count - 1,
                "reset_in": ttl if ttl > 0 else window,
            }

        except Exception as e:
            logger.warning("Rate limit check error: %s", e)
            # Fail open
            return {
                "allowed": True,
                "remaining": max_req,
                "reset_in": window,
            }


def _identifier(request: Request) -> str:
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        # Tail of the token: the signature differs per token
        return auth_header[-24:]
    return request.client.host if request.client else "unknown"


def create_rate_limit_dependency(action: str = "write"):
    """
    Factory for rate limit dependencies.

    Usage:
        @router.post("", dependencies=[Depends(create_rate_limit_dependency("write"))])
        async def endpoint():
            ...
    """
    async def dependency(request: Request) -> None:
        result = await RateLimiter.check_rate_limit(_identifier(request), action)
        if not result["allowed"]:
            raise RateLimitError(
                reset_in=result["reset_in"],
                limit=RateLimiter.LIMITS.get(action, RateLimiter.LIMITS["write"])["max_requests"],
            )

    return dependency
