"""Fixed-window API rate limiting backed by Redis."""

import logging
from datetime import UTC, datetime

from fastapi import Request

from src.core.config import settings
from src.core.errors import ErrorKind, QuestlineError
from src.core.redis_client import redis_client


logger = logging.getLogger(__name__)


class RateLimitExceededError(QuestlineError):
    kind = ErrorKind.RATE_LIMITED
    status_code = 429
    default_message = "Too many requests, please try again later."

    def __init__(self, *, retry_after: int, limit: int) -> None:
        super().__init__()
        self.retry_after = retry_after
        self.limit = limit

    @property
    def headers(self) -> dict[str, str]:
        return {"Retry-After": str(self.retry_after), "X-RateLimit-Limit": str(self.limit)}


class RateLimiter:
    """Counts requests per identifier in fixed windows stored in Redis."""

    async def check_rate_limit(
        self,
        scope: str,
        identifier: str,
        limit: int,
        window_seconds: int,
    ) -> None:
        """Check if a request is within the rate limit.

        - Count the request in the current window (the first hit starts its TTL)
        - Raise once the limit is exceeded

        Args:
            scope: Rate limit scope (e.g., 'api')
            identifier: Unique identifier (e.g., client address, user_id)
            limit: Maximum requests allowed per window
            window_seconds: Window length in seconds

        Raises:
            RateLimitExceededError: If the limit is exceeded
        """
        if not redis_client.is_available:
            logger.debug("rate_limit_check_skipped", extra={"reason": "redis_unavailable"})
            return

        now = datetime.now(UTC)
        window_start = int(now.timestamp()) // window_seconds
        key = f"ratelimit:{scope}:{identifier}:{window_start}"

        count = await redis_client.count_in_window(key, window_seconds)
        if count is None:
            # Fail open when Redis misbehaves
            logger.warning("rate_limit_check_failed", extra={"reason": "redis_increment_failed"})
            return

        if count > limit:
            retry_after = window_seconds - (int(now.timestamp()) % window_seconds)
            logger.warning(
                "rate_limit_exceeded",
                extra={
                    "scope": scope,
                    "identifier": identifier,
                    "count": count,
                    "limit": limit,
                    "retry_after": retry_after,
                },
            )
            raise RateLimitExceededError(retry_after=retry_after, limit=limit)

    async def check_api_rate_limit(self, identifier: str) -> None:
        """Apply the general API limit to one client."""
        await self.check_rate_limit(
            scope="api",
            identifier=identifier,
            limit=settings.api_rate_limit_per_window,
            window_seconds=settings.api_rate_limit_window_seconds,
        )


# Global rate limiter instance
rate_limiter = RateLimiter()


async def enforce_api_rate_limit(request: Request) -> None:
    """FastAPI dependency applying the API limit keyed by client address."""
    client = request.client.host if request.client else "unknown"
    await rate_limiter.check_api_rate_limit(client)
