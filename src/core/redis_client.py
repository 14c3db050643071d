"""Redis client for leaderboard caching and API rate limiting.

Redis is optional: when ``REDIS_URL`` is unset every operation degrades to a
no-op (cache miss, rate limit skipped).
"""

import asyncio
import logging
from collections.abc import Callable, Coroutine
from datetime import UTC, datetime
from functools import wraps
from typing import Any, TypeVar

from redis.asyncio import Redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import RedisError

from src.core.config import Constants, settings


logger = logging.getLogger(__name__)

T = TypeVar("T")


def with_retry(
    attempts: int = 3, base_delay: float = 0.1
) -> Callable[[Callable[..., Coroutine[Any, Any, T]]], Callable[..., Coroutine[Any, Any, T]]]:
    """Retry an async Redis call on ``RedisError`` with exponential backoff.

    The last failure is re-raised.
    """
    if attempts < 1:
        msg = "attempts must be at least 1"
        raise ValueError(msg)

    def decorator(func: Callable[..., Coroutine[Any, Any, T]]) -> Callable[..., Coroutine[Any, Any, T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:  # noqa: ANN401
            for attempt in range(1, attempts):
                try:
                    return await func(*args, **kwargs)
                except RedisError as e:
                    delay = base_delay * (2 ** (attempt - 1))
                    logger.warning("Redis call %s failed (%d/%d): %s", func.__name__, attempt, attempts, e)
                    await asyncio.sleep(delay)
            return await func(*args, **kwargs)

        return wrapper

    return decorator


class RedisClient:
    """Async Redis wrapper: TTL cache, pattern invalidation and window counters."""

    def __init__(self, url: str | None = None) -> None:
        self._client: Redis | None = None
        redis_url = url if url is not None else settings.redis_url

        self._last_success: datetime | None = None
        self._failures = 0

        if not redis_url:
            logger.info("Redis URL not configured. Running without cache.")
            return

        try:
            pool = ConnectionPool.from_url(
                redis_url,
                decode_responses=True,
                max_connections=Constants.REDIS_MAX_CONNECTIONS,
            )
            self._client = Redis(connection_pool=pool)
            logger.info("Redis client initialized", extra={"redis_url": redis_url})
        except (RedisError, ValueError) as e:
            logger.warning("Failed to initialize Redis client: %s. Running without cache.", e)

    @property
    def is_available(self) -> bool:
        return self._client is not None

    def get_health_status(self) -> dict[str, Any]:
        """Summarize client state for the health endpoint."""
        return {
            "connected": self.is_available,
            "last_success": self._last_success.isoformat() if self._last_success else None,
            "failures": self._failures,
        }

    def _ok(self) -> None:
        self._last_success = datetime.now(UTC)

    def _failed(self, operation: str, target: str, error: RedisError) -> None:
        self._failures += 1
        logger.warning("Redis %s failed for %s: %s", operation, target, error)

    async def get(self, key: str) -> str | None:
        """Cached value, or None on miss, error or no Redis."""
        if self._client is None:
            return None
        try:
            value = await self._client.get(key)
        except RedisError as e:
            self._failed("GET", key, e)
            return None
        self._ok()
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> bool:
        if self._client is None:
            return False
        try:
            await self._client.setex(key, ttl_seconds, value)
        except RedisError as e:
            self._failed("SETEX", key, e)
            return False
        self._ok()
        return True

    async def delete_matching(self, pattern: str) -> int:
        """Delete every key matching ``pattern``; returns how many were found.

        Deletion is retried; a persistent failure leaves the keys to expire on
        their own TTL.
        """
        redis = self._client
        if redis is None:
            return 0

        @with_retry(attempts=3, base_delay=0.1)
        async def _delete() -> int:
            keys = [key async for key in redis.scan_iter(match=pattern)]
            if keys:
                await redis.delete(*keys)
            return len(keys)

        try:
            deleted = await _delete()
        except RedisError as e:
            self._failed("DELETE", pattern, e)
            return 0
        self._ok()
        return deleted

    async def count_in_window(self, key: str, window_seconds: int) -> int | None:
        """Increment a fixed-window counter, starting its TTL on the first hit.

        Returns None when Redis is unavailable or errors, so callers fail open.
        """
        if self._client is None:
            return None
        try:
            count = await self._client.incr(key)
            if count == 1:
                await self._client.expire(key, window_seconds)
        except RedisError as e:
            self._failed("INCR", key, e)
            return None
        self._ok()
        return count

    async def ping(self) -> bool:
        if self._client is None:
            return False
        try:
            return bool(await self._client.ping())  # type: ignore[misc]
        except RedisError as e:
            self._failed("PING", "server", e)
            return False

    async def close(self) -> None:
        """Close the Redis connection pool."""
        if self._client is not None:
            await self._client.aclose()
            logger.info("Redis client closed")


# Global Redis client instance
redis_client = RedisClient()
