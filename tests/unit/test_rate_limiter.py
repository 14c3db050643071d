"""Tests for rate limiting functionality."""

from unittest.mock import AsyncMock, Mock, patch

import pytest

from src.core.rate_limiter import RateLimiter, RateLimitExceededError


@pytest.fixture
def rate_limiter():
    """Create a RateLimiter instance."""
    return RateLimiter()


async def test_check_rate_limit_within_limit(rate_limiter):
    """Test rate limit check passes when within limit."""
    with patch("src.core.rate_limiter.redis_client") as mock_redis:
        mock_redis.is_available = True
        mock_redis.count_in_window = AsyncMock(return_value=5)

        await rate_limiter.check_rate_limit(scope="test", identifier="client1", limit=10, window_seconds=60)

        mock_redis.count_in_window.assert_called_once()


async def test_check_rate_limit_keys_by_scope_identifier_and_window(rate_limiter):
    """Test the counter key and TTL passed to Redis."""
    with patch("src.core.rate_limiter.redis_client") as mock_redis:
        mock_redis.is_available = True
        mock_redis.count_in_window = AsyncMock(return_value=1)

        await rate_limiter.check_rate_limit(scope="api", identifier="10.0.0.1", limit=10, window_seconds=60)

        key, window = mock_redis.count_in_window.call_args[0]
        assert key.startswith("ratelimit:api:10.0.0.1:")
        assert window == 60


async def test_check_rate_limit_exceeds_limit(rate_limiter):
    """Test rate limit check raises once the limit is exceeded."""
    with patch("src.core.rate_limiter.redis_client") as mock_redis:
        mock_redis.is_available = True
        mock_redis.count_in_window = AsyncMock(return_value=11)

        with pytest.raises(RateLimitExceededError) as exc_info:
            await rate_limiter.check_rate_limit(scope="test", identifier="client1", limit=10, window_seconds=60)

        assert exc_info.value.status_code == 429
        assert exc_info.value.headers["X-RateLimit-Limit"] == "10"
        assert 0 < int(exc_info.value.headers["Retry-After"]) <= 60


async def test_check_rate_limit_fails_open_without_redis(rate_limiter):
    """Test requests pass when Redis is unavailable."""
    with patch("src.core.rate_limiter.redis_client") as mock_redis:
        mock_redis.is_available = False
        mock_redis.count_in_window = AsyncMock()

        await rate_limiter.check_rate_limit(scope="test", identifier="client1", limit=1, window_seconds=60)

        mock_redis.count_in_window.assert_not_called()


async def test_check_rate_limit_fails_open_on_redis_error(rate_limiter):
    """Test requests pass when the counter cannot be read."""
    redis = Mock(is_available=True, count_in_window=AsyncMock(return_value=None))
    with patch("src.core.rate_limiter.redis_client", redis):
        await rate_limiter.check_rate_limit(scope="test", identifier="client1", limit=1, window_seconds=60)
