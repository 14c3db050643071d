"""Pytest configuration and shared fixtures."""

from collections.abc import AsyncIterator

import pytest

from src.core import db_client
from src.core.config import Settings, settings
from src.core.redis_client import RedisClient
from src.services.realtime_hub import RealtimeHub


TEST_SECRET_KEY = "test-secret-key-for-signing-tokens"
TEST_ENCRYPTION_KEY = "0123456789abcdef0123456789abcdef"


@pytest.fixture(autouse=True)
def test_settings(monkeypatch: pytest.MonkeyPatch, tmp_path) -> Settings:
    """Point the global settings at a per-test database and fixed test secrets."""
    monkeypatch.setattr(settings, "sqlite_db_path", str(tmp_path / "questline.db"))
    monkeypatch.setattr(settings, "secret_key", TEST_SECRET_KEY)
    monkeypatch.setattr(settings, "encryption_key", TEST_ENCRYPTION_KEY)
    monkeypatch.setattr(settings, "streak_timezone", "UTC")
    monkeypatch.setattr(settings, "environment", "test")
    return settings


@pytest.fixture(autouse=True)
def offline_redis(monkeypatch: pytest.MonkeyPatch) -> RedisClient:
    """Run every test without Redis: caches miss and rate limits fail open."""
    client = RedisClient(url="")
    monkeypatch.setattr("src.core.rate_limiter.redis_client", client)
    monkeypatch.setattr("src.services.leaderboard_service.redis_client", client)
    monkeypatch.setattr("src.main.redis_client", client)
    return client


@pytest.fixture(autouse=True)
def hub(monkeypatch: pytest.MonkeyPatch) -> RealtimeHub:
    """Fresh realtime hub per test."""
    fresh = RealtimeHub()
    monkeypatch.setattr("src.services.realtime_hub.hub", fresh)
    return fresh


@pytest.fixture
async def patched_db(test_settings: Settings) -> AsyncIterator[None]:
    """Temporary SQLite database with the full schema."""
    await db_client.init_db()
    yield
    await db_client.close_connection()
