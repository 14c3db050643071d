"""Fixtures for exercising the HTTP surface in-process."""

from collections.abc import AsyncIterator

import httpx
import pytest

from src.main import app


@pytest.fixture
async def client(patched_db) -> AsyncIterator[httpx.AsyncClient]:
    """HTTP client bound to the app; the lifespan is skipped, the database is already set up."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http_client:
        yield http_client
