"""Pytest fixtures for API testing."""

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from chat_worker.api import conversations


@pytest.fixture(scope="function")
async def client(store):
    """Create async HTTP client over a fresh transcript store."""
    # Inject dependencies into routers
    conversations.store = store

    # Create a test app without lifespan (to avoid conflicts)
    test_app = FastAPI(title="Chat Worker Test")
    test_app.include_router(conversations.router)

    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    conversations.store = None
