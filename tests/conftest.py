"""Shared test fixtures.

The query engine and anomaly scorer are always mocked. Tests never need a
running database.
"""

import pytest
from httpx import ASGITransport, AsyncClient

from canvasql.main import app


@pytest.fixture
async def client() -> AsyncClient:
    """Provide an httpx AsyncClient wired to the FastAPI test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c
