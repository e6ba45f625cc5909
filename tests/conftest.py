"""Pytest configuration and fixtures for the API."""

import pytest
from httpx import ASGITransport, AsyncClient

from app.main import app
from app.services import get_file_store
from src.import_engine import ImportFileStore


@pytest.fixture
async def client(tmp_path):
    """Async test client with storage rooted in a temp dir."""
    app.dependency_overrides[get_file_store] = lambda: ImportFileStore(tmp_path / "storage")
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()
