"""Fixtures for import engine tests: SQLite database, file store and fakes."""

import json
from typing import Any, Optional

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from src.import_engine import ImportConfig, ImportFileStore, ImportVersionService
from src.import_engine.tables import Base

from factories import collection
from fakes import FakeConverter, FakeRoadStore


@pytest.fixture
async def engine():
    """In-memory SQLite engine shared by every session of a test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def files(tmp_path):
    return ImportFileStore(tmp_path / "storage")


@pytest.fixture
def road_store():
    return FakeRoadStore()


@pytest.fixture
def converter():
    return FakeConverter()


@pytest.fixture
def service(session_factory, files, converter, road_store):
    return ImportVersionService(
        session_factory=session_factory,
        files=files,
        converter=converter,
        road_store_factory=lambda session: road_store,
    )


@pytest.fixture
def make_version(service):
    """Upload and configure a GeoJSON draft in one step."""

    async def _make(
        features: list[dict[str, Any]],
        scope: Optional[str] = "full",
        regional_refresh: bool = False,
        file_name: str = "roads.geojson"
    ):
        data = json.dumps(collection(*features)).encode("utf-8")
        draft = await service.create_draft(data, file_name, uploaded_by="tester")
        return await service.configure(draft.id, ImportConfig(
            import_scope=scope,
            regional_refresh=regional_refresh,
        ))

    return _make
