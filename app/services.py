"""Service wiring from settings."""

from functools import lru_cache

from app.config import settings
from app.database import async_session_factory
from src.import_engine import ImportFileStore, ImportVersionService, Ogr2OgrConverter
from src.import_engine.geometry import Envelope


@lru_cache
def get_file_store() -> ImportFileStore:
    return ImportFileStore(settings.storage_root)


@lru_cache
def get_import_service() -> ImportVersionService:
    """The process-wide ImportVersionService; one instance holds the writer lock."""
    return ImportVersionService(
        session_factory=async_session_factory,
        files=get_file_store(),
        converter=Ogr2OgrConverter(
            ogr2ogr_path=settings.ogr2ogr_path,
            ogrinfo_path=settings.ogrinfo_path,
            target_crs=settings.target_crs,
            timeout_seconds=settings.conversion_timeout_seconds,
        ),
        tolerance=settings.geometry_tolerance,
        bounds=Envelope(
            min_x=settings.bounds_min_lng,
            min_y=settings.bounds_min_lat,
            max_x=settings.bounds_max_lng,
            max_y=settings.bounds_max_lat,
        ),
    )
