"""Health check endpoints."""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app import __version__
from app.database import get_db
from app.services import get_file_store
from src.import_engine import ImportFileStore

logger = logging.getLogger(__name__)

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str


class HealthDetailResponse(HealthResponse):
    """Detailed health check response with database and storage status."""

    database: str
    storage: str


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Basic health check."""
    return HealthResponse(status="ok", version=__version__)


@router.get("/health/ready", response_model=HealthDetailResponse)
async def readiness_check(
    db: AsyncSession = Depends(get_db),
    files: ImportFileStore = Depends(get_file_store),
) -> HealthDetailResponse:
    """Readiness check including database connectivity and storage access."""
    try:
        await db.execute(text("SELECT 1"))
        db_status = "connected"
    except (SQLAlchemyError, OSError) as e:
        logger.warning("Database readiness check failed: %s", e)
        db_status = "disconnected"

    storage_status = "writable" if files.is_writable() else "unavailable"
    ready = db_status == "connected" and storage_status == "writable"

    return HealthDetailResponse(
        status="ok" if ready else "degraded",
        version=__version__,
        database=db_status,
        storage=storage_status,
    )
