"""FastAPI application entry point."""

import logging

from fastapi import FastAPI

from app import __version__
from app.api import health
from app.config import settings

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="Road Import Version Service",
    description="Versioned, reviewable and reversible road network imports",
    version=__version__,
)

app.include_router(health.router, tags=["health"])
