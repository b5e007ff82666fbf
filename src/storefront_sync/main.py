"""FastAPI application entry point for the mock storefront backend."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from storefront_sync.config import settings
from storefront_sync.database.engine import init_db
from storefront_sync.mock_external_api.router import router as mock_api_router

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle hook."""
    logger.info("Starting mock backend for %s …", settings.app_name)
    await init_db()
    logger.info("Database initialised")
    yield
    logger.info("Shutting down mock backend for %s …", settings.app_name)


app = FastAPI(
    title=f"{settings.app_name} mock backend",
    description="Schema-drifting stand-in for the supplier storefront REST API",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(mock_api_router)


@app.get("/health")
async def health_check():
    """Simple liveness check."""
    return {"status": "healthy", "app": settings.app_name}
