"""FastAPI application for the demo maintenance gateway."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .app_state import state
from .config import config

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(name)s] %(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    logger.info("Demo gateway starting on %s:%d", config.host, config.port)
    logger.info("Backend endpoint: %s (project %s)", config.endpoint, config.project_id)
    logger.info("Demo account: %s", config.demo_email)
    if not state.has_admin_key:
        logger.warning("VOX_BACKEND_API_KEY not set: admin routes will answer 503")

    yield

    await state.close()
    logger.info("Demo gateway stopped")


app = FastAPI(
    title="VoxCampus Demo Gateway",
    description="Maintenance API for the shared VoxCampus demo account",
    version=__version__,
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

from .routers.demo import router as demo_router
from .routers.health import router as health_router

app.include_router(health_router)
app.include_router(demo_router)
