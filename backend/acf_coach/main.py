"""Main FastAPI application for the ACF coaching service."""

import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from acf_coach.config import settings

# Configure logging to output to stdout
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)
logger = logging.getLogger(__name__)

from acf_coach.dependencies import build_services
from acf_coach.models import init_db, AsyncSessionLocal
from acf_coach.routers import action_items_router, sessions_router


def check_api_keys() -> None:
    """Log whether the model API key is configured."""
    if settings.anthropic_api_key:
        logger.info("ANTHROPIC_API_KEY: configured")
    else:
        logger.warning("ANTHROPIC_API_KEY: NOT SET - coaching turns will fail")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Initialize database
    await init_db()

    check_api_keys()

    # Tests install their own services before startup
    if getattr(app.state, "services", None) is None:
        app.state.services = build_services(db_session_factory=AsyncSessionLocal)

    yield

    # Write out transcripts still waiting on auto-save
    await app.state.services.saver.shutdown()


app = FastAPI(
    title="ACF Coach",
    description="Five-stage ACF coaching sessions with summaries and tracked action items",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(sessions_router, prefix="/api")
app.include_router(action_items_router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint returning API info."""
    return {
        "name": "ACF Coach API",
        "version": "0.1.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "model_configured": bool(settings.anthropic_api_key),
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "acf_coach.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
