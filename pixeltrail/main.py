"""
pixeltrail - first-party web analytics
Main FastAPI Application
"""
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
from urllib.parse import urlparse

from pixeltrail.core.config import settings
from pixeltrail.api.cohorts import router as cohorts_router
from pixeltrail.api.funnels import router as funnels_router
from pixeltrail.api.goals import router as goals_router
from pixeltrail.api.journeys import router as journeys_router
from pixeltrail.api.segments import router as segments_router
from pixeltrail.api.tracking import router as tracking_router

# Configure logging
logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting pixeltrail API...")
    db_url = urlparse(getattr(settings, "DATABASE_URL", ""))
    logger.info("Config: db_scheme=%s db_host=%s env=%s", db_url.scheme, db_url.hostname, settings.ENVIRONMENT)
    logger.info(
        "Analytics config: strict_rules=%s last_seen_requires_events=%s enforce_step_order=%s",
        bool(getattr(settings, "SEGMENT_RULES_STRICT", False)),
        bool(getattr(settings, "SEGMENT_LAST_SEEN_REQUIRES_EVENTS", False)),
        bool(getattr(settings, "FUNNEL_ENFORCE_STEP_ORDER", False)),
    )
    yield
    logger.info("Shutting down pixeltrail API...")


app = FastAPI(
    title="pixeltrail API",
    description="First-party web analytics: segments, funnels, cohorts and journeys",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware; the pixel posts from customer sites, so ingest is open.
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL, "http://localhost:3000", "*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(tracking_router, prefix="/api", tags=["tracking"])
app.include_router(segments_router, prefix="/api/segments", tags=["segments"])
app.include_router(funnels_router, prefix="/api/funnels", tags=["funnels"])
app.include_router(cohorts_router, prefix="/api/cohorts", tags=["cohorts"])
app.include_router(goals_router, prefix="/api/goals", tags=["goals"])
app.include_router(journeys_router, prefix="/api/journeys", tags=["journeys"])


@app.get("/health")
async def health_check():
    """Liveness check (should be fast and not depend on external services)."""
    return {
        "status": "ok",
        "service": "pixeltrail",
        "environment": settings.ENVIRONMENT,
    }


@app.get("/ready")
async def readiness_check():
    """Readiness check (verifies the database)."""
    try:
        from sqlalchemy import text

        from pixeltrail.core.database import SessionLocal

        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()

        return {"status": "ready", "db": "ok"}
    except Exception as e:
        return JSONResponse(status_code=503, content={"status": "not_ready", "error": str(e)})


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "pixeltrail API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
    }
