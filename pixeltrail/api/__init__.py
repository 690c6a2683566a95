"""API router exports."""
from pixeltrail.api.cohorts import router as cohorts_router
from pixeltrail.api.funnels import router as funnels_router
from pixeltrail.api.goals import router as goals_router
from pixeltrail.api.journeys import router as journeys_router
from pixeltrail.api.segments import router as segments_router
from pixeltrail.api.tracking import router as tracking_router

__all__ = ["cohorts_router", "funnels_router", "goals_router", "journeys_router", "segments_router", "tracking_router"]
