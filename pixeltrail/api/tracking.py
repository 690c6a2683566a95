"""
Pixel ingest API Router
"""
import logging
from typing import Any, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from pixeltrail.core.database import SessionLocal
from pixeltrail.services.tracking import record_track_event

router = APIRouter()
logger = logging.getLogger(__name__)


class TrackEventRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    anonymous_id: str = Field(..., alias="anonymousId", max_length=128)
    event_type: str = Field(..., alias="eventType", max_length=64)
    site_id: Optional[str] = Field(None, alias="siteId", max_length=64)
    session_id: Optional[str] = Field(None, alias="sessionId", max_length=128)
    timestamp: Optional[str] = None
    page_url: Optional[str] = Field(None, alias="pageUrl")
    page_path: Optional[str] = Field(None, alias="pagePath")
    page_title: Optional[str] = Field(None, alias="pageTitle")
    referrer: Optional[str] = None
    user_agent: Optional[str] = Field(None, alias="userAgent")
    device_type: Optional[str] = Field(None, alias="deviceType")
    country: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    utm_source: Optional[str] = Field(None, alias="utmSource")
    utm_medium: Optional[str] = Field(None, alias="utmMedium")
    utm_campaign: Optional[str] = Field(None, alias="utmCampaign")
    utm_term: Optional[str] = Field(None, alias="utmTerm")
    utm_content: Optional[str] = Field(None, alias="utmContent")
    properties: dict[str, Any] = Field(default_factory=dict)


@router.post("/track")
def track_event(body: TrackEventRequest):
    """Record one pixel event and upsert its visitor."""
    db = SessionLocal()
    try:
        recorded = record_track_event(db, body.model_dump())
        return {"success": True, **recorded}
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e)) from e
    except Exception as e:
        db.rollback()
        logger.exception("Failed to record tracking event")
        raise HTTPException(status_code=500, detail="Failed to record event") from e
    finally:
        db.close()
