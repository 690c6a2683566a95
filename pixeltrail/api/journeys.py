"""
Journeys API Router
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from pixeltrail.core.config import settings
from pixeltrail.core.database import get_db
from pixeltrail.services.reports import journey_report

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("")
def journeys(
    site_id: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=1),
    days: Optional[int] = Query(None, ge=1, le=365),
    db: Session = Depends(get_db),
):
    """Page-to-page flows, common paths and entry/exit pages for recent sessions."""
    max_limit = int(getattr(settings, "JOURNEY_SESSION_LIMIT_MAX", 1000))
    if limit is not None and limit > max_limit:
        raise HTTPException(status_code=400, detail=f"`limit` must be <= {max_limit}")
    try:
        aggregate = journey_report(db, site_id=site_id, limit=limit, days=days)
    except Exception as e:
        db.rollback()
        logger.exception("Journey aggregation failed for site %s", site_id)
        raise HTTPException(status_code=500, detail="Failed to fetch journey data") from e
    return aggregate.to_dict()
