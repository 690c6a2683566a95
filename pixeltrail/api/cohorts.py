"""
Cohorts API Router
"""

from __future__ import annotations

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from pydantic import BaseModel, Field
from sqlalchemy import desc
from sqlalchemy.orm import Session

from pixeltrail.core.database import get_db
from pixeltrail.core.time import now_utc
from pixeltrail.models.models import Cohort
from pixeltrail.services.analytics_common import InvalidDefinitionError
from pixeltrail.services.cohorts import CohortResult, normalize_retention_periods, parse_interval_type
from pixeltrail.services.exports import cohort_export_filename, cohort_retention_csv
from pixeltrail.services.reports import cohort_report, cohort_retention_periods, serialize_definition

router = APIRouter()
logger = logging.getLogger(__name__)


class CohortRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    cohort_type: str = "acquisition"
    date_field: str = "first_seen"
    interval_type: str
    retention_periods: Optional[list[int]] = None
    site_id: Optional[str] = None


class CohortUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    retention_periods: Optional[list[int]] = None


def _load_cohort(db: Session, cohort_id: int) -> Cohort:
    cohort = db.query(Cohort).filter(Cohort.id == cohort_id).first()
    if not cohort:
        raise HTTPException(status_code=404, detail="Cohort not found")
    return cohort


def _run_report(db: Session, cohort: Cohort) -> list[CohortResult]:
    try:
        return cohort_report(db, cohort)
    except InvalidDefinitionError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except Exception as e:
        db.rollback()
        logger.exception("Cohort analysis failed for cohort %s", cohort.id)
        raise HTTPException(status_code=500, detail="Failed to analyze cohort") from e


@router.get("")
def list_cohorts(site_id: Optional[str] = Query(None), db: Session = Depends(get_db)):
    query = db.query(Cohort).order_by(desc(Cohort.created_at), desc(Cohort.id))
    if site_id is not None:
        query = query.filter(Cohort.site_id == site_id)
    return {"cohorts": [serialize_definition(cohort) for cohort in query.all()]}


@router.post("", status_code=201)
def create_cohort(body: CohortRequest, db: Session = Depends(get_db)):
    try:
        interval = parse_interval_type(body.interval_type)
        periods = normalize_retention_periods(body.retention_periods)
    except InvalidDefinitionError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    cohort = Cohort(
        site_id=body.site_id,
        name=body.name.strip(),
        description=body.description,
        cohort_type=body.cohort_type,
        date_field=body.date_field,
        interval_type=interval.value,
        retention_periods=periods,
    )
    db.add(cohort)
    db.commit()
    db.refresh(cohort)
    return {"cohort": serialize_definition(cohort)}


@router.put("/{cohort_id}")
def update_cohort(cohort_id: int, body: CohortUpdateRequest, db: Session = Depends(get_db)):
    """Partial update; omitted or null fields keep their stored value."""
    cohort = _load_cohort(db, cohort_id)
    if body.retention_periods is not None:
        try:
            cohort.retention_periods = normalize_retention_periods(body.retention_periods)
        except InvalidDefinitionError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
    if body.name is not None:
        cohort.name = body.name.strip()
    if body.description is not None:
        cohort.description = body.description
    cohort.updated_at = now_utc()
    db.commit()
    db.refresh(cohort)
    return {"cohort": serialize_definition(cohort)}


@router.delete("/{cohort_id}")
def delete_cohort(cohort_id: int, db: Session = Depends(get_db)):
    cohort = _load_cohort(db, cohort_id)
    db.delete(cohort)
    db.commit()
    return {"success": True}


@router.get("/{cohort_id}/analyze")
def analyze_cohort(cohort_id: int, db: Session = Depends(get_db)):
    """Retention per first-seen bucket, most recent cohort first."""
    cohort = _load_cohort(db, cohort_id)
    results = _run_report(db, cohort)
    return {
        "cohort": serialize_definition(cohort),
        "retention_periods": cohort_retention_periods(cohort),
        "cohorts": [result.to_dict() for result in results],
    }


@router.get("/{cohort_id}/export")
def export_cohort(cohort_id: int, db: Session = Depends(get_db)):
    cohort = _load_cohort(db, cohort_id)
    results = _run_report(db, cohort)
    filename = cohort_export_filename(cohort.name)
    return Response(
        content=cohort_retention_csv(results, cohort_retention_periods(cohort)),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={json.dumps(filename)}"},
    )
