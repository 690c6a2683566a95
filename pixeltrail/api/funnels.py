"""
Funnels API Router
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from pydantic import BaseModel, Field
from sqlalchemy import desc
from sqlalchemy.orm import Session

from pixeltrail.core.database import get_db
from pixeltrail.core.time import now_utc, parse_timestamp
from pixeltrail.models.models import Funnel
from pixeltrail.services.analytics_common import InvalidDefinitionError
from pixeltrail.services.exports import funnel_analysis_csv, funnel_export_filename
from pixeltrail.services.funnels import FunnelAnalysis, parse_funnel_steps
from pixeltrail.services.reports import funnel_report, serialize_definition

router = APIRouter()
logger = logging.getLogger(__name__)


class FunnelRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    steps: list[dict[str, Any]]
    site_id: Optional[str] = None


def _load_funnel(db: Session, funnel_id: int) -> Funnel:
    funnel = db.query(Funnel).filter(Funnel.id == funnel_id).first()
    if not funnel:
        raise HTTPException(status_code=404, detail="Funnel not found")
    return funnel


def _resolve_bound(value: Optional[str], name: str) -> Optional[datetime]:
    try:
        return parse_timestamp(value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid `{name}`; expected an ISO date or datetime") from e


def _validated_steps(steps: list[dict[str, Any]]) -> list[dict[str, Any]]:
    try:
        parse_funnel_steps(steps)
    except InvalidDefinitionError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return steps


def _run_analysis(db: Session, funnel: Funnel, date_from: Optional[str], date_to: Optional[str]) -> FunnelAnalysis:
    lower = _resolve_bound(date_from, "from")
    upper = _resolve_bound(date_to, "to")
    try:
        return funnel_report(db, funnel, date_from=lower, date_to=upper)
    except InvalidDefinitionError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except Exception as e:
        db.rollback()
        logger.exception("Funnel analysis failed for funnel %s", funnel.id)
        raise HTTPException(status_code=500, detail="Failed to analyze funnel") from e


@router.get("")
def list_funnels(site_id: Optional[str] = Query(None), db: Session = Depends(get_db)):
    query = db.query(Funnel).order_by(desc(Funnel.created_at), desc(Funnel.id))
    if site_id is not None:
        query = query.filter(Funnel.site_id == site_id)
    return {"funnels": [serialize_definition(funnel) for funnel in query.all()]}


@router.post("", status_code=201)
def create_funnel(body: FunnelRequest, db: Session = Depends(get_db)):
    funnel = Funnel(
        site_id=body.site_id,
        name=body.name.strip(),
        description=body.description,
        steps=_validated_steps(body.steps),
    )
    db.add(funnel)
    db.commit()
    db.refresh(funnel)
    logger.info("Created funnel %s (%d steps)", funnel.id, len(funnel.steps))
    return {"funnel": serialize_definition(funnel)}


@router.put("/{funnel_id}")
def update_funnel(funnel_id: int, body: FunnelRequest, db: Session = Depends(get_db)):
    funnel = _load_funnel(db, funnel_id)
    funnel.name = body.name.strip()
    funnel.description = body.description
    funnel.steps = _validated_steps(body.steps)
    funnel.updated_at = now_utc()
    db.commit()
    db.refresh(funnel)
    return {"funnel": serialize_definition(funnel)}


@router.delete("/{funnel_id}")
def delete_funnel(funnel_id: int, db: Session = Depends(get_db)):
    funnel = _load_funnel(db, funnel_id)
    db.delete(funnel)
    db.commit()
    return {"success": True}


@router.get("/{funnel_id}/analyze")
def analyze_funnel(
    funnel_id: int,
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    db: Session = Depends(get_db),
):
    """Step-by-step conversion, drop-off and time to convert."""
    funnel = _load_funnel(db, funnel_id)
    analysis = _run_analysis(db, funnel, date_from, date_to)
    return {
        "funnel": {"id": int(funnel.id), "name": funnel.name, "description": funnel.description},
        "analysis": analysis.to_dict(),
    }


@router.get("/{funnel_id}/export")
def export_funnel(
    funnel_id: int,
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    db: Session = Depends(get_db),
):
    funnel = _load_funnel(db, funnel_id)
    analysis = _run_analysis(db, funnel, date_from, date_to)
    filename = funnel_export_filename(funnel.name, date_from, date_to)
    return Response(
        content=funnel_analysis_csv(analysis),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={json.dumps(filename)}"},
    )
