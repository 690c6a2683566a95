"""
Segments API Router
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from pydantic import BaseModel, Field
from sqlalchemy import desc
from sqlalchemy.orm import Session

from pixeltrail.core.database import get_db
from pixeltrail.core.time import now_utc
from pixeltrail.models.models import Segment
from pixeltrail.services.analytics_common import InvalidDefinitionError
from pixeltrail.services.exports import (
    SEGMENT_EXPORT_FORMATS,
    segment_export_filename,
    segment_members_csv,
)
from pixeltrail.services.reports import segment_members, serialize_definition
from pixeltrail.services.rules import validate_rules
from pixeltrail.services.segments import SEGMENT_TEMPLATES, get_segment_template

router = APIRouter()
logger = logging.getLogger(__name__)


class SegmentRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    rules: list[dict[str, Any]] = Field(default_factory=list)
    site_id: Optional[str] = None
    is_active: bool = True


def _load_segment(db: Session, segment_id: int) -> Segment:
    segment = db.query(Segment).filter(Segment.id == segment_id).first()
    if not segment:
        raise HTTPException(status_code=404, detail="Segment not found")
    return segment


def _validated_rules(rules: list[dict[str, Any]]) -> list[dict[str, Any]]:
    try:
        validate_rules(rules)
    except InvalidDefinitionError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return rules


def _members_or_400(db: Session, segment: Segment):
    try:
        return segment_members(db, segment)
    except InvalidDefinitionError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@router.get("")
def list_segments(
    site_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    """All segments with their current member counts."""
    query = db.query(Segment).order_by(desc(Segment.created_at), desc(Segment.id))
    if site_id is not None:
        query = query.filter(Segment.site_id == site_id)
    payload = []
    for segment in query.all():
        item = serialize_definition(segment)
        item["user_count"] = len(_members_or_400(db, segment))
        payload.append(item)
    return {"segments": payload}


@router.post("", status_code=201)
def create_segment(body: SegmentRequest, db: Session = Depends(get_db)):
    segment = Segment(
        site_id=body.site_id,
        name=body.name.strip(),
        description=body.description or "",
        rules=_validated_rules(body.rules),
        is_active=body.is_active,
    )
    db.add(segment)
    db.commit()
    db.refresh(segment)
    logger.info("Created segment %s (%d rules)", segment.id, len(segment.rules or []))
    return {"segment": serialize_definition(segment)}


@router.get("/templates")
def list_segment_templates():
    """Built-in segment blueprints."""
    return {"templates": SEGMENT_TEMPLATES}


@router.get("/templates/{template_id}")
def get_segment_template_detail(template_id: str):
    template = get_segment_template(template_id)
    if template is None:
        raise HTTPException(status_code=404, detail="Template not found")
    return {"template": template}


@router.get("/{segment_id}")
def get_segment(segment_id: int, db: Session = Depends(get_db)):
    """Segment definition with matching visitors."""
    segment = _load_segment(db, segment_id)
    members = _members_or_400(db, segment)
    return {
        "segment": serialize_definition(segment),
        "users": [member.to_dict() for member in members],
        "user_count": len(members),
    }


@router.put("/{segment_id}")
def update_segment(segment_id: int, body: SegmentRequest, db: Session = Depends(get_db)):
    segment = _load_segment(db, segment_id)
    segment.name = body.name.strip()
    segment.description = body.description or ""
    segment.rules = _validated_rules(body.rules)
    segment.is_active = body.is_active
    segment.updated_at = now_utc()
    db.commit()
    db.refresh(segment)
    return {"segment": serialize_definition(segment)}


@router.delete("/{segment_id}")
def delete_segment(segment_id: int, db: Session = Depends(get_db)):
    segment = _load_segment(db, segment_id)
    db.delete(segment)
    db.commit()
    return {"success": True}


@router.get("/{segment_id}/export")
def export_segment(
    segment_id: int,
    format: str = Query("csv", description="csv | json | google_ads | meta_ads"),
    db: Session = Depends(get_db),
):
    """Export segment members for CRM or ad-platform audiences."""
    if format not in SEGMENT_EXPORT_FORMATS:
        raise HTTPException(status_code=400, detail=f"Unsupported export format: {format}")

    segment = _load_segment(db, segment_id)
    members = _members_or_400(db, segment)
    exported_at = now_utc()

    if format == "json":
        return {
            "segment": segment.name,
            "exported_at": exported_at.isoformat(),
            "total_users": len(members),
            "users": [
                {
                    "email": member.email,
                    "name": member.name,
                    "phone": member.phone,
                    "first_seen": member.first_seen_at.isoformat() if member.first_seen_at else None,
                    "last_seen": member.last_seen_at.isoformat() if member.last_seen_at else None,
                    "visits": member.visit_count,
                }
                for member in members
            ],
        }

    filename = segment_export_filename(segment.name, format, today=exported_at.date())
    return Response(
        content=segment_members_csv(members, format),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={json.dumps(filename)}"},
    )
