"""
Goals API Router
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy import desc
from sqlalchemy.orm import Session

from pixeltrail.core.database import get_db
from pixeltrail.core.time import now_utc
from pixeltrail.models.models import Goal
from pixeltrail.services.analytics_common import InvalidDefinitionError
from pixeltrail.services.goals import parse_goal_type
from pixeltrail.services.reports import goal_report, serialize_definition

router = APIRouter()
logger = logging.getLogger(__name__)


class GoalRequest(BaseModel):
    name: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    type: Optional[str] = None
    target_value: Optional[str] = Field(None, max_length=512)
    site_id: Optional[str] = None


def _load_goal(db: Session, goal_id: int) -> Goal:
    goal = db.query(Goal).filter(Goal.id == goal_id).first()
    if not goal:
        raise HTTPException(status_code=404, detail="Goal not found")
    return goal


def _goal_type_or_400(value: Any) -> str:
    try:
        return parse_goal_type(value)
    except InvalidDefinitionError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


def _goal_with_stats(db: Session, goal: Goal, now) -> dict[str, Any]:
    item = serialize_definition(goal)
    item["stats"] = goal_report(db, goal, now=now).to_dict()
    return item


@router.get("")
def list_goals(site_id: Optional[str] = Query(None), db: Session = Depends(get_db)):
    """All goals, newest first, with completion counts."""
    query = db.query(Goal).order_by(desc(Goal.created_at), desc(Goal.id))
    if site_id is not None:
        query = query.filter(Goal.site_id == site_id)
    now = now_utc()
    try:
        return {"goals": [_goal_with_stats(db, goal, now) for goal in query.all()]}
    except Exception as e:
        db.rollback()
        logger.exception("Failed to compute goal stats")
        raise HTTPException(status_code=500, detail="Failed to fetch goals") from e


@router.post("", status_code=201)
def create_goal(body: GoalRequest, db: Session = Depends(get_db)):
    name = (body.name or "").strip()
    target_value = (body.target_value or "").strip()
    if not name or not body.type or not target_value:
        raise HTTPException(status_code=400, detail="name, type and target_value are required")

    goal = Goal(
        site_id=body.site_id,
        name=name,
        description=body.description,
        goal_type=_goal_type_or_400(body.type),
        target_value=target_value,
    )
    db.add(goal)
    db.commit()
    db.refresh(goal)
    logger.info("Created %s goal %s", goal.goal_type, goal.id)
    return {"goal": serialize_definition(goal)}


@router.put("/{goal_id}")
def update_goal(goal_id: int, body: GoalRequest, db: Session = Depends(get_db)):
    """Partial update; omitted or null fields keep their stored value."""
    goal = _load_goal(db, goal_id)
    goal_type = _goal_type_or_400(body.type) if body.type is not None else None
    if body.target_value is not None and not body.target_value.strip():
        raise HTTPException(status_code=400, detail="target_value cannot be blank")
    if body.name is not None and not body.name.strip():
        raise HTTPException(status_code=400, detail="name cannot be blank")

    if body.name is not None:
        goal.name = body.name.strip()
    if body.description is not None:
        goal.description = body.description
    if goal_type is not None:
        goal.goal_type = goal_type
    if body.target_value is not None:
        goal.target_value = body.target_value.strip()
    goal.updated_at = now_utc()
    db.commit()
    db.refresh(goal)
    return {"goal": serialize_definition(goal)}


@router.delete("/{goal_id}")
def delete_goal(goal_id: int, db: Session = Depends(get_db)):
    goal = _load_goal(db, goal_id)
    payload = serialize_definition(goal)
    db.delete(goal)
    db.commit()
    return {"success": True, "goal": payload}
