"""
Saved-definition reports: fetch rows through the stores, run the analytics core.

Shared by the API routers and `scripts/analytics_report.py`.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy.orm import Session

from pixeltrail.core.config import settings
from pixeltrail.core.time import now_utc
from pixeltrail.models.models import Cohort, Funnel, Goal, Segment
from pixeltrail.services.cohorts import CohortResult, analyze_cohort_events, normalize_retention_periods
from pixeltrail.services.funnels import FunnelAnalysis, analyze_funnel_events, parse_funnel_steps
from pixeltrail.services.goals import GoalStats, goal_completion_stats, goal_event_types
from pixeltrail.services.journeys import JourneyAggregate, MIN_SESSION_DEPTH, aggregate_journeys, build_session_paths
from pixeltrail.services.records import VisitorRecord
from pixeltrail.services.rules import options_from_settings
from pixeltrail.services.segments import segment_members_from_stores
from pixeltrail.services.stores import EventFilter, SqlEventStore, SqlVisitorStore

logger = logging.getLogger(__name__)


def segment_members(db: Session, segment: Segment, *, now: Optional[datetime] = None) -> list[VisitorRecord]:
    return segment_members_from_stores(
        SqlVisitorStore(db),
        SqlEventStore(db),
        segment.rules or [],
        site_id=segment.site_id,
        now=now,
        options=options_from_settings(),
    )


def funnel_report(
    db: Session,
    funnel: Funnel,
    *,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
) -> FunnelAnalysis:
    steps = parse_funnel_steps(funnel.steps)
    event_types = {step.value for step in steps if step.type == "event"}
    if any(step.type == "url" for step in steps):
        event_types.add("page_view")
    events = SqlEventStore(db).get_events(
        EventFilter(
            site_id=funnel.site_id,
            event_types=frozenset(event_types),
            since=date_from,
            until=date_to,
        )
    )
    logger.debug("Funnel %s: %d candidate events", funnel.id, len(events))
    return analyze_funnel_events(
        steps,
        events,
        date_from=date_from,
        date_to=date_to,
        enforce_step_order=bool(getattr(settings, "FUNNEL_ENFORCE_STEP_ORDER", False)),
    )


def cohort_retention_periods(cohort: Cohort) -> list[int]:
    return normalize_retention_periods(
        cohort.retention_periods or getattr(settings, "COHORT_DEFAULT_RETENTION_PERIODS", None)
    )


def cohort_report(db: Session, cohort: Cohort) -> list[CohortResult]:
    events = SqlEventStore(db).get_events(EventFilter(site_id=cohort.site_id))
    return analyze_cohort_events(events, cohort.interval_type, cohort_retention_periods(cohort))


def goal_report(db: Session, goal: Goal, *, now: Optional[datetime] = None) -> GoalStats:
    events = SqlEventStore(db).get_events(
        EventFilter(site_id=goal.site_id, event_types=goal_event_types(goal.goal_type, goal.target_value))
    )
    return goal_completion_stats(goal.goal_type, goal.target_value, events, now=now or now_utc())


def journey_report(
    db: Session,
    *,
    site_id: Optional[str],
    limit: Optional[int] = None,
    days: Optional[int] = None,
    now: Optional[datetime] = None,
) -> JourneyAggregate:
    resolved_limit = int(limit or getattr(settings, "JOURNEY_SESSION_LIMIT", 100))
    resolved_days = int(days or getattr(settings, "JOURNEY_LOOKBACK_DAYS", 30))
    since = (now or now_utc()) - timedelta(days=resolved_days)
    events = SqlEventStore(db).get_events(
        EventFilter(site_id=site_id, event_types=frozenset({"page_view"}), since=since)
    )
    sessions = [
        session
        for session in build_session_paths(events)
        if len(session.path) >= MIN_SESSION_DEPTH
    ][:resolved_limit]
    return aggregate_journeys(sessions)


def serialize_definition(row: Any) -> dict[str, Any]:
    payload = {
        "id": int(row.id),
        "site_id": row.site_id,
        "name": row.name,
        "description": row.description,
        "created_at": row.created_at.isoformat() if row.created_at else None,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }
    if isinstance(row, Segment):
        payload.update(rules=row.rules or [], is_active=bool(row.is_active))
    elif isinstance(row, Funnel):
        payload.update(steps=row.steps or [])
    elif isinstance(row, Cohort):
        payload.update(
            cohort_type=row.cohort_type,
            date_field=row.date_field,
            interval_type=row.interval_type,
            retention_periods=row.retention_periods or [],
        )
    elif isinstance(row, Goal):
        payload.update(type=row.goal_type, target_value=row.target_value)
    return payload
