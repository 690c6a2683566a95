"""
Segment membership and built-in segment templates.

Membership is never materialized: every read scans visitors and events through
the stores and re-evaluates the rule list.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional, Sequence

from pixeltrail.services.records import VisitorRecord, group_events_by_visitor
from pixeltrail.services.rules import RuleEvaluationOptions, RuleEvaluator
from pixeltrail.services.stores import EventFilter, EventStore, VisitorFilter, VisitorStore

logger = logging.getLogger(__name__)

SEGMENT_TEMPLATES: list[dict[str, Any]] = [
    {
        "id": "form-abandoners",
        "name": "Form Abandoners",
        "description": "Visitors who started but didn't submit forms",
        "category": "conversion",
        "rules": [
            {"type": "event_type", "operator": "equals", "value": "form_start"},
            {"type": "event_type", "operator": "not_equals", "value": "form_submit"},
        ],
    },
    {
        "id": "high-value-visitors",
        "name": "High-Value Visitors",
        "description": "5+ page views in last 30 days",
        "category": "engagement",
        "rules": [
            {"type": "page_views", "operator": "greater_or_equal", "value": 5},
            {"type": "last_seen_days", "operator": "less_or_equal", "value": 30},
        ],
    },
    {
        "id": "repeat-visitors",
        "name": "Repeat Visitors",
        "description": "Visited your site 3+ times",
        "category": "engagement",
        "rules": [
            {"type": "total_events", "operator": "greater_or_equal", "value": 3},
        ],
    },
    {
        "id": "email-captured",
        "name": "Email Captured",
        "description": "Identified visitors with email addresses",
        "category": "lead",
        "rules": [
            {"type": "has_email", "operator": "equals", "value": "true"},
        ],
    },
    {
        "id": "phone-captured",
        "name": "Phone Captured",
        "description": "Identified visitors with phone numbers",
        "category": "lead",
        "rules": [
            {"type": "has_phone", "operator": "equals", "value": "true"},
        ],
    },
    {
        "id": "recent-converters",
        "name": "Recent Converters",
        "description": "Completed a conversion in last 7 days",
        "category": "conversion",
        "rules": [
            {"type": "event_type", "operator": "equals", "value": "form_submit"},
            {"type": "last_seen_days", "operator": "less_or_equal", "value": 7},
        ],
    },
    {
        "id": "inactive-users",
        "name": "Inactive Users",
        "description": "No activity in 30+ days but have email",
        "category": "reengagement",
        "rules": [
            {"type": "last_seen_days", "operator": "greater_than", "value": 30},
            {"type": "has_email", "operator": "equals", "value": "true"},
        ],
    },
    {
        "id": "highly-inactive",
        "name": "Highly Inactive",
        "description": "No activity in 90+ days",
        "category": "reengagement",
        "rules": [
            {"type": "last_seen_days", "operator": "greater_than", "value": 90},
            {"type": "has_email", "operator": "equals", "value": "true"},
        ],
    },
    {
        "id": "mobile-users",
        "name": "Mobile Users",
        "description": "Primarily use mobile devices",
        "category": "engagement",
        "rules": [
            {"type": "device", "operator": "equals", "value": "mobile"},
        ],
    },
    {
        "id": "desktop-users",
        "name": "Desktop Users",
        "description": "Primarily use desktop computers",
        "category": "engagement",
        "rules": [
            {"type": "device", "operator": "equals", "value": "desktop"},
        ],
    },
    {
        "id": "new-visitors",
        "name": "New Visitors",
        "description": "Active in the last 7 days with few events",
        "category": "engagement",
        "rules": [
            {"type": "last_seen_days", "operator": "less_or_equal", "value": 7},
            {"type": "total_events", "operator": "less_or_equal", "value": 5},
        ],
    },
    {
        "id": "organic-visitors",
        "name": "Organic Traffic",
        "description": "Arrived from Google",
        "category": "engagement",
        "rules": [
            {"type": "utm_source", "operator": "equals", "value": "google"},
        ],
    },
    {
        "id": "identified-not-converted",
        "name": "Identified But Not Converted",
        "description": "Known visitors who never submitted a form",
        "category": "conversion",
        "rules": [
            {"type": "is_identified", "operator": "equals", "value": "true"},
            {"type": "event_type", "operator": "not_equals", "value": "form_submit"},
        ],
    },
]


def get_segment_template(template_id: str) -> Optional[dict[str, Any]]:
    for template in SEGMENT_TEMPLATES:
        if template["id"] == template_id:
            return template
    return None


def find_segment_members(
    visitors: Sequence[VisitorRecord],
    events: Sequence[Any],
    rules: Optional[Sequence[dict[str, Any]]],
    *,
    now: Optional[datetime] = None,
    options: Optional[RuleEvaluationOptions] = None,
) -> list[VisitorRecord]:
    evaluator = RuleEvaluator(rules, options=options, now=now)
    return evaluator.filter_visitors(visitors, group_events_by_visitor(events))


def segment_members_from_stores(
    visitor_store: VisitorStore,
    event_store: EventStore,
    rules: Optional[Sequence[dict[str, Any]]],
    *,
    site_id: Optional[str] = None,
    now: Optional[datetime] = None,
    options: Optional[RuleEvaluationOptions] = None,
) -> list[VisitorRecord]:
    visitors = visitor_store.get_visitors(VisitorFilter(site_id=site_id))
    # Empty rule lists match everyone; skip the event scan.
    events = event_store.get_events(EventFilter(site_id=site_id)) if rules else []
    members = find_segment_members(visitors, events, rules, now=now, options=options)
    logger.debug(
        "Segment scan: site=%s visitors=%d events=%d members=%d",
        site_id,
        len(visitors),
        len(events),
        len(members),
    )
    return members
