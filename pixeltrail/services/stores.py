"""
Read-only visitor/event stores.

The analytics core depends only on the `EventStore`/`VisitorStore` protocols,
so an indexed or pre-aggregated backend can replace the SQL scans without
touching rule, funnel, cohort or journey logic.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

from sqlalchemy.orm import Session

from pixeltrail.models.models import Event, Visitor
from pixeltrail.services.records import EventRecord, VisitorRecord


@dataclass(frozen=True)
class EventFilter:
    site_id: Optional[str] = None
    event_types: Optional[frozenset[str]] = None
    visitor_ids: Optional[frozenset[str]] = None
    # Both bounds inclusive.
    since: Optional[datetime] = None
    until: Optional[datetime] = None


@dataclass(frozen=True)
class VisitorFilter:
    site_id: Optional[str] = None
    visitor_ids: Optional[frozenset[str]] = None


class EventStore(Protocol):
    def get_events(self, filter: Optional[EventFilter] = None) -> list[EventRecord]:
        ...


class VisitorStore(Protocol):
    def get_visitors(self, filter: Optional[VisitorFilter] = None) -> list[VisitorRecord]:
        ...


class SqlEventStore:
    """EventStore over the `events` table."""

    def __init__(self, db: Session):
        self.db = db

    def get_events(self, filter: Optional[EventFilter] = None) -> list[EventRecord]:
        criteria = filter or EventFilter()
        query = self.db.query(Event)
        if criteria.site_id is not None:
            query = query.filter(Event.site_id == criteria.site_id)
        if criteria.event_types is not None:
            if not criteria.event_types:
                return []
            query = query.filter(Event.event_type.in_(sorted(criteria.event_types)))
        if criteria.visitor_ids is not None:
            if not criteria.visitor_ids:
                return []
            query = query.filter(Event.visitor_id.in_(sorted(criteria.visitor_ids)))
        if criteria.since is not None:
            query = query.filter(Event.timestamp >= criteria.since)
        if criteria.until is not None:
            query = query.filter(Event.timestamp <= criteria.until)
        rows = query.order_by(Event.timestamp.asc(), Event.id.asc()).all()
        return [EventRecord.from_row(row) for row in rows]


class SqlVisitorStore:
    """VisitorStore over the `visitors` table."""

    def __init__(self, db: Session):
        self.db = db

    def get_visitors(self, filter: Optional[VisitorFilter] = None) -> list[VisitorRecord]:
        criteria = filter or VisitorFilter()
        query = self.db.query(Visitor)
        if criteria.site_id is not None:
            query = query.filter(Visitor.site_id == criteria.site_id)
        if criteria.visitor_ids is not None:
            if not criteria.visitor_ids:
                return []
            query = query.filter(Visitor.id.in_(sorted(criteria.visitor_ids)))
        rows = query.order_by(Visitor.first_seen_at.asc(), Visitor.id.asc()).all()
        return [VisitorRecord.from_row(row) for row in rows]
