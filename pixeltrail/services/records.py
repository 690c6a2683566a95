"""
Plain visitor/event values consumed by the analytics core.

The core never sees ORM rows; stores convert rows with `from_row`, and tests
build records directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from pixeltrail.core.time import ensure_utc


@dataclass(frozen=True)
class VisitorRecord:
    id: str
    anonymous_id: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    name: Optional[str] = None
    is_identified: bool = False
    first_seen_at: Optional[datetime] = None
    last_seen_at: Optional[datetime] = None
    visit_count: int = 0
    site_id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Any) -> "VisitorRecord":
        return cls(
            id=str(row.id),
            anonymous_id=str(row.anonymous_id or ""),
            email=row.email or None,
            phone=row.phone or None,
            name=row.name or None,
            is_identified=bool(row.is_identified),
            first_seen_at=ensure_utc(row.first_seen_at),
            last_seen_at=ensure_utc(row.last_seen_at),
            visit_count=int(row.visit_count or 0),
            site_id=row.site_id,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "anonymous_id": self.anonymous_id,
            "email": self.email,
            "phone": self.phone,
            "name": self.name,
            "is_identified": self.is_identified,
            "first_seen_at": self.first_seen_at.isoformat() if self.first_seen_at else None,
            "last_seen_at": self.last_seen_at.isoformat() if self.last_seen_at else None,
            "visit_count": self.visit_count,
        }


@dataclass(frozen=True)
class EventRecord:
    visitor_id: str
    event_type: str
    timestamp: datetime
    id: Optional[int] = None
    session_id: Optional[str] = None
    page_path: Optional[str] = None
    page_url: Optional[str] = None
    device_type: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    utm_source: Optional[str] = None
    site_id: Optional[str] = None
    properties: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Any) -> "EventRecord":
        return cls(
            id=row.id,
            visitor_id=str(row.visitor_id),
            event_type=str(row.event_type),
            timestamp=ensure_utc(row.timestamp),
            session_id=row.session_id,
            page_path=row.page_path,
            page_url=row.page_url,
            device_type=row.device_type,
            country=row.country,
            city=row.city,
            utm_source=row.utm_source,
            site_id=row.site_id,
            properties=dict(row.event_properties or {}),
        )


def group_events_by_visitor(events) -> dict[str, list[EventRecord]]:
    grouped: dict[str, list[EventRecord]] = {}
    for event in events:
        grouped.setdefault(event.visitor_id, []).append(event)
    return grouped
