"""
SQLAlchemy models for pixeltrail.
"""
import uuid

from sqlalchemy import (
    Column, Integer, String, Text, Boolean,
    ForeignKey, DateTime, JSON, CheckConstraint, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from pixeltrail.core.database import Base


def _new_visitor_id() -> str:
    return uuid.uuid4().hex


class Visitor(Base):
    """A tracked individual, anonymous until identified."""
    __tablename__ = "visitors"

    id = Column(String(64), primary_key=True, default=_new_visitor_id)
    site_id = Column(String(64), nullable=True)
    anonymous_id = Column(String(128), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(64), nullable=True)
    name = Column(String(255), nullable=True)
    is_identified = Column(Boolean, nullable=False, default=False)
    first_seen_at = Column(DateTime(timezone=True), server_default=func.now())
    last_seen_at = Column(DateTime(timezone=True), server_default=func.now())
    visit_count = Column(Integer, nullable=False, default=1)

    # Relationships
    events = relationship("Event", back_populates="visitor")

    __table_args__ = (
        UniqueConstraint("site_id", "anonymous_id", name="uq_visitors_site_anonymous"),
        CheckConstraint("visit_count >= 0", name="non_negative_visit_count"),
    )


class Event(Base):
    """A single recorded interaction. Append-only."""
    __tablename__ = "events"

    id = Column(Integer, primary_key=True)
    visitor_id = Column(String(64), ForeignKey("visitors.id"), nullable=False)
    site_id = Column(String(64), nullable=True)
    session_id = Column(String(128), nullable=True)
    event_type = Column(String(64), nullable=False)
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    page_url = Column(Text, nullable=True)
    page_path = Column(String(512), nullable=True)
    page_title = Column(String(512), nullable=True)
    referrer = Column(Text, nullable=True)
    event_properties = Column("properties", JSON, nullable=False, default=dict)

    # Device
    user_agent = Column(Text, nullable=True)
    device_type = Column(String(20), nullable=True)
    browser = Column(String(64), nullable=True)
    os = Column(String(64), nullable=True)

    # Geo
    country = Column(String(100), nullable=True)
    city = Column(String(100), nullable=True)
    region = Column(String(100), nullable=True)

    # Campaign
    utm_source = Column(String(255), nullable=True)
    utm_medium = Column(String(255), nullable=True)
    utm_campaign = Column(String(255), nullable=True)
    utm_term = Column(String(255), nullable=True)
    utm_content = Column(String(255), nullable=True)

    # Relationships
    visitor = relationship("Visitor", back_populates="events")

    __table_args__ = (
        CheckConstraint("event_type <> ''", name="ck_events_event_type_nonempty"),
        Index("idx_events_visitor_timestamp", "visitor_id", "timestamp"),
        Index("idx_events_site_type_timestamp", "site_id", "event_type", "timestamp"),
        Index("idx_events_session", "session_id"),
    )


class Segment(Base):
    """Named, reusable rule list. Membership is recomputed on every read."""
    __tablename__ = "segments"

    id = Column(Integer, primary_key=True)
    site_id = Column(String(64), nullable=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    rules = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Funnel(Base):
    """Ordered list of conversion steps."""
    __tablename__ = "funnels"

    id = Column(Integer, primary_key=True)
    site_id = Column(String(64), nullable=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    steps = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Cohort(Base):
    """Retention cohort definition."""
    __tablename__ = "cohorts"

    id = Column(Integer, primary_key=True)
    site_id = Column(String(64), nullable=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    cohort_type = Column(String(50), nullable=False, default="acquisition")
    date_field = Column(String(100), nullable=False, default="first_seen")
    interval_type = Column(String(20), nullable=False)
    retention_periods = Column(JSON, nullable=False, default=lambda: [1, 7, 14, 30, 60, 90])
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(
            "interval_type IN ('daily', 'weekly', 'monthly')",
            name="valid_interval_type"
        ),
    )


class Goal(Base):
    """Conversion target: an event type or an exact page path."""
    __tablename__ = "goals"

    id = Column(Integer, primary_key=True)
    site_id = Column(String(64), nullable=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    goal_type = Column("type", String(20), nullable=False)
    target_value = Column(String(512), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("type IN ('event', 'url')", name="valid_goal_type"),
        CheckConstraint("target_value <> ''", name="ck_goals_target_value_nonempty"),
    )
