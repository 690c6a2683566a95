from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from pixeltrail.core.database import Base
from pixeltrail.models.models import Event, Visitor
from pixeltrail.services import tracking


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, future=True)()
    try:
        yield session
    finally:
        session.close()


def test_normalize_track_event_accepts_camel_case_payload():
    normalized = tracking.normalize_track_event(
        {
            "anonymousId": " anon-1 ",
            "eventType": "page_view",
            "siteId": "site-a",
            "sessionId": "sess-1",
            "pagePath": " /pricing ",
            "utmSource": "google",
            "timestamp": "2026-03-01T10:00:00Z",
            "properties": {"title": "Pricing", "tracking_blob": "drop me"},
        }
    )

    assert normalized["anonymous_id"] == "anon-1"
    assert normalized["event_type"] == "page_view"
    assert normalized["site_id"] == "site-a"
    assert normalized["session_id"] == "sess-1"
    assert normalized["page_path"] == "/pricing"
    assert normalized["utm_source"] == "google"
    assert normalized["occurred_at"] == datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)
    assert normalized["properties"] == {"title": "Pricing"}
    assert normalized["device_type"] == "desktop"


def test_normalize_track_event_requires_identity_and_type():
    with pytest.raises(ValueError, match="anonymous_id is required"):
        tracking.normalize_track_event({"event_type": "click"})
    with pytest.raises(ValueError, match="event_type is required"):
        tracking.normalize_track_event({"anonymous_id": "anon-1", "event_type": "  "})


def test_normalize_track_event_rejects_bad_timestamp():
    with pytest.raises(ValueError, match="timestamp"):
        tracking.normalize_track_event({"anonymous_id": "anon-1", "event_type": "click", "timestamp": "yesterday"})


def test_custom_event_properties_keep_generic_keys():
    properties = tracking.normalize_event_properties(
        "video_play",
        {"video_id": "intro", "seconds": 12, " ": "blank key", "meta": object()},
    )
    assert properties["video_id"] == "intro"
    assert properties["seconds"] == 12
    assert isinstance(properties["meta"], str)
    assert " " not in properties and "" not in properties


def test_custom_event_properties_are_capped():
    properties = tracking.normalize_event_properties(
        "custom", {f"key_{index}": index for index in range(tracking.MAX_GENERIC_PROPERTIES + 10)}
    )
    assert len(properties) == tracking.MAX_GENERIC_PROPERTIES


@pytest.mark.parametrize(
    ("user_agent", "expected"),
    [
        ("Mozilla/5.0 (iPhone; CPU iPhone OS 17_0) Mobile/15E148", "mobile"),
        ("Mozilla/5.0 (iPad; CPU OS 17_0 like Mac OS X)", "tablet"),
        ("Mozilla/5.0 (Windows NT 10.0; Win64; x64)", "desktop"),
        ("", "desktop"),
    ],
)
def test_detect_device_type(user_agent, expected):
    assert tracking.detect_device_type(user_agent) == expected


def test_record_track_event_rejects_when_ingest_disabled(monkeypatch):
    monkeypatch.setattr(tracking.settings, "TRACK_INGEST_ENABLED", False, raising=False)
    with pytest.raises(ValueError, match="disabled"):
        tracking.record_track_event(
            db=SimpleNamespace(),
            payload={"anonymous_id": "anon-1", "event_type": "page_view"},
        )


def test_record_track_event_upserts_visitor(db_session):
    first = tracking.record_track_event(
        db_session,
        {
            "anonymous_id": "anon-1",
            "site_id": "site-a",
            "event_type": "page_view",
            "page_path": "/",
            "timestamp": "2026-03-01T10:00:00Z",
        },
    )
    second = tracking.record_track_event(
        db_session,
        {
            "anonymous_id": "anon-1",
            "site_id": "site-a",
            "event_type": "click",
            "timestamp": "2026-03-01T09:00:00Z",
        },
    )

    assert first["visitor_id"] == second["visitor_id"]
    assert second["event_id"] > first["event_id"]
    assert db_session.query(Visitor).count() == 1
    assert db_session.query(Event).count() == 2

    visitor = db_session.query(Visitor).one()
    assert visitor.visit_count == 2
    assert visitor.first_seen_at.replace(tzinfo=None) == datetime(2026, 3, 1, 9, 0)
    assert visitor.last_seen_at.replace(tzinfo=None) == datetime(2026, 3, 1, 10, 0)
    assert visitor.is_identified is False


def test_same_anonymous_id_on_another_site_is_a_new_visitor(db_session):
    a = tracking.record_track_event(db_session, {"anonymous_id": "anon-1", "site_id": "site-a", "event_type": "page_view"})
    b = tracking.record_track_event(db_session, {"anonymous_id": "anon-1", "site_id": "site-b", "event_type": "page_view"})

    assert a["visitor_id"] != b["visitor_id"]
    assert db_session.query(Visitor).count() == 2


def test_identify_event_merges_contact_fields(db_session):
    tracking.record_track_event(db_session, {"anonymous_id": "anon-2", "event_type": "page_view"})
    tracking.record_track_event(
        db_session,
        {
            "anonymous_id": "anon-2",
            "event_type": "identify",
            "properties": {"email": " jo@example.com ", "name": "Jo Doe", "plan": "pro"},
        },
    )
    tracking.record_track_event(
        db_session,
        {"anonymous_id": "anon-2", "event_type": "identify", "properties": {"phone": "+15550100"}},
    )

    visitor = db_session.query(Visitor).one()
    assert visitor.is_identified is True
    assert visitor.email == "jo@example.com"
    assert visitor.name == "Jo Doe"
    assert visitor.phone == "+15550100"

    identify = db_session.query(Event).filter(Event.event_type == "identify").first()
    assert set(identify.event_properties) == {"email", "name"}
