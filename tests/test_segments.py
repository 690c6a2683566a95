from __future__ import annotations

from datetime import datetime, timedelta, timezone

from pixeltrail.services import segments
from pixeltrail.services.records import EventRecord, VisitorRecord
from pixeltrail.services.rules import RuleEvaluationOptions, validate_rules

NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


class _MemoryEventStore:
    def __init__(self, events):
        self.events = list(events)
        self.calls = []

    def get_events(self, filter=None):
        self.calls.append(filter)
        return [event for event in self.events if filter is None or filter.site_id in (None, event.site_id)]


class _MemoryVisitorStore:
    def __init__(self, visitors):
        self.visitors = list(visitors)

    def get_visitors(self, filter=None):
        return [visitor for visitor in self.visitors if filter is None or filter.site_id in (None, visitor.site_id)]


def _event(visitor_id: str, event_type: str, *, days_ago: float = 1, site_id: str = "site-a", **fields) -> EventRecord:
    return EventRecord(
        visitor_id=visitor_id,
        event_type=event_type,
        timestamp=NOW - timedelta(days=days_ago),
        site_id=site_id,
        **fields,
    )


VISITORS = [
    VisitorRecord(id="abandoner", site_id="site-a"),
    VisitorRecord(id="converter", site_id="site-a", email="c@example.com", is_identified=True),
    VisitorRecord(id="dormant", site_id="site-a", email="d@example.com"),
    VisitorRecord(id="elsewhere", site_id="site-b"),
]
EVENTS = [
    _event("abandoner", "form_start"),
    _event("abandoner", "page_view", page_path="/signup"),
    _event("converter", "form_start"),
    _event("converter", "form_submit"),
    _event("dormant", "page_view", days_ago=45, device_type="mobile"),
    _event("elsewhere", "form_start", site_id="site-b"),
]


def _members(template_id: str, site_id: str | None = "site-a") -> list[str]:
    template = segments.get_segment_template(template_id)
    members = segments.segment_members_from_stores(
        _MemoryVisitorStore(VISITORS),
        _MemoryEventStore(EVENTS),
        template["rules"],
        site_id=site_id,
        now=NOW,
        options=RuleEvaluationOptions(),
    )
    return [member.id for member in members]


def test_templates_validate_strictly():
    ids = [template["id"] for template in segments.SEGMENT_TEMPLATES]
    assert len(ids) == len(set(ids))
    for template in segments.SEGMENT_TEMPLATES:
        assert validate_rules(template["rules"])


def test_get_segment_template_unknown_returns_none():
    assert segments.get_segment_template("does-not-exist") is None


def test_form_abandoners_template():
    assert _members("form-abandoners") == ["abandoner"]


def test_inactive_users_template():
    assert _members("inactive-users") == ["dormant"]


def test_email_captured_template():
    assert _members("email-captured") == ["converter", "dormant"]


def test_site_filter_limits_visitors():
    assert _members("form-abandoners", site_id="site-b") == ["elsewhere"]
    assert sorted(_members("form-abandoners", site_id=None)) == ["abandoner", "elsewhere"]


def test_empty_rules_match_everyone_without_scanning_events():
    event_store = _MemoryEventStore(EVENTS)
    members = segments.segment_members_from_stores(
        _MemoryVisitorStore(VISITORS),
        event_store,
        [],
        site_id="site-a",
        now=NOW,
        options=RuleEvaluationOptions(),
    )

    assert [member.id for member in members] == ["abandoner", "converter", "dormant"]
    assert event_store.calls == []


def test_find_segment_members_with_in_memory_lists():
    members = segments.find_segment_members(
        VISITORS,
        EVENTS,
        [{"type": "device", "operator": "equals", "value": "mobile"}],
        now=NOW,
        options=RuleEvaluationOptions(),
    )
    assert [member.id for member in members] == ["dormant"]
