from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from pixeltrail.services.analytics_common import InvalidDefinitionError
from pixeltrail.services.cohorts import (
    DEFAULT_RETENTION_PERIODS,
    IntervalType,
    activity_lookup,
    add_months,
    analyze_cohort_events,
    analyze_cohorts,
    cohort_key,
    normalize_retention_periods,
    parse_interval_type,
    retention_window,
)
from pixeltrail.services.records import EventRecord


def _utc(year: int, month: int, day: int, hour: int = 12) -> datetime:
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


def _event(visitor_id: str, stamp: datetime) -> EventRecord:
    return EventRecord(visitor_id=visitor_id, event_type="page_view", timestamp=stamp)


def test_ten_visitor_cohort_with_three_returning_on_day_seven():
    first_seen = _utc(2026, 3, 2)
    events = [_event(f"v{i}", first_seen) for i in range(10)]
    events += [_event(f"v{i}", first_seen + timedelta(days=7)) for i in range(3)]

    results = analyze_cohort_events(events, "daily", [7])

    assert len(results) == 1
    assert results[0].cohort_period == "2026-03-02"
    assert results[0].cohort_size == 10
    assert results[0].retention[0].visitors_returned == 3
    assert results[0].retention[0].retention_rate == 30.0


def test_retention_rate_rounds_to_two_decimals():
    first_seen = _utc(2026, 3, 2)
    events = [_event(f"v{i}", first_seen) for i in range(3)]
    events.append(_event("v0", first_seen + timedelta(days=1)))

    point = analyze_cohort_events(events, "daily", [1])[0].retention[0]
    assert point.retention_rate == 33.33


def test_retention_rates_stay_within_bounds():
    start = _utc(2026, 1, 5)
    events = []
    for index in range(12):
        visitor_id = f"v{index}"
        first = start + timedelta(days=index * 3)
        events.append(_event(visitor_id, first))
        for offset in (1, 2, 8, 15, 31):
            if (index + offset) % 2 == 0:
                events.append(_event(visitor_id, first + timedelta(days=offset)))

    for interval in ("daily", "weekly", "monthly"):
        for result in analyze_cohort_events(events, interval, [0, 1, 7, 14, 30]):
            assert result.cohort_size > 0
            for point in result.retention:
                assert 0 <= point.retention_rate <= 100
                assert point.visitors_returned <= result.cohort_size


def test_empty_cohort_lookup_yields_zero_and_no_rows():
    assert analyze_cohorts({}, "weekly", [1, 7], lambda ids, start, end: set()) == []
    assert analyze_cohort_events([], "monthly") == []


def test_lookup_results_outside_cohort_are_ignored():
    first_seen = {"a": _utc(2026, 3, 2), "b": _utc(2026, 3, 2)}

    def _lookup(visitor_ids, start, end):
        return {"a", "stranger", "other"}

    point = analyze_cohorts(first_seen, "daily", [1], _lookup)[0].retention[0]
    assert point.visitors_returned == 1
    assert point.retention_rate == 50.0


@pytest.mark.parametrize(
    ("first_seen", "expected"),
    [
        (_utc(2026, 3, 1), "2026-03-01"),
        (_utc(2026, 3, 4), "2026-03-01"),
        (_utc(2026, 3, 7, 23), "2026-03-01"),
        (_utc(2026, 3, 8, 0), "2026-03-08"),
    ],
)
def test_weekly_cohorts_start_on_sunday(first_seen, expected):
    assert cohort_key(first_seen, "weekly") == expected


def test_daily_and_monthly_keys():
    stamp = _utc(2026, 1, 31, 22)
    assert cohort_key(stamp, "daily") == "2026-01-31"
    assert cohort_key(stamp, "monthly") == "2026-01"


def test_cohort_key_uses_utc_calendar_day():
    stamp = datetime(2026, 3, 2, 1, 30, tzinfo=timezone(timedelta(hours=5)))
    assert cohort_key(stamp, "daily") == "2026-03-01"


def test_retention_windows_match_interval_length():
    anchor = date(2026, 1, 1)
    assert retention_window(anchor, 7, "daily") == (_utc(2026, 1, 8, 0), _utc(2026, 1, 9, 0))
    assert retention_window(anchor, 7, "weekly") == (_utc(2026, 1, 8, 0), _utc(2026, 1, 15, 0))
    assert retention_window(anchor, 30, "monthly") == (_utc(2026, 1, 31, 0), _utc(2026, 2, 28, 0))


def test_add_months_clamps_to_month_end():
    assert add_months(date(2026, 1, 31), 1) == date(2026, 2, 28)
    assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert add_months(date(2026, 12, 15), 1) == date(2027, 1, 15)


def test_window_end_is_exclusive():
    lookup = activity_lookup([_event("a", _utc(2026, 1, 9, 0)), _event("b", _utc(2026, 1, 8, 0))])
    start, end = retention_window(date(2026, 1, 1), 7, "daily")
    assert lookup(frozenset({"a", "b"}), start, end) == {"b"}


def test_cohorts_sorted_most_recent_first():
    events = [
        _event("a", _utc(2026, 1, 10)),
        _event("b", _utc(2026, 3, 10)),
        _event("c", _utc(2026, 2, 10)),
    ]
    keys = [result.cohort_period for result in analyze_cohort_events(events, "monthly")]
    assert keys == ["2026-03", "2026-02", "2026-01"]


def test_visitor_cohort_comes_from_earliest_event():
    events = [_event("a", _utc(2026, 3, 20)), _event("a", _utc(2026, 2, 27))]
    results = analyze_cohort_events(events, "monthly", [21])
    assert [result.cohort_period for result in results] == ["2026-02"]
    assert results[0].retention[0].visitors_returned == 1


def test_retention_periods_default_and_validation():
    assert normalize_retention_periods(None) == list(DEFAULT_RETENTION_PERIODS)
    assert normalize_retention_periods([]) == [1, 7, 14, 30, 60, 90]
    assert normalize_retention_periods(["3", 10]) == [3, 10]
    with pytest.raises(InvalidDefinitionError):
        normalize_retention_periods([-1])
    with pytest.raises(InvalidDefinitionError):
        normalize_retention_periods([1.5])
    with pytest.raises(InvalidDefinitionError):
        normalize_retention_periods(["soon"])


def test_unsupported_interval_rejected():
    with pytest.raises(InvalidDefinitionError, match="interval_type"):
        analyze_cohort_events([_event("a", _utc(2026, 1, 1))], "yearly")


def test_to_dict_shape():
    events = [_event("a", _utc(2026, 3, 2)), _event("a", _utc(2026, 3, 3))]
    payload = analyze_cohort_events(events, "daily", [1])[0].to_dict()
    assert payload == {
        "cohort_period": "2026-03-02",
        "cohort_size": 1,
        "retention": [{"period": 1, "visitors_returned": 1, "retention_rate": 100.0}],
    }


def test_interval_type_accepts_enum_members():
    assert parse_interval_type(IntervalType.WEEKLY) is IntervalType.WEEKLY
    assert parse_interval_type(" Monthly ") is IntervalType.MONTHLY
    assert cohort_key(_utc(2026, 3, 18), IntervalType.MONTHLY) == "2026-03"
    assert cohort_key(_utc(2026, 3, 18), IntervalType.WEEKLY) == "2026-03-15"

    events = [_event("a", _utc(2026, 3, 2)), _event("a", _utc(2026, 3, 3))]
    results = analyze_cohort_events(events, IntervalType.DAILY, [1])
    assert results[0].retention[0].retention_rate == 100.0


def test_retention_rate_rounds_half_up():
    first_seen = _utc(2026, 3, 2)
    events = [_event(f"v{i}", first_seen) for i in range(32)]
    events.append(_event("v0", first_seen + timedelta(days=1)))

    point = analyze_cohort_events(events, "daily", [1])[0].retention[0]
    # 1/32 is 3.125%
    assert point.retention_rate == 3.13
