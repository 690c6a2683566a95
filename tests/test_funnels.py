from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum

import pytest

from pixeltrail.services.analytics_common import InvalidDefinitionError
from pixeltrail.services.funnels import (
    FunnelStep,
    analyze_funnel,
    analyze_funnel_events,
    first_occurrences,
    like_pattern,
    parse_funnel_steps,
)
from pixeltrail.services.records import EventRecord

T0 = datetime(2026, 2, 1, 9, 0, tzinfo=timezone.utc)


def _at(minutes: int) -> datetime:
    return T0 + timedelta(minutes=minutes)


def _event(visitor_id: str, event_type: str, minutes: int, page_path: str | None = None) -> EventRecord:
    return EventRecord(visitor_id=visitor_id, event_type=event_type, timestamp=_at(minutes), page_path=page_path)


def _resolver(matches: dict[str, dict[str, datetime]]):
    return lambda step: matches.get(step.value, {})


STEPS = [
    {"type": "event", "value": "signup_view", "name": "Viewed signup"},
    {"type": "event", "value": "signup_submit", "name": "Submitted"},
]


def test_intersection_scenario_counts_conversions_from_previous_step():
    matched = {
        "signup_view": {"1": _at(0), "2": _at(0), "3": _at(0)},
        "signup_submit": {"2": _at(10), "3": _at(20), "4": _at(5)},
    }

    analysis = analyze_funnel(STEPS, _resolver(matched))
    step_b = analysis.steps[1]

    assert step_b.total_visitors == 3
    assert step_b.converted_from_previous == 2
    assert step_b.dropoff_from_previous == 1
    assert step_b.conversion_rate == pytest.approx(66.67)
    assert step_b.dropoff_rate == pytest.approx(33.33)
    assert step_b.avg_time_to_convert == 900
    assert analysis.overall_conversion_rate == 100.0


def test_first_step_is_full_conversion_without_dropoff():
    matched = {"signup_view": {"1": _at(0)}, "signup_submit": {}}
    first = analyze_funnel(STEPS, _resolver(matched)).steps[0]

    assert first.conversion_rate == 100.0
    assert first.dropoff_from_previous == 0
    assert first.dropoff_rate == 0.0
    assert first.converted_from_previous == 0
    assert first.avg_time_to_convert == 0


def test_converted_never_exceeds_previous_step_visitors():
    steps = STEPS + [{"type": "event", "value": "purchase", "name": "Purchased"}]
    matched = {
        "signup_view": {"1": _at(0), "2": _at(0)},
        "signup_submit": {"2": _at(1), "3": _at(1), "4": _at(1), "5": _at(1)},
        "purchase": {"1": _at(2), "3": _at(2), "4": _at(2)},
    }

    analysis = analyze_funnel(steps, _resolver(matched))
    for previous, current in zip(analysis.steps, analysis.steps[1:]):
        assert current.converted_from_previous <= previous.total_visitors
        assert current.dropoff_from_previous == previous.total_visitors - current.converted_from_previous

    # Step 3 intersects with every visitor who matched step 2, converted or not.
    assert analysis.steps[2].converted_from_previous == 2
    assert analysis.total_entries == 2
    assert analysis.total_completions == 3


def test_empty_first_step_yields_zero_rates():
    analysis = analyze_funnel(STEPS, _resolver({}))

    assert analysis.steps[1].conversion_rate == 0.0
    assert analysis.steps[1].dropoff_rate == 0.0
    assert analysis.overall_conversion_rate == 0.0
    assert analysis.avg_total_time_to_convert == 0


def test_step_order_not_enforced_by_default_but_enforced_on_request():
    matched = {
        "signup_view": {"1": _at(30), "2": _at(0)},
        "signup_submit": {"1": _at(10), "2": _at(5)},
    }

    lenient = analyze_funnel(STEPS, _resolver(matched))
    strict = analyze_funnel(STEPS, _resolver(matched), enforce_step_order=True)

    assert lenient.steps[1].converted_from_previous == 2
    assert strict.steps[1].converted_from_previous == 1
    assert strict.steps[1].avg_time_to_convert == 300


@pytest.mark.parametrize(
    "raw_steps",
    [
        [],
        [{"type": "event", "value": "signup_view"}],
        None,
        "signup_view,signup_submit",
    ],
)
def test_funnels_need_at_least_two_steps(raw_steps):
    with pytest.raises(InvalidDefinitionError, match="at least 2 steps"):
        analyze_funnel(raw_steps, _resolver({}))


def test_parse_funnel_steps_validates_type_and_value():
    with pytest.raises(InvalidDefinitionError, match="unsupported type"):
        parse_funnel_steps([{"type": "click", "value": "x"}, {"type": "event", "value": "y"}])
    with pytest.raises(InvalidDefinitionError, match="missing a value"):
        parse_funnel_steps([{"type": "event", "value": " "}, {"type": "event", "value": "y"}])


def test_parse_funnel_steps_defaults_name_to_value():
    steps = parse_funnel_steps([{"type": "URL", "value": "/pricing"}, {"type": "event", "value": "purchase"}])
    assert steps == [
        FunnelStep(type="url", value="/pricing", name="/pricing"),
        FunnelStep(type="event", value="purchase", name="purchase"),
    ]


def test_like_pattern_supports_sql_wildcards():
    assert like_pattern("/product/%").match("/product/shoes")
    assert like_pattern("/product/_").match("/product/1")
    assert not like_pattern("/product/_").match("/product/12")
    assert not like_pattern("/pricing").match("/pricing/annual")
    assert like_pattern("/a.b").match("/a.b")
    assert not like_pattern("/a.b").match("/axb")


def test_url_steps_only_match_page_views_and_keep_earliest_time():
    step = FunnelStep(type="url", value="/checkout%", name="Checkout")
    events = [
        _event("1", "page_view", 20, "/checkout/pay"),
        _event("1", "page_view", 5, "/checkout"),
        _event("2", "click", 1, "/checkout"),
        _event("3", "page_view", 2, "/cart"),
    ]

    assert first_occurrences(step, events) == {"1": _at(5)}


def test_date_range_is_inclusive_and_filters_events():
    step = FunnelStep(type="event", value="purchase", name="Purchase")
    events = [
        _event("1", "purchase", 0),
        _event("2", "purchase", 10),
        _event("3", "purchase", 20),
        _event("4", "purchase", 30),
    ]

    assert first_occurrences(step, events, date_from=_at(10), date_to=_at(20)) == {
        "2": _at(10),
        "3": _at(20),
    }


def test_analyze_funnel_events_end_to_end_output_shape():
    steps = [
        {"type": "url", "value": "/pricing", "name": "Pricing"},
        {"type": "event", "value": "purchase", "name": "Purchase"},
    ]
    events = [
        _event("1", "page_view", 0, "/pricing"),
        _event("1", "purchase", 2),
        _event("2", "page_view", 1, "/pricing"),
        _event("3", "purchase", 3),
    ]

    payload = analyze_funnel_events(steps, events).to_dict()

    assert [step["total_visitors"] for step in payload["steps"]] == [2, 2]
    assert payload["steps"][1]["converted_from_previous"] == 1
    assert payload["steps"][1]["avg_time_to_convert"] == 120
    assert payload["overall"] == {
        "total_entries": 2,
        "total_completions": 2,
        "overall_conversion_rate": 100.0,
        "avg_total_time_to_convert": 120,
    }


def test_average_time_to_convert_rounds_half_up():
    matched = {
        "signup_view": {"1": T0, "2": T0},
        "signup_submit": {"1": T0 + timedelta(seconds=2), "2": T0 + timedelta(seconds=3)},
    }

    analysis = analyze_funnel(STEPS, _resolver(matched))

    assert analysis.steps[1].avg_time_to_convert == 3
    assert analysis.avg_total_time_to_convert == 3


def test_step_types_accept_enum_members():
    class StepKind(str, Enum):
        EVENT = "event"
        URL = "url"

    steps = parse_funnel_steps(
        [
            {"type": StepKind.URL, "value": "/pricing"},
            {"type": StepKind.EVENT, "value": "signup_submit"},
        ]
    )
    assert [step.type for step in steps] == ["url", "event"]


def test_conversion_rates_round_half_up():
    matched = {
        "signup_view": {str(index): _at(0) for index in range(32)},
        "signup_submit": {"0": _at(1)},
    }

    step_b = analyze_funnel(STEPS, _resolver(matched)).steps[1]

    assert step_b.conversion_rate == 3.13
    assert step_b.dropoff_rate == 96.88
