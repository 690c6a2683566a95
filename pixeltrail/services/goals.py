"""
Conversion goals.

A goal completes on every `event` whose type equals the target, or on every
`page_view` whose path equals the target exactly. Completions are counted
all-time and over three trailing windows.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, time, timedelta
from typing import Any, Callable, Iterable

from pixeltrail.core.time import ensure_utc
from pixeltrail.services.analytics_common import InvalidDefinitionError, enum_text

GOAL_TYPES = ("event", "url")
WEEK_WINDOW = timedelta(days=7)
MONTH_WINDOW = timedelta(days=30)


@dataclass
class GoalStats:
    completions: int = 0
    completions_today: int = 0
    completions_this_week: int = 0
    completions_this_month: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


def parse_goal_type(value: Any) -> str:
    goal_type = enum_text(value).strip().lower()
    if goal_type not in GOAL_TYPES:
        raise InvalidDefinitionError(f"unsupported goal type {value!r} (expected event or url)")
    return goal_type


def goal_event_types(goal_type: str, target_value: str) -> frozenset[str]:
    """Event types that can complete the goal; used to narrow the event scan."""
    if parse_goal_type(goal_type) == "url":
        return frozenset({"page_view"})
    return frozenset({target_value})


def goal_matcher(goal_type: str, target_value: str) -> Callable[[Any], bool]:
    if parse_goal_type(goal_type) == "event":
        return lambda event: event.event_type == target_value
    return lambda event: event.event_type == "page_view" and event.page_path == target_value


def goal_completion_stats(
    goal_type: str,
    target_value: str,
    events: Iterable[Any],
    *,
    now: datetime,
) -> GoalStats:
    """Count completions overall, since UTC midnight, and over the last 7 and 30 days."""
    current = ensure_utc(now)
    start_of_day = datetime.combine(current.date(), time.min, tzinfo=current.tzinfo)
    week_start = current - WEEK_WINDOW
    month_start = current - MONTH_WINDOW
    matcher = goal_matcher(goal_type, target_value)

    stats = GoalStats()
    for event in events:
        if not matcher(event):
            continue
        stats.completions += 1
        stamp = ensure_utc(event.timestamp)
        if stamp is None:
            continue
        if stamp >= start_of_day:
            stats.completions_today += 1
        if stamp >= week_start:
            stats.completions_this_week += 1
        if stamp >= month_start:
            stats.completions_this_month += 1
    return stats
