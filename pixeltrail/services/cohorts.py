"""
Cohort retention.

Visitors are bucketed by the calendar interval of their first event; for each
retention period `p` we count cohort members active in
`[anchor + p days, anchor + p days + one interval)`.
"""

from __future__ import annotations

import calendar
from collections import defaultdict
from dataclasses import asdict, dataclass
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from pixeltrail.core.time import ensure_utc
from pixeltrail.services.analytics_common import InvalidDefinitionError, enum_text, percent

DEFAULT_RETENTION_PERIODS = (1, 7, 14, 30, 60, 90)

ReturningLookup = Callable[[frozenset[str], datetime, datetime], Iterable[str]]


class IntervalType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


@dataclass
class RetentionPoint:
    period: int
    visitors_returned: int
    retention_rate: float


@dataclass
class CohortResult:
    cohort_period: str
    cohort_size: int
    retention: list[RetentionPoint]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def parse_interval_type(value: Any) -> IntervalType:
    if isinstance(value, IntervalType):
        return value
    try:
        return IntervalType(enum_text(value).strip().lower())
    except ValueError:
        raise InvalidDefinitionError(
            f"unsupported interval_type {value!r} (expected daily, weekly or monthly)"
        ) from None


def normalize_retention_periods(periods: Optional[Sequence[Any]]) -> list[int]:
    if not periods:
        return list(DEFAULT_RETENTION_PERIODS)
    normalized: list[int] = []
    for raw in periods:
        if isinstance(raw, bool):
            raise InvalidDefinitionError(f"retention period {raw!r} is not an integer")
        try:
            period = int(raw)
        except (TypeError, ValueError):
            raise InvalidDefinitionError(f"retention period {raw!r} is not an integer") from None
        if period < 0 or period != float(raw):
            raise InvalidDefinitionError(f"retention period {raw!r} must be a non-negative integer")
        normalized.append(period)
    return normalized


def add_months(day: date, months: int) -> date:
    """Shift by whole months, clamping to the last day of the target month."""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def cohort_key(first_seen: datetime, interval_type: IntervalType | str) -> str:
    interval = parse_interval_type(interval_type)
    day = ensure_utc(first_seen).date()
    if interval is IntervalType.DAILY:
        return day.isoformat()
    if interval is IntervalType.WEEKLY:
        # Weeks start on Sunday; date.weekday() is Monday=0.
        week_start = day - timedelta(days=(day.weekday() + 1) % 7)
        return week_start.isoformat()
    return f"{day.year:04d}-{day.month:02d}"


def cohort_anchor(key: str, interval_type: IntervalType | str) -> date:
    interval = parse_interval_type(interval_type)
    if interval is IntervalType.MONTHLY:
        year, month = key.split("-", 1)
        return date(int(year), int(month), 1)
    return date.fromisoformat(key)


def retention_window(anchor: date, period: int, interval_type: IntervalType | str) -> tuple[datetime, datetime]:
    interval = parse_interval_type(interval_type)
    start_day = anchor + timedelta(days=int(period))
    if interval is IntervalType.DAILY:
        end_day = start_day + timedelta(days=1)
    elif interval is IntervalType.WEEKLY:
        end_day = start_day + timedelta(days=7)
    else:
        end_day = add_months(start_day, 1)
    return (
        datetime.combine(start_day, time.min, tzinfo=timezone.utc),
        datetime.combine(end_day, time.min, tzinfo=timezone.utc),
    )


def first_seen_by_visitor(events: Iterable[Any]) -> dict[str, datetime]:
    first_seen: dict[str, datetime] = {}
    for event in events:
        stamp = ensure_utc(event.timestamp)
        if stamp is None:
            continue
        current = first_seen.get(event.visitor_id)
        if current is None or stamp < current:
            first_seen[event.visitor_id] = stamp
    return first_seen


def activity_lookup(events: Iterable[Any]) -> ReturningLookup:
    """In-memory `returning_visitors` lookup over an event list."""
    stamps_by_visitor: dict[str, list[datetime]] = defaultdict(list)
    for event in events:
        stamp = ensure_utc(event.timestamp)
        if stamp is not None:
            stamps_by_visitor[event.visitor_id].append(stamp)

    def _returning(visitor_ids: frozenset[str], start: datetime, end: datetime) -> set[str]:
        return {
            visitor_id
            for visitor_id in visitor_ids
            if any(start <= stamp < end for stamp in stamps_by_visitor.get(visitor_id, ()))
        }

    return _returning


def analyze_cohorts(
    visitors_first_seen: Mapping[str, datetime],
    interval_type: IntervalType | str,
    retention_periods: Optional[Sequence[Any]],
    returning_visitors: ReturningLookup,
) -> list[CohortResult]:
    interval = parse_interval_type(interval_type)
    periods = normalize_retention_periods(retention_periods)

    groups: dict[str, set[str]] = defaultdict(set)
    for visitor_id, first_seen in visitors_first_seen.items():
        if first_seen is None:
            continue
        groups[cohort_key(first_seen, interval)].add(str(visitor_id))

    results: list[CohortResult] = []
    for key, members in groups.items():
        anchor = cohort_anchor(key, interval)
        frozen_members = frozenset(members)
        points: list[RetentionPoint] = []
        for period in periods:
            start, end = retention_window(anchor, period, interval)
            returned = len(frozen_members.intersection(returning_visitors(frozen_members, start, end)))
            points.append(
                RetentionPoint(
                    period=period,
                    visitors_returned=returned,
                    retention_rate=percent(returned, len(frozen_members)),
                )
            )
        results.append(CohortResult(cohort_period=key, cohort_size=len(frozen_members), retention=points))

    results.sort(key=lambda result: result.cohort_period, reverse=True)
    return results


def analyze_cohort_events(
    events: Sequence[Any],
    interval_type: IntervalType | str,
    retention_periods: Optional[Sequence[Any]] = None,
) -> list[CohortResult]:
    """Cohort retention over an in-memory event list."""
    return analyze_cohorts(
        first_seen_by_visitor(events),
        interval_type,
        retention_periods,
        activity_lookup(events),
    )
