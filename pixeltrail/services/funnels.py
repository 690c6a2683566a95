"""
Funnel step analysis.

Each step resolves to the set of visitors that triggered it (with their
earliest matching timestamp). Step N converts visitors that also matched step
N-1; by default step order is not enforced, matching the legacy reports.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from pixeltrail.core.time import ensure_utc
from pixeltrail.services.analytics_common import InvalidDefinitionError, enum_text, percent, round_half_up

STEP_TYPES = ("event", "url")
MIN_FUNNEL_STEPS = 2

StepResolver = Callable[["FunnelStep"], Mapping[str, datetime]]


@dataclass(frozen=True)
class FunnelStep:
    type: str
    value: str
    name: str


@dataclass
class StepResult:
    step_index: int
    step_name: str
    step_type: str
    step_value: str
    total_visitors: int
    converted_from_previous: int
    dropoff_from_previous: int
    conversion_rate: float
    dropoff_rate: float
    avg_time_to_convert: int


@dataclass
class FunnelAnalysis:
    steps: list[StepResult]
    total_entries: int
    total_completions: int
    overall_conversion_rate: float
    avg_total_time_to_convert: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "steps": [asdict(step) for step in self.steps],
            "overall": {
                "total_entries": self.total_entries,
                "total_completions": self.total_completions,
                "overall_conversion_rate": self.overall_conversion_rate,
                "avg_total_time_to_convert": self.avg_total_time_to_convert,
            },
        }


def parse_funnel_steps(raw_steps: Any) -> list[FunnelStep]:
    if not isinstance(raw_steps, (list, tuple)) or len(raw_steps) < MIN_FUNNEL_STEPS:
        raise InvalidDefinitionError(f"a funnel needs at least {MIN_FUNNEL_STEPS} steps")

    steps: list[FunnelStep] = []
    for index, raw in enumerate(raw_steps):
        if not isinstance(raw, Mapping):
            raise InvalidDefinitionError(f"step {index} must be an object")
        step_type = enum_text(raw.get("type")).strip().lower()
        if step_type not in STEP_TYPES:
            raise InvalidDefinitionError(f"step {index} has unsupported type {raw.get('type')!r}")
        value = str(raw.get("value") or "").strip()
        if not value:
            raise InvalidDefinitionError(f"step {index} is missing a value")
        name = str(raw.get("name") or "").strip() or value
        steps.append(FunnelStep(type=step_type, value=value, name=name))
    return steps


def like_pattern(value: str) -> re.Pattern[str]:
    """Compile a SQL LIKE pattern (`%`, `_`) into an anchored regex."""
    parts = []
    for char in value:
        if char == "%":
            parts.append(".*")
        elif char == "_":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("^" + "".join(parts) + "$", re.DOTALL)


def step_matcher(step: FunnelStep) -> Callable[[Any], bool]:
    if step.type == "event":
        return lambda event: event.event_type == step.value
    pattern = like_pattern(step.value)
    return lambda event: event.event_type == "page_view" and bool(pattern.match(event.page_path or ""))


def first_occurrences(
    step: FunnelStep,
    events: Iterable[Any],
    *,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
) -> dict[str, datetime]:
    """Earliest timestamp per visitor for events that trigger `step` within the range."""
    matcher = step_matcher(step)
    lower = ensure_utc(date_from)
    upper = ensure_utc(date_to)
    earliest: dict[str, datetime] = {}
    for event in events:
        stamp = ensure_utc(event.timestamp)
        if stamp is None:
            continue
        if lower is not None and stamp < lower:
            continue
        if upper is not None and stamp > upper:
            continue
        if not matcher(event):
            continue
        current = earliest.get(event.visitor_id)
        if current is None or stamp < current:
            earliest[event.visitor_id] = stamp
    return earliest


def analyze_funnel(
    steps: Sequence[FunnelStep] | Sequence[Mapping[str, Any]],
    resolve_step: StepResolver,
    *,
    enforce_step_order: bool = False,
) -> FunnelAnalysis:
    funnel_steps = (
        list(steps)
        if steps and all(isinstance(step, FunnelStep) for step in steps)
        else parse_funnel_steps(steps)
    )
    if len(funnel_steps) < MIN_FUNNEL_STEPS:
        raise InvalidDefinitionError(f"a funnel needs at least {MIN_FUNNEL_STEPS} steps")

    results: list[StepResult] = []
    previous: Mapping[str, datetime] = {}

    for index, step in enumerate(funnel_steps):
        current = {
            str(visitor_id): ensure_utc(stamp)
            for visitor_id, stamp in resolve_step(step).items()
        }
        converted = 0
        dropoff = 0
        conversion_rate = 100.0
        dropoff_rate = 0.0
        avg_seconds = 0

        if index > 0:
            deltas: list[float] = []
            for visitor_id, previous_stamp in previous.items():
                current_stamp = current.get(visitor_id)
                if current_stamp is None:
                    continue
                if enforce_step_order and current_stamp < previous_stamp:
                    continue
                converted += 1
                deltas.append((current_stamp - previous_stamp).total_seconds())

            previous_count = len(previous)
            dropoff = previous_count - converted
            conversion_rate = percent(converted, previous_count)
            dropoff_rate = percent(dropoff, previous_count)
            if deltas:
                avg_seconds = int(round_half_up(sum(deltas) / len(deltas)))

        results.append(
            StepResult(
                step_index=index,
                step_name=step.name,
                step_type=step.type,
                step_value=step.value,
                total_visitors=len(current),
                converted_from_previous=converted,
                dropoff_from_previous=dropoff,
                conversion_rate=conversion_rate,
                dropoff_rate=dropoff_rate,
                avg_time_to_convert=avg_seconds,
            )
        )
        previous = current

    first_total = results[0].total_visitors
    last_total = results[-1].total_visitors
    return FunnelAnalysis(
        steps=results,
        total_entries=first_total,
        total_completions=last_total,
        overall_conversion_rate=percent(last_total, first_total),
        avg_total_time_to_convert=sum(step.avg_time_to_convert for step in results[1:]),
    )


def analyze_funnel_events(
    steps: Sequence[FunnelStep] | Sequence[Mapping[str, Any]],
    events: Sequence[Any],
    *,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    enforce_step_order: bool = False,
) -> FunnelAnalysis:
    """Analyze a funnel over an in-memory event list."""
    return analyze_funnel(
        steps,
        lambda step: first_occurrences(step, events, date_from=date_from, date_to=date_to),
        enforce_step_order=enforce_step_order,
    )
