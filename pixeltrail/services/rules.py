"""
Segment rule evaluation.

A segment is a conjunctive list of `{type, operator, value}` rules over one
visitor's profile and event history. Raw rule dicts are parsed into a closed
set of rule variants first, then evaluated without side effects.

Two compatibility knobs mirror legacy behavior:
- lenient parsing (default) ignores unknown rule types and inapplicable
  operators; strict parsing raises `InvalidDefinitionError`.
- `last_seen_days` passes for visitors with no events unless
  `last_seen_requires_events` is set.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

from pixeltrail.core.config import settings
from pixeltrail.core.time import ensure_utc, now_utc
from pixeltrail.services.analytics_common import InvalidDefinitionError, enum_text

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = timedelta(days=1).total_seconds()


class RuleType(str, Enum):
    PAGE_VIEWS = "page_views"
    TOTAL_EVENTS = "total_events"
    VISITED_PAGE = "visited_page"
    COUNTRY = "country"
    CITY = "city"
    DEVICE = "device"
    UTM_SOURCE = "utm_source"
    EVENT_TYPE = "event_type"
    IS_IDENTIFIED = "is_identified"
    HAS_EMAIL = "has_email"
    HAS_PHONE = "has_phone"
    LAST_SEEN_DAYS = "last_seen_days"


class RuleOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_OR_EQUAL = "greater_or_equal"
    LESS_OR_EQUAL = "less_or_equal"


NUMERIC_OPERATORS = {
    RuleOperator.GREATER_THAN,
    RuleOperator.LESS_THAN,
    RuleOperator.EQUALS,
    RuleOperator.GREATER_OR_EQUAL,
    RuleOperator.LESS_OR_EQUAL,
}
SUBSTRING_OPERATORS = {RuleOperator.CONTAINS, RuleOperator.NOT_CONTAINS}
EQUALITY_OPERATORS = {RuleOperator.EQUALS, RuleOperator.NOT_EQUALS}

# Rule type -> EventRecord attribute compared for equality.
EVENT_FIELD_BY_RULE_TYPE = {
    RuleType.COUNTRY: "country",
    RuleType.CITY: "city",
    RuleType.DEVICE: "device_type",
    RuleType.UTM_SOURCE: "utm_source",
    RuleType.EVENT_TYPE: "event_type",
}
COUNT_RULE_TYPES = {RuleType.PAGE_VIEWS, RuleType.TOTAL_EVENTS}
FLAG_RULE_TYPES = {RuleType.IS_IDENTIFIED, RuleType.HAS_EMAIL, RuleType.HAS_PHONE}


@dataclass(frozen=True)
class RuleEvaluationOptions:
    strict: bool = False
    last_seen_requires_events: bool = False


def options_from_settings() -> RuleEvaluationOptions:
    return RuleEvaluationOptions(
        strict=bool(getattr(settings, "SEGMENT_RULES_STRICT", False)),
        last_seen_requires_events=bool(getattr(settings, "SEGMENT_LAST_SEEN_REQUIRES_EVENTS", False)),
    )


# ── Rule variants ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CountRule:
    """page_views / total_events threshold."""
    kind: RuleType
    operator: str
    threshold: float


@dataclass(frozen=True)
class PageRule:
    """visited_page substring test; operator None means no-op."""
    operator: Optional[RuleOperator]
    fragment: str


@dataclass(frozen=True)
class FieldRule:
    """Equality against an event attribute; operator None means no-op."""
    kind: RuleType
    operator: Optional[RuleOperator]
    expected: Any


@dataclass(frozen=True)
class FlagRule:
    """Boolean visitor attribute; expected None means no-op."""
    kind: RuleType
    expected: Optional[bool]


@dataclass(frozen=True)
class RecencyRule:
    """Days since the visitor's latest event."""
    operator: str
    days: float


@dataclass(frozen=True)
class IgnoredRule:
    """Unrecognized rule type kept for compatibility; always passes."""
    raw_type: str


Rule = Union[CountRule, PageRule, FieldRule, FlagRule, RecencyRule, IgnoredRule]


# ── Parsing ───────────────────────────────────────────────────────────────────


def compare_number(actual: float, operator: str, expected: float) -> bool:
    """Numeric comparison for count/recency rules. Unknown operators fail closed."""
    if operator == RuleOperator.GREATER_THAN.value:
        return actual > expected
    if operator == RuleOperator.LESS_THAN.value:
        return actual < expected
    if operator == RuleOperator.EQUALS.value:
        return actual == expected
    if operator == RuleOperator.GREATER_OR_EQUAL.value:
        return actual >= expected
    if operator == RuleOperator.LESS_OR_EQUAL.value:
        return actual <= expected
    return False


def _to_number(value: Any, *, strict: bool, rule_type: str) -> float:
    if isinstance(value, bool):
        return float(value)
    if value is None or (isinstance(value, str) and not value.strip()):
        # A missing or blank threshold reads as 0 in lenient mode.
        if strict:
            raise InvalidDefinitionError(f"rule '{rule_type}' requires a numeric value, got {value!r}")
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        number = math.nan
    if math.isnan(number) and strict:
        raise InvalidDefinitionError(f"rule '{rule_type}' requires a numeric value, got {value!r}")
    return number


def _to_flag(value: Any, *, strict: bool, rule_type: str) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    text_value = str(value).strip().lower() if value is not None else ""
    if text_value == "true":
        return True
    if text_value == "false":
        return False
    if strict:
        raise InvalidDefinitionError(f"rule '{rule_type}' requires 'true' or 'false', got {value!r}")
    return None


def _resolve_operator(raw: Any, allowed: set[RuleOperator], *, strict: bool, rule_type: str) -> Optional[RuleOperator]:
    try:
        operator = RuleOperator(enum_text(raw))
    except ValueError:
        operator = None
    if operator is not None and operator in allowed:
        return operator
    if strict:
        allowed_names = ", ".join(sorted(op.value for op in allowed))
        raise InvalidDefinitionError(
            f"operator {raw!r} is not valid for rule '{rule_type}' (expected one of: {allowed_names})"
        )
    return None


def _numeric_operator(raw: Any, *, strict: bool, rule_type: str) -> str:
    # Unknown numeric operators are kept verbatim so compare_number fails closed.
    if strict:
        _resolve_operator(raw, NUMERIC_OPERATORS, strict=True, rule_type=rule_type)
    return enum_text(raw)


def parse_rule(raw: Mapping[str, Any], *, strict: bool = False) -> Rule:
    if not isinstance(raw, Mapping):
        raise InvalidDefinitionError("each rule must be an object with type, operator and value")

    raw_type = enum_text(raw.get("type"))
    raw_operator = raw.get("operator")
    value = raw.get("value")

    try:
        rule_type = RuleType(raw_type)
    except ValueError:
        if strict:
            raise InvalidDefinitionError(f"unsupported rule type {raw_type!r}") from None
        logger.warning("Ignoring unsupported segment rule type %r", raw_type)
        return IgnoredRule(raw_type=raw_type)

    if rule_type in COUNT_RULE_TYPES:
        return CountRule(
            kind=rule_type,
            operator=_numeric_operator(raw_operator, strict=strict, rule_type=raw_type),
            threshold=_to_number(value, strict=strict, rule_type=raw_type),
        )
    if rule_type is RuleType.LAST_SEEN_DAYS:
        return RecencyRule(
            operator=_numeric_operator(raw_operator, strict=strict, rule_type=raw_type),
            days=_to_number(value, strict=strict, rule_type=raw_type),
        )
    if rule_type is RuleType.VISITED_PAGE:
        return PageRule(
            operator=_resolve_operator(raw_operator, SUBSTRING_OPERATORS, strict=strict, rule_type=raw_type),
            fragment="" if value is None else str(value),
        )
    if rule_type in EVENT_FIELD_BY_RULE_TYPE:
        return FieldRule(
            kind=rule_type,
            operator=_resolve_operator(raw_operator, EQUALITY_OPERATORS, strict=strict, rule_type=raw_type),
            expected=value,
        )
    # Flag rules ignore the operator; strict mode still insists on `equals`.
    if strict:
        _resolve_operator(raw_operator, {RuleOperator.EQUALS}, strict=True, rule_type=raw_type)
    return FlagRule(kind=rule_type, expected=_to_flag(value, strict=strict, rule_type=raw_type))


def parse_rules(raw_rules: Optional[Sequence[Mapping[str, Any]]], *, strict: bool = False) -> list[Rule]:
    if raw_rules is None:
        return []
    if not isinstance(raw_rules, (list, tuple)):
        raise InvalidDefinitionError("rules must be a list")
    return [parse_rule(raw, strict=strict) for raw in raw_rules]


def validate_rules(raw_rules: Optional[Sequence[Mapping[str, Any]]]) -> list[Rule]:
    """Strictly parse a rule list, raising InvalidDefinitionError on the first bad rule."""
    return parse_rules(raw_rules, strict=True)


# ── Evaluation ────────────────────────────────────────────────────────────────


def _latest_timestamp(events: Sequence[Any]) -> Optional[datetime]:
    stamps = [ensure_utc(event.timestamp) for event in events if event.timestamp is not None]
    return max(stamps) if stamps else None


def _visitor_flag(visitor: Any, kind: RuleType) -> bool:
    if kind is RuleType.IS_IDENTIFIED:
        return bool(getattr(visitor, "is_identified", False))
    if kind is RuleType.HAS_EMAIL:
        return bool(getattr(visitor, "email", None))
    return bool(getattr(visitor, "phone", None))


def evaluate_rule(
    rule: Rule,
    events: Sequence[Any],
    visitor: Any,
    *,
    now: datetime,
    options: RuleEvaluationOptions,
) -> bool:
    if isinstance(rule, CountRule):
        if rule.kind is RuleType.PAGE_VIEWS:
            actual = sum(1 for event in events if event.event_type == "page_view")
        else:
            actual = len(events)
        return compare_number(actual, rule.operator, rule.threshold)

    if isinstance(rule, PageRule):
        if rule.operator is None:
            return True
        visited = any(
            event.event_type == "page_view" and rule.fragment in (event.page_path or "")
            for event in events
        )
        return visited if rule.operator is RuleOperator.CONTAINS else not visited

    if isinstance(rule, FieldRule):
        if rule.operator is None:
            return True
        attribute = EVENT_FIELD_BY_RULE_TYPE[rule.kind]
        found = any(getattr(event, attribute, None) == rule.expected for event in events)
        return found if rule.operator is RuleOperator.EQUALS else not found

    if isinstance(rule, FlagRule):
        if rule.expected is None:
            return True
        return _visitor_flag(visitor, rule.kind) is rule.expected

    if isinstance(rule, RecencyRule):
        latest = _latest_timestamp(events)
        if latest is None:
            return not options.last_seen_requires_events
        days_since = (ensure_utc(now) - latest).total_seconds() / SECONDS_PER_DAY
        return compare_number(days_since, rule.operator, rule.days)

    if isinstance(rule, IgnoredRule):
        return True

    raise TypeError(f"unhandled rule variant: {type(rule).__name__}")


class RuleEvaluator:
    """Compiled segment rules, reusable across many visitors."""

    def __init__(
        self,
        rules: Optional[Sequence[Mapping[str, Any]]],
        options: Optional[RuleEvaluationOptions] = None,
        now: Optional[datetime] = None,
    ):
        self.options = options or options_from_settings()
        self.now = ensure_utc(now) if now is not None else now_utc()
        self.rules = parse_rules(rules, strict=self.options.strict)

    def matches(self, events: Sequence[Any], visitor: Any) -> bool:
        for rule in self.rules:
            if not evaluate_rule(rule, events, visitor, now=self.now, options=self.options):
                return False
        return True

    def filter_visitors(
        self,
        visitors: Iterable[Any],
        events_by_visitor: Mapping[str, Sequence[Any]],
    ) -> list[Any]:
        return [
            visitor
            for visitor in visitors
            if self.matches(events_by_visitor.get(str(visitor.id), ()), visitor)
        ]


def matches_rules(
    events: Sequence[Any],
    rules: Optional[Sequence[Mapping[str, Any]]],
    visitor: Any,
    *,
    now: Optional[datetime] = None,
    options: Optional[RuleEvaluationOptions] = None,
) -> bool:
    """True iff the visitor passes every rule. An empty rule list matches everyone."""
    if not rules:
        return True
    return RuleEvaluator(rules, options=options, now=now).matches(events, visitor)
