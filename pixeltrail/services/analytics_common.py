"""
Helpers shared by the rule, funnel, cohort, journey and goal calculators.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Any


class InvalidDefinitionError(ValueError):
    """Raised for funnel, segment, cohort or goal definitions that cannot be analyzed."""


def safe_ratio(numerator: int | float, denominator: int | float) -> float:
    den = float(denominator or 0)
    if den <= 0:
        return 0.0
    return float(numerator or 0) / den


def round_half_up(value: float, digits: int = 0) -> float:
    """Round halves upward (2.5 -> 3), where round() rounds them to even."""
    scale = 10 ** digits
    return math.floor(float(value) * scale + 0.5) / scale


def percent(numerator: int | float, denominator: int | float) -> float:
    """Percentage rounded to 2 decimals; 0 when the denominator is 0."""
    return round_half_up(safe_ratio(numerator, denominator) * 100, 2)


def enum_text(value: Any) -> str:
    # str() of a (str, Enum) member is "Cls.MEMBER" on Python 3.11+.
    if isinstance(value, Enum):
        return str(value.value)
    if value is None:
        return ""
    return str(value)
