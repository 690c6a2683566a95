"""Database models."""
from pixeltrail.models.models import (
    Visitor,
    Event,
    Segment,
    Funnel,
    Cohort,
    Goal,
)

__all__ = [
    "Visitor",
    "Event",
    "Segment",
    "Funnel",
    "Cohort",
    "Goal",
]
