"""
CSV renderers for segment members, funnel analyses and cohort retention.
"""

from __future__ import annotations

import csv
import hashlib
import io
import re
from datetime import date
from typing import Iterable, Optional, Sequence

from pixeltrail.services.cohorts import CohortResult
from pixeltrail.services.funnels import FunnelAnalysis
from pixeltrail.services.records import VisitorRecord

SEGMENT_EXPORT_FORMATS = ("csv", "json", "google_ads", "meta_ads")

_SHA256_HEX = re.compile(r"^[a-f0-9]{64}$", re.IGNORECASE)
_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-z0-9]", re.IGNORECASE)


def safe_filename_part(value: str) -> str:
    return _UNSAFE_FILENAME_CHARS.sub("_", str(value or ""))


def hash_for_ads(value: Optional[str]) -> str:
    """SHA-256 of the lowercased, trimmed value; values that already look hashed pass through."""
    if not value:
        return ""
    if _SHA256_HEX.match(value):
        return value
    return hashlib.sha256(value.strip().lower().encode("utf-8")).hexdigest()


def _render(header: Sequence[str], rows: Iterable[Sequence[object]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(header)
    writer.writerows(rows)
    return buffer.getvalue()


def _split_name(name: Optional[str]) -> tuple[str, str]:
    parts = (name or "").split(" ")
    return parts[0], " ".join(parts[1:])


def segment_members_csv(members: Sequence[VisitorRecord], export_format: str = "csv") -> str:
    if export_format == "google_ads":
        header = ["Email", "Phone", "First Name", "Last Name", "Country", "Zip"]
        rows = []
        for member in members:
            first, last = _split_name(member.name)
            rows.append(
                [hash_for_ads(member.email), hash_for_ads(member.phone), hash_for_ads(first), hash_for_ads(last), "", ""]
            )
        return _render(header, rows)

    if export_format == "meta_ads":
        header = ["email", "phone", "fn", "ln", "ct", "st", "zip", "country"]
        rows = []
        for member in members:
            first, last = _split_name(member.name)
            rows.append(
                [hash_for_ads(member.email), hash_for_ads(member.phone), hash_for_ads(first), hash_for_ads(last), "", "", "", ""]
            )
        return _render(header, rows)

    header = ["email", "name", "phone", "first_seen", "last_seen", "visits", "visitor_id"]
    rows = [
        [
            member.email or "",
            member.name or "",
            member.phone or "",
            member.first_seen_at.isoformat() if member.first_seen_at else "",
            member.last_seen_at.isoformat() if member.last_seen_at else "",
            member.visit_count,
            member.id,
        ]
        for member in members
    ]
    return _render(header, rows)


def segment_export_filename(segment_name: str, export_format: str, *, today: date) -> str:
    prefix = {"google_ads": "google-ads", "meta_ads": "meta-ads"}.get(export_format, "segment")
    return f"{prefix}-{safe_filename_part(segment_name)}-{today.isoformat()}.csv"


def funnel_analysis_csv(analysis: FunnelAnalysis) -> str:
    header = ["Step", "Name", "Type", "Visitors", "Conversion Rate (%)", "Drop-off Rate (%)"]
    rows = [
        [
            step.step_index + 1,
            step.step_name,
            step.step_type,
            step.total_visitors,
            f"{step.conversion_rate:.2f}",
            f"{step.dropoff_rate:.2f}",
        ]
        for step in analysis.steps
    ]
    return _render(header, rows)


def funnel_export_filename(funnel_name: str, date_from: Optional[str], date_to: Optional[str]) -> str:
    if date_from and date_to:
        suffix = f"_{date_from}_to_{date_to}"
    elif date_from:
        suffix = f"_from_{date_from}"
    elif date_to:
        suffix = f"_to_{date_to}"
    else:
        suffix = ""
    return f"funnel_{safe_filename_part(funnel_name)}{suffix}.csv"


def cohort_retention_csv(results: Sequence[CohortResult], retention_periods: Sequence[int]) -> str:
    header = ["Cohort Period", "Cohort Size"] + [f"Day {period}" for period in retention_periods]
    rows = []
    for result in results:
        cells = [
            f"{point.retention_rate:g}% ({point.visitors_returned}/{result.cohort_size})"
            for point in result.retention
        ]
        rows.append([result.cohort_period, result.cohort_size, *cells])
    return _render(header, rows)


def cohort_export_filename(cohort_name: str) -> str:
    return f"cohort_{safe_filename_part(cohort_name)}_retention_analysis.csv"
