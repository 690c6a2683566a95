from __future__ import annotations

import csv
import hashlib
import io
from datetime import date, datetime, timezone

from pixeltrail.services import exports
from pixeltrail.services.cohorts import CohortResult, RetentionPoint
from pixeltrail.services.funnels import analyze_funnel
from pixeltrail.services.records import VisitorRecord

MEMBERS = [
    VisitorRecord(
        id="v-1",
        email="Jo@Example.com ",
        phone="+15550100",
        name="Jo Doe Smith",
        first_seen_at=datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc),
        last_seen_at=datetime(2026, 3, 5, 10, 0, tzinfo=timezone.utc),
        visit_count=4,
    ),
    VisitorRecord(id="v-2"),
]


def _rows(text: str) -> list[list[str]]:
    return list(csv.reader(io.StringIO(text)))


def test_hash_for_ads_normalizes_and_passes_through_hashes():
    expected = hashlib.sha256(b"jo@example.com").hexdigest()
    assert exports.hash_for_ads(" Jo@Example.com ") == expected
    assert exports.hash_for_ads(expected) == expected
    assert exports.hash_for_ads(None) == ""
    assert exports.hash_for_ads("") == ""


def test_plain_segment_csv():
    rows = _rows(exports.segment_members_csv(MEMBERS))

    assert rows[0] == ["email", "name", "phone", "first_seen", "last_seen", "visits", "visitor_id"]
    assert rows[1][0] == "Jo@Example.com "
    assert rows[1][3] == "2026-03-01T10:00:00+00:00"
    assert rows[1][5:] == ["4", "v-1"]
    assert rows[2] == ["", "", "", "", "", "0", "v-2"]


def test_google_ads_csv_hashes_identifiers():
    rows = _rows(exports.segment_members_csv(MEMBERS, "google_ads"))

    assert rows[0] == ["Email", "Phone", "First Name", "Last Name", "Country", "Zip"]
    assert rows[1][0] == hashlib.sha256(b"jo@example.com").hexdigest()
    assert rows[1][2] == hashlib.sha256(b"jo").hexdigest()
    assert rows[1][3] == hashlib.sha256(b"doe smith").hexdigest()
    assert rows[2][:2] == ["", ""]


def test_meta_ads_csv_columns():
    rows = _rows(exports.segment_members_csv(MEMBERS, "meta_ads"))
    assert rows[0] == ["email", "phone", "fn", "ln", "ct", "st", "zip", "country"]
    assert rows[1][1] == hashlib.sha256(b"+15550100").hexdigest()
    assert len(rows[1]) == 8


def test_export_filenames():
    today = date(2026, 3, 9)
    assert exports.segment_export_filename("VIP buyers!", "meta_ads", today=today) == "meta-ads-VIP_buyers_-2026-03-09.csv"
    assert exports.segment_export_filename("VIP", "csv", today=today) == "segment-VIP-2026-03-09.csv"
    assert exports.funnel_export_filename("Sign up", "2026-03-01", "2026-03-31") == "funnel_Sign_up_2026-03-01_to_2026-03-31.csv"
    assert exports.funnel_export_filename("Sign up", None, "2026-03-31") == "funnel_Sign_up_to_2026-03-31.csv"
    assert exports.funnel_export_filename("Sign up", None, None) == "funnel_Sign_up.csv"
    assert exports.cohort_export_filename("Weekly 2026") == "cohort_Weekly_2026_retention_analysis.csv"


def test_funnel_analysis_csv():
    at = datetime(2026, 3, 1, tzinfo=timezone.utc)
    matched = {"view": {"1": at, "2": at, "3": at}, "buy": {"2": at}}
    analysis = analyze_funnel(
        [{"type": "event", "value": "view", "name": "View"}, {"type": "event", "value": "buy", "name": "Buy"}],
        lambda step: matched[step.value],
    )

    rows = _rows(exports.funnel_analysis_csv(analysis))
    assert rows == [
        ["Step", "Name", "Type", "Visitors", "Conversion Rate (%)", "Drop-off Rate (%)"],
        ["1", "View", "event", "3", "100.00", "0.00"],
        ["2", "Buy", "event", "1", "33.33", "66.67"],
    ]


def test_cohort_retention_csv():
    results = [
        CohortResult(
            cohort_period="2026-03-01",
            cohort_size=10,
            retention=[
                RetentionPoint(period=1, visitors_returned=3, retention_rate=30.0),
                RetentionPoint(period=7, visitors_returned=1, retention_rate=10.0),
            ],
        )
    ]

    rows = _rows(exports.cohort_retention_csv(results, [1, 7]))
    assert rows == [
        ["Cohort Period", "Cohort Size", "Day 1", "Day 7"],
        ["2026-03-01", "10", "30% (3/10)", "10% (1/10)"],
    ]
