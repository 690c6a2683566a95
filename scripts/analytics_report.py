#!/usr/bin/env python3
"""Run a saved segment, funnel, cohort or goal (or the journey report) and print JSON."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from pixeltrail.core.database import SessionLocal
from pixeltrail.core.time import parse_timestamp
from pixeltrail.models.models import Cohort, Funnel, Goal, Segment
from pixeltrail.services.reports import (
    cohort_report,
    cohort_retention_periods,
    funnel_report,
    goal_report,
    journey_report,
    segment_members,
    serialize_definition,
)

DEFINITION_MODELS = {
    "segment": Segment,
    "funnel": Funnel,
    "cohort": Cohort,
    "goal": Goal,
}


def _load_definition(db, kind: str, definition_id: int):
    row = db.query(DEFINITION_MODELS[kind]).filter(DEFINITION_MODELS[kind].id == definition_id).first()
    if row is None:
        raise SystemExit(f"{kind} {definition_id} not found")
    return row


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Print an analytics report as JSON.")
    parser.add_argument("report", choices=["segment", "funnel", "cohort", "goal", "journeys"], help="Report to run.")
    parser.add_argument("--id", type=int, default=0, help="Saved definition ID (segment/funnel/cohort/goal).")
    parser.add_argument("--site-id", default="", help="Site ID (journeys).")
    parser.add_argument("--from", dest="date_from", default="", help="Funnel window start (ISO date/time).")
    parser.add_argument("--to", dest="date_to", default="", help="Funnel window end (ISO date/time).")
    parser.add_argument("--limit", type=int, default=0, help="Journey session limit.")
    parser.add_argument("--days", type=int, default=0, help="Journey lookback window in days.")
    return parser


def main() -> int:
    args = build_parser().parse_args()
    if args.report != "journeys" and int(args.id or 0) <= 0:
        print(json.dumps({"status": "error", "error": "--id is required"}))
        return 2

    db = SessionLocal()
    try:
        if args.report == "segment":
            segment = _load_definition(db, "segment", args.id)
            members = segment_members(db, segment)
            payload = {
                "segment": serialize_definition(segment),
                "user_count": len(members),
                "users": [member.to_dict() for member in members],
            }
        elif args.report == "funnel":
            funnel = _load_definition(db, "funnel", args.id)
            analysis = funnel_report(
                db,
                funnel,
                date_from=parse_timestamp(args.date_from) if args.date_from else None,
                date_to=parse_timestamp(args.date_to) if args.date_to else None,
            )
            payload = {"funnel": serialize_definition(funnel), "analysis": analysis.to_dict()}
        elif args.report == "cohort":
            cohort = _load_definition(db, "cohort", args.id)
            payload = {
                "cohort": serialize_definition(cohort),
                "retention_periods": cohort_retention_periods(cohort),
                "cohorts": [result.to_dict() for result in cohort_report(db, cohort)],
            }
        elif args.report == "goal":
            goal = _load_definition(db, "goal", args.id)
            payload = {"goal": serialize_definition(goal), "stats": goal_report(db, goal).to_dict()}
        else:
            aggregate = journey_report(
                db,
                site_id=(str(args.site_id or "").strip() or None),
                limit=(int(args.limit) if int(args.limit or 0) > 0 else None),
                days=(int(args.days) if int(args.days or 0) > 0 else None),
            )
            payload = aggregate.to_dict()
        print(json.dumps(payload, default=str))
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
