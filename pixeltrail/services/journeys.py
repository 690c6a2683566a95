"""
Journey path aggregation for the Sankey view.

Only the strongest transitions are kept as links, and the node set is derived
from those links alone: pages that only appear in weaker transitions are not
drawn, even when they are frequent.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional, Sequence

from pixeltrail.core.time import ensure_utc
from pixeltrail.services.analytics_common import round_half_up, safe_ratio

MAX_LINKS = 50
MAX_COMMON_PATHS = 20
MAX_ENTRY_EXIT_PAGES = 10
MIN_SESSION_DEPTH = 2


@dataclass
class SessionPath:
    session_id: str
    path: list[str]
    visitor_id: Optional[str] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None


@dataclass
class JourneyLink:
    source: str
    target: str
    value: int


@dataclass
class JourneyNode:
    name: str
    category: str


@dataclass
class PathCount:
    path: list[str]
    count: int
    percentage: float


@dataclass
class PageCount:
    page: str
    count: int
    percentage: float


@dataclass
class JourneyAggregate:
    links: list[JourneyLink] = field(default_factory=list)
    nodes: list[JourneyNode] = field(default_factory=list)
    common_paths: list[PathCount] = field(default_factory=list)
    entry_pages: list[PageCount] = field(default_factory=list)
    exit_pages: list[PageCount] = field(default_factory=list)
    avg_depth: float = 0.0
    total_sessions: int = 0
    unique_paths: int = 0
    total_transitions: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "sankey_data": {
                "nodes": [asdict(node) for node in self.nodes],
                "links": [asdict(link) for link in self.links],
            },
            "common_paths": [asdict(item) for item in self.common_paths],
            "top_entry_pages": [asdict(item) for item in self.entry_pages],
            "top_exit_pages": [asdict(item) for item in self.exit_pages],
            "stats": {
                "total_sessions": self.total_sessions,
                "avg_session_depth": round_half_up(self.avg_depth, 1),
                "unique_paths": self.unique_paths,
                "total_transitions": self.total_transitions,
            },
        }


def node_category(page: str) -> str:
    if page == "/":
        return "entry"
    if "/checkout" in page:
        return "conversion"
    return "navigation"


def build_session_paths(events: Iterable[Any]) -> list[SessionPath]:
    """Group page_view events into per-session page sequences ordered by time."""
    by_session: dict[str, list[Any]] = {}
    for event in events:
        if event.event_type != "page_view" or not event.session_id:
            continue
        by_session.setdefault(str(event.session_id), []).append(event)

    sessions: list[SessionPath] = []
    for session_id, session_events in by_session.items():
        ordered = sorted(session_events, key=lambda event: ensure_utc(event.timestamp))
        sessions.append(
            SessionPath(
                session_id=session_id,
                path=[event.page_path or "/" for event in ordered],
                visitor_id=ordered[0].visitor_id,
                started_at=ensure_utc(ordered[0].timestamp),
                ended_at=ensure_utc(ordered[-1].timestamp),
            )
        )
    # Most recent sessions first.
    sessions.sort(key=lambda session: session.started_at, reverse=True)
    return sessions


def _ranked_pages(counter: Counter, total: int) -> list[PageCount]:
    return [
        PageCount(page=page, count=count, percentage=safe_ratio(count, total) * 100)
        for page, count in counter.most_common(MAX_ENTRY_EXIT_PAGES)
    ]


def aggregate_journeys(sessions: Sequence[SessionPath]) -> JourneyAggregate:
    qualifying = [session for session in sessions if len(session.path) >= MIN_SESSION_DEPTH]
    if not qualifying:
        return JourneyAggregate()

    flows: Counter = Counter()
    path_counts: Counter = Counter()
    entries: Counter = Counter()
    exits: Counter = Counter()
    depth_total = 0

    for session in qualifying:
        path = list(session.path)
        for source, target in zip(path, path[1:]):
            flows[(source, target)] += 1
        path_counts[tuple(path)] += 1
        entries[path[0]] += 1
        exits[path[-1]] += 1
        depth_total += len(path)

    total = len(qualifying)
    # Counter.most_common keeps insertion order among equal counts.
    links = [
        JourneyLink(source=source, target=target, value=count)
        for (source, target), count in flows.most_common(MAX_LINKS)
    ]
    node_names: dict[str, None] = {}
    for link in links:
        node_names.setdefault(link.source)
        node_names.setdefault(link.target)

    return JourneyAggregate(
        links=links,
        nodes=[JourneyNode(name=name, category=node_category(name)) for name in node_names],
        common_paths=[
            PathCount(path=list(path), count=count, percentage=safe_ratio(count, total) * 100)
            for path, count in path_counts.most_common(MAX_COMMON_PATHS)
        ],
        entry_pages=_ranked_pages(entries, total),
        exit_pages=_ranked_pages(exits, total),
        avg_depth=depth_total / total,
        total_sessions=total,
        unique_paths=len(path_counts),
        total_transitions=sum(flows.values()),
    )
