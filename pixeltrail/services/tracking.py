from __future__ import annotations

import logging
import re
from typing import Any

from sqlalchemy.orm import Session

from pixeltrail.core.config import settings
from pixeltrail.core.time import ensure_utc, now_utc, parse_timestamp
from pixeltrail.models.models import Event, Visitor

logger = logging.getLogger(__name__)

MAX_GENERIC_PROPERTIES = 50

# Known event types keep only their documented properties.
EVENT_PROPERTY_KEYS: dict[str, tuple[str, ...]] = {
    "page_view": ("title", "referrer"),
    "click": ("element", "text", "href", "id"),
    "form_start": ("form_id", "form_name", "fields"),
    "form_submit": ("form_id", "form_name", "fields"),
    "form_abandon": ("form_id", "form_name", "fields"),
    "identify": ("email", "phone", "name"),
    "purchase": ("order_id", "value", "currency", "items"),
}

_MOBILE_UA = re.compile(r"mobile", re.IGNORECASE)
_TABLET_UA = re.compile(r"tablet|ipad", re.IGNORECASE)


def _clean_text(value: Any, *, max_len: int) -> str:
    text_value = str(value or "").strip()
    if not text_value:
        return ""
    return text_value[:max_len]


def _first_present(payload: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value not in (None, ""):
            return value
    return None


def _clean_property_value(raw: Any) -> Any:
    if isinstance(raw, (str, int, float, bool)) or raw is None:
        return raw
    if isinstance(raw, (list, dict)):
        return raw
    return str(raw)


def normalize_event_properties(event_type: str, properties: Any) -> dict[str, Any]:
    if not isinstance(properties, dict):
        return {}
    allowed = EVENT_PROPERTY_KEYS.get(event_type)
    cleaned: dict[str, Any] = {}
    for key, raw in properties.items():
        key_text = _clean_text(key, max_len=80)
        if not key_text:
            continue
        if allowed is not None and key_text not in allowed:
            continue
        cleaned[key_text] = _clean_property_value(raw)
        if len(cleaned) >= MAX_GENERIC_PROPERTIES:
            break
    return cleaned


def detect_device_type(user_agent: str) -> str:
    if _MOBILE_UA.search(user_agent or ""):
        return "mobile"
    if _TABLET_UA.search(user_agent or ""):
        return "tablet"
    return "desktop"


def normalize_track_event(payload: dict[str, Any]) -> dict[str, Any]:
    """Validate and sanitize a pixel payload. Accepts snake_case or camelCase keys."""
    anonymous_id = _clean_text(_first_present(payload, "anonymous_id", "anonymousId"), max_len=128)
    if not anonymous_id:
        raise ValueError("anonymous_id is required")

    event_type = _clean_text(_first_present(payload, "event_type", "eventType"), max_len=64)
    if not event_type:
        raise ValueError("event_type is required")

    try:
        occurred_at = parse_timestamp(payload.get("timestamp")) or now_utc()
    except ValueError as exc:
        raise ValueError("timestamp must be an ISO-8601 datetime") from exc

    user_agent = _clean_text(_first_present(payload, "user_agent", "userAgent"), max_len=1024)
    device_type = _clean_text(_first_present(payload, "device_type", "deviceType"), max_len=20).lower()

    def _field(snake: str, camel: str, max_len: int = 255) -> str | None:
        return _clean_text(_first_present(payload, snake, camel), max_len=max_len) or None

    return {
        "site_id": _field("site_id", "siteId", 64),
        "anonymous_id": anonymous_id,
        "event_type": event_type,
        "occurred_at": occurred_at,
        "session_id": _field("session_id", "sessionId", 128),
        "page_url": _field("page_url", "pageUrl", 2048),
        "page_path": _field("page_path", "pagePath", 512),
        "page_title": _field("page_title", "pageTitle", 512),
        "referrer": _field("referrer", "referrer", 2048),
        "user_agent": user_agent or None,
        "device_type": device_type or detect_device_type(user_agent),
        "browser": _field("browser", "browser", 64),
        "os": _field("os", "os", 64),
        "country": _field("country", "country", 100),
        "city": _field("city", "city", 100),
        "region": _field("region", "region", 100),
        "utm_source": _field("utm_source", "utmSource"),
        "utm_medium": _field("utm_medium", "utmMedium"),
        "utm_campaign": _field("utm_campaign", "utmCampaign"),
        "utm_term": _field("utm_term", "utmTerm"),
        "utm_content": _field("utm_content", "utmContent"),
        "properties": normalize_event_properties(event_type, payload.get("properties")),
    }


def _upsert_visitor(db: Session, clean: dict[str, Any]) -> Visitor:
    occurred_at = clean["occurred_at"]
    visitor = (
        db.query(Visitor)
        .filter(
            Visitor.site_id == clean["site_id"] if clean["site_id"] is not None else Visitor.site_id.is_(None),
            Visitor.anonymous_id == clean["anonymous_id"],
        )
        .first()
    )
    if visitor is None:
        visitor = Visitor(
            site_id=clean["site_id"],
            anonymous_id=clean["anonymous_id"],
            first_seen_at=occurred_at,
            last_seen_at=occurred_at,
            visit_count=1,
            is_identified=False,
        )
        db.add(visitor)
        db.flush()
        return visitor

    last_seen = ensure_utc(visitor.last_seen_at)
    if last_seen is None or occurred_at > last_seen:
        visitor.last_seen_at = occurred_at
    first_seen = ensure_utc(visitor.first_seen_at)
    if first_seen is None or occurred_at < first_seen:
        visitor.first_seen_at = occurred_at
    visitor.visit_count = int(visitor.visit_count or 0) + 1
    return visitor


def _merge_identity(visitor: Visitor, properties: dict[str, Any]) -> bool:
    email = _clean_text(properties.get("email"), max_len=255)
    phone = _clean_text(properties.get("phone"), max_len=64)
    name = _clean_text(properties.get("name"), max_len=255)
    if not (email or phone or name):
        return False
    visitor.email = email or visitor.email
    visitor.phone = phone or visitor.phone
    visitor.name = name or visitor.name
    visitor.is_identified = True
    return True


def record_track_event(db: Session, payload: dict[str, Any]) -> dict[str, Any]:
    if not bool(getattr(settings, "TRACK_INGEST_ENABLED", True)):
        raise ValueError("event ingest is disabled")

    clean = normalize_track_event(payload)
    visitor = _upsert_visitor(db, clean)

    event = Event(
        visitor_id=visitor.id,
        site_id=clean["site_id"],
        session_id=clean["session_id"],
        event_type=clean["event_type"],
        timestamp=clean["occurred_at"],
        page_url=clean["page_url"],
        page_path=clean["page_path"],
        page_title=clean["page_title"],
        referrer=clean["referrer"],
        event_properties=clean["properties"],
        user_agent=clean["user_agent"],
        device_type=clean["device_type"],
        browser=clean["browser"],
        os=clean["os"],
        country=clean["country"],
        city=clean["city"],
        region=clean["region"],
        utm_source=clean["utm_source"],
        utm_medium=clean["utm_medium"],
        utm_campaign=clean["utm_campaign"],
        utm_term=clean["utm_term"],
        utm_content=clean["utm_content"],
    )
    db.add(event)

    if clean["event_type"] == "identify" and _merge_identity(visitor, clean["properties"]):
        logger.info("Visitor %s identified", visitor.id)

    db.flush()
    db.commit()
    return {
        "visitor_id": str(visitor.id),
        "event_id": int(event.id or 0),
        "event_type": event.event_type,
    }
