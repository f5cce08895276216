"""Mapping from Google event resources to the canonical ``RemoteEvent`` shape."""
from __future__ import annotations

import logging
from datetime import date, datetime, time, timezone
from typing import Any, Dict, List, Optional

from ...models import RemoteEvent, ensure_utc

logger = logging.getLogger(__name__)

UNTITLED_EVENT = "Untitled Event"


def _parse_boundary(boundary: Any) -> Optional[tuple[datetime, bool]]:
    """Parse a ``start``/``end`` object into (instant, date_only)."""
    if not isinstance(boundary, dict):
        return None

    date_time = boundary.get("dateTime")
    if date_time:
        parsed = datetime.fromisoformat(str(date_time).replace("Z", "+00:00"))
        return ensure_utc(parsed), False

    day = boundary.get("date")
    if day:
        parsed_day = date.fromisoformat(str(day))
        return datetime.combine(parsed_day, time.min, tzinfo=timezone.utc), True

    return None


def _text(value: Any) -> Optional[str]:
    """Provider text as-is, with empty and whitespace-only values mapped to None."""
    if value is None:
        return None
    text = str(value)
    return text if text.strip() else None


def extract_attendees(payload: Any) -> List[str]:
    """De-duplicated, non-empty attendee emails in provider order."""
    if not isinstance(payload, list):
        return []
    seen = set()
    attendees = []
    for entry in payload:
        if not isinstance(entry, dict):
            continue
        email = (_text(entry.get("email")) or "").strip()
        if email and email not in seen:
            seen.add(email)
            attendees.append(email)
    return attendees


def normalize_remote_event(item: Dict[str, Any]) -> Optional[RemoteEvent]:
    """
    Map one Google event resource to a ``RemoteEvent``.

    Returns None for malformed items (no id, no start or end, unparseable
    times); callers leave those out of the sync set.
    """
    event_id = item.get("id")
    if not event_id:
        return None

    try:
        start = _parse_boundary(item.get("start"))
        end = _parse_boundary(item.get("end"))
    except ValueError:
        logger.debug("Skipping event %s with unparseable times", event_id)
        return None

    if start is None or end is None:
        return None

    start_time, date_only = start
    end_time, _ = end

    return RemoteEvent(
        external_event_id=str(event_id),
        title=_text(item.get("summary")) or UNTITLED_EVENT,
        description=_text(item.get("description")),
        location=_text(item.get("location")),
        start_time=start_time,
        end_time=end_time,
        is_all_day=date_only,
        attendees=extract_attendees(item.get("attendees")),
        html_link=item.get("htmlLink"),
    )
