"""JSON file reader — items and calendar events exported as JSON.

Used by the CLI and in tests in place of a live mailbox. Expected layout:

    {"items": [{"id": ..., "subject": ..., "sender": ..., "snippet": ...,
                "received_at": "2026-01-05T09:30:00Z", ...}],
     "events": [{"id": ..., "title": ..., "start": ..., ...}]}

A bare top-level list is read as the item list.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from alteris_briefing.models import Item
from alteris_briefing.signals.calendar import CalendarEvent
from alteris_briefing.sources.base import FetchPage

logger = logging.getLogger(__name__)


def _parse_time(raw: Any) -> datetime:
    if isinstance(raw, (int, float)):
        return datetime.fromtimestamp(raw, tz=timezone.utc)
    text = str(raw).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def item_from_dict(row: Dict[str, Any]) -> Item:
    sender = row.get("sender") or row.get("from") or ""
    sender_name = row.get("sender_name")
    if isinstance(sender, dict):
        sender_name = sender_name or sender.get("name")
        sender = sender.get("email", "")
    return Item(
        id=str(row["id"]),
        subject=row.get("subject", "") or "",
        sender=str(sender),
        snippet=row.get("snippet", "") or "",
        received_at=_parse_time(row["received_at"]),
        thread_id=row.get("thread_id"),
        is_vip=bool(row.get("is_vip", False)),
        sender_name=sender_name,
        body=row.get("body"),
        has_been_replied_to=bool(row.get("has_been_replied_to", False)),
    )


def event_from_dict(row: Dict[str, Any]) -> CalendarEvent:
    return CalendarEvent(
        id=str(row["id"]),
        title=row.get("title", "") or "",
        start=_parse_time(row["start"]),
        organizer=row.get("organizer", "") or "",
        attendees=list(row.get("attendees", [])),
        description=row.get("description"),
        location=row.get("location"),
        status=row.get("status", "confirmed"),
    )


def _read(path: Path) -> Dict[str, Any]:
    data = json.loads(Path(path).read_text())
    if isinstance(data, list):
        return {"items": data}
    return data


def read_items(path: Path) -> List[Item]:
    items = []
    for row in _read(path).get("items", []):
        try:
            items.append(item_from_dict(row))
        except (KeyError, ValueError, TypeError) as e:
            logger.warning("Skipping malformed item %r: %s", row.get("id"), e)
    return items


def read_events(path: Path) -> List[CalendarEvent]:
    events = []
    for row in _read(path).get("events", []):
        try:
            events.append(event_from_dict(row))
        except (KeyError, ValueError, TypeError) as e:
            logger.warning("Skipping malformed event %r: %s", row.get("id"), e)
    return events


class JsonItemSource:
    """Serves items from a list (or a JSON file) page by page.

    Page tokens are stringified offsets into the received-after filtered list.
    """

    def __init__(self, items: List[Item]):
        self.items = list(items)

    @classmethod
    def from_file(cls, path: Path) -> "JsonItemSource":
        return cls(read_items(path))

    def fetch_unread(self, filters: dict, paging: dict) -> FetchPage:
        after: Optional[datetime] = filters.get("after")
        matching = [i for i in self.items if after is None or i.received_at >= after]

        start = int(paging.get("page_token") or 0)
        size = int(paging.get("page_size") or 50)
        page = matching[start:start + size]
        end = start + len(page)
        return FetchPage(items=page, next_page_token=str(end) if end < len(matching) else None)
