"""Calendar proximity detection.

An item matters more when it relates to a meeting coming up soon: the sender
is invited or organizing, or the text overlaps with the event description.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timedelta, timezone
from typing import Optional

from alteris_briefing.models import Item, SignalReason, SignalResult

logger = logging.getLogger(__name__)

STOP_WORDS = frozenset({
    "the", "and", "for", "are", "but", "not", "you", "all", "can", "her",
    "was", "one", "our", "out", "day", "get", "has", "him", "his", "how",
    "its", "may", "now", "see", "than", "that", "this", "will", "with",
})

_NON_WORD = re.compile(r"[^\w\s]")
PROXIMITY_THRESHOLD = 0.5


@dataclass
class CalendarEvent:
    id: str
    title: str
    start: datetime
    organizer: str = ""
    attendees: list[str] = field(default_factory=list)
    description: Optional[str] = None
    location: Optional[str] = None
    status: str = "confirmed"


@dataclass
class CalendarOptions:
    window_days: int = 7
    time_weight: float = 0.6
    content_weight: float = 0.7
    attendee_weight: float = 0.8
    organizer_weight: float = 0.9
    content_threshold: float = 0.3


@dataclass
class RelevantEvent:
    event: CalendarEvent
    score: float
    hours_to_event: float
    content_similarity: float
    is_attendee: bool = False
    is_organizer: bool = False


@dataclass
class CalendarResult:
    has_proximity: bool = False
    score: float = 0.0
    events: list[RelevantEvent] = field(default_factory=list)
    reasons: list[SignalReason] = field(default_factory=list)

    def to_signal(self) -> SignalResult:
        return SignalResult(raw_score=self.score, reasons=list(self.reasons))


def extract_keywords(text: str, stop_words: frozenset[str] = STOP_WORDS) -> set[str]:
    words = _NON_WORD.sub(" ", text.lower()).split()
    return {w for w in words if len(w) >= 3 and w not in stop_words}


def jaccard(a: set[str], b: set[str]) -> float:
    if not a and not b:
        return 0.0
    return len(a & b) / len(a | b)


def time_proximity(hours: float) -> float:
    hours = abs(hours)
    if hours <= 1:
        return 1.0
    if hours <= 24:
        return 0.8
    if hours <= 72:
        return 0.6
    if hours <= 168:
        return 0.4
    return 0.0


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


class CalendarProximityDetector:
    def __init__(
        self,
        events: list[CalendarEvent] | None = None,
        options: CalendarOptions | None = None,
    ):
        self.events: list[CalendarEvent] = list(events or [])
        self.options = options or CalendarOptions()

    def detect(self, item: Item, now: datetime | None = None) -> CalendarResult:
        opts = self.options
        now = _aware(now or datetime.now(timezone.utc))
        window_end = now + timedelta(days=opts.window_days)

        in_window = [
            e for e in self.events
            if e.status != "cancelled" and now <= _aware(e.start) <= window_end
        ]
        if not in_window:
            return CalendarResult()

        item_keywords = extract_keywords(f"{item.subject} {item.text or ''}")
        sender = item.sender.strip().lower()

        relevant: list[RelevantEvent] = []
        reasons: list[SignalReason] = []
        best = 0.0

        for event in in_window:
            event_score = 0.0
            event_reasons: list[SignalReason] = []

            hours = (_aware(event.start) - now).total_seconds() / 3600
            t_score = time_proximity(hours)
            if t_score > 0:
                weight = opts.time_weight * t_score
                event_score += weight
                event_reasons.append(SignalReason(
                    signal="calendar",
                    type="time_proximity",
                    description=f'Event "{event.title}" in {int(hours + 0.5)} hours',
                    weight=weight,
                    event_id=event.id,
                ))

            event_keywords = extract_keywords(
                f"{event.title} {event.description or ''} {event.location or ''}"
            )
            similarity = jaccard(item_keywords, event_keywords)
            if similarity >= opts.content_threshold:
                weight = opts.content_weight * similarity
                event_score += weight
                event_reasons.append(SignalReason(
                    signal="calendar",
                    type="content_match",
                    description=f"Content similarity: {int(similarity * 100 + 0.5)}%",
                    weight=weight,
                    event_id=event.id,
                ))

            is_attendee = sender in {a.strip().lower() for a in event.attendees}
            if is_attendee:
                event_score += opts.attendee_weight
                event_reasons.append(SignalReason(
                    signal="calendar",
                    type="attendee_overlap",
                    description=f'Sender is attendee of "{event.title}"',
                    weight=opts.attendee_weight,
                    event_id=event.id,
                ))

            is_organizer = bool(event.organizer) and sender == event.organizer.strip().lower()
            if is_organizer:
                event_score += opts.organizer_weight
                event_reasons.append(SignalReason(
                    signal="calendar",
                    type="organizer_match",
                    description=f'Sender is organizer of "{event.title}"',
                    weight=opts.organizer_weight,
                    event_id=event.id,
                ))

            if event_score > 0:
                capped = min(event_score, 1.0)
                relevant.append(RelevantEvent(
                    event=event,
                    score=capped,
                    hours_to_event=round(hours, 1),
                    content_similarity=round(similarity, 2),
                    is_attendee=is_attendee,
                    is_organizer=is_organizer,
                ))
                reasons.extend(event_reasons)
                best = max(best, capped)

        relevant.sort(key=lambda r: r.score, reverse=True)
        return CalendarResult(
            has_proximity=best >= PROXIMITY_THRESHOLD,
            score=best,
            events=relevant,
            reasons=reasons,
        )

    def detect_many(self, items: list[Item], now: datetime | None = None) -> dict[str, CalendarResult]:
        return {item.id: self.detect(item, now) for item in items}

    def add_event(self, event: CalendarEvent):
        if not any(e.id == event.id for e in self.events):
            self.events.append(event)

    def remove_event(self, event_id: str) -> bool:
        for i, e in enumerate(self.events):
            if e.id == event_id:
                del self.events[i]
                return True
        return False

    def update_options(self, **kwargs):
        known = {f.name for f in fields(CalendarOptions)}
        unknown = set(kwargs) - known
        if unknown:
            raise ValueError(f"Unknown calendar options: {', '.join(sorted(unknown))}")
        self.options = replace(self.options, **kwargs)
