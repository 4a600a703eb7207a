"""Core dataclasses shared by the scorer, clusterers, pipeline and session.

Items are immutable once fetched. Topics are created once per clustering pass
and only ever appended to a session, never edited in place.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

SIGNAL_NAMES = ("keyword", "vip", "velocity", "calendar")

PRIORITY_SCORES = {"high": 0.9, "medium": 0.5, "low": 0.1}
PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}


@dataclass(frozen=True)
class Item:
    """One inbox message being triaged.

    ``sender`` is the bare email address. ``body`` is optional; detectors
    fall back to ``snippet`` when it is missing.
    """

    id: str
    subject: str
    sender: str
    snippet: str
    received_at: datetime
    thread_id: Optional[str] = None
    is_vip: bool = False
    sender_name: Optional[str] = None
    body: Optional[str] = None
    has_been_replied_to: bool = False

    @property
    def text(self) -> str:
        return self.body if self.body else self.snippet


@dataclass
class SignalReason:
    signal: str
    type: str
    description: str
    weight: float
    event_id: Optional[str] = None


@dataclass
class SignalResult:
    """Uniform detector output: a raw score in [0, 1] plus typed reasons."""

    raw_score: float
    reasons: list[SignalReason] = field(default_factory=list)


@dataclass
class SignalBreakdown:
    signal: str
    raw_score: float
    weight: float
    contribution: float
    is_present: bool


@dataclass
class CompositeScore:
    score: float
    is_flagged: bool
    severity: Optional[str]
    reasons: list[SignalReason] = field(default_factory=list)
    breakdown: list[SignalBreakdown] = field(default_factory=list)


@dataclass
class ItemRef:
    """What the tracker and the reasoner know about an item."""

    email_id: str
    subject: str
    sender: str
    thread_id: Optional[str] = None
    is_flagged: bool = False
    priority: Optional[str] = None
    summary: Optional[str] = None

    @classmethod
    def from_item(
        cls,
        item: Item,
        score: CompositeScore | None = None,
        priority: str | None = None,
        summary: str | None = None,
    ) -> "ItemRef":
        return cls(
            email_id=item.id,
            subject=item.subject,
            sender=item.sender,
            thread_id=item.thread_id,
            is_flagged=score.is_flagged if score else False,
            priority=priority,
            summary=summary,
        )


@dataclass
class Topic:
    """A labeled cluster of items with an optional LLM-assigned priority."""

    id: str
    label: str
    items: list[ItemRef] = field(default_factory=list)
    priority: Optional[str] = None
    keywords: list[str] = field(default_factory=list)
    max_score: float = 0.0
    flagged_count: int = 0

    @property
    def size(self) -> int:
        return len(self.items)


class EmailStatus(str, Enum):
    PENDING = "pending"
    BRIEFED = "briefed"
    ACTIONED = "actioned"
    SKIPPED = "skipped"


@dataclass
class EmailState:
    ref: ItemRef
    topic_index: int
    item_index: int
    status: EmailStatus = EmailStatus.PENDING
    action_taken: Optional[str] = None
    briefed_at: Optional[datetime] = None
    actioned_at: Optional[datetime] = None


@dataclass(frozen=True)
class Cursor:
    topic_index: int = 0
    item_index: int = 0


@dataclass
class BriefingProgress:
    current_topic_index: int
    current_item_index: int
    current_email: Optional[ItemRef]
    current_topic_label: str
    total_topics: int
    total_emails: int
    emails_briefed: int
    emails_actioned: int
    emails_skipped: int
    emails_remaining: int


@dataclass
class Briefing:
    """Everything the pipeline hands to a new session."""

    topics: list[Topic] = field(default_factory=list)
    total_emails: int = 0
    total_flagged: int = 0
    score_map: dict[str, CompositeScore] = field(default_factory=dict)
    duration_ms: int = 0
    total_fetched: int = 0
    triage_summary: str = ""

    @property
    def topic_labels(self) -> list[str]:
        return [t.label for t in self.topics]

    @property
    def topic_items(self) -> list[int]:
        return [t.size for t in self.topics]


@dataclass
class PipelineResult:
    briefing: Briefing
    remaining_batches: list[list[Item]] = field(default_factory=list)
