"""VIP sender detection.

Combines the user's explicit VIP list with contact history (interaction
counts, recency, job title) into an additive importance score.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from typing import Callable, Optional

from alteris_briefing.models import Item, SignalReason, SignalResult

logger = logging.getLogger(__name__)

VIP_TITLES = (
    "ceo", "cto", "cfo", "coo", "president", "vice president", "vp",
    "director", "head of", "chief", "founder", "co-founder", "partner",
    "principal",
)

JOB_TITLE_WEIGHT = 0.3
VIP_THRESHOLD = 0.5


@dataclass
class VipEntry:
    email: str
    name: Optional[str] = None


@dataclass
class Contact:
    email: str
    name: Optional[str] = None
    interaction_count: int = 0
    last_interaction_at: Optional[datetime] = None
    job_title: Optional[str] = None


@dataclass
class VipOptions:
    vip_match_weight: float = 0.8
    high_interaction_threshold: int = 50
    medium_interaction_threshold: int = 20
    high_interaction_weight: float = 0.6
    medium_interaction_weight: float = 0.4
    recency_boost_days: int = 7
    recency_boost: float = 0.2


@dataclass
class VipResult:
    is_vip: bool
    score: float
    reasons: list[SignalReason] = field(default_factory=list)
    vip_entry: Optional[VipEntry] = None
    contact: Optional[Contact] = None

    def to_signal(self) -> SignalResult:
        return SignalResult(raw_score=self.score, reasons=list(self.reasons))


def _normalize(email: str) -> str:
    return email.strip().lower()


def has_vip_title(job_title: str | None) -> bool:
    if not job_title:
        return False
    title = job_title.lower()
    return any(t in title for t in VIP_TITLES)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VipDetector:
    def __init__(
        self,
        vip_list: list[VipEntry] | None = None,
        contacts: list[Contact] | None = None,
        options: VipOptions | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.vip_list: list[VipEntry] = list(vip_list or [])
        self.contacts: list[Contact] = list(contacts or [])
        self.options = options or VipOptions()
        self._clock = clock

    @classmethod
    def from_emails(cls, emails: list[str], **kwargs) -> "VipDetector":
        return cls(vip_list=[VipEntry(email=e) for e in emails], **kwargs)

    def _find_vip(self, email: str) -> VipEntry | None:
        target = _normalize(email)
        return next((v for v in self.vip_list if _normalize(v.email) == target), None)

    def _find_contact(self, email: str) -> Contact | None:
        target = _normalize(email)
        return next((c for c in self.contacts if _normalize(c.email) == target), None)

    def _days_since(self, when: datetime | None) -> float:
        if when is None:
            return math.inf
        now = self._clock()
        if when.tzinfo is None and now.tzinfo is not None:
            when = when.replace(tzinfo=timezone.utc)
        return math.floor((now - when).total_seconds() / 86400)

    def detect(self, item: Item) -> VipResult:
        opts = self.options
        reasons: list[SignalReason] = []
        score = 0.0

        entry = self._find_vip(item.sender)
        if entry:
            score += opts.vip_match_weight
            reasons.append(SignalReason(
                signal="vip",
                type="explicit_vip",
                description=f"Sender is in VIP list: {entry.name or entry.email}",
                weight=opts.vip_match_weight,
            ))

        contact = self._find_contact(item.sender)
        if contact:
            count = contact.interaction_count or 0
            if count >= opts.high_interaction_threshold:
                score += opts.high_interaction_weight
                reasons.append(SignalReason(
                    signal="vip",
                    type="high_interaction",
                    description=f"High interaction frequency: {count} interactions",
                    weight=opts.high_interaction_weight,
                ))
            elif count >= opts.medium_interaction_threshold:
                score += opts.medium_interaction_weight
                reasons.append(SignalReason(
                    signal="vip",
                    type="medium_interaction",
                    description=f"Medium interaction frequency: {count} interactions",
                    weight=opts.medium_interaction_weight,
                ))

            days = self._days_since(contact.last_interaction_at)
            if days <= opts.recency_boost_days:
                score += opts.recency_boost
                reasons.append(SignalReason(
                    signal="vip",
                    type="recent_interaction",
                    description=f"Recent interaction ({int(days)} days ago)",
                    weight=opts.recency_boost,
                ))

            if has_vip_title(contact.job_title):
                score += JOB_TITLE_WEIGHT
                reasons.append(SignalReason(
                    signal="vip",
                    type="job_title",
                    description=f"VIP job title: {contact.job_title}",
                    weight=JOB_TITLE_WEIGHT,
                ))

        score = min(score, 1.0)
        return VipResult(
            is_vip=score >= VIP_THRESHOLD,
            score=score,
            reasons=reasons,
            vip_entry=entry,
            contact=contact,
        )

    def detect_many(self, items: list[Item]) -> dict[str, VipResult]:
        return {item.id: self.detect(item) for item in items}

    def add_vip(self, vip: VipEntry):
        if not self._find_vip(vip.email):
            self.vip_list.append(vip)

    def remove_vip(self, email: str) -> bool:
        entry = self._find_vip(email)
        if entry is None:
            return False
        self.vip_list.remove(entry)
        return True

    def is_listed(self, email: str) -> bool:
        return self._find_vip(email) is not None

    def add_or_update_contact(self, contact: Contact):
        existing = self._find_contact(contact.email)
        if existing is None:
            self.contacts.append(contact)
            return
        idx = self.contacts.index(existing)
        self.contacts[idx] = contact

    def update_options(self, **kwargs):
        known = {f.name for f in fields(VipOptions)}
        unknown = set(kwargs) - known
        if unknown:
            raise ValueError(f"Unknown VIP options: {', '.join(sorted(unknown))}")
        self.options = replace(self.options, **kwargs)
