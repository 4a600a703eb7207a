"""Thread velocity detection.

A thread is "hot" when replies arrive in quick succession or when its text
uses escalation language. Windows are anchored at the newest message in the
thread, not wall-clock time, so results are reproducible.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, fields, replace
from datetime import timedelta

from alteris_briefing.models import Item, SignalReason, SignalResult

logger = logging.getLogger(__name__)

ESCALATION_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bescalat(e|ed|ing)\b",
        r"\bneeds?\s+(immediate|urgent)\s+(attention|response)\b",
        r"\bloop(ing)?\s+in\s+(management|leadership|exec)\b",
        r"\bcc['\"]?ing\s+(boss|manager|director|vp|ceo|cto)\b",
        r"\bradioactive\b",
        r"\bfire\s+drill\b",
        r"\ball\s+hands\s+on\s+deck\b",
        r"\bcode\s+red\b",
        r"\bdefcon\s+\d\b",
        r"\bwar\s+room\b",
        r"\bemergency\s+(meeting|call)\b",
        r"\btaking\s+this\s+offline\b",
        r"\bneed\s+to\s+discuss\s+(urgently|immediately)\b",
        r"\bget\s+on\s+a\s+call\s+(now|asap)\b",
        r"\bthis\s+is\s+(critical|urgent|important)\b",
        r"\bnot\s+(acceptable|happy|satisfied)\b",
        r"\b(disappointed|frustrated|concerned)\s+(with|about|by)\b",
        r"\bstop\s+everything\b",
        r"\bdrop\s+everything\b",
        r"\bpriority\s+(zero|one|1|0)\b",
    )
]

RAPID_REPLY_MINUTES = 15
RAPID_REPLY_WEIGHT = 0.6
HIGH_VELOCITY_THRESHOLD = 0.6


@dataclass
class VelocityOptions:
    high_window_hours: float = 2
    high_threshold: int = 4
    high_weight: float = 0.7
    medium_window_hours: float = 6
    medium_threshold: int = 3
    medium_weight: float = 0.5
    escalation_weight: float = 0.8


@dataclass
class VelocityResult:
    is_high_velocity: bool = False
    score: float = 0.0
    reply_frequency: float = 0.0
    avg_minutes_between_replies: float = 0.0
    escalation_phrases: list[str] = field(default_factory=list)
    reasons: list[SignalReason] = field(default_factory=list)
    message_count: int = 0
    timespan_hours: float = 0.0

    @property
    def has_escalation_language(self) -> bool:
        return bool(self.escalation_phrases)

    def to_signal(self) -> SignalResult:
        return SignalResult(raw_score=self.score, reasons=list(self.reasons))


def find_escalation_phrases(item: Item) -> list[str]:
    text = f"{item.subject} {item.text or ''}"
    phrases = []
    for pattern in ESCALATION_PATTERNS:
        m = pattern.search(text)
        if m:
            phrases.append(m.group(0))
    return phrases


class ThreadVelocityDetector:
    def __init__(self, options: VelocityOptions | None = None):
        self.options = options or VelocityOptions()

    def analyze(self, messages: list[Item]) -> VelocityResult:
        """Score one thread's messages (any order)."""
        if len(messages) < 2:
            return VelocityResult(message_count=len(messages))

        opts = self.options
        ordered = sorted(messages, key=lambda m: m.received_at)
        first, last = ordered[0], ordered[-1]

        timespan_hours = (last.received_at - first.received_at).total_seconds() / 3600
        gaps = [
            (b.received_at - a.received_at).total_seconds() / 60
            for a, b in zip(ordered, ordered[1:])
        ]
        avg_gap = sum(gaps) / len(gaps)
        reply_frequency = len(messages) / timespan_hours if timespan_hours > 0 else 0.0

        reasons: list[SignalReason] = []
        score = 0.0
        now = last.received_at

        def count_within(hours: float) -> int:
            cutoff = now - timedelta(hours=hours)
            return sum(1 for m in ordered if m.received_at >= cutoff)

        high_count = count_within(opts.high_window_hours)
        if high_count >= opts.high_threshold:
            score += opts.high_weight
            reasons.append(SignalReason(
                signal="velocity",
                type="high_velocity",
                description=f"{high_count} replies in {opts.high_window_hours:g} hours",
                weight=opts.high_weight,
            ))
        else:
            medium_count = count_within(opts.medium_window_hours)
            if medium_count >= opts.medium_threshold:
                score += opts.medium_weight
                reasons.append(SignalReason(
                    signal="velocity",
                    type="medium_velocity",
                    description=f"{medium_count} replies in {opts.medium_window_hours:g} hours",
                    weight=opts.medium_weight,
                ))

        if avg_gap < RAPID_REPLY_MINUTES and len(messages) >= 3:
            score += RAPID_REPLY_WEIGHT
            reasons.append(SignalReason(
                signal="velocity",
                type="rapid_back_and_forth",
                description=f"Rapid back-and-forth: avg {int(avg_gap + 0.5)} min between replies",
                weight=RAPID_REPLY_WEIGHT,
            ))

        phrases: list[str] = []
        for message in ordered:
            phrases.extend(find_escalation_phrases(message))
        if phrases:
            score += opts.escalation_weight
            unique = list(dict.fromkeys(phrases))
            quoted = '", "'.join(unique[:3])
            reasons.append(SignalReason(
                signal="velocity",
                type="escalation_language",
                description=f'Escalation language detected: "{quoted}"',
                weight=opts.escalation_weight,
            ))

        score = min(score, 1.0)
        return VelocityResult(
            is_high_velocity=score >= HIGH_VELOCITY_THRESHOLD,
            score=score,
            reply_frequency=reply_frequency,
            avg_minutes_between_replies=round(avg_gap, 1),
            escalation_phrases=phrases,
            reasons=reasons,
            message_count=len(messages),
            timespan_hours=round(timespan_hours, 1),
        )

    def analyze_threads(self, items: list[Item]) -> dict[str, VelocityResult]:
        """Group items by thread id and analyze each thread.

        Returns a map keyed by item id so every member of a thread shares the
        thread's result. Items without a thread id are analyzed alone.
        """
        threads: dict[str, list[Item]] = {}
        for item in items:
            threads.setdefault(item.thread_id or item.id, []).append(item)

        results: dict[str, VelocityResult] = {}
        for members in threads.values():
            result = self.analyze(members)
            for item in members:
                results[item.id] = result
        return results

    def update_options(self, **kwargs):
        known = {f.name for f in fields(VelocityOptions)}
        unknown = set(kwargs) - known
        if unknown:
            raise ValueError(f"Unknown velocity options: {', '.join(sorted(unknown))}")
        self.options = replace(self.options, **kwargs)
