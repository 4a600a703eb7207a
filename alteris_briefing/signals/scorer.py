"""Composite red-flag scoring.

Combines up to four detector results into one score in [0, 1] as a weighted
average over the signals that are actually present, so a missing detector
never drags an item down.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields, replace
from typing import Any, Optional

from alteris_briefing.models import (
    SIGNAL_NAMES,
    CompositeScore,
    SignalBreakdown,
    SignalReason,
    SignalResult,
)

logger = logging.getLogger(__name__)


@dataclass
class ScorerOptions:
    keyword_weight: float = 0.8
    vip_weight: float = 0.7
    velocity_weight: float = 0.9
    calendar_weight: float = 0.6
    flag_threshold: float = 0.3
    critical_threshold: float = 0.9
    high_threshold: float = 0.7
    medium_threshold: float = 0.5
    low_threshold: float = 0.3

    def weight_for(self, signal: str) -> float:
        return getattr(self, f"{signal}_weight")


@dataclass
class Signals:
    """Detector outputs for one item. Each slot takes a SignalResult or any
    detector result exposing ``to_signal()``."""

    keyword: Optional[Any] = None
    vip: Optional[Any] = None
    velocity: Optional[Any] = None
    calendar: Optional[Any] = None


def _as_signal(value) -> SignalResult:
    if isinstance(value, SignalResult):
        return value
    return value.to_signal()


class SignalScorer:
    def __init__(self, options: ScorerOptions | None = None, **overrides):
        self.options = options or ScorerOptions()
        if overrides:
            self.update_options(**overrides)

    def get_severity(self, score: float) -> Optional[str]:
        opts = self.options
        if score < opts.low_threshold:
            return None
        if score >= opts.critical_threshold:
            return "critical"
        if score >= opts.high_threshold:
            return "high"
        if score >= opts.medium_threshold:
            return "medium"
        return "low"

    def should_flag(self, score: float) -> bool:
        return score >= self.options.flag_threshold

    def score(self, signals: Signals) -> CompositeScore:
        breakdown: list[SignalBreakdown] = []
        reasons: list[SignalReason] = []
        weighted_total = 0.0
        weight_total = 0.0

        for name in SIGNAL_NAMES:
            weight = self.options.weight_for(name)
            value = getattr(signals, name)
            if value is None:
                breakdown.append(SignalBreakdown(name, 0.0, weight, 0.0, False))
                continue

            result = _as_signal(value)
            raw = min(max(result.raw_score, 0.0), 1.0)
            contribution = raw * weight
            weighted_total += contribution
            weight_total += weight
            breakdown.append(SignalBreakdown(name, raw, weight, contribution, True))
            reasons.extend(replace(r, signal=name) for r in result.reasons)

        composite = weighted_total / weight_total if weight_total > 0 else 0.0
        composite = min(composite, 1.0)

        return CompositeScore(
            score=composite,
            is_flagged=self.should_flag(composite),
            severity=self.get_severity(composite),
            reasons=reasons,
            breakdown=breakdown,
        )

    def score_items(self, signals_by_id: dict[str, Signals]) -> dict[str, CompositeScore]:
        return {item_id: self.score(s) for item_id, s in signals_by_id.items()}

    def update_options(self, **kwargs):
        known = {f.name for f in fields(ScorerOptions)}
        unknown = set(kwargs) - known
        if unknown:
            raise ValueError(f"Unknown scorer options: {', '.join(sorted(unknown))}")
        self.options = replace(self.options, **kwargs)
