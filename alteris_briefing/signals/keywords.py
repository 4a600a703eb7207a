"""Keyword and regex red-flag matching.

Matches a static pattern table (loaded from ``patterns.yaml``) against the
subject, body and sender of an item. Keywords match as substrings first and,
when fuzzy matching is enabled, as a Levenshtein-close window of one to three
words. No LLM calls — purely lexical.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Pattern, Union

import yaml

from alteris_briefing.models import Item, SignalReason, SignalResult

logger = logging.getLogger(__name__)

DEFAULT_PATTERNS_PATH = Path(__file__).parent / "patterns.yaml"

VALID_FIELDS = {"subject", "body", "sender"}
VALID_SEVERITIES = {"high", "medium", "low"}


@dataclass
class RedFlagPattern:
    id: str
    pattern: Union[str, Pattern[str]]
    type: str  # keyword | regex
    severity: str
    weight: float
    category: str
    context_fields: tuple[str, ...] = ("subject", "body")
    description: str = ""
    case_sensitive: bool = False


@dataclass
class PatternMatch:
    pattern: RedFlagPattern
    field: str
    matched_text: str
    position: Optional[int] = None


@dataclass
class KeywordMatchResult:
    matches: list[PatternMatch] = field(default_factory=list)
    aggregate_weight: float = 0.0

    @property
    def total_matches(self) -> int:
        return len(self.matches)

    @property
    def has_matches(self) -> bool:
        return bool(self.matches)

    def to_signal(self) -> SignalResult:
        reasons = [
            SignalReason(
                signal="keyword",
                type="keyword_match",
                description=f'Matched pattern: "{m.pattern.id}" in {m.field}',
                weight=m.pattern.weight,
            )
            for m in self.matches
        ]
        return SignalResult(raw_score=min(self.aggregate_weight, 1.0), reasons=reasons)


# ── Pattern table loading ────────────────────────────────────────

def _compile_pattern(entry: dict) -> RedFlagPattern:
    ptype = str(entry.get("type", "keyword")).lower()
    case_sensitive = bool(entry.get("case_sensitive", False))
    raw = str(entry["pattern"])
    if ptype == "regex":
        flags = 0 if case_sensitive else re.IGNORECASE
        pattern: Union[str, Pattern[str]] = re.compile(raw, flags)
    else:
        pattern = raw

    fields = tuple(f for f in entry.get("context_fields", ["subject", "body"]) if f in VALID_FIELDS)
    severity = str(entry.get("severity", "medium")).lower()

    return RedFlagPattern(
        id=str(entry["id"]),
        pattern=pattern,
        type=ptype,
        severity=severity if severity in VALID_SEVERITIES else "medium",
        weight=float(entry.get("weight", 0.5)),
        category=str(entry.get("category", "urgency")),
        context_fields=fields or ("subject", "body"),
        description=str(entry.get("description", "")),
        case_sensitive=case_sensitive,
    )


def load_patterns(path: Path | None = None) -> list[RedFlagPattern]:
    """Load a pattern table from YAML.

    Expected format:
        patterns:
          - id: ...
            pattern: ...
            type: keyword | regex
            ...
    """
    path = path or DEFAULT_PATTERNS_PATH
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        logger.error("Failed to load red-flag patterns from %s: %s", path, exc)
        return []

    if not isinstance(data, dict) or not isinstance(data.get("patterns"), list):
        logger.warning("Pattern file %s has no 'patterns' list", path)
        return []

    patterns = []
    for entry in data["patterns"]:
        try:
            patterns.append(_compile_pattern(entry))
        except (KeyError, TypeError, ValueError, re.error) as exc:
            logger.warning("Skipping malformed pattern %r: %s", entry, exc)
    logger.debug("Loaded %d red-flag patterns from %s", len(patterns), path)
    return patterns


_default_patterns: list[RedFlagPattern] | None = None


def default_patterns() -> list[RedFlagPattern]:
    global _default_patterns
    if _default_patterns is None:
        _default_patterns = load_patterns()
    return list(_default_patterns)


# ── Fuzzy matching ───────────────────────────────────────────────

def levenshtein(a: str, b: str) -> int:
    """Edit distance with unit costs."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        current = [i]
        for j, cb in enumerate(b, 1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (ca != cb),
            ))
        previous = current
    return previous[-1]


def similarity_ratio(a: str, b: str) -> float:
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1 - levenshtein(a, b) / longest


def _fuzzy_find(
    text: str,
    keyword: str,
    threshold: float,
    max_distance: int,
    case_sensitive: bool,
) -> tuple[Optional[int], str] | None:
    search_text = text if case_sensitive else text.lower()
    search_kw = keyword if case_sensitive else keyword.lower()

    words = search_text.split()
    for i in range(len(words)):
        for span in (1, 2, 3):
            if i + span > len(words):
                break
            candidate = " ".join(words[i:i + span])
            if levenshtein(candidate, search_kw) > max_distance:
                continue
            if similarity_ratio(candidate, search_kw) < threshold:
                continue
            pos = search_text.find(candidate)
            if pos == -1:
                return None, candidate
            return pos, text[pos:pos + len(candidate)]
    return None


# ── Matcher ──────────────────────────────────────────────────────

def _field_value(item: Item, field_name: str) -> str:
    if field_name == "subject":
        return item.subject or ""
    if field_name == "body":
        return item.text or ""
    if field_name == "sender":
        return f"{item.sender_name or ''} {item.sender}".strip()
    return ""


class KeywordMatcher:
    """Matches items against the red-flag pattern table.

    ``combine`` controls how weights of distinct matched patterns aggregate:
    ``"max"`` keeps the strongest, ``"sum"`` adds them (the scorer caps the
    raw score at 1.0 either way).
    """

    def __init__(
        self,
        patterns: list[RedFlagPattern] | None = None,
        enable_fuzzy: bool = True,
        fuzzy_threshold: float = 0.8,
        max_fuzzy_distance: int = 2,
        combine: str = "max",
    ):
        if combine not in ("max", "sum"):
            raise ValueError(f"Unsupported combine mode: {combine}. Use 'max' or 'sum'.")
        self.patterns = patterns if patterns is not None else default_patterns()
        self.enable_fuzzy = enable_fuzzy
        self.fuzzy_threshold = fuzzy_threshold
        self.max_fuzzy_distance = max_fuzzy_distance
        self.combine = combine

    def _match_pattern(self, pattern: RedFlagPattern, item: Item) -> list[PatternMatch]:
        matches = []
        for field_name in pattern.context_fields:
            value = _field_value(item, field_name)
            if not value:
                continue

            if pattern.type == "regex":
                m = pattern.pattern.search(value)  # type: ignore[union-attr]
                if m:
                    matches.append(PatternMatch(pattern, field_name, m.group(0), m.start()))
                continue

            keyword = str(pattern.pattern)
            haystack = value if pattern.case_sensitive else value.lower()
            needle = keyword if pattern.case_sensitive else keyword.lower()
            pos = haystack.find(needle)
            if pos != -1:
                matches.append(PatternMatch(pattern, field_name, value[pos:pos + len(keyword)], pos))
                continue

            if self.enable_fuzzy:
                found = _fuzzy_find(
                    value, keyword, self.fuzzy_threshold,
                    self.max_fuzzy_distance, pattern.case_sensitive,
                )
                if found is not None:
                    fpos, text = found
                    matches.append(PatternMatch(pattern, field_name, text, fpos))
        return matches

    def match_item_with_patterns(
        self, item: Item, patterns: list[RedFlagPattern],
    ) -> KeywordMatchResult:
        all_matches: list[PatternMatch] = []
        for pattern in patterns:
            all_matches.extend(self._match_pattern(pattern, item))

        # One weight per pattern, however many fields it hit
        weights = {m.pattern.id: m.pattern.weight for m in all_matches}
        if not weights:
            aggregate = 0.0
        elif self.combine == "sum":
            aggregate = sum(weights.values())
        else:
            aggregate = max(weights.values())

        return KeywordMatchResult(matches=all_matches, aggregate_weight=aggregate)

    def match_item(self, item: Item) -> KeywordMatchResult:
        return self.match_item_with_patterns(item, self.patterns)

    def get_patterns(self) -> list[RedFlagPattern]:
        return list(self.patterns)

    def set_patterns(self, patterns: list[RedFlagPattern]):
        self.patterns = list(patterns)

    def add_patterns(self, patterns: list[RedFlagPattern]):
        self.patterns = self.patterns + list(patterns)

    def patterns_by_category(self, category: str) -> list[RedFlagPattern]:
        return [p for p in self.patterns if p.category == category]

    def patterns_by_severity(self, severity: str) -> list[RedFlagPattern]:
        return [p for p in self.patterns if p.severity == severity.lower()]

    def patterns_for_field(self, field_name: str) -> list[RedFlagPattern]:
        return [p for p in self.patterns if field_name in p.context_fields]

    def pattern_by_id(self, pattern_id: str) -> RedFlagPattern | None:
        return next((p for p in self.patterns if p.id == pattern_id), None)
