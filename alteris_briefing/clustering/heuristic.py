"""Heuristic topic clustering and the no-LLM briefing path.

Groups items first by thread id, then by normalized subject, merging subject
groups whose keyword sets overlap enough. ``build_heuristic_topics`` scores
every item and turns the clusters into briefing Topics; the pipeline uses it
when no reasoner is configured or the LLM path fails.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Optional

from alteris_briefing.models import CompositeScore, Item, ItemRef, Topic
from alteris_briefing.signals.calendar import STOP_WORDS, extract_keywords
from alteris_briefing.signals.keywords import KeywordMatcher
from alteris_briefing.signals.scorer import SignalScorer, Signals
from alteris_briefing.signals.vip import VipDetector

logger = logging.getLogger(__name__)

CLUSTER_STOP_WORDS = STOP_WORDS | {"from"}

_SUBJECT_PREFIXES = [
    re.compile(r"^re:\s*", re.IGNORECASE),
    re.compile(r"^fwd?:\s*", re.IGNORECASE),
    re.compile(r"^fw:\s*", re.IGNORECASE),
    re.compile(r"^\[.*?\]\s*"),
]
_WHITESPACE = re.compile(r"\s+")

UNCLUSTERED_TOPIC_ID = "unclustered"
UNCLUSTERED_TOPIC_LABEL = "Other Messages"


def normalize_subject(subject: str) -> str:
    """Strip reply/forward prefixes and [tags], repeatedly, then collapse whitespace."""
    normalized = subject
    changed = True
    while changed:
        changed = False
        for prefix in _SUBJECT_PREFIXES:
            stripped = prefix.sub("", normalized, count=1)
            if stripped != normalized:
                normalized = stripped
                changed = True
    return _WHITESPACE.sub(" ", normalized.strip())


def keywords_of(text: str) -> set[str]:
    return extract_keywords(text, CLUSTER_STOP_WORDS)


def keyword_similarity(a: set[str], b: set[str]) -> float:
    """Jaccard similarity; two empty sets count as identical."""
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def _item_text(item: Item) -> str:
    return f"{item.subject} {item.text or ''}"


@dataclass
class TopicCluster:
    id: str
    topic: str
    email_ids: list[str]
    thread_ids: list[str] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)
    coherence: float = 1.0

    @property
    def size(self) -> int:
        return len(self.email_ids)


@dataclass
class ClusteringResult:
    clusters: list[TopicCluster] = field(default_factory=list)
    total_items: int = 0
    unclustered_ids: list[str] = field(default_factory=list)

    @property
    def cluster_count(self) -> int:
        return len(self.clusters)

    def cluster_for(self, item_id: str) -> TopicCluster | None:
        return next((c for c in self.clusters if item_id in c.email_ids), None)


class TopicClusterer:
    def __init__(
        self,
        similarity_threshold: float = 0.5,
        use_thread_ids: bool = True,
        normalize_subjects: bool = True,
        min_cluster_size: int = 2,
        similarity: Callable[[set[str], set[str]], float] = keyword_similarity,
    ):
        self.similarity_threshold = similarity_threshold
        self.use_thread_ids = use_thread_ids
        self.normalize_subjects = normalize_subjects
        self.min_cluster_size = min_cluster_size
        self.similarity = similarity

    def _subject(self, item: Item) -> str:
        return normalize_subject(item.subject) if self.normalize_subjects else item.subject

    def cluster(self, items: list[Item]) -> ClusteringResult:
        if not items:
            return ClusteringResult()

        by_id = {item.id: item for item in items}
        groups: list[list[str]] = []
        processed: set[str] = set()

        if self.use_thread_ids:
            threads: dict[str, list[str]] = {}
            for item in items:
                if item.thread_id:
                    threads.setdefault(item.thread_id, []).append(item.id)
            for ids in threads.values():
                if len(ids) >= self.min_cluster_size:
                    groups.append(ids)
                    processed.update(ids)

        remaining = [item for item in items if item.id not in processed]
        subjects: dict[str, list[str]] = {}
        for item in remaining:
            subjects.setdefault(self._subject(item), []).append(item.id)

        subject_list = list(subjects)
        merged: set[str] = set()
        for i, subject in enumerate(subject_list):
            if subject in merged:
                continue
            group = subjects[subject]
            kw = keywords_of(subject)
            for other in subject_list[i + 1:]:
                if other in merged:
                    continue
                if self.similarity(kw, keywords_of(other)) >= self.similarity_threshold:
                    group.extend(subjects[other])
                    merged.add(other)
            if len(group) >= self.min_cluster_size:
                groups.append(group)
                processed.update(group)

        clusters = [self._build_cluster(n, ids, by_id) for n, ids in enumerate(groups, 1)]
        clusters.sort(key=lambda c: c.size, reverse=True)

        return ClusteringResult(
            clusters=clusters,
            total_items=len(items),
            unclustered_ids=[item.id for item in items if item.id not in processed],
        )

    def _build_cluster(self, n: int, ids: list[str], by_id: dict[str, Item]) -> TopicCluster:
        members = [by_id[i] for i in ids]
        member_keywords = [keywords_of(_item_text(m)) for m in members]

        freq: Counter[str] = Counter()
        for kws in member_keywords:
            freq.update(kws)

        total, pairs = 0.0, 0
        for a in range(len(member_keywords)):
            for b in range(a + 1, len(member_keywords)):
                total += self.similarity(member_keywords[a], member_keywords[b])
                pairs += 1
        coherence = total / pairs if pairs else 1.0

        thread_ids = list(dict.fromkeys(m.thread_id for m in members if m.thread_id))

        return TopicCluster(
            id=f"cluster-{n}",
            topic=self._subject(members[0]),
            email_ids=list(ids),
            thread_ids=thread_ids,
            keywords=[kw for kw, _ in freq.most_common(5)],
            coherence=round(coherence, 2),
        )


# ── Heuristic briefing path ──────────────────────────────────────

def score_items(
    items: list[Item],
    vip_emails: list[str] | None = None,
    flag_threshold: float = 0.5,
) -> dict[str, CompositeScore]:
    """Score items with the lexical signals only (keyword + VIP)."""
    matcher = KeywordMatcher()
    vip = VipDetector.from_emails(vip_emails or [])
    scorer = SignalScorer(flag_threshold=flag_threshold)
    return {
        item.id: scorer.score(Signals(keyword=matcher.match_item(item), vip=vip.detect(item)))
        for item in items
    }


def _topic_from(
    topic_id: str,
    label: str,
    ids: list[str],
    by_id: dict[str, Item],
    scores: dict[str, CompositeScore],
    keywords: list[str] | None = None,
) -> Topic:
    ordered = sorted(ids, key=lambda i: scores[i].score, reverse=True)
    refs = [ItemRef.from_item(by_id[i], scores[i]) for i in ordered]
    return Topic(
        id=topic_id,
        label=label,
        items=refs,
        keywords=list(keywords or []),
        max_score=max((scores[i].score for i in ordered), default=0.0),
        flagged_count=sum(1 for i in ordered if scores[i].is_flagged),
    )


def build_heuristic_topics(
    items: list[Item],
    vip_emails: list[str] | None = None,
    max_topics: Optional[int] = 50,
    flag_threshold: float = 0.5,
) -> tuple[list[Topic], dict[str, CompositeScore]]:
    """Score, cluster and order items into Topics.

    Returns the topics plus the score map keyed by item id.
    """
    if not items:
        return [], {}

    scores = score_items(items, vip_emails, flag_threshold)
    by_id = {item.id: item for item in items}
    result = TopicClusterer(min_cluster_size=2).cluster(items)

    topics = [
        _topic_from(c.id, c.topic, c.email_ids, by_id, scores, c.keywords)
        for c in result.clusters
    ]
    if result.unclustered_ids:
        topics.append(_topic_from(
            UNCLUSTERED_TOPIC_ID, UNCLUSTERED_TOPIC_LABEL,
            result.unclustered_ids, by_id, scores,
        ))

    topics.sort(key=lambda t: (-t.flagged_count, -t.max_score, -t.size))
    if max_topics is not None:
        topics = topics[:max_topics]

    logger.info(
        "Heuristic clustering: %d items -> %d topics (%d flagged)",
        len(items), len(topics), sum(1 for s in scores.values() if s.is_flagged),
    )
    return topics, scores
