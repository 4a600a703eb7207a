"""Batched LLM preprocessing.

Items are presorted (VIP, replied-to, recency), split into fixed-size
batches, and each batch is sent to the reasoner in one call that clusters,
prioritizes and summarizes it. Only batch 1 is resolved up front; the rest
are handed back raw for background processing.

The model's JSON goes through json_repair and pydantic. A reply that still
cannot be parsed degrades to a single "Inbox" cluster instead of raising.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from json_repair import repair_json
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from alteris_briefing.models import (
    PRIORITY_ORDER,
    PRIORITY_SCORES,
    CompositeScore,
    Item,
    ItemRef,
    SignalReason,
    Topic,
)

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 25
PREVIEW_CHARS = 100
FALLBACK_LABEL = "Inbox"
VALID_PRIORITIES = ("high", "medium", "low")


# ══════════════════════════════════════════════════════════════════
# Response models
# ══════════════════════════════════════════════════════════════════

def _clean_priority(v) -> str:
    v = str(v or "").lower().strip()
    return v if v in VALID_PRIORITIES else "medium"


class PreprocessedItem(BaseModel):
    """One item as classified by the model."""
    model_config = ConfigDict(populate_by_name=True)

    email_id: str = Field(alias="emailId")
    priority: str = "medium"
    summary: str = ""
    cluster_label: str = Field(default="", alias="clusterLabel")

    @field_validator("email_id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return str(v).strip()

    @field_validator("priority", mode="before")
    @classmethod
    def validate_priority(cls, v):
        return _clean_priority(v)

    @field_validator("summary", mode="before")
    @classmethod
    def clean_summary(cls, v):
        return str(v or "").strip()[:300]


class PreprocessedCluster(BaseModel):
    label: str = FALLBACK_LABEL
    priority: str = "medium"
    emails: list[PreprocessedItem] = Field(default_factory=list)

    @field_validator("label", mode="before")
    @classmethod
    def clean_label(cls, v):
        return str(v or "").strip()[:100] or FALLBACK_LABEL

    @field_validator("priority", mode="before")
    @classmethod
    def validate_priority(cls, v):
        return _clean_priority(v)


class BatchResponse(BaseModel):
    clusters: list[PreprocessedCluster]


@dataclass
class BatchResult:
    batch_index: int
    emails: list[PreprocessedItem] = field(default_factory=list)
    clusters: list[PreprocessedCluster] = field(default_factory=list)
    is_fallback: bool = False


@dataclass
class PreprocessResult:
    batches: list[BatchResult] = field(default_factory=list)
    first_batch: list[Item] = field(default_factory=list)
    remaining_batches: list[list[Item]] = field(default_factory=list)
    total_fetched: int = 0
    skipped_summary: str = ""


# ══════════════════════════════════════════════════════════════════
# Presort / batching
# ══════════════════════════════════════════════════════════════════

def _vip_set(vip_emails: list[str] | None) -> set[str]:
    return {e.strip().lower() for e in (vip_emails or [])}


def presort_items(items: list[Item], vip_emails: list[str] | None = None) -> list[Item]:
    """VIP senders first, then threads the user replied to, then newest first."""
    vips = _vip_set(vip_emails)
    return sorted(
        items,
        key=lambda i: (
            i.sender.lower() not in vips,
            not i.has_been_replied_to,
            -i.received_at.timestamp(),
        ),
    )


def split_batches(items: list[Item], batch_size: int = DEFAULT_BATCH_SIZE) -> list[list[Item]]:
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    return [items[i:i + batch_size] for i in range(0, len(items), batch_size)]


def format_age(received_at: datetime, now: datetime) -> str:
    if received_at.tzinfo is None and now.tzinfo is not None:
        received_at = received_at.replace(tzinfo=timezone.utc)
    minutes = int((now - received_at).total_seconds() // 60)
    if minutes < 60:
        return f"{minutes}m ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h ago"
    return f"{hours // 24}d ago"


# ══════════════════════════════════════════════════════════════════
# Prompt
# ══════════════════════════════════════════════════════════════════

RESPONSE_SHAPE = """{
  "clusters": [
    {
      "label": "Topic Name",
      "priority": "high",
      "emails": [
        { "emailId": "...", "priority": "high", "summary": "...", "clusterLabel": "Topic Name" }
      ]
    }
  ]
}"""


def build_batch_prompt(
    batch: list[Item],
    vip_emails: list[str] | None = None,
    sender_preferences: str | None = None,
    knowledge_entries: list[str] | None = None,
    now: datetime | None = None,
) -> tuple[str, str]:
    """Return (system_prompt, user_message) for one batch."""
    now = now or datetime.now(timezone.utc)
    vip_emails = vip_emails or []

    vip_line = f"\nVIP contacts (always HIGH): {', '.join(vip_emails)}" if vip_emails else ""
    preferences_block = f"\n{sender_preferences}\n" if sender_preferences else ""
    knowledge_block = ""
    if knowledge_entries:
        bullets = "\n".join(f"- {e}" for e in knowledge_entries)
        knowledge_block = f"\nDOMAIN KNOWLEDGE (from user's memory):\n{bullets}\n"

    system = (
        "You are an executive assistant preprocessing emails for a voice briefing.\n"
        f"Process these {len(batch)} emails:\n"
        "\n"
        "1. CLUSTER: Group semantically related emails into topics\n"
        '2. PRIORITIZE each as "high", "medium", or "low":\n'
        "   - HIGH: Immediate attention, important people, time-sensitive, financial/legal\n"
        "   - MEDIUM: Relevant but not urgent, can be handled today\n"
        "   - LOW: Newsletters, notifications, automated, FYI-only\n"
        "3. SUMMARIZE each in one voice-friendly sentence (will be spoken aloud by a "
        "voice assistant, so keep it natural and concise)\n"
        f"{vip_line}{preferences_block}{knowledge_block}\n"
        "Return ONLY valid JSON with this exact structure:\n"
        f"{RESPONSE_SHAPE}"
    )

    lines = [
        f"[{i}] id:{item.id} | From: {item.sender} | Subject: {item.subject} | "
        f"Preview: {(item.snippet or '')[:PREVIEW_CHARS]} | Time: {format_age(item.received_at, now)}"
        for i, item in enumerate(batch)
    ]
    return system, "EMAILS:\n" + "\n".join(lines)


# ══════════════════════════════════════════════════════════════════
# Parsing
# ══════════════════════════════════════════════════════════════════

def _clean_llm_output(raw: str) -> str:
    """Strip thinking tags and markdown fences from LLM output."""
    cleaned = raw.strip()
    if "<think>" in cleaned:
        parts = cleaned.split("</think>")
        cleaned = parts[-1].strip() if len(parts) > 1 else cleaned
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")
        lines = [l for l in lines if not l.strip().startswith("```")]
        cleaned = "\n".join(lines).strip()
    return cleaned


def fallback_batch(batch: list[Item], batch_index: int, vip_emails: list[str] | None = None) -> BatchResult:
    """Single Inbox cluster: VIP items high, everything else medium."""
    vips = _vip_set(vip_emails)
    emails = [
        PreprocessedItem(
            email_id=item.id,
            priority="high" if (item.is_vip or item.sender.lower() in vips) else "medium",
            summary=f"{item.subject} from {item.sender}",
            cluster_label=FALLBACK_LABEL,
        )
        for item in batch
    ]
    cluster = PreprocessedCluster(label=FALLBACK_LABEL, priority="medium", emails=emails)
    return BatchResult(batch_index=batch_index, emails=emails, clusters=[cluster], is_fallback=True)


def parse_batch_response(
    raw: str,
    batch: list[Item],
    batch_index: int = 0,
    vip_emails: list[str] | None = None,
) -> BatchResult:
    """Parse a model reply into a BatchResult. Never raises."""
    if not raw or not raw.strip():
        logger.warning("Empty preprocessing response for batch %d", batch_index)
        return fallback_batch(batch, batch_index, vip_emails)

    cleaned = _clean_llm_output(raw)
    try:
        parsed = repair_json(cleaned, return_objects=True)
    except Exception:
        parsed = None
    if not parsed:
        try:
            parsed = json.loads(cleaned)
        except json.JSONDecodeError:
            parsed = None

    if not isinstance(parsed, dict):
        logger.warning("Unparseable preprocessing response for batch %d: %s...", batch_index, raw[:300])
        return fallback_batch(batch, batch_index, vip_emails)

    try:
        response = BatchResponse.model_validate(parsed)
    except ValidationError as e:
        logger.warning("Invalid preprocessing response for batch %d: %s", batch_index, e)
        return fallback_batch(batch, batch_index, vip_emails)

    emails = [e for c in response.clusters for e in c.emails]
    return BatchResult(batch_index=batch_index, emails=emails, clusters=response.clusters)


# ══════════════════════════════════════════════════════════════════
# Conversion to topics
# ══════════════════════════════════════════════════════════════════

def _llm_score(priority: str, summary: str) -> CompositeScore:
    return CompositeScore(
        score=PRIORITY_SCORES.get(priority, 0.5),
        is_flagged=priority == "high",
        severity=None,
        reasons=[SignalReason(signal="keyword", type="llm", description=summary, weight=1.0)],
    )


def _make_topic(topic_id: str, label: str, priority: str, refs: list[ItemRef], scores: dict[str, CompositeScore]) -> Topic:
    return Topic(
        id=topic_id,
        label=label,
        items=refs,
        priority=priority,
        max_score=max((scores[r.email_id].score for r in refs), default=0.0),
        flagged_count=sum(1 for r in refs if r.is_flagged),
    )


def batch_to_topics(
    result: BatchResult,
    batch: list[Item],
    vip_emails: list[str] | None = None,
) -> tuple[list[Topic], dict[str, CompositeScore]]:
    """Turn a BatchResult into Topics covering every item of the batch once.

    Ids the model invented are dropped. Items the model left out land in a
    trailing "Inbox" topic.
    """
    by_id = {item.id: item for item in batch}
    seen: set[str] = set()
    scores: dict[str, CompositeScore] = {}
    topics: list[Topic] = []

    for i, cluster in enumerate(result.clusters):
        refs = []
        for pe in cluster.emails:
            item = by_id.get(pe.email_id)
            if item is None or pe.email_id in seen:
                continue
            seen.add(pe.email_id)
            summary = pe.summary or f"{item.subject} from {item.sender}"
            scores[item.id] = _llm_score(pe.priority, summary)
            refs.append(ItemRef(
                email_id=item.id,
                subject=item.subject,
                sender=item.sender,
                thread_id=item.thread_id,
                is_flagged=pe.priority == "high",
                priority=pe.priority,
                summary=summary,
            ))
        if refs:
            topics.append(_make_topic(f"llm-cluster-{i}", cluster.label, cluster.priority, refs, scores))

    omitted = [item for item in batch if item.id not in seen]
    if omitted:
        logger.info("Model omitted %d of %d items in batch %d", len(omitted), len(batch), result.batch_index)
        fallback = fallback_batch(omitted, result.batch_index, vip_emails)
        refs = []
        for pe in fallback.emails:
            item = by_id[pe.email_id]
            scores[item.id] = _llm_score(pe.priority, pe.summary)
            refs.append(ItemRef(
                email_id=item.id,
                subject=item.subject,
                sender=item.sender,
                thread_id=item.thread_id,
                is_flagged=pe.priority == "high",
                priority=pe.priority,
                summary=pe.summary,
            ))
        topics.append(_make_topic(f"llm-cluster-{len(result.clusters)}", FALLBACK_LABEL, "medium", refs, scores))

    topics.sort(key=lambda t: (PRIORITY_ORDER.get(t.priority or "medium", 1), -t.flagged_count))
    return topics, scores


# ══════════════════════════════════════════════════════════════════
# Preprocessor
# ══════════════════════════════════════════════════════════════════

class BatchPreprocessor:
    """Runs batches through a reasoner's ``complete(system, user)``.

    Reasoner exceptions propagate; the caller decides on the fallback.
    """

    def __init__(
        self,
        reasoner,
        vip_emails: list[str] | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        sender_preferences: Optional[str] = None,
        knowledge_entries: list[str] | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.reasoner = reasoner
        self.vip_emails = list(vip_emails or [])
        self.batch_size = batch_size
        self.sender_preferences = sender_preferences
        self.knowledge_entries = list(knowledge_entries or [])
        self._clock = clock

    def preprocess_batch(self, batch: list[Item], batch_index: int = 0) -> BatchResult:
        if not batch:
            return BatchResult(batch_index=batch_index)
        system, user = build_batch_prompt(
            batch,
            vip_emails=self.vip_emails,
            sender_preferences=self.sender_preferences,
            knowledge_entries=self.knowledge_entries,
            now=self._clock(),
        )
        logger.info("Preprocessing batch %d (%d items)", batch_index, len(batch))
        raw = self.reasoner.complete(system, user)
        return parse_batch_response(raw, batch, batch_index, self.vip_emails)

    def preprocess(self, items: list[Item]) -> PreprocessResult:
        """Resolve batch 1 now and return the remaining raw batches."""
        batches = split_batches(presort_items(items, self.vip_emails), self.batch_size)
        if not batches:
            return PreprocessResult()

        first = self.preprocess_batch(batches[0], batch_index=0)
        return PreprocessResult(
            batches=[first],
            first_batch=batches[0],
            remaining_batches=batches[1:],
            total_fetched=len(items),
        )
