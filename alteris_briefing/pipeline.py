"""Briefing pipeline — fetch, filter, then cluster into Topics.

Flow:
  1. Page through unread items received in the lookback window
  2. Drop items already handled in earlier sessions and muted senders
  3. With a reasoner: presort, batch, resolve batch 1 via the LLM and hand
     the remaining batches back for the background worker
  4. Without one (or if the LLM call fails): score + cluster heuristically
"""

from __future__ import annotations

import dataclasses
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from alteris_briefing.clustering.heuristic import build_heuristic_topics
from alteris_briefing.clustering.preprocess import (
    DEFAULT_BATCH_SIZE,
    BatchPreprocessor,
    batch_to_topics,
)
from alteris_briefing.models import Briefing, Item, PipelineResult

logger = logging.getLogger(__name__)

PAGE_SIZE = 50
MAX_PAGES = 10


@dataclass
class PipelineOptions:
    max_emails: int = 500
    max_topics: int = 50
    lookback_hours: int = 24
    since: Optional[datetime] = None
    vip_emails: list[str] = field(default_factory=list)
    muted_senders: list[str] = field(default_factory=list)
    exclude_ids: set[str] = field(default_factory=set)
    batch_size: int = DEFAULT_BATCH_SIZE
    sender_preferences: Optional[str] = None
    knowledge_entries: list[str] = field(default_factory=list)
    flag_threshold: float = 0.5

    @classmethod
    def from_config(cls, config, **overrides) -> "PipelineOptions":
        opts = cls(
            max_emails=config.max_emails,
            max_topics=config.max_topics,
            lookback_hours=config.lookback_hours,
            vip_emails=list(config.vip_emails),
            muted_senders=list(config.muted_senders),
            batch_size=config.batch_size,
            sender_preferences=config.sender_preferences or None,
            knowledge_entries=list(config.knowledge_entries),
            flag_threshold=config.flag_threshold,
        )
        return dataclasses.replace(opts, **overrides) if overrides else opts


class BriefingPipeline:
    def __init__(self, source, store=None, reasoner=None, options: PipelineOptions | None = None):
        self.source = source
        self.store = store
        self.reasoner = reasoner
        self.options = options or PipelineOptions()

    # ── Fetch ──────────────────────────────────────────────────────

    def fetch(self) -> list[Item]:
        opts = self.options
        since = opts.since or datetime.now(timezone.utc) - timedelta(hours=opts.lookback_hours)

        items: list[Item] = []
        page_token: str | None = None
        for page in range(MAX_PAGES):
            if len(items) >= opts.max_emails:
                break
            paging = {"page_size": min(PAGE_SIZE, opts.max_emails - len(items))}
            if page_token:
                paging["page_token"] = page_token
            try:
                result = self.source.fetch_unread({"after": since}, paging)
            except Exception as e:
                logger.error("Fetch failed on page %d, continuing with %d items: %s", page + 1, len(items), e)
                break

            items.extend(result.items)
            page_token = result.next_page_token
            logger.info("Fetched page %d: %d items (%d so far)", page + 1, len(result.items), len(items))
            if not page_token or not result.items:
                break
        return items

    def _excluded_ids(self, user_id: str | None) -> set[str]:
        excluded = set(self.options.exclude_ids)
        if self.store is not None and user_id:
            try:
                excluded |= self.store.get_briefed_ids(user_id)
            except Exception as e:
                logger.warning("Could not load briefed ids for %s: %s", user_id, e)
        return excluded

    def filter(self, items: list[Item], user_id: str | None = None) -> list[Item]:
        excluded = self._excluded_ids(user_id)
        muted = {s.strip().lower() for s in self.options.muted_senders}
        vips = {v.strip().lower() for v in self.options.vip_emails}

        kept = []
        for item in items:
            if item.id in excluded:
                continue
            sender = item.sender.lower()
            if sender in muted:
                continue
            if sender in vips and not item.is_vip:
                item = dataclasses.replace(item, is_vip=True)
            kept.append(item)

        logger.info(
            "Filtered %d fetched items: %d excluded, %d remaining",
            len(items), len(items) - len(kept), len(kept),
        )
        return kept

    # ── Run ────────────────────────────────────────────────────────

    def run(self, user_id: str | None = None) -> PipelineResult:
        start = time.monotonic()
        raw = self.fetch()
        items = self.filter(raw, user_id)

        if not items:
            return PipelineResult(briefing=Briefing(duration_ms=_elapsed_ms(start), total_fetched=len(raw)))

        if self.reasoner is not None:
            try:
                return self._run_llm(items, len(raw), start)
            except Exception as e:
                logger.warning("LLM preprocessing failed, falling back to heuristic clustering: %s", e)

        return PipelineResult(briefing=self._run_heuristic(items, len(raw), start))

    def _run_llm(self, items: list[Item], total_fetched: int, start: float) -> PipelineResult:
        opts = self.options
        preprocessor = BatchPreprocessor(
            self.reasoner,
            vip_emails=opts.vip_emails,
            batch_size=opts.batch_size,
            sender_preferences=opts.sender_preferences,
            knowledge_entries=opts.knowledge_entries,
        )
        result = preprocessor.preprocess(items)
        topics, scores = batch_to_topics(result.batches[0], result.first_batch, opts.vip_emails)

        briefing = Briefing(
            topics=topics,
            total_emails=len(items),
            total_flagged=sum(1 for s in scores.values() if s.is_flagged),
            score_map=scores,
            duration_ms=_elapsed_ms(start),
            total_fetched=total_fetched,
            triage_summary=result.skipped_summary,
        )
        logger.info(
            "LLM briefing ready: %d topics from %d items, %d batches queued (%dms)",
            len(topics), len(result.first_batch), len(result.remaining_batches), briefing.duration_ms,
        )
        return PipelineResult(briefing=briefing, remaining_batches=result.remaining_batches)

    def _run_heuristic(self, items: list[Item], total_fetched: int, start: float) -> Briefing:
        topics, scores = build_heuristic_topics(
            items, self.options.vip_emails, self.options.max_topics, self.options.flag_threshold,
        )
        briefing = Briefing(
            topics=topics,
            total_emails=len(items),
            total_flagged=sum(1 for s in scores.values() if s.is_flagged),
            score_map=scores,
            duration_ms=_elapsed_ms(start),
            total_fetched=total_fetched,
        )
        logger.info("Heuristic briefing ready: %d topics (%dms)", len(topics), briefing.duration_ms)
        return briefing


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
