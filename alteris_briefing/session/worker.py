"""Background batch worker — resolves batches 2..N while the session is live.

Batches run one at a time off the event loop. Each resolved batch becomes
Topics that are appended to the tracker in a single ``add_topics`` call, so a
batch is either fully visible to the conversation or not at all. A failed
batch falls back to heuristic topics so its items are still briefed.

``stop()`` lets the batch in flight finish and discards everything after it.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Callable, Optional

from alteris_briefing.clustering.heuristic import build_heuristic_topics
from alteris_briefing.clustering.preprocess import BatchPreprocessor, batch_to_topics
from alteris_briefing.models import Item, Topic

logger = logging.getLogger(__name__)

AlertCallback = Callable[[str], None]


def high_priority_alert(topics: list[Topic]) -> Optional[str]:
    refs = [r for t in topics for r in t.items if r.priority == "high" or r.is_flagged]
    if not refs:
        return None
    subjects = "; ".join(f'"{r.subject}" from {r.sender}' for r in refs[:3])
    more = f" and {len(refs) - 3} more" if len(refs) > 3 else ""
    return (
        f"ALERT: {len(refs)} new high-priority email{'s' if len(refs) != 1 else ''} "
        f"joined the briefing: {subjects}{more}. "
        "After finishing the current email, let the user know they were added at the end."
    )


class BackgroundBatchWorker:
    def __init__(
        self,
        preprocessor: BatchPreprocessor,
        tracker,
        batches: list[list[Item]],
        vip_emails: list[str] | None = None,
        on_alert: AlertCallback | None = None,
        first_batch_index: int = 1,
    ):
        self.preprocessor = preprocessor
        self.tracker = tracker
        self.batches = list(batches)
        self.vip_emails = list(vip_emails or [])
        self.on_alert = on_alert
        self.first_batch_index = first_batch_index

        self.processed = 0
        self.failed = 0
        self.topics_added = 0

        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def is_stopped(self) -> bool:
        return self._stop.is_set()

    def start(self) -> asyncio.Task | None:
        if self._task is not None:
            return self._task
        if not self.batches:
            logger.debug("No remaining batches, background worker not started")
            return None
        self._task = asyncio.create_task(self._run(), name="briefing-batches")
        logger.info("Background worker started: %d batches queued", len(self.batches))
        return self._task

    async def stop(self):
        """Stop after the batch in flight. Waits for it to finish."""
        self._stop.set()
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info(
            "Background worker stopped: %d/%d batches processed (%d fell back), %d topics added",
            self.processed, len(self.batches), self.failed, self.topics_added,
        )

    async def wait(self):
        if self._task is not None:
            await self._task

    async def _run(self):
        for offset, batch in enumerate(self.batches):
            if self._stop.is_set():
                logger.info("Session ended, discarding %d unprocessed batches", len(self.batches) - offset)
                return
            index = self.first_batch_index + offset
            topics = await self._resolve(batch, index)

            # Session may have ended while the batch was in flight
            if self._stop.is_set():
                logger.info("Session ended during batch %d, discarding its result", index)
                return
            self._apply(topics, index)

    async def _resolve(self, batch: list[Item], index: int) -> list[Topic]:
        try:
            result = await asyncio.to_thread(self.preprocessor.preprocess_batch, batch, index)
            topics, _ = batch_to_topics(result, batch, self.vip_emails)
            topics = [_prefix_ids(t, index) for t in topics]
            if result.is_fallback:
                self.failed += 1
        except Exception as e:
            logger.warning("Batch %d failed, using heuristic topics for its %d items: %s", index, len(batch), e)
            self.failed += 1
            topics, _ = build_heuristic_topics(batch, self.vip_emails, max_topics=None)
            topics = [_prefix_ids(t, index) for t in topics]
        self.processed += 1
        return topics

    def _apply(self, topics: list[Topic], index: int):
        added = self.tracker.add_topics(topics)
        self.topics_added += added
        logger.info("Batch %d: %d topics appended", index, added)

        if added and self.on_alert is not None:
            message = high_priority_alert(topics)
            if message:
                try:
                    self.on_alert(message)
                except Exception as e:
                    logger.warning("Alert callback failed: %s", e)


def _prefix_ids(topic: Topic, index: int) -> Topic:
    """Topic ids restart with every batch; make them unique per session."""
    return replace(topic, id=f"batch{index}-{topic.id}")
