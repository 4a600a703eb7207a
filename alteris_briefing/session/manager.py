"""Session manager — owns every live briefing session in the host process.

``create`` runs the pipeline (batch 1 awaited), seeds a tracker, wires the
reasoning loop and starts the background worker for the remaining batches.
``remove`` stops the worker after its batch in flight, then flushes the
tracker to the lifecycle store.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from alteris_briefing.clustering.preprocess import BatchPreprocessor
from alteris_briefing.config import BriefingConfig
from alteris_briefing.models import Briefing
from alteris_briefing.pipeline import BriefingPipeline, PipelineOptions
from alteris_briefing.reasoning.loop import ReasoningLoop, TTSCallback
from alteris_briefing.reasoning.prompts import (
    SystemPromptContext,
    generate_briefing_closing,
    generate_briefing_opening,
    time_of_day,
)
from alteris_briefing.session.tracker import SessionTracker
from alteris_briefing.session.worker import BackgroundBatchWorker
from alteris_briefing.tools import ToolState

logger = logging.getLogger(__name__)


@dataclass
class BriefingSession:
    session_id: str
    user_id: Optional[str]
    briefing: Briefing
    tracker: SessionTracker
    loop: ReasoningLoop
    worker: Optional[BackgroundBatchWorker] = None
    user_name: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def opening_text(self) -> str:
        progress = self.tracker.get_progress()
        labels = [t.label for t in self.tracker.topics]
        return generate_briefing_opening(progress.total_emails, labels, self.user_name)

    def closing_text(self) -> str:
        handled = self.tracker.get_handled_email_ids()
        actions = sum(1 for h in handled if h["status"] == "actioned")
        flagged = sum(1 for h in handled if h.get("action") == "flagged")
        return generate_briefing_closing(actions, flagged)


class SessionManager:
    def __init__(self, reasoner=None, store=None, config: BriefingConfig | None = None):
        self.reasoner = reasoner
        self.store = store
        self.config = config or BriefingConfig()
        self._sessions: dict[str, BriefingSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def get(self, session_id: str) -> BriefingSession | None:
        return self._sessions.get(session_id)

    def list_sessions(self) -> list[str]:
        return list(self._sessions)

    async def create(
        self,
        session_id: str,
        source,
        user_id: str | None = None,
        mailbox=None,
        tts: TTSCallback | None = None,
        options: PipelineOptions | None = None,
    ) -> BriefingSession:
        if session_id in self._sessions:
            raise ValueError(f"Session already exists: {session_id}")

        cfg = self.config
        user_id = user_id or cfg.user_id
        opts = options or PipelineOptions.from_config(cfg)
        pipeline = BriefingPipeline(source, store=self.store, reasoner=self.reasoner, options=opts)
        result = await asyncio.to_thread(pipeline.run, user_id)

        tracker = SessionTracker(result.briefing.topics, store=self.store, user_id=user_id)
        tool_state = ToolState(
            vip_emails={v.lower() for v in opts.vip_emails},
            muted_senders={m.lower(): "forever" for m in opts.muted_senders},
        )
        prompt_context = SystemPromptContext(
            user_name=cfg.user_name,
            time_of_day=time_of_day(datetime.now().hour),
            vip_names=list(opts.vip_emails),
            muted_senders=list(opts.muted_senders),
            verbosity=cfg.verbosity,
            mode=cfg.mode,
        )
        loop = ReasoningLoop(
            self.reasoner, tracker,
            prompt_context=prompt_context, mailbox=mailbox, tts=tts, tool_state=tool_state,
        )

        worker = None
        if result.remaining_batches and self.reasoner is not None:
            preprocessor = BatchPreprocessor(
                self.reasoner,
                vip_emails=opts.vip_emails,
                batch_size=opts.batch_size,
                sender_preferences=opts.sender_preferences,
                knowledge_entries=opts.knowledge_entries,
            )
            worker = BackgroundBatchWorker(
                preprocessor, tracker, result.remaining_batches,
                vip_emails=opts.vip_emails, on_alert=loop.inject_system_alert,
            )
            worker.start()

        session = BriefingSession(
            session_id=session_id,
            user_id=user_id,
            briefing=result.briefing,
            tracker=tracker,
            loop=loop,
            worker=worker,
            user_name=cfg.user_name,
        )
        self._sessions[session_id] = session
        logger.info(
            "Session %s created: %d topics, %d items, %d batches in background",
            session_id, len(result.briefing.topics), result.briefing.total_emails, len(result.remaining_batches),
        )
        return session

    async def remove(self, session_id: str) -> BriefingSession | None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return None

        if session.worker is not None:
            await session.worker.stop()
        flushed = await asyncio.to_thread(session.tracker.flush_to_store)
        session.tracker.close()
        logger.info("Session %s removed, %d lifecycle records flushed", session_id, flushed)
        return session

    async def close_all(self):
        for session_id in list(self._sessions):
            await self.remove(session_id)
