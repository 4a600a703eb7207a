"""Session tracker — cursor and per-item status for one live briefing.

Every item is indexed once with status ``pending``. Statuses only move
forward (pending -> briefed | actioned | skipped); an explicit user action
may still record ``actioned`` on an item that was already briefed or skipped.
Going back restores the cursor only, never a status.

The foreground turn and the background batch worker share one tracker, so
every read-modify-write runs under a single re-entrant lock. Store writes are
fire-and-forget on one writer thread, so they land in the order the statuses
changed, and never block a turn.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime, timezone
from typing import Optional

from alteris_briefing.models import (
    BriefingProgress,
    Cursor,
    EmailState,
    EmailStatus,
    ItemRef,
    Topic,
)
from alteris_briefing.session.store import LifecycleRecord

logger = logging.getLogger(__name__)

# One writer keeps upserts for the same item in submission order.
PERSIST_WORKERS = 1


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SessionTracker:
    def __init__(self, topics: list[Topic] | None = None, store=None, user_id: str | None = None):
        self.store = store
        self.user_id = user_id

        self._lock = threading.RLock()
        self._topics: list[Topic] = []
        self._states: dict[str, EmailState] = {}
        self._cursor = Cursor()
        self._history: list[Cursor] = []

        self._executor: ThreadPoolExecutor | None = None
        self._pending_writes: list[Future] = []

        for topic in topics or []:
            self._append_topic(topic)

        logger.info(
            "Tracker initialized: %d topics, %d items",
            len(self._topics), len(self._states),
        )

    # ══════════════════════════════════════════════════════════════
    # Indexing
    # ══════════════════════════════════════════════════════════════

    def _append_topic(self, topic: Topic) -> bool:
        fresh: list[ItemRef] = []
        seen: set[str] = set()
        for ref in topic.items:
            if ref.email_id in self._states or ref.email_id in seen:
                continue
            seen.add(ref.email_id)
            fresh.append(ref)
        if not fresh:
            return False

        if len(fresh) != len(topic.items):
            topic = dataclasses.replace(
                topic,
                items=fresh,
                flagged_count=sum(1 for r in fresh if r.is_flagged),
            )
        topic_index = len(self._topics)
        self._topics.append(topic)
        for i, ref in enumerate(topic.items):
            self._states[ref.email_id] = EmailState(ref=ref, topic_index=topic_index, item_index=i)
        return True

    def add_topics(self, topics: list[Topic]) -> int:
        """Append topics at the end. Returns how many were actually added.

        Ids already indexed are dropped and empty topics are ignored. If the
        briefing had run past the end, the cursor lands on the first new item.
        """
        with self._lock:
            was_complete = self._cursor.topic_index >= len(self._topics)
            first_new = len(self._topics)
            added = sum(1 for t in topics if self._append_topic(t))
            if added and was_complete:
                self._cursor = Cursor(first_new, 0)
            logger.info(
                "Added %d topics (%d offered), now %d topics / %d items",
                added, len(topics), len(self._topics), len(self._states),
            )
            return added

    # ══════════════════════════════════════════════════════════════
    # Cursor
    # ══════════════════════════════════════════════════════════════

    def _ref_at(self, cursor: Cursor) -> ItemRef | None:
        if cursor.topic_index >= len(self._topics):
            return None
        items = self._topics[cursor.topic_index].items
        if cursor.item_index >= len(items):
            return None
        return items[cursor.item_index]

    def get_current_email(self) -> ItemRef | None:
        with self._lock:
            return self._ref_at(self._cursor)

    def get_cursor(self) -> Cursor:
        with self._lock:
            return self._cursor

    def _is_pending(self, email_id: str) -> bool:
        state = self._states.get(email_id)
        return state is not None and state.status == EmailStatus.PENDING

    def _scan_forward(self, topic_index: int, item_index: int) -> ItemRef | None:
        """Place the cursor on the first pending item at or after the position."""
        while topic_index < len(self._topics):
            items = self._topics[topic_index].items
            while item_index < len(items):
                ref = items[item_index]
                if self._is_pending(ref.email_id):
                    self._cursor = Cursor(topic_index, item_index)
                    return ref
                item_index += 1
            topic_index += 1
            item_index = 0

        self._cursor = Cursor(len(self._topics), 0)
        logger.info("Briefing complete, no pending items left")
        return None

    def _past_end(self) -> bool:
        return self._cursor.topic_index >= len(self._topics)

    def advance(self) -> ItemRef | None:
        with self._lock:
            if self._past_end():
                return None
            current = self._ref_at(self._cursor)
            if current and self._is_pending(current.email_id):
                self.mark_briefed(current.email_id)
            self._history.append(self._cursor)
            return self._scan_forward(self._cursor.topic_index, self._cursor.item_index + 1)

    def skip_topic(self) -> ItemRef | None:
        with self._lock:
            if self._past_end():
                return None
            t = self._cursor.topic_index
            for ref in self._topics[t].items:
                if self._is_pending(ref.email_id):
                    self.mark_skipped(ref.email_id)
            self._history.append(self._cursor)
            return self._scan_forward(t + 1, 0)

    def go_back(self) -> ItemRef | None:
        with self._lock:
            if not self._history:
                logger.debug("No history to go back to")
                return None
            self._cursor = self._history.pop()
            return self._ref_at(self._cursor)

    def go_back_to_topic_start(self) -> ItemRef | None:
        """Rewind to the first position visited in the current topic."""
        with self._lock:
            t = self._cursor.topic_index
            if not self._history or self._history[-1].topic_index != t:
                return None
            while self._history and self._history[-1].topic_index == t:
                self._cursor = self._history.pop()
            return self._ref_at(self._cursor)

    def history_depth(self) -> int:
        with self._lock:
            return len(self._history)

    # ══════════════════════════════════════════════════════════════
    # Status updates
    # ══════════════════════════════════════════════════════════════

    def mark_briefed(self, email_id: str) -> bool:
        with self._lock:
            state = self._states.get(email_id)
            if state is None:
                logger.warning("mark_briefed: unknown email_id %s", email_id)
                return False
            if state.status != EmailStatus.PENDING:
                return False
            state.status = EmailStatus.BRIEFED
            state.briefed_at = _now()
        self._persist("mark_briefed", email_id)
        return True

    def mark_actioned(self, email_id: str, action: str) -> bool:
        with self._lock:
            state = self._states.get(email_id)
            if state is None:
                logger.warning("mark_actioned: unknown email_id %s", email_id)
                return False
            state.status = EmailStatus.ACTIONED
            state.action_taken = action
            state.actioned_at = _now()
        self._persist("mark_actioned", email_id, action)
        logger.info("Item %s actioned: %s", email_id, action)
        return True

    def mark_skipped(self, email_id: str) -> bool:
        with self._lock:
            state = self._states.get(email_id)
            if state is None:
                logger.warning("mark_skipped: unknown email_id %s", email_id)
                return False
            if state.status != EmailStatus.PENDING:
                return False
            state.status = EmailStatus.SKIPPED
        self._persist("mark_skipped", email_id)
        return True

    # ══════════════════════════════════════════════════════════════
    # Persistence
    # ══════════════════════════════════════════════════════════════

    def _persist(self, method: str, *args):
        if self.store is None or not self.user_id:
            return
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=PERSIST_WORKERS, thread_name_prefix="tracker-persist",
                )
            self._pending_writes = [f for f in self._pending_writes if not f.done()]
            future = self._executor.submit(self._write, method, *args)
            self._pending_writes.append(future)

    def _write(self, method: str, *args):
        try:
            getattr(self.store, method)(self.user_id, *args)
        except Exception as e:
            logger.warning("Failed to persist %s for %s: %s", method, args[0] if args else "?", e)

    def wait_for_persistence(self, timeout: float | None = 5.0):
        """Block until queued store writes finish. Teardown and tests only."""
        with self._lock:
            futures = list(self._pending_writes)
        if futures:
            wait(futures, timeout=timeout)

    def flush_to_store(self) -> int:
        """Upsert every handled item. Safe to call repeatedly."""
        if self.store is None or not self.user_id:
            return 0
        self.wait_for_persistence()

        now = time.time()
        records = {
            h["email_id"]: LifecycleRecord(status=h["status"], timestamp=now, action=h.get("action"))
            for h in self.get_handled_email_ids()
        }
        if not records:
            return 0
        try:
            self.store.mark_batch(self.user_id, records)
        except Exception as e:
            logger.warning("Flush to store failed for %s: %s", self.user_id, e)
            return 0
        logger.info("Flushed %d lifecycle records for %s", len(records), self.user_id)
        return len(records)

    def close(self):
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)

    # ══════════════════════════════════════════════════════════════
    # Queries
    # ══════════════════════════════════════════════════════════════

    @property
    def topics(self) -> list[Topic]:
        with self._lock:
            return list(self._topics)

    def topic_count(self) -> int:
        with self._lock:
            return len(self._topics)

    def find_ref(self, email_id: str) -> ItemRef | None:
        with self._lock:
            state = self._states.get(email_id)
            return state.ref if state else None

    def get_state(self, email_id: str) -> EmailState | None:
        with self._lock:
            return self._states.get(email_id)

    def get_progress(self) -> BriefingProgress:
        with self._lock:
            counts = {s: 0 for s in EmailStatus}
            for state in self._states.values():
                counts[state.status] += 1
            cursor = self._cursor
            in_range = cursor.topic_index < len(self._topics)
            return BriefingProgress(
                current_topic_index=cursor.topic_index,
                current_item_index=cursor.item_index,
                current_email=self._ref_at(cursor),
                current_topic_label=self._topics[cursor.topic_index].label if in_range else "Complete",
                total_topics=len(self._topics),
                total_emails=len(self._states),
                emails_briefed=counts[EmailStatus.BRIEFED],
                emails_actioned=counts[EmailStatus.ACTIONED],
                emails_skipped=counts[EmailStatus.SKIPPED],
                emails_remaining=counts[EmailStatus.PENDING],
            )

    def _pending_in(self, topic: Topic) -> list[ItemRef]:
        return [r for r in topic.items if self._is_pending(r.email_id)]

    def get_active_emails_in_current_topic(self) -> list[ItemRef]:
        with self._lock:
            if self._cursor.topic_index >= len(self._topics):
                return []
            return self._pending_in(self._topics[self._cursor.topic_index])

    def is_complete(self) -> bool:
        with self._lock:
            return all(s.status != EmailStatus.PENDING for s in self._states.values())

    def get_handled_email_ids(self) -> list[dict]:
        with self._lock:
            handled = []
            for email_id, state in self._states.items():
                if state.status == EmailStatus.PENDING:
                    continue
                entry = {"email_id": email_id, "status": state.status.value}
                if state.action_taken:
                    entry["action"] = state.action_taken
                handled.append(entry)
            return handled

    # ══════════════════════════════════════════════════════════════
    # Reasoner context
    # ══════════════════════════════════════════════════════════════

    def build_cursor_context(self) -> str:
        with self._lock:
            progress = self.get_progress()
            current = progress.current_email

            if current is None:
                return "\n".join([
                    "CURRENT BRIEFING POSITION:",
                    "Briefing complete. All emails have been covered.",
                    f"Summary: {progress.emails_briefed} briefed, {progress.emails_actioned} actioned, "
                    f"{progress.emails_skipped} skipped.",
                    "",
                    "NEXT: Summarize the briefing session and ask if the user needs anything else.",
                ])

            topic = self._topics[progress.current_topic_index]
            active = len(self._pending_in(topic))
            flag = " [FLAGGED]" if current.is_flagged else ""
            prio = f" [{current.priority.upper()}]" if current.priority else ""

            lines = [
                "CURRENT BRIEFING POSITION:",
                f'Topic {progress.current_topic_index + 1} of {progress.total_topics}: "{progress.current_topic_label}"',
                f"Email {progress.current_item_index + 1} of {topic.size} in this topic ({active} remaining)",
                f'Current email: "{current.subject}" from {current.sender}{flag}{prio} (email_id: {current.email_id})',
            ]
            if current.summary:
                lines.append(f"Summary: {current.summary}")
            lines.append(
                f"Progress: {progress.emails_briefed + progress.emails_actioned} of {progress.total_emails} "
                f"handled, {progress.emails_remaining} remaining"
            )
            lines.append("")
            if current.summary:
                lines.append(
                    "NEXT: Read the summary to the user naturally (do NOT read verbatim). "
                    "Then ask what action to take."
                )
            else:
                lines.append(
                    "NEXT: Present THIS email to the user. Summarize its subject and sender, "
                    "then ask what action to take."
                )
            return "\n".join(lines)

    def build_compact_email_reference(self) -> str:
        with self._lock:
            lines = ["REMAINING EMAILS (active, not yet briefed):"]
            any_left = False
            for t, topic in enumerate(self._topics):
                active = self._pending_in(topic)
                if not active:
                    continue
                any_left = True
                if t == self._cursor.topic_index:
                    lines.append(f'\nCURRENT TOPIC: "{topic.label}" ({len(active)} emails)')
                    for ref in active:
                        flag = " [FLAGGED]" if ref.is_flagged else ""
                        prio = f" [{ref.priority.upper()}]" if ref.priority else ""
                        summary = f' | "{ref.summary}"' if ref.summary else ""
                        lines.append(
                            f'  - email_id: "{ref.email_id}" | From: {ref.sender} | '
                            f"Subject: {ref.subject}{flag}{prio}{summary}"
                        )
                else:
                    high = sum(1 for r in active if r.priority == "high")
                    high_label = f", {high} high-priority" if high else ""
                    lines.append(f'\n  - "{topic.label}" ({len(active)} emails{high_label})')

            if not any_left:
                lines.append("\n(All emails have been briefed or actioned)")
            return "\n".join(lines)

    def remaining_in_topic(self, topic_index: Optional[int] = None) -> int:
        with self._lock:
            idx = self._cursor.topic_index if topic_index is None else topic_index
            if idx >= len(self._topics):
                return 0
            return len(self._pending_in(self._topics[idx]))
