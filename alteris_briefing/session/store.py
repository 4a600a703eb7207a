"""Cross-session lifecycle store — which items a user has already heard.

Records are keyed by (user_id, email_id) and hold a status, an optional
action and a timestamp. Writes are upserts, so replaying a session flush is
harmless. Records expire after seven days.

Two backends: an in-memory store for tests and single-process use, and a
SQLite store in ~/.alteris/briefing.db.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Protocol, Set

logger = logging.getLogger(__name__)

BRIEFING_DB_PATH = Path.home() / ".alteris" / "briefing.db"
TTL_SECONDS = 7 * 24 * 60 * 60

VALID_STATUSES = ("briefed", "actioned", "skipped")


@dataclass
class LifecycleRecord:
    status: str
    timestamp: float
    action: Optional[str] = None

    def to_dict(self) -> dict:
        d = {"status": self.status, "timestamp": self.timestamp}
        if self.action:
            d["action"] = self.action
        return d


class LifecycleStore(Protocol):
    def mark_briefed(self, user_id: str, email_id: str) -> None: ...

    def mark_actioned(self, user_id: str, email_id: str, action: str) -> None: ...

    def mark_skipped(self, user_id: str, email_id: str) -> None: ...

    def mark_batch(self, user_id: str, records: Dict[str, LifecycleRecord]) -> None: ...

    def get_briefed_ids(self, user_id: str) -> Set[str]: ...

    def get_actioned_ids(self, user_id: str) -> Set[str]: ...

    def get_all(self, user_id: str) -> Dict[str, LifecycleRecord]: ...


def _record(status: str, action: str | None = None) -> LifecycleRecord:
    if status not in VALID_STATUSES:
        raise ValueError(f"Unknown lifecycle status: {status}")
    return LifecycleRecord(status=status, timestamp=time.time(), action=action)


class _StoreMixin:
    """Single-record writes and id lookups in terms of mark_batch / get_all."""

    def mark_briefed(self, user_id: str, email_id: str):
        self.mark_batch(user_id, {email_id: _record("briefed")})

    def mark_actioned(self, user_id: str, email_id: str, action: str):
        self.mark_batch(user_id, {email_id: _record("actioned", action)})

    def mark_skipped(self, user_id: str, email_id: str):
        self.mark_batch(user_id, {email_id: _record("skipped")})

    def get_briefed_ids(self, user_id: str) -> Set[str]:
        """Every handled id, whatever its status."""
        return set(self.get_all(user_id))

    def get_actioned_ids(self, user_id: str) -> Set[str]:
        return {eid for eid, r in self.get_all(user_id).items() if r.status == "actioned"}


class MemoryLifecycleStore(_StoreMixin):
    def __init__(self, ttl_seconds: int = TTL_SECONDS):
        self.ttl_seconds = ttl_seconds
        self._records: Dict[str, Dict[str, LifecycleRecord]] = {}
        self._lock = threading.Lock()

    def mark_batch(self, user_id: str, records: Dict[str, LifecycleRecord]):
        if not records:
            return
        with self._lock:
            self._records.setdefault(user_id, {}).update(records)

    def get_all(self, user_id: str) -> Dict[str, LifecycleRecord]:
        cutoff = time.time() - self.ttl_seconds
        with self._lock:
            return {
                eid: r for eid, r in self._records.get(user_id, {}).items()
                if r.timestamp >= cutoff
            }


LIFECYCLE_SCHEMA = """
CREATE TABLE IF NOT EXISTS briefed_items (
    user_id     TEXT NOT NULL,
    email_id    TEXT NOT NULL,
    status      TEXT NOT NULL,              -- briefed | actioned | skipped
    action      TEXT,                       -- archive_email | flagged | mark_read ...
    timestamp   REAL NOT NULL,              -- epoch seconds of the last write
    PRIMARY KEY (user_id, email_id)
);

CREATE INDEX IF NOT EXISTS idx_briefed_user_ts ON briefed_items(user_id, timestamp);
"""


class SqliteLifecycleStore(_StoreMixin):
    """SQLite-backed store. Safe to call from the tracker's persistence threads."""

    def __init__(self, db_path: Path | None = None, ttl_seconds: int = TTL_SECONDS):
        self._db_path = Path(db_path) if db_path else BRIEFING_DB_PATH
        self.ttl_seconds = ttl_seconds
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.executescript(LIFECYCLE_SCHEMA)
        return self._conn

    def close(self):
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    def mark_batch(self, user_id: str, records: Dict[str, LifecycleRecord]):
        if not records:
            return
        rows = [(user_id, eid, r.status, r.action, r.timestamp) for eid, r in records.items()]
        with self._lock:
            self.conn.executemany(
                """INSERT INTO briefed_items (user_id, email_id, status, action, timestamp)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT(user_id, email_id) DO UPDATE SET
                       status = excluded.status,
                       action = excluded.action,
                       timestamp = excluded.timestamp""",
                rows,
            )
            self.conn.commit()
        logger.debug("Wrote %d lifecycle records for %s", len(rows), user_id)

    def get_all(self, user_id: str) -> Dict[str, LifecycleRecord]:
        cutoff = time.time() - self.ttl_seconds
        with self._lock:
            rows = self.conn.execute(
                """SELECT email_id, status, action, timestamp FROM briefed_items
                   WHERE user_id = ? AND timestamp >= ?
                   ORDER BY timestamp""",
                (user_id, cutoff),
            ).fetchall()
        return {
            r["email_id"]: LifecycleRecord(status=r["status"], timestamp=r["timestamp"], action=r["action"])
            for r in rows
        }

    def purge_expired(self) -> int:
        cutoff = time.time() - self.ttl_seconds
        with self._lock:
            cur = self.conn.execute("DELETE FROM briefed_items WHERE timestamp < ?", (cutoff,))
            self.conn.commit()
        if cur.rowcount:
            logger.info("Purged %d expired lifecycle records", cur.rowcount)
        return cur.rowcount
