from alteris_briefing.session.manager import BriefingSession, SessionManager
from alteris_briefing.session.store import (
    LifecycleRecord,
    LifecycleStore,
    MemoryLifecycleStore,
    SqliteLifecycleStore,
)
from alteris_briefing.session.tracker import SessionTracker
from alteris_briefing.session.worker import BackgroundBatchWorker

__all__ = [
    "BackgroundBatchWorker",
    "BriefingSession",
    "LifecycleRecord",
    "LifecycleStore",
    "MemoryLifecycleStore",
    "SessionManager",
    "SessionTracker",
    "SqliteLifecycleStore",
]
