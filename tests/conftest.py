"""Test fixtures for Alteris Briefing."""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from alteris_briefing.llm.client import ReasonerReply, ToolCall
from alteris_briefing.models import Item, ItemRef, Topic
from alteris_briefing.session.store import MemoryLifecycleStore
from alteris_briefing.session.tracker import SessionTracker

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def make_item(
    item_id: str,
    subject: str = "Weekly sync notes",
    sender: str = "alice@example.com",
    snippet: str = "Notes from the sync are attached.",
    minutes_ago: float = 30,
    **kwargs,
) -> Item:
    return Item(
        id=item_id,
        subject=subject,
        sender=sender,
        snippet=snippet,
        received_at=NOW - timedelta(minutes=minutes_ago),
        **kwargs,
    )


def make_ref(email_id: str, subject: str = "Subject", sender: str = "bob@example.com", **kwargs) -> ItemRef:
    return ItemRef(email_id=email_id, subject=f"{subject} {email_id}", sender=sender, **kwargs)


def make_topic(topic_id: str, ids: list[str], label: str | None = None, **kwargs) -> Topic:
    return Topic(id=topic_id, label=label or f"Topic {topic_id}", items=[make_ref(i) for i in ids], **kwargs)


def clusters_reply(ids: list[str], label: str = "Project Phoenix", priority: str = "high") -> str:
    """A well-formed batch preprocessing reply covering ``ids``."""
    return json.dumps({
        "clusters": [{
            "label": label,
            "priority": priority,
            "emails": [
                {"emailId": i, "priority": priority, "summary": f"Summary of {i}", "clusterLabel": label}
                for i in ids
            ],
        }]
    })


def call(name: str, **arguments) -> ToolCall:
    return ToolCall(name=name, arguments=arguments)


def reply(content: str = "", *calls: ToolCall) -> ReasonerReply:
    return ReasonerReply(content=content, tool_calls=list(calls))


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def topics():
    """Three topics: t1 [a, b, c], t2 [d, e], t3 [f]."""
    return [
        make_topic("t1", ["a", "b", "c"], label="Budget"),
        make_topic("t2", ["d", "e"], label="Hiring"),
        make_topic("t3", ["f"], label="Newsletters"),
    ]


@pytest.fixture
def memory_store():
    return MemoryLifecycleStore()


@pytest.fixture
def tracker(topics):
    t = SessionTracker(topics)
    yield t
    t.close()


@pytest.fixture
def persisted_tracker(topics, memory_store):
    t = SessionTracker(topics, store=memory_store, user_id="u1")
    yield t
    t.close()


@pytest.fixture
def fake_reasoner():
    """Reasoner double: ``chat`` replies are queued via ``side_effect``."""
    reasoner = MagicMock()
    reasoner.chat.return_value = reply("Okay.")
    reasoner.complete.return_value = "{}"
    return reasoner
