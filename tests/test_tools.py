"""Tests for the tool registry and the email / navigation handlers."""

from unittest.mock import MagicMock

import pytest

from alteris_briefing.tools import (
    ACTION_HISTORY_LIMIT,
    DISAMBIGUATE_TOOL,
    ToolContext,
    ToolRegistry,
    ToolResult,
    ToolSpec,
    ToolState,
    default_registry,
    params,
)

from conftest import make_ref


@pytest.fixture
def registry():
    return default_registry()


@pytest.fixture
def state():
    return ToolState()


def _ctx(tracker, state, mailbox=None, email=None):
    return ToolContext(
        tracker=tracker,
        state=state,
        mailbox=mailbox,
        email=email if email is not None else tracker.get_current_email(),
    )


# ── Registry ─────────────────────────────────────────────────────

def test_default_registry_catalog(registry):
    assert set(registry.names("email")) == {
        "archive_email", "mark_read", "flag_followup", "create_draft",
        "mute_sender", "prioritize_vip", "undo_last_action", "search_emails",
    }
    assert set(registry.names("navigation")) == {
        "next_item", "skip_topic", "go_back", "repeat_that", "go_deeper",
        "pause_briefing", "resume_briefing", "stop_briefing",
    }
    assert "disambiguate" in registry
    assert len(registry) == 17


def test_schemas_are_function_shaped(registry):
    schema = registry.schemas(["go_back", "nonexistent"])
    assert len(schema) == 1
    fn = schema[0]["function"]
    assert schema[0]["type"] == "function"
    assert fn["name"] == "go_back"
    assert fn["parameters"]["properties"]["steps"]["enum"] == ["1", "2", "3", "topic_start"]


def test_duplicate_registration_rejected():
    reg = ToolRegistry([DISAMBIGUATE_TOOL])
    with pytest.raises(ValueError):
        reg.register(DISAMBIGUATE_TOOL)


def test_unknown_and_handlerless_tools(registry, tracker, state):
    ctx = _ctx(tracker, state)
    assert registry.execute("teleport", ctx).message == "Unknown action: teleport"
    assert registry.execute("disambiguate", ctx).success is False


def test_handler_exceptions_become_results(tracker, state):
    def explode(ctx, args):
        raise RuntimeError("mailbox offline")

    reg = ToolRegistry([ToolSpec("boom", "email", "Explodes.", params(), explode)])
    result = reg.execute("boom", _ctx(tracker, state))
    assert result.success is False
    assert result.message == "Failed to boom: mailbox offline"
    assert result.action == "boom"


def test_execute_fills_in_action_name(tracker, state):
    reg = ToolRegistry([ToolSpec("noop", "meta", "", params(), lambda c, a: ToolResult(True, "ok"))])
    assert reg.execute("noop", _ctx(tracker, state)).action == "noop"


# ── Email tools ──────────────────────────────────────────────────

def test_archive_defaults_to_current_email(registry, tracker, state):
    mailbox = MagicMock()
    result = registry.execute("archive_email", _ctx(tracker, state, mailbox))
    assert result.success
    assert result.message == "Archived."
    assert result.data == {"emailId": "a"}
    mailbox.archive.assert_called_once_with("a")
    assert state.action_history[-1].action == "archive_email"


def test_archive_without_any_email_fails(registry, tracker, state):
    ctx = ToolContext(tracker=tracker, state=state)
    assert registry.execute("archive_email", ctx).success is False


def test_mark_read_many(registry, tracker, state):
    result = registry.execute("mark_read", _ctx(tracker, state), {"email_ids": "a, b,c"})
    assert result.message == "Marked 3 emails as read."
    assert result.data["emailIds"] == ["a", "b", "c"]


def test_flag_followup(registry, tracker, state):
    result = registry.execute("flag_followup", _ctx(tracker, state), {"due_date": "next_week", "note": "budget"})
    assert result.message == "Flagged for follow-up for next week."
    assert result.risk_level == "medium"
    assert result.data["note"] == "budget"
    plain = registry.execute("flag_followup", _ctx(tracker, state))
    assert plain.message == "Flagged for follow-up."


def test_create_draft_requires_confirmation_and_is_irreversible(registry, tracker, state):
    mailbox = MagicMock()
    mailbox.create_draft.return_value = "draft-9"
    result = registry.execute("create_draft", _ctx(tracker, state, mailbox), {"body": "Sounds good", "tone": "brief"})
    assert result.requires_confirmation
    assert result.risk_level == "high"
    assert result.data == {"draftBody": "Sounds good", "inReplyTo": "a", "draftId": "draft-9"}
    assert "brief reply" in result.message

    undo = registry.execute("undo_last_action", _ctx(tracker, state, mailbox))
    assert undo.success is False
    assert undo.message == "Cannot undo create_draft. That action is not reversible."
    mailbox.undo.assert_not_called()


def test_mute_sender(registry, tracker, state):
    result = registry.execute("mute_sender", _ctx(tracker, state), {"duration": "1_week"})
    assert result.success
    assert result.message == "Muted bob@example.com for 1 week."
    assert state.muted_senders == {"bob@example.com": "1_week"}


def test_muting_a_vip_needs_confirmation(registry, tracker, state):
    state.vip_emails.add("bob@example.com")
    mailbox = MagicMock()
    result = registry.execute("mute_sender", _ctx(tracker, state, mailbox))
    assert result.success is False
    assert result.requires_confirmation
    assert result.risk_level == "high"
    assert "VIP list" in result.message
    mailbox.mute_sender.assert_not_called()
    assert state.muted_senders == {}


def test_prioritize_vip_then_undo(registry, tracker, state):
    mailbox = MagicMock()
    added = registry.execute("prioritize_vip", _ctx(tracker, state, mailbox), {"sender_name": "Bob"})
    assert added.message == "Added Bob to your VIP list."
    assert state.is_vip("BOB@example.com")

    undone = registry.execute("undo_last_action", _ctx(tracker, state, mailbox))
    assert undone.message == "Undid prioritize vip."
    assert not state.is_vip("bob@example.com")
    mailbox.undo.assert_called_once_with("prioritize_vip", "a", {"sender_email": "bob@example.com"})


def test_undo_mute(registry, tracker, state):
    registry.execute("mute_sender", _ctx(tracker, state))
    registry.execute("undo_last_action", _ctx(tracker, state))
    assert state.muted_senders == {}


def test_undo_with_empty_history(registry, tracker, state):
    assert registry.execute("undo_last_action", _ctx(tracker, state)).message == "There's nothing to undo."


def test_action_history_is_bounded(registry, tracker, state):
    for _ in range(ACTION_HISTORY_LIMIT + 10):
        registry.execute("archive_email", _ctx(tracker, state))
    assert len(state.action_history) == ACTION_HISTORY_LIMIT


def test_search(registry, tracker, state):
    mailbox = MagicMock()
    mailbox.search.return_value = [{"id": "x1", "subject": "Q3 plan"}]
    result = registry.execute("search_emails", _ctx(tracker, state, mailbox), {"query": "Q3", "from": "carol"})
    assert result.message == 'I found one email matching "Q3".'
    mailbox.search.assert_called_once_with("Q3", **{"from": "carol"})

    mailbox.search.return_value = []
    assert "didn't find" in registry.execute("search_emails", _ctx(tracker, state, mailbox), {"query": "Q3"}).message


def test_search_needs_query_and_mailbox(registry, tracker, state):
    assert registry.execute("search_emails", _ctx(tracker, state), {"query": " "}).message == "What should I search for?"
    assert registry.execute("search_emails", _ctx(tracker, state), {"query": "x"}).success is False


# ── Navigation tools ─────────────────────────────────────────────

def test_next_item_moves_tracker(registry, tracker, state):
    result = registry.execute("next_item", _ctx(tracker, state))
    assert result.data["next"]["emailId"] == "b"
    assert tracker.get_current_email().email_id == "b"


def test_next_item_at_end_reports_complete(registry, tracker, state):
    for _ in range(5):
        tracker.advance()
    result = registry.execute("next_item", _ctx(tracker, state))
    assert result.data == {"next": None, "complete": True}


def test_skip_topic(registry, tracker, state):
    result = registry.execute("skip_topic", _ctx(tracker, state), {"reason": "not relevant"})
    assert result.data["next"]["emailId"] == "d"
    assert result.data["reason"] == "not relevant"


def test_go_back_at_start(registry, tracker, state):
    result = registry.execute("go_back", _ctx(tracker, state))
    assert result.success is False
    assert result.message == "We're at the beginning. There's nothing to go back to."


def test_go_back_steps(registry, tracker, state):
    tracker.advance()
    tracker.advance()
    too_far = registry.execute("go_back", _ctx(tracker, state), {"steps": "3"})
    assert too_far.message == "I can only go back 2 items."
    result = registry.execute("go_back", _ctx(tracker, state), {"steps": "2"})
    assert result.message == "Going back 2 items."
    assert tracker.get_current_email().email_id == "a"


def test_go_back_topic_start(registry, tracker, state):
    tracker.advance()
    result = registry.execute("go_back", _ctx(tracker, state), {"steps": "topic_start"})
    assert result.message == "Going back to the start of this topic."
    again = registry.execute("go_back", _ctx(tracker, state), {"steps": "topic_start"})
    assert again.message == "You're already at the start of this topic."


def test_go_deeper_uses_mailbox_details(registry, tracker, state):
    mailbox = MagicMock()
    mailbox.get_details.return_value = "Carol replied twice asking for the numbers."
    result = registry.execute("go_deeper", _ctx(tracker, state, mailbox), {"aspect": "thread_history"})
    assert result.message == "Carol replied twice asking for the numbers."
    mailbox.get_details.assert_called_once_with("a", "thread_history")

    plain = registry.execute("go_deeper", _ctx(tracker, state))
    assert plain.message == "Getting more details..."


def test_pause_and_resume(registry, tracker, state):
    assert registry.execute("pause_briefing", _ctx(tracker, state)).success
    assert state.is_paused
    assert registry.execute("pause_briefing", _ctx(tracker, state)).success is False
    assert registry.execute("resume_briefing", _ctx(tracker, state)).message == "Resuming the briefing."
    assert registry.execute("resume_briefing", _ctx(tracker, state)).success is False


def test_stop_briefing_reports_remaining(registry, tracker, state):
    result = registry.execute("stop_briefing", _ctx(tracker, state))
    assert result.message == "Stopping the briefing. You have 6 items remaining."
    assert result.data == {"remaining": 6, "saveProgress": True}


def test_repeat_returns_current(registry, tracker, state):
    result = registry.execute("repeat_that", _ctx(tracker, state, email=make_ref("a")))
    assert result.message == ""
    assert result.data["next"]["emailId"] == "a"
