"""Tests for intents, speech shaping, spoken templates and the reasoning loop."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from alteris_briefing.models import EmailStatus
from alteris_briefing.reasoning.intents import Transcript, accept_transcript, classify_confirmation, detect_command
from alteris_briefing.reasoning.loop import (
    CONFIRM_REASK_REPLY,
    KEEP_RECENT,
    REASONER_FAILURE_REPLY,
    ReasoningLoop,
    prune_history,
)
from alteris_briefing.reasoning.prompts import (
    DisambiguationOption,
    SystemPromptContext,
    TopicPrompt,
    build_system_prompt,
    generate_briefing_closing,
    generate_briefing_opening,
    generate_confirmation,
    generate_disambiguation_prompt,
    generate_progress_update,
    generate_topic_transition,
    generate_transition,
    time_of_day,
)
from alteris_briefing.reasoning.speech import prepare_for_speech, split_for_streaming

from conftest import call, make_ref, reply


# ── Intents ──────────────────────────────────────────────────────

@pytest.mark.parametrize("text,intent", [
    ("Skip this one", "navigation"),
    ("archive it", "email_action"),
    ("who sent that", "query"),
    ("yes please", "confirmation"),
])
def test_detect_command(text, intent):
    result = detect_command(text)
    assert result.is_command
    assert result.intent == intent


def test_detect_command_on_chatter():
    assert detect_command("hello there").is_command is False


@pytest.mark.parametrize("text,verdict", [
    ("yes", "confirm"),
    ("Go ahead", "confirm"),
    ("no", "cancel"),
    ("don't do it", "cancel"),
    ("okay, but wait", "cancel"),
    ("hmm", "unclear"),
    ("I'm not sure", "unclear"),
    ("not sure about that", "unclear"),
    ("unsure", "unclear"),
    ("that's not right", "unclear"),
    ("not sure, cancel it", "cancel"),
    ("sure", "confirm"),
])
def test_classify_confirmation(text, verdict):
    assert classify_confirmation(text) == verdict


def test_accept_transcript():
    assert accept_transcript(Transcript(" next ")) == "next"
    assert accept_transcript(Transcript("next", confidence=0.69)) is None
    assert accept_transcript(Transcript("  a ")) is None


# ── Speech ───────────────────────────────────────────────────────

def test_prepare_for_speech():
    out = prepare_for_speech("Reply ASAP to bob@example.com. FYI it's P1.")
    assert "A-S-A-P" in out
    assert "F-Y-I" in out
    assert "bob at example.com" in out
    assert ". ... " in out
    assert "P 1" in out


def test_split_for_streaming_keeps_sentences_whole():
    assert split_for_streaming("One. Two. Three.") == ["One. Two. Three."]
    assert split_for_streaming("One. Two. Three.", max_chunk_length=10) == ["One. Two.", "Three."]
    assert split_for_streaming("") == []


# ── Templates ────────────────────────────────────────────────────

def test_transition_to_next_item():
    ref = make_ref("b", summary="Budget approved", priority="high")
    assert generate_transition("archive_email", ref, 1, 6) == "Archived. Next up: Budget approved This one's important."
    assert generate_transition("next_item", make_ref("c"), 1, 6) == "Next up: Subject c from bob@example.com"
    assert generate_transition("teleport", make_ref("c"), 1, 6).startswith("Done. Next up:")


def test_transition_at_end():
    assert generate_transition("next_item", None, 6, 6) == "That wraps up your briefing. 6 emails covered."
    assert generate_transition("archive_email", None, 0, 0) == "Archived. That wraps up your briefing."


def test_topic_transition():
    assert generate_topic_transition(None, TopicPrompt("Budget", 1)) == "Let's start with Budget. You have 1 item here."
    assert (
        generate_topic_transition("Budget", TopicPrompt("Hiring", 3, "high"))
        == "Moving on to Hiring. This is high priority. 3 items to cover."
    )


@pytest.mark.parametrize("total,position,expected", [
    (10, 10, "That's everything for now."),
    (10, 9, "Almost done. 1 more item."),
    (10, 8, "Almost done. 2 more items."),
    (10, 6, "About 4 items left, roughly 2 minutes."),
    (20, 0, "20 items remaining, about 10 minutes."),
])
def test_progress_update(total, position, expected):
    assert generate_progress_update(total, position) == expected


def test_opening_and_closing():
    assert generate_briefing_opening(12, ["A", "B", "C", "D", "E"], "Sam") == (
        "Sam, you have 12 items to catch up on. Topics include: A, B, C and 2 more topics. Let's dive in."
    )
    assert generate_briefing_closing(0, 0) == "That's your inbox for now. Nothing needed from you."
    assert generate_briefing_closing(1, 2) == (
        "That's your briefing. You took 1 action. 2 items flagged for follow-up. "
        "I'll update you if anything urgent comes in."
    )


def test_confirmation_templates():
    assert generate_confirmation("archive", "low") == "Archived."
    assert generate_confirmation("add_vip", "medium", "Dana") == "Added Dana to your VIP list."
    assert generate_confirmation("create_draft", "high") == "Done."


def test_disambiguation_prompt():
    a, b = DisambiguationOption("the budget email"), DisambiguationOption("the hiring email")
    assert generate_disambiguation_prompt([]) == "I'm not sure what you meant. Could you clarify?"
    assert generate_disambiguation_prompt([a]) == "Did you mean the budget email?"
    assert generate_disambiguation_prompt([a, b]) == "Which one? 1. the budget email, or 2. the hiring email?"
    assert generate_disambiguation_prompt([a, b], "that one").startswith('For "that one": Which one?')


def test_system_prompt_context():
    text = build_system_prompt(SystemPromptContext(
        user_name="Sam", time_of_day="evening", vip_names=["Dana"], mode="desk",
    ))
    assert "Good evening, Sam." in text
    assert "VIP CONTACTS: Dana" in text
    assert "MODE: The user is at their desk" in text
    assert "Good morning. Here's your briefing." in build_system_prompt()


@pytest.mark.parametrize("hour,label", [(9, "morning"), (12, "afternoon"), (18, "evening")])
def test_time_of_day(hour, label):
    assert time_of_day(hour) == label


# ── History pruning ──────────────────────────────────────────────

def test_prune_history_keeps_short_histories():
    messages = [{"role": "system"}] + [{"role": "user"}] * 10
    assert prune_history(messages) is messages


def test_prune_history_keeps_system_and_recent():
    messages = [{"role": "system", "content": "sys"}] + [{"role": "user", "content": str(i)} for i in range(40)]
    pruned = prune_history(messages)
    assert len(pruned) == KEEP_RECENT + 1
    assert pruned[0]["content"] == "sys"
    assert pruned[-1]["content"] == "39"


def test_prune_history_never_opens_with_tool_message():
    messages = (
        [{"role": "system"}]
        + [{"role": "user"}] * 15
        + [{"role": "tool"}] * 2
        + [{"role": "user"}] * 18
    )
    pruned = prune_history(messages)
    assert pruned[1]["role"] == "user"
    assert len(pruned) == 19


# ── Reasoning loop ───────────────────────────────────────────────

@pytest.fixture
def mailbox():
    return MagicMock()


@pytest.fixture
def loop(fake_reasoner, tracker, mailbox):
    return ReasoningLoop(fake_reasoner, tracker, mailbox=mailbox)


def test_system_prompt_includes_email_reference(loop):
    assert 'CURRENT TOPIC: "Budget"' in loop.state.messages[0]["content"]
    assert loop.current_target.email_id == "a"


@pytest.mark.asyncio
async def test_plain_reply(loop, fake_reasoner):
    result = await loop.process_user_input("what's this about?")
    assert result.response_text == "Okay."
    assert result.response_chunks == ["Okay."]
    assert loop.state.messages[-1] == {"role": "assistant", "content": "Okay."}
    messages, tools = fake_reasoner.chat.call_args.args
    assert messages[-1]["role"] == "system"
    assert "(email_id: a)" in messages[-1]["content"]
    assert {t["function"]["name"] for t in tools} >= {"archive_email", "next_item", "disambiguate"}


@pytest.mark.asyncio
async def test_next_item_turn_speaks_template_transition(loop, fake_reasoner, tracker):
    fake_reasoner.chat.return_value = reply("", call("next_item"))
    result = await loop.process_user_input("next")
    assert result.response_text == "Next up: Subject b from bob@example.com"
    assert [a.tool for a in result.actions_taken] == ["next_item"]
    assert tracker.get_current_email().email_id == "b"
    assert loop.current_target.email_id == "b"
    assert fake_reasoner.chat.call_count == 1


@pytest.mark.asyncio
async def test_archive_marks_actioned_and_advances(loop, fake_reasoner, tracker, mailbox):
    fake_reasoner.chat.return_value = reply("", call("archive_email"))
    result = await loop.process_user_input("archive it")
    mailbox.archive.assert_called_once_with("a")
    assert tracker.get_state("a").status == EmailStatus.ACTIONED
    assert tracker.get_current_email().email_id == "b"
    assert result.response_text == "Archived. Next up: Subject b from bob@example.com"


@pytest.mark.asyncio
async def test_transition_acknowledges_the_tool_that_moved(loop, fake_reasoner, tracker):
    fake_reasoner.chat.return_value = reply("", call("flag_followup"), call("archive_email"))
    result = await loop.process_user_input("flag it and archive it")
    assert [a.tool for a in result.actions_taken] == ["flag_followup", "archive_email"]
    assert tracker.get_current_email().email_id == "b"
    assert result.response_text == "Archived. Next up: Subject b from bob@example.com"


@pytest.mark.asyncio
async def test_overlapping_turn_is_dropped(tracker):
    release = asyncio.Event()

    async def slow_chat(messages, tools):
        await release.wait()
        return reply("First.")

    reasoner = MagicMock()
    reasoner.chat = AsyncMock(side_effect=slow_chat)
    loop = ReasoningLoop(reasoner, tracker)

    first = asyncio.create_task(loop.process_user_input("what's this?"))
    await asyncio.sleep(0)
    second = await loop.process_user_input("next")
    release.set()

    assert second.response_text == ""
    assert second.actions_taken == []
    assert (await first).response_text == "First."
    assert reasoner.chat.await_count == 1
    assert {"role": "user", "content": "next"} not in loop.state.messages


@pytest.mark.asyncio
async def test_email_id_argument_retargets(loop, fake_reasoner, tracker):
    fake_reasoner.chat.return_value = reply("", call("flag_followup", email_id="d"))
    result = await loop.process_user_input("flag the hiring one")
    assert result.response_text == "Flagged for follow-up."
    assert tracker.get_state("d").status == EmailStatus.ACTIONED
    assert tracker.get_state("d").action_taken == "flagged"
    assert tracker.get_current_email().email_id == "a"
    assert loop.current_target.email_id == "d"


@pytest.mark.asyncio
async def test_confirmed_draft_is_not_run_twice(loop, fake_reasoner, mailbox):
    fake_reasoner.chat.return_value = reply("", call("create_draft", body="On it"))
    first = await loop.process_user_input("reply that I'm on it")
    assert "drafted a friendly reply" in first.response_text
    assert loop.state.mode == "awaiting_confirmation"

    second = await loop.process_user_input("yes")
    assert second.response_text == "Done."
    assert [a.tool for a in second.actions_taken] == ["create_draft"]
    assert loop.state.mode == "normal"
    mailbox.create_draft.assert_called_once()
    assert fake_reasoner.chat.call_count == 1


@pytest.mark.asyncio
async def test_cancel_and_unclear_confirmation(loop, fake_reasoner):
    fake_reasoner.chat.return_value = reply("", call("create_draft", body="On it"))
    await loop.process_user_input("reply to it")

    unclear = await loop.process_user_input("hmm")
    assert unclear.response_text == CONFIRM_REASK_REPLY
    assert loop.state.mode == "awaiting_confirmation"

    hesitant = await loop.process_user_input("I'm not sure")
    assert hesitant.response_text == CONFIRM_REASK_REPLY
    assert loop.state.mode == "awaiting_confirmation"

    cancelled = await loop.process_user_input("no")
    assert cancelled.response_text == "Okay, cancelled."
    assert loop.state.mode == "normal"


@pytest.mark.asyncio
async def test_calls_after_confirmation_still_get_tool_messages(loop, fake_reasoner, tracker):
    fake_reasoner.chat.return_value = reply(
        "", call("create_draft", body="Sure"), call("next_item"),
    )
    result = await loop.process_user_input("reply and move on")
    assert [a.tool for a in result.actions_taken] == ["create_draft"]
    assert tracker.get_current_email().email_id == "a"
    tool_messages = [m for m in loop.state.messages if m["role"] == "tool"]
    assert [m["name"] for m in tool_messages] == ["create_draft", "next_item"]
    assert "Not run" in tool_messages[1]["content"]


@pytest.mark.asyncio
async def test_disambiguation_by_ordinal(loop, fake_reasoner):
    fake_reasoner.chat.side_effect = [
        reply("", call("disambiguate", options=["Budget email", "Hiring email"], context="that one")),
        reply("Hiring it is."),
    ]
    first = await loop.process_user_input("archive that one")
    assert first.response_text == 'For "that one": Which one? 1. Budget email, or 2. Hiring email?'
    assert loop.state.mode == "awaiting_disambiguation"

    second = await loop.process_user_input("the second one")
    assert second.response_text == "Hiring it is."
    assert loop.state.mode == "normal"
    messages = fake_reasoner.chat.call_args.args[0]
    assert {"role": "user", "content": "Hiring email"} in messages


@pytest.mark.asyncio
async def test_disambiguation_by_number_and_reask(loop, fake_reasoner):
    fake_reasoner.chat.side_effect = [
        reply("", call("disambiguate", options=[{"label": "Budget email"}, {"label": "Hiring email"}])),
        reply("Budget then."),
    ]
    await loop.process_user_input("that one")
    reask = await loop.process_user_input("umm")
    assert reask.response_text.startswith('For "umm": Which one?')
    picked = await loop.process_user_input("number 1")
    assert picked.response_text == "Budget then."


@pytest.mark.asyncio
async def test_reasoner_failure_reply(loop, fake_reasoner):
    fake_reasoner.chat.side_effect = RuntimeError("quota exceeded")
    result = await loop.process_user_input("next")
    assert result.response_text == REASONER_FAILURE_REPLY
    assert result.actions_taken == []


@pytest.mark.asyncio
async def test_unknown_tool_is_reported(loop, fake_reasoner):
    fake_reasoner.chat.return_value = reply("", call("teleport"))
    result = await loop.process_user_input("beam me up")
    assert result.response_text == "Unknown action: teleport"


@pytest.mark.asyncio
async def test_stop_ends_session(loop, fake_reasoner):
    fake_reasoner.chat.return_value = reply("", call("stop_briefing"))
    result = await loop.process_user_input("that's enough")
    assert result.should_end
    assert result.response_text == "Stopping the briefing. You have 6 items remaining."


@pytest.mark.asyncio
async def test_pause_and_repeat(loop, fake_reasoner):
    fake_reasoner.chat.return_value = reply("", call("pause_briefing"))
    await loop.process_user_input("pause")
    assert loop.snapshot()["is_paused"] is True

    fake_reasoner.chat.return_value = reply("", call("repeat_that"))
    result = await loop.process_user_input("say that again")
    assert result.response_text.startswith("Pausing the briefing.")


@pytest.mark.asyncio
async def test_low_confidence_transcript_is_ignored(loop, fake_reasoner):
    result = await loop.process_transcript(Transcript("next", confidence=0.4))
    assert result.response_text == ""
    fake_reasoner.chat.assert_not_called()


@pytest.mark.asyncio
async def test_barge_in_stops_speech(fake_reasoner, tracker):
    tts = MagicMock()
    loop = ReasoningLoop(fake_reasoner, tracker, tts=tts)
    loop.set_speaking(True)

    await loop.process_transcript(Transcript("wait, go back"))

    assert tts.call_args_list[0].args == ("", True)
    assert tts.call_args_list[-1].args == ("Okay.", True)
    assert loop.was_barge_in_detected() is True
    assert loop.was_barge_in_detected() is False


@pytest.mark.asyncio
async def test_async_reasoner_is_awaited(tracker):
    reasoner = MagicMock()
    reasoner.chat = AsyncMock(return_value=reply("From a coroutine."))
    loop = ReasoningLoop(reasoner, tracker)
    result = await loop.process_user_input("hi")
    assert result.response_text == "From a coroutine."


def test_inject_system_alert(loop):
    loop.inject_system_alert("URGENT: 2 new high-priority emails arrived.")
    assert loop.state.messages[-1] == {"role": "system", "content": "URGENT: 2 new high-priority emails arrived."}
