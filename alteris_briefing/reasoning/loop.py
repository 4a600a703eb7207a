"""Reasoning loop — one conversational turn at a time against the session tracker.

A turn is in one of three states, kept as optional fields on SessionState:

  normal                  call the reasoner with the cursor context and the tool catalog
  awaiting confirmation   a high-risk tool already ran; yes acknowledges, no cancels
  awaiting disambiguation the user picks one of the offered options by number or name

Tool calls run sequentially in the order the reasoner returned them. Email
actions on the current item and navigation tools move the tracker in the same
turn, so the cursor and the narration never disagree. When a turn moved the
cursor, the reply is a template transition instead of a second reasoner call.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import re
import time
from dataclasses import asdict, dataclass, field
from typing import Callable, Optional

from alteris_briefing.llm.client import ToolCall
from alteris_briefing.models import ItemRef
from alteris_briefing.reasoning.intents import Transcript, accept_transcript, classify_confirmation
from alteris_briefing.reasoning.prompts import (
    DisambiguationOption,
    SystemPromptContext,
    build_system_prompt,
    generate_confirmation,
    generate_disambiguation_prompt,
    generate_transition,
)
from alteris_briefing.reasoning.speech import prepare_for_speech, split_for_streaming
from alteris_briefing.tools import ToolContext, ToolRegistry, ToolResult, ToolState, default_registry

logger = logging.getLogger(__name__)

MAX_HISTORY = 30
KEEP_RECENT = 20

BRIEFING_CORE_TOOLS = [
    "archive_email",
    "mark_read",
    "flag_followup",
    "create_draft",
    "mute_sender",
    "search_emails",
    "undo_last_action",
    "next_item",
    "skip_topic",
    "go_back",
    "go_deeper",
    "repeat_that",
    "pause_briefing",
    "resume_briefing",
    "stop_briefing",
    "disambiguate",
]

# Tools after which the reply is a template transition to the new current item
CURSOR_TOOLS = {"next_item", "skip_topic", "archive_email", "mark_read"}

REASONER_FAILURE_REPLY = "I had trouble with that. Could you say it again?"
CONFIRM_REASK_REPLY = "Sorry, I didn't catch that. Should I go ahead, yes or no?"

_NUMBER = re.compile(r"\b(\d+)\b")
_ORDINALS = {"first": 1, "second": 2, "third": 3, "fourth": 4, "fifth": 5}

TTSCallback = Callable[[str, bool], None]


@dataclass
class PendingConfirmation:
    action: str
    args: dict
    email_id: Optional[str] = None


@dataclass
class ActionTaken:
    tool: str
    result: ToolResult


@dataclass
class SessionState:
    messages: list[dict] = field(default_factory=list)
    pending_confirmation: Optional[PendingConfirmation] = None
    disambiguation_options: Optional[list[DisambiguationOption]] = None
    is_speaking: bool = False
    last_spoken_text: str = ""
    tools: ToolState = field(default_factory=ToolState)

    @property
    def mode(self) -> str:
        if self.pending_confirmation is not None:
            return "awaiting_confirmation"
        if self.disambiguation_options is not None:
            return "awaiting_disambiguation"
        return "normal"


@dataclass
class ReasoningResult:
    response_text: str = ""
    response_chunks: list[str] = field(default_factory=list)
    actions_taken: list[ActionTaken] = field(default_factory=list)
    should_end: bool = False


def prune_history(messages: list[dict]) -> list[dict]:
    """Keep the system prompt and the most recent messages.

    A ``tool`` message may not open the window once its assistant turn is gone.
    """
    if len(messages) <= MAX_HISTORY:
        return messages
    recent = messages[-KEEP_RECENT:]
    while recent and recent[0].get("role") == "tool":
        recent = recent[1:]
    return [messages[0]] + recent


def _result_payload(result: ToolResult) -> str:
    return json.dumps({
        "success": result.success,
        "message": result.message,
        "data": result.data,
        "requiresConfirmation": result.requires_confirmation,
        "riskLevel": result.risk_level,
    }, default=str)


def _option_from(raw) -> DisambiguationOption | None:
    if isinstance(raw, dict):
        label = raw.get("label") or raw.get("name")
        return DisambiguationOption(str(label), str(raw.get("description", ""))) if label else None
    if raw:
        return DisambiguationOption(str(raw))
    return None


class ReasoningLoop:
    def __init__(
        self,
        reasoner,
        tracker,
        registry: ToolRegistry | None = None,
        prompt_context: SystemPromptContext | None = None,
        mailbox=None,
        tts: TTSCallback | None = None,
        tool_state: ToolState | None = None,
        tool_names: list[str] | None = None,
    ):
        self.reasoner = reasoner
        self.tracker = tracker
        self.registry = registry or default_registry()
        self.mailbox = mailbox
        self.tts = tts
        self.tool_names = tool_names or BRIEFING_CORE_TOOLS

        system_prompt = build_system_prompt(prompt_context) + "\n\n" + tracker.build_compact_email_reference()
        self.state = SessionState(
            messages=[{"role": "system", "content": system_prompt}],
            tools=tool_state or ToolState(),
        )

        self._target: ItemRef | None = tracker.get_current_email()
        self._pinned = False
        self._busy = False
        self._barge_in = False

        logger.info(
            "Reasoning loop initialized: %d topics, current=%s",
            tracker.topic_count(), self._target.email_id if self._target else None,
        )

    # ══════════════════════════════════════════════════════════════
    # Entry points
    # ══════════════════════════════════════════════════════════════

    async def process_transcript(self, event: Transcript) -> ReasoningResult:
        text = accept_transcript(event)
        if text is None:
            logger.debug("Skipping low-quality transcript (confidence %.2f): %r", event.confidence, event.text)
            return ReasoningResult()
        if self.state.is_speaking:
            await self.handle_barge_in(text)
        return await self.process_user_input(text)

    async def process_user_input(self, text: str) -> ReasoningResult:
        if self._busy:
            logger.warning("Turn already in progress, dropping input: %r", text)
            return ReasoningResult()

        self._busy = True
        start = time.monotonic()
        try:
            result = await self._turn(text)
        finally:
            self._busy = False

        logger.info(
            "Turn finished in %.0fms: %d actions %s, should_end=%s",
            (time.monotonic() - start) * 1000, len(result.actions_taken),
            [a.tool for a in result.actions_taken], result.should_end,
        )
        return result

    async def _turn(self, text: str) -> ReasoningResult:
        before = len(self.state.messages)
        self.state.messages = prune_history(self.state.messages)
        if len(self.state.messages) != before:
            logger.info("Pruned conversation history: %d -> %d messages", before, len(self.state.messages))

        self.state.messages.append({"role": "user", "content": text})

        if self.state.pending_confirmation is not None:
            return self._handle_confirmation(text)
        if self.state.disambiguation_options is not None:
            return await self._handle_disambiguation(text)
        return await self._call_reasoner()

    # ══════════════════════════════════════════════════════════════
    # Normal state
    # ══════════════════════════════════════════════════════════════

    async def _chat(self, messages: list[dict], tools: list[dict]):
        reply = await asyncio.to_thread(self.reasoner.chat, messages, tools)
        if inspect.isawaitable(reply):
            reply = await reply
        return reply

    async def _call_reasoner(self) -> ReasoningResult:
        if not self._pinned:
            self._target = self.tracker.get_current_email() or self._target
        self.state.messages.append({"role": "system", "content": self.tracker.build_cursor_context()})

        try:
            reply = await self._chat(list(self.state.messages), self.registry.schemas(self.tool_names))
        except Exception as e:
            logger.error("Reasoner call failed: %s", e)
            return self._text_result(REASONER_FAILURE_REPLY)

        if reply.tool_calls:
            self.state.messages.append({
                "role": "assistant",
                "content": reply.content or "",
                "tool_calls": [call.to_message() for call in reply.tool_calls],
            })
            return self._handle_tool_calls(reply.tool_calls)

        return self._text_result(reply.content or "")

    def _retarget(self, email_id: str, subject: str = "", sender: str = ""):
        ref = self.tracker.find_ref(email_id)
        self._target = ref or ItemRef(email_id=email_id, subject=subject, sender=sender)
        self._pinned = True

    def _follow_cursor(self):
        current = self.tracker.get_current_email()
        if current is not None:
            self._target = current
        self._pinned = False

    def _tool_message(self, call: ToolCall, content: str):
        self.state.messages.append({
            "role": "tool",
            "tool_call_id": call.id,
            "name": call.name,
            "content": content,
        })

    def _handle_tool_calls(self, calls: list[ToolCall]) -> ReasoningResult:
        actions: list[ActionTaken] = []
        parts: list[str] = []
        should_end = False

        for call in calls:
            name, args = call.name, dict(call.arguments or {})

            # Every tool call still gets a tool message so the history stays well formed
            if self.state.pending_confirmation is not None or self.state.disambiguation_options is not None:
                self._tool_message(call, json.dumps({"success": False, "message": "Not run: waiting on the user."}))
                continue

            if name == "disambiguate":
                options = [o for o in map(_option_from, args.get("options") or []) if o]
                self.state.disambiguation_options = options
                parts = [generate_disambiguation_prompt(options, args.get("context"))]
                self._tool_message(call, json.dumps({"success": True, "options": [o.label for o in options]}))
                continue

            spec = self.registry.get(name)
            kind = spec.kind if spec else None
            if args.get("email_id") and (kind == "email" or name == "go_deeper"):
                self._retarget(str(args["email_id"]))

            logger.info("Executing tool %s %s", name, args)
            ctx = ToolContext(tracker=self.tracker, state=self.state.tools, mailbox=self.mailbox, email=self._target)
            result = self.registry.execute(name, ctx, args)
            actions.append(ActionTaken(name, result))
            self._tool_message(call, _result_payload(result))

            if kind == "email":
                if result.requires_confirmation:
                    self.state.pending_confirmation = PendingConfirmation(name, args, ctx.email_id)
                    parts = [result.message]
                    continue
                parts.append(result.message)
                if result.success:
                    self._track_email_action(name, args, ctx, result)
            elif kind == "navigation":
                if result.success and name in ("next_item", "skip_topic", "go_back"):
                    self._follow_cursor()
                if name == "stop_briefing":
                    should_end = True
                parts.append(self.state.last_spoken_text if name == "repeat_that" else result.message)
            else:
                parts.append(result.message)

        text = " ".join(p for p in parts if p).strip()

        moved = [a.tool for a in actions if a.tool in CURSOR_TOOLS and a.result.success]
        if moved and not should_end and self.state.mode == "normal":
            progress = self.tracker.get_progress()
            text = generate_transition(
                moved[-1],
                self.tracker.get_current_email(),
                handled=progress.emails_briefed + progress.emails_actioned,
                total=progress.total_emails,
            )
            self._follow_cursor()

        return self._text_result(text, actions, should_end)

    def _track_email_action(self, name: str, args: dict, ctx: ToolContext, result: ToolResult):
        if name == "search_emails":
            hits = result.data.get("results") or []
            first = hits[0] if hits else None
            if isinstance(first, dict) and first.get("id"):
                self._retarget(str(first["id"]), first.get("subject", ""), first.get("from", ""))
            return

        if name in ("archive_email", "mark_read"):
            ids = result.data.get("emailIds") or [result.data.get("emailId") or ctx.email_id]
            ids = [i for i in ids if i]
            for email_id in ids:
                self.tracker.mark_actioned(email_id, name)
            current = self.tracker.get_current_email()
            if current is not None and current.email_id in ids:
                self.tracker.advance()
                self._follow_cursor()
        elif name == "flag_followup":
            email_id = result.data.get("emailId") or ctx.email_id
            if email_id:
                self.tracker.mark_actioned(email_id, "flagged")

    # ══════════════════════════════════════════════════════════════
    # Confirmation and disambiguation states
    # ══════════════════════════════════════════════════════════════

    def _handle_confirmation(self, text: str) -> ReasoningResult:
        pending = self.state.pending_confirmation
        if pending is None:
            return self._text_result("I'm not sure what you're confirming.")

        verdict = classify_confirmation(text)
        if verdict == "confirm":
            # The action already ran when the tool was called; only acknowledge it
            self.state.pending_confirmation = None
            ack = ToolResult(success=True, message="Done.", risk_level="high", action=pending.action)
            logger.info("Confirmed %s for %s", pending.action, pending.email_id)
            return self._text_result(generate_confirmation(pending.action, "high"), [ActionTaken(pending.action, ack)])
        if verdict == "cancel":
            self.state.pending_confirmation = None
            logger.info("Cancelled %s for %s", pending.action, pending.email_id)
            return self._text_result("Okay, cancelled.")
        return self._text_result(CONFIRM_REASK_REPLY)

    def _pick_option(self, text: str, options: list[DisambiguationOption]) -> DisambiguationOption | None:
        lower = text.lower()
        m = _NUMBER.search(text)
        index = int(m.group(1)) if m else next((n for w, n in _ORDINALS.items() if w in lower), None)
        if index is not None and 1 <= index <= len(options):
            return options[index - 1]
        return next((o for o in options if o.label.lower() in lower), None)

    async def _handle_disambiguation(self, text: str) -> ReasoningResult:
        options = self.state.disambiguation_options
        if not options:
            self.state.disambiguation_options = None
            return self._text_result("I'm not sure what you're referring to.")

        choice = self._pick_option(text, options)
        if choice is None:
            return self._text_result(generate_disambiguation_prompt(options, text))

        self.state.disambiguation_options = None
        logger.info("Disambiguated to %r", choice.label)
        return await self._turn(choice.label)

    # ══════════════════════════════════════════════════════════════
    # Output
    # ══════════════════════════════════════════════════════════════

    def _text_result(
        self,
        text: str,
        actions: list[ActionTaken] | None = None,
        should_end: bool = False,
    ) -> ReasoningResult:
        chunks = split_for_streaming(prepare_for_speech(text)) if text else []

        if text:
            self.state.last_spoken_text = text
            self.state.messages.append({"role": "assistant", "content": text})

        if self.tts is not None and chunks:
            self.state.is_speaking = True
            for i, chunk in enumerate(chunks):
                self.tts(chunk, i == len(chunks) - 1)

        return ReasoningResult(
            response_text=text,
            response_chunks=chunks,
            actions_taken=list(actions or []),
            should_end=should_end,
        )

    async def handle_barge_in(self, partial_transcript: str | None = None):
        """Stop speech output. Conversation history is left untouched."""
        logger.info("Barge-in detected%s", f": {partial_transcript!r}" if partial_transcript else "")
        self._barge_in = True
        self.state.is_speaking = False
        if self.tts is not None:
            self.tts("", True)

    def was_barge_in_detected(self) -> bool:
        detected, self._barge_in = self._barge_in, False
        return detected

    def set_speaking(self, is_speaking: bool):
        self.state.is_speaking = is_speaking

    def inject_system_alert(self, message: str):
        self.state.messages.append({"role": "system", "content": message})
        logger.info("System alert injected: %s", message[:100])

    @property
    def current_target(self) -> ItemRef | None:
        return self._target

    def snapshot(self) -> dict:
        """Debug view of the session state."""
        return {
            "mode": self.state.mode,
            "messages": len(self.state.messages),
            "is_speaking": self.state.is_speaking,
            "is_paused": self.state.tools.is_paused,
            "pending": asdict(self.state.pending_confirmation) if self.state.pending_confirmation else None,
            "target": self._target.email_id if self._target else None,
        }
