"""Spoken templates and the reasoner system prompt.

Everything here is pure formatting: transitions, confirmations and
disambiguation questions are produced from templates so a turn that only
moves the cursor never needs a second reasoner call.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional, Union

from alteris_briefing.models import ItemRef


def _plural(n: int, word: str) -> str:
    return f"{n} {word}" if n == 1 else f"{n} {word}s"


# ══════════════════════════════════════════════════════════════
# Transitions
# ══════════════════════════════════════════════════════════════

ACTION_ACKS = {
    "archive_email": "Archived.",
    "mark_read": "Marked as read.",
    "flag_followup": "Flagged for follow-up.",
    "next_item": "",
    "skip_topic": "",
    "mute_sender": "Muted.",
    "create_draft": "Draft saved.",
}


def generate_transition(completed_action: str, next_ref: Optional[ItemRef], handled: int, total: int) -> str:
    """Acknowledge the action and introduce the next item, or close out."""
    ack = ACTION_ACKS.get(completed_action, "Done.")

    if next_ref is None:
        count_note = f" {handled} emails covered." if total > 0 else ""
        return f"{ack} That wraps up your briefing.{count_note}".strip()

    priority_note = " This one's important." if next_ref.priority == "high" else ""
    summary = next_ref.summary or f"{next_ref.subject} from {next_ref.sender}"
    return f"{ack} Next up: {summary}{priority_note}".strip()


@dataclass
class TopicPrompt:
    name: str
    item_count: int
    priority: str = "medium"


def generate_topic_transition(from_topic: Optional[str], to_topic: TopicPrompt) -> str:
    items = "item" if to_topic.item_count == 1 else "items"
    if not from_topic:
        return f"Let's start with {to_topic.name}. You have {to_topic.item_count} {items} here."
    urgency = "This is high priority. " if to_topic.priority == "high" else ""
    return f"Moving on to {to_topic.name}. {urgency}{to_topic.item_count} {items} to cover."


def estimate_minutes(items: int) -> int:
    """Roughly half a minute of narration per item."""
    return -(-items // 2)


def generate_progress_update(total: int, position: int, minutes_remaining: Optional[int] = None) -> str:
    remaining = total - position
    if remaining <= 0:
        return "That's everything for now."
    if remaining <= 3:
        return f"Almost done. {remaining} more {'item' if remaining == 1 else 'items'}."

    minutes = estimate_minutes(remaining) if minutes_remaining is None else minutes_remaining
    if minutes <= 2:
        return f"About {remaining} items left, roughly {minutes} minutes."
    return f"{remaining} items remaining, about {minutes} minutes."


def generate_briefing_opening(total_items: int, topic_labels: list[str], user_name: Optional[str] = None) -> str:
    name = f"{user_name}, " if user_name else ""
    topics = ", ".join(topic_labels[:3])
    more = f" and {len(topic_labels) - 3} more topics" if len(topic_labels) > 3 else ""
    return f"{name}you have {total_items} items to catch up on. Topics include: {topics}{more}. Let's dive in."


def generate_briefing_closing(actions_count: int, flagged_count: int) -> str:
    if actions_count == 0 and flagged_count == 0:
        return "That's your inbox for now. Nothing needed from you."
    parts = []
    if actions_count:
        parts.append(f"You took {_plural(actions_count, 'action')}.")
    if flagged_count:
        parts.append(f"{_plural(flagged_count, 'item')} flagged for follow-up.")
    return f"That's your briefing. {' '.join(parts)} I'll update you if anything urgent comes in."


def generate_pause_prompt(remaining: int) -> str:
    return f'Pausing the briefing. You have {remaining} items left. Just say "resume" when you\'re ready.'


# ══════════════════════════════════════════════════════════════
# Confirmations
# ══════════════════════════════════════════════════════════════

Template = Union[str, Callable[[str], str]]

CONFIRMATION_TEMPLATES: dict[str, dict[str, Template]] = {
    "low": {
        "mark_read": "Marked as read.",
        "skip": "Skipped.",
        "next": "Moving on.",
        "archive": "Archived.",
    },
    "medium": {
        "flag": "Flagged for follow-up.",
        "flag_with_context": lambda sender: f"Flagged {sender}'s email for follow-up.",
        "move_to_folder": lambda folder: f"Moved to {folder}.",
        "add_vip": lambda name: f"Added {name} to your VIP list.",
    },
    "high": {
        "send_email": lambda to: f"I'll send this to {to}. Should I go ahead?",
        "delete_email": "This will delete the email. Are you sure?",
        "mute_vip": lambda name: f"{name} is a VIP. Still mute them?",
        "draft_reply": lambda subject: f"I've drafted a reply about {subject}. Want me to read it back?",
    },
}


def generate_confirmation(action: str, risk_level: str, arg: str = "") -> str:
    template = CONFIRMATION_TEMPLATES.get(risk_level, {}).get(action)
    if template is None:
        return "Done."
    if callable(template):
        return template(arg)
    return template


# ══════════════════════════════════════════════════════════════
# Disambiguation
# ══════════════════════════════════════════════════════════════

@dataclass
class DisambiguationOption:
    label: str
    description: str = ""


def generate_disambiguation_prompt(options: list[DisambiguationOption], context: Optional[str] = None) -> str:
    if not options:
        return "I'm not sure what you meant. Could you clarify?"
    if len(options) == 1:
        return f"Did you mean {options[0].label}?"
    option_text = ", or ".join(f"{i}. {opt.label}" for i, opt in enumerate(options, 1))
    context_note = f'For "{context}": ' if context else ""
    return f"{context_note}Which one? {option_text}?"


# ══════════════════════════════════════════════════════════════
# System prompt
# ══════════════════════════════════════════════════════════════

PERSONA = """You are Alteris, a professional executive assistant helping busy people get through their email while they are on the move (driving, walking, commuting).

Your voice is clear and professional, like a trusted chief of staff. Keep it concise because the user is multitasking. Surface what matters and help the user feel in control.

Speak in a natural, conversational tone. Never sound like you are reading aloud."""

SAFETY_RULES = """SAFETY RULES:
1. NEVER read out passwords, API keys, account numbers or other secrets. Say "This email contains sensitive information that I won't read aloud" instead.
2. ALWAYS confirm before sending email or making permanent changes.
3. NEVER make up information. If you don't know, say so.
4. If the user sounds distracted or mentions trouble on the road, offer to pause.
5. Keep responses SHORT when the user is driving."""

TOOL_RULES = """TOOL USAGE (MANDATORY):
Perform every action by calling the matching tool. Never say "Done" or "Flagged" without a tool call.
Use the email_id values from the REMAINING EMAILS section when calling email tools.
If you cannot tell which email the user means, call disambiguate with the candidates or ask. Never pretend an action happened.

EMAIL TOOLS: archive_email, mark_read, flag_followup, create_draft, mute_sender, search_emails
NAVIGATION TOOLS: next_item, skip_topic, go_back, go_deeper, stop_briefing"""

RESPONSE_RULES = """RESPONSE GUIDELINES:
1. Keep responses under 30 words when the user is driving.
2. Lead with the most important point of each email.
3. Paraphrase rather than read emails verbatim.
4. When asking for a decision, give clear options: "Should I flag it, or skip?"

CONFIRMATION:
- Low risk (mark read, skip): just do it and acknowledge briefly.
- Medium risk (flag, archive): confirm briefly after acting.
- High risk (drafts, muting a VIP): ask before moving on."""

GREETINGS = {
    "morning": 'Start with "Good morning{name}. Here\'s your briefing."',
    "afternoon": 'Start with "Good afternoon{name}. Let me catch you up."',
    "evening": 'Start with "Good evening{name}. Here\'s what you need to know."',
}

VERBOSITY_NOTES = {
    "concise": "VERBOSITY: The user prefers minimal responses. Be extremely brief.",
    "standard": "VERBOSITY: The user prefers balanced responses. Be clear but concise.",
    "detailed": "VERBOSITY: The user prefers thorough responses. Include relevant details.",
}

MODE_NOTES = {
    "driving": "MODE: The user is DRIVING. Keep responses very short and never require visual attention.",
    "walking": "MODE: The user is walking. Keep responses concise.",
    "desk": "MODE: The user is at their desk. More detail is fine.",
}


@dataclass
class SystemPromptContext:
    user_name: Optional[str] = None
    time_of_day: str = "morning"
    vip_names: list[str] = field(default_factory=list)
    muted_senders: list[str] = field(default_factory=list)
    verbosity: str = "standard"
    mode: str = "driving"


def time_of_day(hour: int) -> str:
    if hour < 12:
        return "morning"
    if hour < 18:
        return "afternoon"
    return "evening"


def build_system_prompt(ctx: SystemPromptContext | None = None) -> str:
    ctx = ctx or SystemPromptContext()
    name = f", {ctx.user_name}" if ctx.user_name else ""
    greeting = "GREETING: " + GREETINGS.get(ctx.time_of_day, GREETINGS["morning"]).format(name=name)

    context_lines = []
    if ctx.vip_names:
        context_lines.append(f"VIP CONTACTS: {', '.join(ctx.vip_names)}")
    if ctx.muted_senders:
        context_lines.append(f"MUTED SENDERS: {', '.join(ctx.muted_senders)}")
    context_lines.append(VERBOSITY_NOTES.get(ctx.verbosity, VERBOSITY_NOTES["standard"]))
    context_lines.append(MODE_NOTES.get(ctx.mode, MODE_NOTES["driving"]))

    return "\n\n".join([
        PERSONA,
        greeting,
        SAFETY_RULES,
        TOOL_RULES,
        RESPONSE_RULES,
        "CURRENT CONTEXT:\n" + "\n".join(context_lines),
        "Remember: the user is likely multitasking. Be helpful, concise, and put their safety first.",
    ])
