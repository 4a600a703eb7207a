"""Email tools — actions on the item being briefed.

Handlers record what they did on the session's action history (bounded, per
session) and forward to a Mailbox when one is attached. Without a mailbox the
action is only recorded, which is what the offline CLI briefing uses.
"""

from __future__ import annotations

import logging
from typing import Protocol

from alteris_briefing.tools.registry import ToolContext, ToolResult, ToolSpec, params

logger = logging.getLogger(__name__)

MUTE_DURATIONS = ["1_day", "1_week", "1_month", "forever"]
FOLLOWUP_DUES = ["today", "tomorrow", "this_week", "next_week", "no_date"]
DRAFT_TONES = ["formal", "friendly", "brief", "detailed"]
DATE_RANGES = ["today", "yesterday", "this_week", "last_week", "this_month"]

IRREVERSIBLE_ACTIONS = {"create_draft"}


class Mailbox(Protocol):
    """Whatever actually carries out actions against the user's mail account."""

    def archive(self, email_id: str) -> None: ...

    def mark_read(self, email_ids: list[str]) -> None: ...

    def flag(self, email_id: str, due_date: str, note: str | None = None) -> None: ...

    def create_draft(self, in_reply_to: str, body: str, tone: str) -> str | None: ...

    def mute_sender(self, sender_email: str, duration: str) -> None: ...

    def add_vip(self, sender_email: str, name: str | None = None) -> None: ...

    def search(self, query: str, **filters) -> list[dict]: ...

    def undo(self, action: str, email_id: str | None, args: dict) -> None: ...


def _sender_email(ctx: ToolContext, args: dict) -> str:
    return args.get("sender_email") or (ctx.email.sender if ctx.email else "")


def _target_id(ctx: ToolContext, args: dict, key: str = "email_id") -> str | None:
    return args.get(key) or ctx.email_id


def _humanize(action: str) -> str:
    return action.replace("_", " ", 1)


# ── Handlers ─────────────────────────────────────────────────────

def archive_email(ctx: ToolContext, args: dict) -> ToolResult:
    email_id = _target_id(ctx, args)
    if not email_id:
        return ToolResult(success=False, message="There's no email to archive.")
    if ctx.mailbox is not None:
        ctx.mailbox.archive(email_id)
    ctx.state.record("archive_email", email_id, args)
    return ToolResult(success=True, message="Archived.", data={"emailId": email_id}, risk_level="low")


def mark_read(ctx: ToolContext, args: dict) -> ToolResult:
    raw = args.get("email_ids")
    if raw:
        ids = [i.strip() for i in str(raw).split(",") if i.strip()]
    else:
        ids = [ctx.email_id] if ctx.email_id else []
    if not ids:
        return ToolResult(success=False, message="There's no email to mark as read.")

    if ctx.mailbox is not None:
        ctx.mailbox.mark_read(ids)
    ctx.state.record("mark_read", ids[0], {"email_ids": ids})
    message = "Marked as read." if len(ids) == 1 else f"Marked {len(ids)} emails as read."
    return ToolResult(success=True, message=message, data={"emailIds": ids}, risk_level="low")


def flag_followup(ctx: ToolContext, args: dict) -> ToolResult:
    email_id = _target_id(ctx, args)
    if not email_id:
        return ToolResult(success=False, message="There's no email to flag.")
    due = args.get("due_date") or "no_date"
    note = args.get("note")

    if ctx.mailbox is not None:
        ctx.mailbox.flag(email_id, due, note)
    ctx.state.record("flag_followup", email_id, {"due_date": due, "note": note})

    due_text = f" for {due.replace('_', ' ')}" if due != "no_date" else ""
    return ToolResult(
        success=True,
        message=f"Flagged for follow-up{due_text}.",
        data={"emailId": email_id, "dueDate": due, "note": note},
        risk_level="medium",
    )


def create_draft(ctx: ToolContext, args: dict) -> ToolResult:
    in_reply_to = args.get("in_reply_to") or ctx.email_id
    body = args.get("body", "")
    tone = args.get("tone") or "friendly"
    if not in_reply_to:
        return ToolResult(success=False, message="There's no email to reply to.")

    draft_id = None
    if ctx.mailbox is not None:
        draft_id = ctx.mailbox.create_draft(in_reply_to, body, tone)
    ctx.state.record("create_draft", in_reply_to, {"tone": tone}, reversible=False)

    data = {"draftBody": body, "inReplyTo": in_reply_to}
    if draft_id:
        data["draftId"] = draft_id
    return ToolResult(
        success=True,
        message=f"I've drafted a {tone} reply. Would you like me to read it back before saving?",
        data=data,
        requires_confirmation=True,
        risk_level="high",
    )


def mute_sender(ctx: ToolContext, args: dict) -> ToolResult:
    sender = _sender_email(ctx, args)
    if not sender:
        return ToolResult(success=False, message="I don't know which sender to mute.")
    duration = args.get("duration") or "forever"
    display = ctx.email.sender if ctx.email and ctx.email.sender else sender

    if ctx.state.is_vip(sender):
        return ToolResult(
            success=False,
            message=f"{display} is on your VIP list. Are you sure you want to mute them?",
            data={"senderEmail": sender, "duration": duration},
            requires_confirmation=True,
            risk_level="high",
        )

    if ctx.mailbox is not None:
        ctx.mailbox.mute_sender(sender, duration)
    ctx.state.muted_senders[sender.lower()] = duration
    ctx.state.record("mute_sender", ctx.email_id, {"sender_email": sender, "duration": duration})
    return ToolResult(
        success=True,
        message=f"Muted {display} for {duration.replace('_', ' ')}.",
        data={"senderEmail": sender, "duration": duration},
        risk_level="medium",
    )


def prioritize_vip(ctx: ToolContext, args: dict) -> ToolResult:
    sender = _sender_email(ctx, args)
    if not sender:
        return ToolResult(success=False, message="I don't know who to add.")
    name = args.get("sender_name") or (ctx.email.sender if ctx.email else None) or sender

    if ctx.mailbox is not None:
        ctx.mailbox.add_vip(sender, args.get("sender_name"))
    ctx.state.vip_emails.add(sender.lower())
    ctx.state.record("prioritize_vip", ctx.email_id, {"sender_email": sender})
    return ToolResult(
        success=True,
        message=f"Added {name} to your VIP list.",
        data={"senderEmail": sender, "senderName": name},
        risk_level="medium",
    )


def undo_last_action(ctx: ToolContext, args: dict) -> ToolResult:
    history = ctx.state.action_history
    if not history:
        return ToolResult(success=False, message="There's nothing to undo.")

    last = history[-1]
    if not last.reversible or last.action in IRREVERSIBLE_ACTIONS:
        return ToolResult(
            success=False,
            message=f"Cannot undo {last.action}. That action is not reversible.",
        )

    if ctx.mailbox is not None:
        ctx.mailbox.undo(last.action, last.email_id, last.args)
    history.pop()
    if last.action == "mute_sender":
        ctx.state.muted_senders.pop(str(last.args.get("sender_email", "")).lower(), None)
    elif last.action == "prioritize_vip":
        ctx.state.vip_emails.discard(str(last.args.get("sender_email", "")).lower())

    return ToolResult(
        success=True,
        message=f"Undid {_humanize(last.action)}.",
        data={"undone": last.action, "emailId": last.email_id},
        risk_level="low",
    )


def search_emails(ctx: ToolContext, args: dict) -> ToolResult:
    query = (args.get("query") or "").strip()
    if not query:
        return ToolResult(success=False, message="What should I search for?")
    if ctx.mailbox is None:
        return ToolResult(success=False, message="Search isn't available right now.")

    filters = {k: args[k] for k in ("from", "date_range", "has_attachment") if args.get(k) is not None}
    results = ctx.mailbox.search(query, **filters) or []
    if not results:
        message = f'I didn\'t find any emails matching "{query}".'
    elif len(results) == 1:
        message = f'I found one email matching "{query}".'
    else:
        message = f'I found {len(results)} emails matching "{query}".'
    return ToolResult(success=True, message=message, data={"results": results}, risk_level="low")


# ── Specs ────────────────────────────────────────────────────────

_EMAIL_ID = {"type": "string", "description": "The email to act on. Defaults to the email being briefed."}

EMAIL_TOOLS = [
    ToolSpec(
        "archive_email", "email",
        "Archive an email, removing it from the inbox.",
        params({"email_id": _EMAIL_ID}),
        archive_email,
    ),
    ToolSpec(
        "mark_read", "email",
        "Mark one or more emails as read.",
        params({"email_ids": {
            "type": "string",
            "description": "Comma-separated email ids. Defaults to the email being briefed.",
        }}),
        mark_read,
    ),
    ToolSpec(
        "flag_followup", "email",
        "Flag an email for follow-up, optionally with a due date and a note.",
        params({
            "email_id": _EMAIL_ID,
            "due_date": {"type": "string", "enum": FOLLOWUP_DUES, "description": "When to follow up."},
            "note": {"type": "string", "description": "Optional reminder text."},
        }),
        flag_followup,
    ),
    ToolSpec(
        "create_draft", "email",
        "Draft a reply to an email. The draft is read back before it is saved.",
        params(
            {
                "in_reply_to": {"type": "string", "description": "Id of the email being replied to."},
                "body": {"type": "string", "description": "The reply text."},
                "tone": {"type": "string", "enum": DRAFT_TONES, "description": "Tone of the reply."},
            },
            ["body"],
        ),
        create_draft,
    ),
    ToolSpec(
        "mute_sender", "email",
        "Stop briefing emails from a sender for a while.",
        params({
            "sender_email": {"type": "string", "description": "Sender address. Defaults to the current sender."},
            "duration": {"type": "string", "enum": MUTE_DURATIONS, "description": "How long to mute."},
        }),
        mute_sender,
    ),
    ToolSpec(
        "prioritize_vip", "email",
        "Add a sender to the VIP list so their emails are always prioritized.",
        params({
            "sender_email": {"type": "string", "description": "Sender address. Defaults to the current sender."},
            "sender_name": {"type": "string", "description": "Display name for the VIP."},
        }),
        prioritize_vip,
    ),
    ToolSpec(
        "undo_last_action", "email",
        "Undo the most recent email action.",
        params(),
        undo_last_action,
    ),
    ToolSpec(
        "search_emails", "email",
        "Search the mailbox.",
        params(
            {
                "query": {"type": "string", "description": "Free-text search."},
                "from": {"type": "string", "description": "Only emails from this sender."},
                "date_range": {"type": "string", "enum": DATE_RANGES},
                "has_attachment": {"type": "boolean"},
            },
            ["query"],
        ),
        search_emails,
    ),
]
