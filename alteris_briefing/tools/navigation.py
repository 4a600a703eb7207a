"""Navigation tools — move through the briefing.

These act on the session tracker directly, so there is exactly one cursor.
Pause state lives on the ToolState and is shared with the reasoning loop.
"""

from __future__ import annotations

import logging

from alteris_briefing.tools.registry import ToolContext, ToolResult, ToolSpec, params

logger = logging.getLogger(__name__)

GO_BACK_STEPS = ["1", "2", "3", "topic_start"]
DEEPER_ASPECTS = ["full_email", "thread_history", "sender_info", "attachments", "related_emails"]


def _ref_data(ref) -> dict:
    if ref is None:
        return {"next": None, "complete": True}
    return {
        "next": {
            "emailId": ref.email_id,
            "subject": ref.subject,
            "sender": ref.sender,
            "summary": ref.summary,
            "isFlagged": ref.is_flagged,
            "priority": ref.priority,
        },
        "complete": False,
    }


def next_item(ctx: ToolContext, args: dict) -> ToolResult:
    ref = ctx.tracker.advance()
    return ToolResult(success=True, message="Moving on.", data=_ref_data(ref))


def skip_topic(ctx: ToolContext, args: dict) -> ToolResult:
    ref = ctx.tracker.skip_topic()
    data = _ref_data(ref)
    if args.get("reason"):
        data["reason"] = args["reason"]
    return ToolResult(success=True, message="Skipping to the next topic.", data=data)


def go_back(ctx: ToolContext, args: dict) -> ToolResult:
    steps = str(args.get("steps") or "1")
    tracker = ctx.tracker

    if steps == "topic_start":
        ref = tracker.go_back_to_topic_start()
        if ref is None:
            return ToolResult(success=False, message="You're already at the start of this topic.")
        return ToolResult(
            success=True, message="Going back to the start of this topic.", data=_ref_data(ref),
        )

    n = int(steps) if steps.isdigit() else 1
    depth = tracker.history_depth()
    if depth == 0:
        return ToolResult(success=False, message="We're at the beginning. There's nothing to go back to.")
    if n > depth:
        return ToolResult(
            success=False,
            message=f"I can only go back {depth} item{'s' if depth != 1 else ''}.",
        )

    ref = None
    for _ in range(n):
        ref = tracker.go_back()
    message = "Going back." if n == 1 else f"Going back {n} items."
    return ToolResult(success=True, message=message, data=_ref_data(ref))


def repeat_that(ctx: ToolContext, args: dict) -> ToolResult:
    return ToolResult(success=True, message="", data=_ref_data(ctx.tracker.get_current_email()))


def go_deeper(ctx: ToolContext, args: dict) -> ToolResult:
    aspect = args.get("aspect") or "full_email"
    data = {"aspect": aspect, "emailId": ctx.email_id}
    message = "Getting more details..."
    mailbox = ctx.mailbox
    if mailbox is not None and ctx.email_id and hasattr(mailbox, "get_details"):
        details = mailbox.get_details(ctx.email_id, aspect)
        if details:
            data["details"] = details
            message = str(details)
    return ToolResult(success=True, message=message, data=data)


def pause_briefing(ctx: ToolContext, args: dict) -> ToolResult:
    if ctx.state.is_paused:
        return ToolResult(success=False, message="The briefing is already paused.")
    ctx.state.is_paused = True
    logger.info("Briefing paused")
    return ToolResult(
        success=True,
        message='Pausing the briefing. Just say "resume" when you\'re ready.',
    )


def resume_briefing(ctx: ToolContext, args: dict) -> ToolResult:
    if not ctx.state.is_paused:
        return ToolResult(success=False, message="The briefing is not paused.")
    ctx.state.is_paused = False
    logger.info("Briefing resumed")
    return ToolResult(success=True, message="Resuming the briefing.")


def stop_briefing(ctx: ToolContext, args: dict) -> ToolResult:
    remaining = ctx.tracker.get_progress().emails_remaining
    save = args.get("save_progress", True)
    if remaining:
        message = f"Stopping the briefing. You have {remaining} items remaining."
    else:
        message = "That's your briefing complete."
    return ToolResult(
        success=True,
        message=message,
        data={"remaining": remaining, "saveProgress": bool(save)},
        action="stop_briefing",
    )


NAVIGATION_TOOLS = [
    ToolSpec(
        "next_item", "navigation",
        "Move on to the next email.",
        params(),
        next_item,
    ),
    ToolSpec(
        "skip_topic", "navigation",
        "Skip the rest of the current topic.",
        params({"reason": {"type": "string", "description": "Why the user is skipping."}}),
        skip_topic,
    ),
    ToolSpec(
        "go_back", "navigation",
        "Go back to an earlier email.",
        params({"steps": {"type": "string", "enum": GO_BACK_STEPS, "description": "How far to go back."}}),
        go_back,
    ),
    ToolSpec(
        "repeat_that", "navigation",
        "Repeat the current email.",
        params(),
        repeat_that,
    ),
    ToolSpec(
        "go_deeper", "navigation",
        "Give more detail on the current email.",
        params({
            "email_id": {"type": "string", "description": "The email to expand. Defaults to the current one."},
            "aspect": {"type": "string", "enum": DEEPER_ASPECTS, "description": "What to expand on."},
        }),
        go_deeper,
    ),
    ToolSpec(
        "pause_briefing", "navigation",
        "Pause the briefing until the user says resume.",
        params(),
        pause_briefing,
    ),
    ToolSpec(
        "resume_briefing", "navigation",
        "Resume a paused briefing.",
        params(),
        resume_briefing,
    ),
    ToolSpec(
        "stop_briefing", "navigation",
        "End the briefing.",
        params({"save_progress": {"type": "boolean", "description": "Remember where the user stopped."}}),
        stop_briefing,
    ),
]
