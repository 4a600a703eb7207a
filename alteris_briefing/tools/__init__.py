from alteris_briefing.tools.email import EMAIL_TOOLS, Mailbox
from alteris_briefing.tools.navigation import NAVIGATION_TOOLS
from alteris_briefing.tools.registry import (
    ACTION_HISTORY_LIMIT,
    ActionRecord,
    ToolContext,
    ToolRegistry,
    ToolResult,
    ToolSpec,
    ToolState,
    params,
)

# Handled by the reasoning loop itself, never executed.
DISAMBIGUATE_TOOL = ToolSpec(
    "disambiguate", "meta",
    "Ask the user which of several emails or actions they meant.",
    params(
        {
            "context": {"type": "string", "description": "What the user said that was ambiguous."},
            "options": {"type": "array", "items": {"type": "string"}, "description": "The candidates."},
        },
        ["options"],
    ),
)


def default_registry() -> ToolRegistry:
    return ToolRegistry(EMAIL_TOOLS + NAVIGATION_TOOLS + [DISAMBIGUATE_TOOL])


__all__ = [
    "ACTION_HISTORY_LIMIT",
    "ActionRecord",
    "DISAMBIGUATE_TOOL",
    "EMAIL_TOOLS",
    "Mailbox",
    "NAVIGATION_TOOLS",
    "ToolContext",
    "ToolRegistry",
    "ToolResult",
    "ToolSpec",
    "ToolState",
    "default_registry",
    "params",
]
