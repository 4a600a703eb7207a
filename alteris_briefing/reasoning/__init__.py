from alteris_briefing.reasoning.intents import (
    CommandIntent,
    Transcript,
    accept_transcript,
    classify_confirmation,
    detect_command,
)
from alteris_briefing.reasoning.loop import (
    ActionTaken,
    PendingConfirmation,
    ReasoningLoop,
    ReasoningResult,
    SessionState,
)
from alteris_briefing.reasoning.prompts import (
    DisambiguationOption,
    SystemPromptContext,
    build_system_prompt,
    generate_confirmation,
    generate_disambiguation_prompt,
    generate_transition,
)

__all__ = [
    "ActionTaken",
    "CommandIntent",
    "DisambiguationOption",
    "PendingConfirmation",
    "ReasoningLoop",
    "ReasoningResult",
    "SessionState",
    "SystemPromptContext",
    "Transcript",
    "accept_transcript",
    "build_system_prompt",
    "classify_confirmation",
    "detect_command",
    "generate_confirmation",
    "generate_disambiguation_prompt",
    "generate_transition",
]
