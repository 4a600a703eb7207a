"""Cheap lexical intent checks that run before (or instead of) the reasoner."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

MIN_TRANSCRIPT_CONFIDENCE = 0.7

_COMMAND_PATTERNS = [
    ("navigation", re.compile(r"\b(skip|next|previous|back|repeat|stop|pause|resume)\b")),
    ("email_action", re.compile(r"\b(flag|mark|mute|prioritize|draft|reply|forward|archive|delete)\b")),
    ("query", re.compile(r"\b(what|who|when|where|how|why|tell me|show me)\b")),
    ("confirmation", re.compile(r"\b(yes|no|confirm|cancel|okay|ok|sure|go ahead)\b")),
]

_CANCEL = re.compile(
    r"\b(no|nope|nah|cancel|don'?t|do not|stop|never ?mind|undo|wait|hold on)\b"
)
# Negated or doubtful forms of the confirm words ("not sure", "not right").
_HESITANT = re.compile(
    r"\b(not (so |too |really |quite )?(sure|right|correct)|unsure|not really|maybe|i guess|i'?m not certain)\b"
)
_CONFIRM = re.compile(
    r"\b(yes|yeah|yep|yup|confirm|okay|ok|sure|go ahead|do it|correct|right|please do|sounds good)\b"
)


@dataclass
class CommandIntent:
    is_command: bool
    intent: Optional[str] = None


def detect_command(text: str) -> CommandIntent:
    """First matching family wins, in navigation, action, query, confirmation order."""
    lower = text.lower()
    for intent, pattern in _COMMAND_PATTERNS:
        if pattern.search(lower):
            return CommandIntent(True, intent)
    return CommandIntent(False)


def classify_confirmation(text: str) -> str:
    """Return ``confirm``, ``cancel`` or ``unclear``.

    Cancellation wins when both appear ("no, don't do it, okay?"). Doubt
    ("I'm not sure") is unclear, so the question gets asked again.
    """
    lower = text.lower()
    if _CANCEL.search(lower):
        return "cancel"
    if _HESITANT.search(lower):
        return "unclear"
    if _CONFIRM.search(lower):
        return "confirm"
    return "unclear"


@dataclass
class Transcript:
    text: str
    confidence: float = 1.0
    is_final: bool = True


def accept_transcript(event: Transcript) -> Optional[str]:
    """Cleaned text worth reasoning over, or None for noise."""
    if event.confidence < MIN_TRANSCRIPT_CONFIDENCE:
        return None
    text = event.text.strip()
    if len(text) < 2:
        return None
    return text
