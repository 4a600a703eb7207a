"""Text shaping for the speech output channel."""

from __future__ import annotations

import re

MAX_CHUNK_LENGTH = 200

_ABBREVIATIONS = [
    (re.compile(r"\bASAP\b", re.IGNORECASE), "A-S-A-P"),
    (re.compile(r"\bFYI\b", re.IGNORECASE), "F-Y-I"),
    (re.compile(r"\bEOD\b", re.IGNORECASE), "end of day"),
    (re.compile(r"\bEOW\b", re.IGNORECASE), "end of week"),
    (re.compile(r"\bTBD\b", re.IGNORECASE), "to be determined"),
    (re.compile(r"\bWFH\b", re.IGNORECASE), "working from home"),
    (re.compile(r"\bOOO\b", re.IGNORECASE), "out of office"),
]
_ASSET_ID = re.compile(r"\b([A-Z])-?(\d+)\b")
_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")


def prepare_for_speech(text: str) -> str:
    text = text.replace(". ", ". ... ")
    text = text.replace("@", " at ")
    for pattern, spoken in _ABBREVIATIONS:
        text = pattern.sub(spoken, text)
    return _ASSET_ID.sub(r"\1 \2", text)


def split_for_streaming(text: str, max_chunk_length: int = MAX_CHUNK_LENGTH) -> list[str]:
    """Group whole sentences into chunks of roughly max_chunk_length characters."""
    chunks: list[str] = []
    current = ""
    for sentence in _SENTENCE_END.split(text):
        if not sentence:
            continue
        if len(current) + len(sentence) > max_chunk_length:
            if current:
                chunks.append(current.strip())
            current = sentence
        else:
            current = f"{current} {sentence}" if current else sentence
    if current.strip():
        chunks.append(current.strip())
    return chunks
