"""Alteris Briefing — red-flag scoring, topic clustering and a voice briefing session."""

__version__ = "0.1.0"
