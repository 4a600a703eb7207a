"""Red-flag signal detectors and the composite scorer."""

from alteris_briefing.signals.calendar import CalendarEvent, CalendarProximityDetector
from alteris_briefing.signals.keywords import KeywordMatcher, RedFlagPattern, load_patterns
from alteris_briefing.signals.scorer import ScorerOptions, SignalScorer, Signals
from alteris_briefing.signals.velocity import ThreadVelocityDetector
from alteris_briefing.signals.vip import Contact, VipDetector, VipEntry

__all__ = [
    "CalendarEvent",
    "CalendarProximityDetector",
    "Contact",
    "KeywordMatcher",
    "RedFlagPattern",
    "ScorerOptions",
    "SignalScorer",
    "Signals",
    "ThreadVelocityDetector",
    "VipDetector",
    "VipEntry",
    "load_patterns",
]
