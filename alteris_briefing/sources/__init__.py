from alteris_briefing.sources.base import FetchPage, ItemSource
from alteris_briefing.sources.json_file import JsonItemSource, read_events, read_items

__all__ = [
    "FetchPage",
    "ItemSource",
    "JsonItemSource",
    "read_events",
    "read_items",
]
