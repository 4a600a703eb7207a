"""Item source contract shared by the pipeline and the file-backed reader."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol

from alteris_briefing.models import Item


@dataclass
class FetchPage:
    """One page of unread items.

    ``next_page_token`` is None when there is nothing more to fetch.
    """

    items: list[Item] = field(default_factory=list)
    next_page_token: Optional[str] = None


class ItemSource(Protocol):
    def fetch_unread(self, filters: dict, paging: dict) -> FetchPage:
        """Fetch unread items.

        ``filters`` carries ``after`` (a datetime). ``paging`` carries
        ``page_size`` and, after the first page, ``page_token``.
        """
        ...
