"""
Page agent interface.

A page agent controls one browsable context (a browser tab, an HTTP session,
...) on the listing service and scrapes it. How it finds rows and parses
dates is its own business; the sync code only relies on the calls below.

Every call is a coroutine. Callers wrap them in their own timeouts, so an
implementation may wait as long as it likes for a ready signal.
"""

from __future__ import annotations

import abc
from typing import Any, Optional

from duewatch.model import ScrapeResult, SegmentDescriptor

PageContext = Any


class PageAgent(abc.ABC):
    @abc.abstractmethod
    async def navigate(self, context: PageContext, url: str) -> None:
        """Load `url` in `context`; return once the page reports ready."""

    @abc.abstractmethod
    async def request_scrape(self, context: PageContext, request_id: str) -> ScrapeResult:
        """Scrape the current page. The result must carry `request_id`."""

    @abc.abstractmethod
    async def request_segment_options(self, context: PageContext) -> list[SegmentDescriptor]:
        """
        Return the entries of the segment (course) selector.

        Raises AgentUnreachableError when nothing in the page answers.
        """

    @abc.abstractmethod
    async def reinject(self, context: PageContext) -> bool:
        """Re-install the agent into `context`. False if unsupported."""

    @abc.abstractmethod
    async def reload(self, context: PageContext) -> None:
        """Reload `context` bypassing caches; return once ready."""

    @abc.abstractmethod
    async def open_fresh(self, url: str) -> PageContext:
        """Open a new context at `url`; return it once ready."""

    def current_url(self, context: PageContext) -> Optional[str]:
        """URL currently loaded in `context`, if known."""
        return None
