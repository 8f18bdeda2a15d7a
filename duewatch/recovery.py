"""
Recovery ladder for fetching the segment list.

Each failed attempt classified as "agent unreachable" escalates one step
before the next attempt:

    ATTEMPT -> REINJECT_AGENT -> RELOAD_PAGE -> OPEN_FRESH_PAGE -> EXHAUSTED

Four attempts in total. Any other kind of failure aborts immediately.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Optional

from duewatch.agent import PageAgent, PageContext
from duewatch.errors import AgentUnreachableError, EmptySegmentListError, PageError
from duewatch.model import SegmentDescriptor

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 4


class RecoveryStep(enum.Enum):
    ATTEMPT = "attempt"
    REINJECT_AGENT = "reinject_agent"
    RELOAD_PAGE = "reload_page"
    OPEN_FRESH_PAGE = "open_fresh_page"
    EXHAUSTED = "exhausted"


# recovery action to run after the n-th failed attempt (1-based)
_LADDER = {
    1: RecoveryStep.REINJECT_AGENT,
    2: RecoveryStep.RELOAD_PAGE,
    3: RecoveryStep.OPEN_FRESH_PAGE,
}


class RecoveryStateMachine:
    def __init__(
        self,
        agent: PageAgent,
        canonical_url: str,
        ready_timeout: float = 20.0,
    ) -> None:
        self.agent = agent
        self.canonical_url = canonical_url
        self.ready_timeout = ready_timeout
        self.state = RecoveryStep.ATTEMPT
        self.history: list[RecoveryStep] = []

    def _enter(self, step: RecoveryStep) -> None:
        self.state = step
        self.history.append(step)

    async def _attempt(self, context: PageContext) -> list[SegmentDescriptor]:
        try:
            options = await asyncio.wait_for(self.agent.request_segment_options(context), self.ready_timeout)
        except asyncio.TimeoutError as exc:
            raise AgentUnreachableError("timed out waiting for segment list") from exc
        if not options:
            raise EmptySegmentListError()
        return list(options)

    async def fetch_segments(self, context: PageContext) -> tuple[PageContext, list[SegmentDescriptor]]:
        """
        Fetch the segment list, escalating on unreachable-agent failures.

        Returns (context, segments). The context differs from the one passed
        in when OPEN_FRESH_PAGE succeeded. Raises the last observed error once
        the budget is spent.
        """
        self.history = []
        last_err: Optional[PageError] = None

        for attempt in range(1, MAX_ATTEMPTS + 1):
            self._enter(RecoveryStep.ATTEMPT)
            try:
                segments = await self._attempt(context)
                logger.info("Fetched %d segments on attempt %d", len(segments), attempt)
                return context, segments
            except AgentUnreachableError as exc:
                last_err = exc
                logger.warning("Segment list attempt %d failed: %s", attempt, exc)

            step = _LADDER.get(attempt)
            if step is None:
                break
            self._enter(step)
            context = await self._recover(step, context)

        self._enter(RecoveryStep.EXHAUSTED)
        assert last_err is not None
        raise last_err

    async def _recover(self, step: RecoveryStep, context: PageContext) -> PageContext:
        """Run one recovery action; failures are logged and never raised."""
        if step is RecoveryStep.REINJECT_AGENT:
            try:
                injected = await asyncio.wait_for(self.agent.reinject(context), self.ready_timeout)
                if not injected:
                    logger.warning("Page agent reinjection unsupported; skipping")
            except Exception as exc:
                logger.warning("Page agent reinjection failed: %s", exc)
            return context

        if step is RecoveryStep.RELOAD_PAGE:
            try:
                await asyncio.wait_for(self.agent.reload(context), self.ready_timeout)
            except asyncio.TimeoutError:
                logger.warning("Timed out waiting for page reload")
            except Exception as exc:
                logger.warning("Reloading page failed: %s", exc)
            return context

        if step is RecoveryStep.OPEN_FRESH_PAGE:
            try:
                fresh = await asyncio.wait_for(self.agent.open_fresh(self.canonical_url), self.ready_timeout)
                logger.info("Opened fresh page at %s", self.canonical_url)
                return fresh
            except asyncio.TimeoutError:
                logger.warning("Timed out opening fresh page")
            except Exception as exc:
                logger.warning("Opening fresh page failed: %s", exc)
            return context

        return context
