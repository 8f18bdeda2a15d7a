"""
Full synchronization across all courses.

A session walks the course selector of the listing page one entry at a time:

    for each course:
        navigate to <listing url>?oc=<value>   (bounded, adaptive wait)
        ask the page agent to scrape           (bounded wait, empty on timeout)
        merge the partial result right away    (observers see live progress)

Storage policy: the record set is cleared once when the session starts, then
every partial result is merged incrementally. Stale records never survive a
full sync, and observers still see results as they arrive.

Only one session runs at a time. The guard lives in memory; a restart forgets
the session along with the page context it was driving.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from duewatch.agent import PageAgent, PageContext
from duewatch.events import COMPLETE, PROGRESS, EventBus
from duewatch.identity import record_id
from duewatch.merge import MergeEngine, MergeMode
from duewatch.model import Record, SegmentDescriptor
from duewatch.recovery import RecoveryStateMachine

logger = logging.getLogger(__name__)

SEGMENT_ATTEMPTS = 2

Sleep = Callable[[float], Awaitable[None]]


def build_segment_url(base_url: str, param: str, value: str) -> str:
    """
    Return `base_url` with query parameter `param` set to `value`.

    Other query parameters are kept. An unparsable URL is returned unchanged.
    """
    try:
        parts = urlsplit(base_url)
    except ValueError:
        logger.warning("Invalid base URL for segment %s: %r", value, base_url)
        return base_url
    if not parts.scheme or not parts.netloc:
        logger.warning("Invalid base URL for segment %s: %r", value, base_url)
        return base_url
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != param]
    query.append((param, value))
    return urlunsplit(parts._replace(query=urlencode(query)))


# ---------------------------------------------------------------------------
# Session state
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SessionInfo:
    base_url: str
    started_at: datetime


class SessionState:
    """
    Idle (current is None) or Running(current).

    try_begin() is synchronous, so two requests on the same loop can never
    both see Idle.
    """

    def __init__(self) -> None:
        self.current: Optional[SessionInfo] = None

    @property
    def running(self) -> bool:
        return self.current is not None

    def try_begin(self, info: SessionInfo) -> bool:
        if self.current is not None:
            return False
        self.current = info
        return True

    def end(self) -> None:
        self.current = None


@dataclass
class Session:
    info: SessionInfo
    total: int
    index: int = 0
    collected: List[Record] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


@dataclass
class SyncSummary:
    total_records: int
    failed_segments: List[str]

    def to_event(self) -> dict:
        return {"totalRecords": self.total_records, "failedCourses": list(self.failed_segments)}


class LoadTimer:
    """
    Adaptive navigation timeout.

    Starts at `max_timeout`; once loads have been observed, the timeout is a
    multiple of the slowest recent load, clamped to [min_timeout, max_timeout].
    """

    def __init__(
        self,
        max_timeout: float = 15.0,
        min_timeout: float = 5.0,
        slow_threshold: float = 3.0,
        window: int = 5,
        factor: float = 4.0,
    ) -> None:
        self.max_timeout = max_timeout
        self.min_timeout = min_timeout
        self.slow_threshold = slow_threshold
        self.factor = factor
        self.samples: deque[float] = deque(maxlen=window)

    def record(self, seconds: float) -> None:
        self.samples.append(seconds)

    def timeout(self) -> float:
        if not self.samples:
            return self.max_timeout
        return max(self.min_timeout, min(self.max_timeout, max(self.samples) * self.factor))

    def settle_delay(self, load_seconds: float) -> float:
        # slow pages tend to keep rendering after "ready"
        return 0.2 if load_seconds > self.slow_threshold else 0.1


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class SyncOrchestrator:
    def __init__(
        self,
        agent: PageAgent,
        merger: MergeEngine,
        bus: Optional[EventBus] = None,
        state: Optional[SessionState] = None,
        canonical_url: str = "",
        segment_param: str = "oc",
        load_timer: Optional[LoadTimer] = None,
        scrape_timeout: float = 2.5,
        retry_backoff: float = 1.0,
        segment_delay: float = 0.05,
        recovery_ready_timeout: float = 20.0,
        sleep: Sleep = asyncio.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.agent = agent
        self.merger = merger
        self.bus = bus if bus is not None else EventBus()
        self.state = state if state is not None else SessionState()
        self.canonical_url = canonical_url
        self.segment_param = segment_param
        self.load_timer = load_timer if load_timer is not None else LoadTimer()
        self.scrape_timeout = scrape_timeout
        self.retry_backoff = retry_backoff
        self.segment_delay = segment_delay
        self.recovery_ready_timeout = recovery_ready_timeout
        self.sleep = sleep
        self.monotonic = monotonic

    def _begin(self, base_url: str) -> bool:
        info = SessionInfo(base_url=base_url, started_at=datetime.now(timezone.utc))
        if not self.state.try_begin(info):
            logger.info("Sync already running; ignoring duplicate request")
            return False
        return True

    async def request_full_sync(self, context: PageContext) -> Optional[SyncSummary]:
        """
        Fetch the segment list (with recovery) and run a session.

        Returns None if a session is already running. Errors from the segment
        list fetch abort the request and propagate.
        """
        base_url = self.agent.current_url(context) or self.canonical_url
        if not self._begin(base_url):
            return None
        try:
            recovery = RecoveryStateMachine(self.agent, self.canonical_url, self.recovery_ready_timeout)
            context, segments = await recovery.fetch_segments(context)
            base_url = self.agent.current_url(context) or base_url
            return await self._run_session(context, base_url, segments)
        finally:
            self.state.end()

    async def _run_session(
        self, context: PageContext, base_url: str, segments: List[SegmentDescriptor]
    ) -> SyncSummary:
        targets = [s for s in segments if not s.is_placeholder]
        assert self.state.current is not None
        session = Session(info=self.state.current, total=len(targets))
        logger.info("Starting full sync of %d segments", session.total)

        await self.merger.merge([], MergeMode.REPLACE)

        for segment in targets:
            session.index += 1
            label = segment.label or f"Course {session.index}"
            url = build_segment_url(base_url, self.segment_param, segment.value)
            logger.info("[%d/%d] Navigating to %s %s", session.index, session.total, label, url)
            self.bus.publish(PROGRESS, {"current": session.index, "total": session.total, "label": label})

            for attempt in range(1, SEGMENT_ATTEMPTS + 1):
                try:
                    partial = await self._visit(context, url)
                except Exception as exc:
                    logger.warning("Attempt %d failed for %s: %s", attempt, label, exc)
                    if attempt < SEGMENT_ATTEMPTS:
                        await self.sleep(self.retry_backoff)
                        continue
                    logger.error("Failed %s after %d attempts", label, attempt)
                    session.failed.append(label)
                    break

                logger.info("Collected %d items from %s", len(partial), label)
                session.collected.extend(partial)
                if partial:
                    await self.merger.merge(partial, MergeMode.INCREMENTAL)
                break

            await self.sleep(self.segment_delay)

        await self.merger.prune_markers()

        summary = SyncSummary(
            total_records=len({record_id(r) for r in session.collected if not r.submitted}),
            failed_segments=list(session.failed),
        )
        logger.info("Sync complete: %d records", summary.total_records)
        if summary.failed_segments:
            logger.warning("Failed courses (%d): %s", len(summary.failed_segments), ", ".join(summary.failed_segments))
        self.bus.publish(COMPLETE, summary.to_event())
        return summary

    async def _visit(self, context: PageContext, url: str) -> List[Record]:
        """Navigate to one segment and scrape it."""
        timeout = self.load_timer.timeout()
        started = self.monotonic()
        try:
            await asyncio.wait_for(self.agent.navigate(context, url), timeout)
        except asyncio.TimeoutError:
            logger.warning("No ready signal after %.1fs; scraping anyway", timeout)
            self.load_timer.record(timeout)
        else:
            elapsed = self.monotonic() - started
            self.load_timer.record(elapsed)
            await self.sleep(self.load_timer.settle_delay(elapsed))

        request_id = uuid.uuid4().hex
        try:
            result = await asyncio.wait_for(self.agent.request_scrape(context, request_id), self.scrape_timeout)
        except asyncio.TimeoutError:
            logger.warning("Scrape timed out after %.1fs; treating as empty", self.scrape_timeout)
            return []
        if result.request_id != request_id:
            logger.warning("Discarding scrape reply for request %s", result.request_id)
            return []
        return list(result.records)
