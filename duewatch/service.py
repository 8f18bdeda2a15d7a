"""
Application service.

Wires the store, the merge engine, the sync orchestrator and the reminder
machinery together and exposes the caller-facing commands:

    request_full_sync(context) -> CommandResult
    mark_done(record_id)       -> CommandResult
    ingest(records)            single-page scrape delivered from outside a sync
    list_records()             stored records, soonest deadline first
    open_link(record_id)       where to send the user for a record
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Iterable, Optional

from duewatch.agent import PageAgent, PageContext
from duewatch.config import Settings, resolve_offsets
from duewatch.errors import NotFound, PageError, StorageError, SyncInProgress
from duewatch.events import EventBus
from duewatch.identity import reminder_name
from duewatch.merge import MergeEngine, MergeMode
from duewatch.model import CommandResult, Record
from duewatch.notifications import Clock, ConsoleNotifier, NotificationDeduper, Notifier, utcnow
from duewatch.reminders import ReminderScheduler, Timers
from duewatch.storage import JsonFileStore, Store, load_offset_keys, load_records
from duewatch.sweeper import PeriodicSweeper
from duewatch.sync import LoadTimer, SessionState, SyncOrchestrator, SyncSummary

logger = logging.getLogger(__name__)


class DueWatch:
    def __init__(
        self,
        agent: PageAgent,
        store: Optional[Store] = None,
        settings: Optional[Settings] = None,
        notifier: Optional[Notifier] = None,
        bus: Optional[EventBus] = None,
        timers: Optional[Timers] = None,
        offset_keys: Optional[Iterable[str]] = None,
        clock: Clock = utcnow,
        **orchestrator_kwargs,
    ) -> None:
        self.settings = settings if settings is not None else Settings()
        self.store = store if store is not None else JsonFileStore(self.settings.store_path or None)
        self.agent = agent
        self.notifier = notifier if notifier is not None else ConsoleNotifier()
        self.bus = bus if bus is not None else EventBus()
        self.clock = clock
        self.last_summary: Optional[SyncSummary] = None

        offsets = resolve_offsets(offset_keys)
        self.deduper = NotificationDeduper(self.store, clock=clock)
        self.scheduler = ReminderScheduler(
            self.store, self.deduper, self.notifier, offsets, timers=timers, clock=clock
        )
        self.sweeper = PeriodicSweeper(
            self.store,
            self.deduper,
            self.notifier,
            offsets,
            interval=timedelta(seconds=self.settings.sweep_interval),
            catch_up_window=timedelta(seconds=self.settings.catch_up_window),
            clock=clock,
        )
        self.merger = MergeEngine(self.store, scheduler=self.scheduler, deduper=self.deduper)

        s = self.settings
        self.orchestrator = SyncOrchestrator(
            agent,
            self.merger,
            bus=self.bus,
            state=SessionState(),
            canonical_url=s.listing_url,
            segment_param=s.segment_param,
            load_timer=LoadTimer(
                max_timeout=s.navigation_timeout,
                min_timeout=s.min_navigation_timeout,
                slow_threshold=s.slow_load_threshold,
            ),
            scrape_timeout=s.scrape_timeout,
            retry_backoff=s.retry_backoff,
            segment_delay=s.segment_delay,
            recovery_ready_timeout=s.recovery_ready_timeout,
            **orchestrator_kwargs,
        )

    @classmethod
    async def create(cls, agent: PageAgent, store: Optional[Store] = None, **kwargs) -> "DueWatch":
        """
        Build a service whose reminder offsets come from the stored settings.
        """
        settings = kwargs.get("settings") or Settings()
        kwargs["settings"] = settings
        store = store if store is not None else JsonFileStore(settings.store_path or None)
        if "offset_keys" not in kwargs:
            kwargs["offset_keys"] = await load_offset_keys(store)
        return cls(agent, store=store, **kwargs)

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    async def start(self) -> None:
        """Re-arm triggers from the store and start the periodic sweeper."""
        await self.scheduler.restore()
        self.sweeper.start()

    async def stop(self) -> None:
        await self.sweeper.stop()
        cancel_all = getattr(self.scheduler.timers, "cancel_all", None)
        if cancel_all is not None:
            cancel_all()

    # -----------------------------------------------------------------------
    # Commands
    # -----------------------------------------------------------------------

    @property
    def sync_running(self) -> bool:
        return self.orchestrator.state.running

    async def request_full_sync(self, context: PageContext) -> CommandResult:
        try:
            summary = await self.orchestrator.request_full_sync(context)
        except PageError as exc:
            logger.error("Full sync aborted: %s", exc)
            return CommandResult(ok=False, error=str(exc) or "Could not get course options from page")
        except StorageError as exc:
            logger.error("Full sync aborted by storage failure: %s", exc)
            return CommandResult(ok=False, error=str(exc))
        except Exception as exc:
            logger.exception("Full sync aborted")
            return CommandResult(ok=False, error=str(exc) or "Could not get course options from page")
        if summary is None:
            return CommandResult(ok=False, error=str(SyncInProgress()))
        self.last_summary = summary
        return CommandResult(ok=True)

    async def _remove(self, rid: str) -> Record:
        removed = await self.merger.remove(rid)
        if removed is None:
            raise NotFound(rid)
        for key in self.scheduler.offset_keys:
            self.notifier.clear(reminder_name(rid, key))
        return removed

    async def mark_done(self, record_id: str) -> CommandResult:
        rid = (record_id or "").strip()
        if not rid:
            return CommandResult(ok=False, error="Missing record id")
        try:
            removed = await self._remove(rid)
        except NotFound:
            logger.info("mark_done: record %s already gone", rid)
            return CommandResult(ok=False)
        except StorageError as exc:
            logger.error("Failed to mark record %s done: %s", rid, exc)
            return CommandResult(ok=False, error=str(exc))
        logger.info("Marked done: %s (%s)", removed.title, rid)
        return CommandResult(ok=True)

    async def ingest(self, records: Iterable[Record]) -> Optional[list[Record]]:
        """Merge a batch scraped outside a full sync."""
        return await self.merger.merge(records, MergeMode.INCREMENTAL)

    async def list_records(self) -> list[Record]:
        records = await load_records(self.store)
        return sorted(records, key=lambda r: (r.deadline is None, r.deadline.timestamp() if r.deadline else 0.0))

    async def open_link(self, record_id: str) -> str:
        records = await load_records(self.store)
        record = next((r for r in records if r.id == record_id), None)
        if record is not None and record.link:
            return record.link
        return self.settings.listing_url
