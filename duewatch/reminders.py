"""
Reminder scheduling.

Every record with a deadline gets one named trigger per configured offset:

    "<record_id>::<offset_key>"  fires at  deadline - offset

Triggers are never created for instants at or before "now"; the periodic
sweeper covers reminders whose moment has already passed.

Triggers are fully re-derived (clear, then set) whenever a record is merged,
so an edited deadline never leaves a stale trigger behind.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Iterable, Optional, Protocol

from duewatch.identity import reminder_name, reminder_prefix, split_reminder_name
from duewatch.model import Record, ReminderOffset
from duewatch.notifications import Clock, NotificationDeduper, Notifier, deliver_reminder, utcnow
from duewatch.storage import Store, load_records

logger = logging.getLogger(__name__)

FireHandler = Callable[[str], Awaitable[object]]


class Timers(Protocol):
    """Named one-shot timers."""

    def create(self, name: str, when: datetime) -> None:
        """Create or replace the timer `name`."""
        ...

    def clear(self, name: str) -> bool: ...

    def names(self) -> list[str]: ...


class AsyncioTimers:
    """
    Named one-shot timers on the running asyncio loop.

    Each fire runs as its own task; an exception in one handler is logged
    and never affects other timers.
    """

    def __init__(self, handler: FireHandler, clock: Clock = utcnow) -> None:
        self.handler = handler
        self.clock = clock
        self._handles: dict[str, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task] = set()

    def create(self, name: str, when: datetime) -> None:
        self.clear(name)
        loop = asyncio.get_running_loop()
        delay = max(0.0, (when - self.clock()).total_seconds())
        self._handles[name] = loop.call_later(delay, self._fire, name)

    def clear(self, name: str) -> bool:
        handle = self._handles.pop(name, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def names(self) -> list[str]:
        return list(self._handles)

    def cancel_all(self) -> None:
        for name in list(self._handles):
            self.clear(name)

    def _fire(self, name: str) -> None:
        self._handles.pop(name, None)
        task = asyncio.get_running_loop().create_task(self._run(name))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, name: str) -> None:
        try:
            await self.handler(name)
        except Exception:
            logger.exception("Reminder trigger %s failed", name)


class ReminderScheduler:
    def __init__(
        self,
        store: Store,
        deduper: NotificationDeduper,
        notifier: Notifier,
        offsets: Iterable[ReminderOffset],
        timers: Optional[Timers] = None,
        clock: Clock = utcnow,
    ) -> None:
        self.store = store
        self.deduper = deduper
        self.notifier = notifier
        self.offsets = list(offsets)
        self.clock = clock
        self.timers: Timers = timers if timers is not None else AsyncioTimers(self.fire, clock)

    @property
    def offset_keys(self) -> list[str]:
        return [o.key for o in self.offsets]

    def set_triggers(self, record: Record) -> list[str]:
        """
        Create (or replace) the triggers of one record. Returns their names.
        """
        if record.deadline is None or not record.id:
            return []
        now = self.clock()
        created: list[str] = []
        for offset in self.offsets:
            when = record.deadline - offset.duration
            if when <= now:
                continue
            name = reminder_name(record.id, offset.key)
            self.timers.create(name, when)
            created.append(name)
        return created

    def clear_triggers(self, rid: str) -> int:
        prefix = reminder_prefix(rid)
        cleared = 0
        for name in self.timers.names():
            if name.startswith(prefix) and self.timers.clear(name):
                cleared += 1
        return cleared

    def rearm(self, records: Iterable[Record]) -> None:
        for record in records:
            self.clear_triggers(record.id)
            self.set_triggers(record)

    async def restore(self) -> int:
        """
        Re-arm triggers for every persisted record (timers do not survive
        a restart). Returns the number of triggers set.
        """
        records = await load_records(self.store)
        count = 0
        for record in records:
            self.clear_triggers(record.id)
            count += len(self.set_triggers(record))
        logger.info("Restored %d reminder triggers for %d records", count, len(records))
        return count

    async def fire(self, name: str) -> bool:
        """
        Trigger fire handler. Returns True if a notification was shown.
        """
        try:
            rid, offset_key = split_reminder_name(name)
        except ValueError:
            logger.warning("Rejecting malformed trigger name %r", name)
            return False

        records = await load_records(self.store)
        record = next((r for r in records if r.id == rid), None)
        if record is None:
            # deleted or submitted since the trigger was set
            logger.debug("Trigger %s fired for missing record", name)
            return False
        return await deliver_reminder(self.deduper, self.notifier, record, offset_key, self.clock())
