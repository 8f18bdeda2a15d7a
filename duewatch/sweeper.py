"""
Periodic deadline sweep.

Safety net for missed triggers (process suspended or restarted past a fire
time). Every `interval` it walks all records and offsets and shows any
reminder whose moment has passed within the catch-up window. Older moments
are skipped.

The sweep goes through the same dedup gate as trigger fires.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Iterable, Optional

from duewatch.model import ReminderOffset
from duewatch.notifications import Clock, NotificationDeduper, Notifier, deliver_reminder, utcnow
from duewatch.storage import Store, load_records

logger = logging.getLogger(__name__)


class PeriodicSweeper:
    def __init__(
        self,
        store: Store,
        deduper: NotificationDeduper,
        notifier: Notifier,
        offsets: Iterable[ReminderOffset],
        interval: timedelta = timedelta(hours=3),
        catch_up_window: timedelta = timedelta(hours=12),
        clock: Clock = utcnow,
    ) -> None:
        self.store = store
        self.deduper = deduper
        self.notifier = notifier
        self.offsets = list(offsets)
        self.interval = interval
        self.catch_up_window = catch_up_window
        self.clock = clock
        self._task: Optional[asyncio.Task] = None

    async def sweep(self) -> int:
        """Run one pass. Returns the number of reminders shown."""
        now = self.clock()
        records = await load_records(self.store)
        shown = 0
        for record in records:
            if record.deadline is None:
                continue
            for offset in self.offsets:
                due_at = record.deadline - offset.duration
                if not (due_at <= now < due_at + self.catch_up_window):
                    continue
                try:
                    if await deliver_reminder(self.deduper, self.notifier, record, offset.key, now):
                        shown += 1
                except Exception:
                    logger.exception("Sweep reminder %s::%s failed", record.id, offset.key)
        if shown:
            logger.info("Periodic sweep showed %d reminders", shown)
        return shown

    async def run(self) -> None:
        """Sweep now, then every `interval`, until cancelled."""
        while True:
            try:
                await self.sweep()
            except Exception:
                logger.exception("Periodic deadline sweep failed")
            await asyncio.sleep(self.interval.total_seconds())

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
