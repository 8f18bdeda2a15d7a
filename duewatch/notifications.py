"""
Notification rendering and deduplication.

Two independent mechanisms can decide that a reminder is due: the per-record
trigger and the periodic sweeper. Both go through NotificationDeduper.claim(),
which checks and marks a (record, offset) pair in one step, so a reminder is
delivered at most once no matter which mechanism gets there first.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Protocol

from duewatch.identity import reminder_name, reminder_prefix, split_reminder_name
from duewatch.model import Record
from duewatch.storage import Store, load_shown, save_shown

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def describe_remaining(remaining: timedelta) -> str:
    """
    Human-readable time left until a deadline.

    <= 0      -> "Due now"
    < 60 min  -> "Due in N min"
    < 48 hr   -> "Due in N hr"
    otherwise -> "Due in N day(s)"
    """
    seconds = remaining.total_seconds()
    if seconds <= 0:
        return "Due now"
    mins = round(seconds / 60)
    if mins < 60:
        return f"Due in {mins} min"
    hours = round(mins / 60)
    if hours < 48:
        return f"Due in {hours} hr"
    days = round(hours / 24)
    return f"Due in {days} day{'s' if days > 1 else ''}"


def format_due_date(deadline: datetime) -> str:
    return f"{deadline.strftime('%b')} {deadline.day}, {deadline.year}"


def render_reminder(record: Record, now: datetime) -> tuple[str, str]:
    """
    Build (title, message) for a reminder about `record`.
    """
    title = f"Upcoming due: {record.title}"
    if record.deadline is None:
        suffix = "Due soon"
    else:
        suffix = f"{describe_remaining(record.deadline - now)}, {format_due_date(record.deadline)}"
    message = f"{record.course} - {suffix}" if record.course else suffix
    return title, message


class Notifier(Protocol):
    def show(self, notification_id: str, title: str, message: str) -> None: ...

    def clear(self, notification_id: str) -> None: ...


class ConsoleNotifier:
    """Prints reminders to stdout (CLI default)."""

    def show(self, notification_id: str, title: str, message: str) -> None:
        logger.info("Notification %s: %s", notification_id, title)
        print(f"[reminder] {title}")
        print(f"           {message}")

    def clear(self, notification_id: str) -> None:
        # nothing stays on screen
        pass


# ---------------------------------------------------------------------------
# Deduplication
# ---------------------------------------------------------------------------


class NotificationDeduper:
    """
    Registry of reminders already shown, persisted under "shownNotifications".
    """

    def __init__(self, store: Store, clock: Clock = utcnow) -> None:
        self.store = store
        self.clock = clock
        self._lock = asyncio.Lock()

    def _stamp(self) -> int:
        return int(self.clock().timestamp() * 1000)

    async def is_shown(self, rid: str, offset_key: str) -> bool:
        shown = await load_shown(self.store)
        return reminder_name(rid, offset_key) in shown

    async def mark_shown(self, rid: str, offset_key: str) -> None:
        async with self._lock:
            await self._mark(rid, offset_key)

    async def _mark(self, rid: str, offset_key: str) -> bool:
        shown = await load_shown(self.store)
        name = reminder_name(rid, offset_key)
        if name in shown:
            return False
        shown[name] = self._stamp()
        await save_shown(self.store, shown)
        return True

    async def claim(self, rid: str, offset_key: str) -> bool:
        """
        Mark the pair as shown; True only for the caller that marked it first.
        """
        async with self._lock:
            return await self._mark(rid, offset_key)

    async def clear_for_record(self, rid: str) -> int:
        """
        Forget every shown marker of a record. Returns how many were removed.
        """
        prefix = reminder_prefix(rid)
        async with self._lock:
            shown = await load_shown(self.store)
            keep = {k: v for k, v in shown.items() if not k.startswith(prefix)}
            removed = len(shown) - len(keep)
            if removed:
                await save_shown(self.store, keep)
        return removed

    async def retain(self, live_ids: Iterable[str]) -> int:
        """
        Keep only markers whose record id is in `live_ids`. Returns how many
        were dropped.
        """
        live = set(live_ids)
        async with self._lock:
            shown = await load_shown(self.store)
            keep = {}
            for name, stamp in shown.items():
                try:
                    rid, _ = split_reminder_name(name)
                except ValueError:
                    continue
                if rid in live:
                    keep[name] = stamp
            dropped = len(shown) - len(keep)
            if dropped:
                await save_shown(self.store, keep)
        if dropped:
            logger.info("Dropped %d shown markers of records no longer stored", dropped)
        return dropped


async def deliver_reminder(
    deduper: NotificationDeduper,
    notifier: Notifier,
    record: Record,
    offset_key: str,
    now: datetime,
) -> bool:
    """
    Show one reminder unless it was already shown. Returns True if shown.

    Shared by the trigger fire handler and the periodic sweeper.
    """
    if not await deduper.claim(record.id, offset_key):
        logger.debug("Reminder %s already shown", reminder_name(record.id, offset_key))
        return False
    title, message = render_reminder(record, now)
    notifier.show(reminder_name(record.id, offset_key), title, message)
    return True
