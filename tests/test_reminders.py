"""
Unit tests for reminder triggers, dedup and the periodic sweep.

Reminder contract:
- a trigger exists only for offsets whose fire time is still in the future
- firing the same (record, offset) twice shows one notification
- trigger fire and periodic sweep share one dedup gate
- the sweep skips moments older than the catch-up window
"""

from __future__ import annotations

import asyncio
import unittest
from datetime import datetime, timedelta, timezone

from duewatch.config import resolve_offsets
from duewatch.identity import record_id
from duewatch.model import Record
from duewatch.notifications import NotificationDeduper, describe_remaining, render_reminder
from duewatch.reminders import AsyncioTimers, ReminderScheduler
from duewatch.storage import MemoryStore, load_shown, save_records
from duewatch.sweeper import PeriodicSweeper

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeTimers:
    def __init__(self) -> None:
        self.scheduled: dict[str, datetime] = {}

    def create(self, name: str, when: datetime) -> None:
        self.scheduled[name] = when

    def clear(self, name: str) -> bool:
        return self.scheduled.pop(name, None) is not None

    def names(self) -> list[str]:
        return list(self.scheduled)


class RecordingNotifier:
    def __init__(self) -> None:
        self.shown: list[tuple[str, str, str]] = []
        self.cleared: list[str] = []

    def show(self, notification_id: str, title: str, message: str) -> None:
        self.shown.append((notification_id, title, message))

    def clear(self, notification_id: str) -> None:
        self.cleared.append(notification_id)


def _record(title: str, deadline: datetime | None, course: str = "CS101") -> Record:
    rec = Record(title=title, course=course, deadline=deadline, deadline_raw=str(deadline))
    rec.id = record_id(rec)
    return rec


class ReminderTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.clock = FixedClock(NOW)
        self.store = MemoryStore()
        self.notifier = RecordingNotifier()
        self.timers = FakeTimers()
        self.offsets = resolve_offsets(["reminder_3d", "reminder_2d", "reminder_today"])
        self.deduper = NotificationDeduper(self.store, clock=self.clock)
        self.scheduler = ReminderScheduler(
            self.store, self.deduper, self.notifier, self.offsets, timers=self.timers, clock=self.clock
        )
        self.sweeper = PeriodicSweeper(
            self.store, self.deduper, self.notifier, self.offsets, clock=self.clock
        )


class TestTriggers(ReminderTestCase):
    def test_only_future_offsets_get_triggers(self) -> None:
        deadline = NOW + timedelta(hours=36)
        rec = _record("Lab 3", deadline)

        created = self.scheduler.set_triggers(rec)

        self.assertEqual(created, [f"{rec.id}::reminder_today"])
        self.assertEqual(self.timers.scheduled, {f"{rec.id}::reminder_today": deadline})

    def test_fire_time_equal_to_now_is_not_scheduled(self) -> None:
        rec = _record("Lab 3", NOW + timedelta(hours=48))
        created = self.scheduler.set_triggers(rec)
        self.assertEqual(created, [f"{rec.id}::reminder_today"])

    def test_no_deadline_no_triggers(self) -> None:
        self.assertEqual(self.scheduler.set_triggers(_record("Reading", None)), [])
        self.assertEqual(self.timers.scheduled, {})

    def test_clear_only_touches_one_record(self) -> None:
        a = _record("Lab 3", NOW + timedelta(days=5))
        b = _record("Lab 4", NOW + timedelta(days=5))
        self.scheduler.set_triggers(a)
        self.scheduler.set_triggers(b)

        self.assertEqual(self.scheduler.clear_triggers(a.id), 3)
        self.assertTrue(all(n.startswith(f"{b.id}::") for n in self.timers.names()))
        self.assertEqual(len(self.timers.names()), 3)

    def test_rearm_follows_deadline_change(self) -> None:
        rec = _record("Lab 3", NOW + timedelta(days=5))
        self.scheduler.set_triggers(rec)

        rec.deadline = NOW + timedelta(hours=60)
        self.scheduler.rearm([rec])

        self.assertEqual(
            self.timers.scheduled,
            {
                f"{rec.id}::reminder_2d": rec.deadline - timedelta(days=2),
                f"{rec.id}::reminder_today": rec.deadline,
            },
        )

    async def test_restore_rearms_persisted_records(self) -> None:
        await save_records(self.store, [_record("Lab 3", NOW + timedelta(days=5)), _record("Reading", None)])
        self.assertEqual(await self.scheduler.restore(), 3)


class TestFireAndDedup(ReminderTestCase):
    async def asyncSetUp(self) -> None:
        self.rec = _record("Lab 3", NOW + timedelta(hours=36))
        await save_records(self.store, [self.rec])

    async def test_firing_twice_notifies_once(self) -> None:
        name = f"{self.rec.id}::reminder_today"
        self.assertTrue(await self.scheduler.fire(name))
        self.assertFalse(await self.scheduler.fire(name))

        self.assertEqual(len(self.notifier.shown), 1)
        self.assertEqual(list(await load_shown(self.store)), [name])

    async def test_fire_renders_remaining_time(self) -> None:
        await self.scheduler.fire(f"{self.rec.id}::reminder_today")
        notification_id, title, message = self.notifier.shown[0]
        self.assertEqual(notification_id, f"{self.rec.id}::reminder_today")
        self.assertEqual(title, "Upcoming due: Lab 3")
        self.assertTrue(message.startswith("CS101 - Due in 36 hr"))

    async def test_fire_for_missing_record_is_noop(self) -> None:
        self.assertFalse(await self.scheduler.fire("a_999::reminder_today"))
        self.assertEqual(self.notifier.shown, [])

    async def test_malformed_name_is_rejected(self) -> None:
        self.assertFalse(await self.scheduler.fire(f"{self.rec.id}::reminder_today::x"))
        self.assertFalse(await self.scheduler.fire(self.rec.id))
        self.assertEqual(self.notifier.shown, [])
        self.assertEqual(await load_shown(self.store), {})

    async def test_trigger_then_sweep_notifies_once(self) -> None:
        self.clock.now = self.rec.deadline
        await self.scheduler.fire(f"{self.rec.id}::reminder_today")
        self.assertEqual(await self.sweeper.sweep(), 0)
        self.assertEqual(len(self.notifier.shown), 1)

    async def test_sweep_then_trigger_notifies_once(self) -> None:
        self.clock.now = self.rec.deadline
        self.assertEqual(await self.sweeper.sweep(), 1)
        self.assertFalse(await self.scheduler.fire(f"{self.rec.id}::reminder_today"))
        self.assertEqual(len(self.notifier.shown), 1)
        self.assertEqual(len(await load_shown(self.store)), 1)

    async def test_concurrent_fire_and_sweep_notify_once(self) -> None:
        self.clock.now = self.rec.deadline
        await asyncio.gather(
            self.scheduler.fire(f"{self.rec.id}::reminder_today"),
            self.sweeper.sweep(),
        )
        self.assertEqual(len(self.notifier.shown), 1)

    async def test_clear_for_record_allows_renotify(self) -> None:
        name = f"{self.rec.id}::reminder_today"
        await self.scheduler.fire(name)
        self.assertEqual(await self.deduper.clear_for_record(self.rec.id), 1)
        self.assertFalse(await self.deduper.is_shown(self.rec.id, "reminder_today"))
        self.assertTrue(await self.scheduler.fire(name))

    async def test_mark_shown_is_idempotent(self) -> None:
        await self.deduper.mark_shown(self.rec.id, "reminder_2d")
        first = await load_shown(self.store)
        self.clock.now = NOW + timedelta(minutes=5)
        await self.deduper.mark_shown(self.rec.id, "reminder_2d")
        self.assertEqual(await load_shown(self.store), first)


class TestSweeper(ReminderTestCase):
    async def test_sweep_catches_missed_moment(self) -> None:
        rec = _record("Lab 3", NOW + timedelta(hours=44))
        await save_records(self.store, [rec])
        # reminder_2d moment passed 4h ago, inside the 12h window
        self.assertEqual(await self.sweeper.sweep(), 1)
        self.assertEqual(self.notifier.shown[0][0], f"{rec.id}::reminder_2d")

    async def test_sweep_skips_stale_moments(self) -> None:
        rec = _record("Lab 3", NOW - timedelta(hours=13))
        await save_records(self.store, [rec])
        self.assertEqual(await self.sweeper.sweep(), 0)
        self.assertEqual(self.notifier.shown, [])

    async def test_sweep_ignores_future_and_undated(self) -> None:
        await save_records(self.store, [_record("Lab 3", NOW + timedelta(days=10)), _record("Reading", None)])
        self.assertEqual(await self.sweeper.sweep(), 0)

    async def test_start_and_stop(self) -> None:
        rec = _record("Lab 3", NOW + timedelta(hours=44))
        await save_records(self.store, [rec])
        self.sweeper.start()
        await asyncio.sleep(0.01)
        await self.sweeper.stop()
        self.assertEqual(len(self.notifier.shown), 1)


class TestAsyncioTimers(unittest.IsolatedAsyncioTestCase):
    async def test_fires_and_isolates_errors(self) -> None:
        fired: list[str] = []

        async def handler(name: str) -> None:
            if name == "bad":
                raise RuntimeError("boom")
            fired.append(name)

        timers = AsyncioTimers(handler)
        now = datetime.now(timezone.utc)
        with self.assertLogs("duewatch.reminders", level="ERROR"):
            timers.create("bad", now)
            timers.create("good", now + timedelta(milliseconds=10))
            await asyncio.sleep(0.1)

        self.assertEqual(fired, ["good"])
        self.assertEqual(timers.names(), [])

    async def test_create_replaces_and_clear_cancels(self) -> None:
        fired: list[str] = []

        async def handler(name: str) -> None:
            fired.append(name)

        timers = AsyncioTimers(handler)
        later = datetime.now(timezone.utc) + timedelta(seconds=30)
        timers.create("a::x", later)
        timers.create("a::x", later)
        self.assertEqual(timers.names(), ["a::x"])
        self.assertTrue(timers.clear("a::x"))
        self.assertFalse(timers.clear("a::x"))
        await asyncio.sleep(0)
        self.assertEqual(fired, [])


class TestRendering(unittest.TestCase):
    def test_describe_remaining(self) -> None:
        self.assertEqual(describe_remaining(timedelta(0)), "Due now")
        self.assertEqual(describe_remaining(timedelta(minutes=20)), "Due in 20 min")
        self.assertEqual(describe_remaining(timedelta(hours=5)), "Due in 5 hr")
        self.assertEqual(describe_remaining(timedelta(days=1)), "Due in 24 hr")
        self.assertEqual(describe_remaining(timedelta(days=3)), "Due in 3 days")

    def test_render_without_course(self) -> None:
        rec = _record("Quiz", datetime(2026, 3, 4, 12, 0, tzinfo=timezone.utc), course="")
        title, message = render_reminder(rec, NOW)
        self.assertEqual(title, "Upcoming due: Quiz")
        self.assertEqual(message, "Due in 3 days, Mar 4, 2026")


if __name__ == "__main__":
    unittest.main()
