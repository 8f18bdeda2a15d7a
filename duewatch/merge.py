"""
Merging scraped batches into the persisted record set.

Merge rule per identity:
- new identity            -> insert
- known identity          -> incoming fields win, except `course`, which becomes
                             the union of both course labels (each label once)
- incoming marked submitted -> the record is removed

Concurrent batches (a running sync plus a single-page scrape arriving from
elsewhere) go through one lock per engine, so no batch is lost between the
load and the save.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import replace
from typing import Iterable, Optional

from duewatch.identity import record_id
from duewatch.model import Record
from duewatch.storage import Store, load_records, save_records

logger = logging.getLogger(__name__)

COURSE_SEPARATOR = ", "


class MergeMode(enum.Enum):
    REPLACE = "replace"
    INCREMENTAL = "incremental"


def split_courses(course: str) -> list[str]:
    return [c.strip() for c in (course or "").split(",") if c.strip()]


def union_courses(*courses: str) -> str:
    """
    Join course labels, keeping first-seen order and each label once.
    """
    seen: dict[str, None] = {}
    for course in courses:
        for label in split_courses(course):
            seen.setdefault(label, None)
    return COURSE_SEPARATOR.join(seen)


def merge_records(
    existing: Iterable[Record], incoming: Iterable[Record]
) -> tuple[list[Record], list[Record], list[str]]:
    """
    Fold `incoming` into `existing` without touching storage.

    Returns (merged, affected, removed_ids):
    - merged: the full resulting record set, existing order first
    - affected: the merged versions of every inserted/updated record
    - removed_ids: identities dropped because they arrived as submitted
    """
    by_id: dict[str, Record] = {}
    for rec in existing:
        rid = rec.id or record_id(rec)
        by_id[rid] = replace(rec, id=rid)

    affected: dict[str, Record] = {}
    removed: list[str] = []
    for rec in incoming:
        rid = record_id(rec)
        if rec.submitted:
            if by_id.pop(rid, None) is not None:
                removed.append(rid)
            affected.pop(rid, None)
            continue
        current = by_id.get(rid)
        if current is None:
            merged = replace(rec, id=rid, course=union_courses(rec.course))
        else:
            merged = replace(rec, id=rid, course=union_courses(current.course, rec.course))
        by_id[rid] = merged
        affected[rid] = merged

    return list(by_id.values()), list(affected.values()), removed


class MergeEngine:
    """
    Applies merge_records() against the store and re-arms reminders.

    `scheduler` and `deduper` are optional so the engine can run headless.
    Every load-modify-save of the record set runs under `self._lock`.
    """

    def __init__(self, store: Store, scheduler=None, deduper=None) -> None:
        self.store = store
        self.scheduler = scheduler
        self.deduper = deduper
        self._lock = asyncio.Lock()

    async def clear(self) -> None:
        """Empty the persisted set and drop the triggers of everything in it."""
        async with self._lock:
            await self._clear()

    async def _clear(self) -> None:
        previous = await load_records(self.store)
        await save_records(self.store, [])
        if self.scheduler is not None:
            for rec in previous:
                self.scheduler.clear_triggers(rec.id)
        logger.info("Cleared %d stored records", len(previous))

    async def merge(
        self, incoming: Iterable[Record], mode: MergeMode = MergeMode.INCREMENTAL
    ) -> Optional[list[Record]]:
        """
        Merge a batch and persist it. Returns the merged set, or None when the
        batch was empty (nothing written besides a replace-mode clear).

        StorageError from the store propagates unchanged.
        """
        batch = list(incoming)
        async with self._lock:
            if mode is MergeMode.REPLACE:
                await self._clear()
            if not batch:
                return None

            existing = await load_records(self.store)
            merged, affected, removed = merge_records(existing, batch)
            await save_records(self.store, merged)
        logger.debug(
            "Merged %d incoming records (%d affected, %d removed, %d total)",
            len(batch), len(affected), len(removed), len(merged),
        )

        if self.scheduler is not None:
            self.scheduler.rearm(affected)
            for rid in removed:
                self.scheduler.clear_triggers(rid)
        if self.deduper is not None:
            for rid in removed:
                await self.deduper.clear_for_record(rid)
        return merged

    async def remove(self, rid: str) -> Optional[Record]:
        """
        Drop one record with its triggers and shown markers.

        Returns the removed record, or None if it was not stored.
        """
        async with self._lock:
            records = await load_records(self.store)
            removed = next((r for r in records if r.id == rid), None)
            if removed is None:
                return None
            await save_records(self.store, [r for r in records if r.id != rid])
        if self.scheduler is not None:
            self.scheduler.clear_triggers(rid)
        if self.deduper is not None:
            await self.deduper.clear_for_record(rid)
        return removed

    async def prune_markers(self) -> int:
        """Forget shown markers of records that are no longer stored."""
        if self.deduper is None:
            return 0
        async with self._lock:
            live = {r.id for r in await load_records(self.store)}
            return await self.deduper.retain(live)
