"""
Persistent storage.

Everything durable lives in one key-value store with this layout:

    {
      "assignments": [Record, ...],
      "shownNotifications": {"<id>::<offsetKey>": <epoch ms>, ...},
      "settings": {"reminderOffsets": ["reminder_3d", ...]}
    }

Design rationale:
- the store exclusively owns the bytes; every other component rebuilds its
  in-memory view from it on each operation
- the Store interface is asynchronous so the orchestrator never blocks on disk

Two stores are provided:
- JsonFileStore: one JSON file on disk (default for the CLI)
- MemoryStore: a plain dict (tests, embedding)
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any, Iterable, Protocol

from duewatch.errors import StorageError
from duewatch.model import Record

logger = logging.getLogger(__name__)

ASSIGNMENTS_KEY = "assignments"
SHOWN_KEY = "shownNotifications"
SETTINGS_KEY = "settings"


class Store(Protocol):
    async def get(self, keys: Iterable[str]) -> dict[str, Any]:
        """Return the values of the requested keys that exist."""
        ...

    async def set(self, items: dict[str, Any]) -> None:
        """Write the given keys, leaving all others untouched."""
        ...


def _default_store_path() -> Path:
    """
    Return ~/.duewatch/store.json. Looked up per call so HOME changes apply.
    """
    return Path.home() / ".duewatch" / "store.json"


class MemoryStore:
    """In-memory store. Values are deep-copied on the way in and out."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(initial) if initial else {}

    async def get(self, keys: Iterable[str]) -> dict[str, Any]:
        return {k: copy.deepcopy(self._data[k]) for k in keys if k in self._data}

    async def set(self, items: dict[str, Any]) -> None:
        for k, v in items.items():
            self._data[k] = copy.deepcopy(v)


class JsonFileStore:
    """
    Store backed by a single JSON file.

    A missing file is an empty store (first run). A file that exists but
    cannot be read or parsed raises StorageError instead of being treated
    as empty, so a later write never silently replaces user data.

    Writes are read-modify-write of the whole file and are serialized by a
    lock; each one goes through its own temp file and an atomic replace.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path) if path is not None else _default_store_path()
        self._write_lock = asyncio.Lock()

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise StorageError(f"Could not read store {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise StorageError(f"Store {self.path} does not contain a JSON object")
        return data

    def _write(self, items: dict[str, Any]) -> None:
        data = self._read()
        data.update(items)
        tmp = self.path.with_name(f"{self.path.name}.{uuid.uuid4().hex}.tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as exc:
            tmp.unlink(missing_ok=True)
            raise StorageError(f"Could not write store {self.path}: {exc}") from exc

    async def get(self, keys: Iterable[str]) -> dict[str, Any]:
        wanted = list(keys)
        data = await asyncio.to_thread(self._read)
        return {k: data[k] for k in wanted if k in data}

    async def set(self, items: dict[str, Any]) -> None:
        async with self._write_lock:
            await asyncio.to_thread(self._write, dict(items))


# ---------------------------------------------------------------------------
# Typed accessors
# ---------------------------------------------------------------------------


async def load_records(store: Store) -> list[Record]:
    data = await store.get([ASSIGNMENTS_KEY])
    raw = data.get(ASSIGNMENTS_KEY, [])
    if not isinstance(raw, list):
        logger.warning("Ignoring malformed %s value in store", ASSIGNMENTS_KEY)
        return []
    return [Record.from_dict(x) for x in raw if isinstance(x, dict)]


async def save_records(store: Store, records: Iterable[Record]) -> None:
    await store.set({ASSIGNMENTS_KEY: [r.to_dict() for r in records]})


async def load_shown(store: Store) -> dict[str, int]:
    data = await store.get([SHOWN_KEY])
    raw = data.get(SHOWN_KEY, {})
    return dict(raw) if isinstance(raw, dict) else {}


async def save_shown(store: Store, shown: dict[str, int]) -> None:
    await store.set({SHOWN_KEY: shown})


async def load_offset_keys(store: Store) -> list[str] | None:
    """
    Return the configured reminder offset keys, or None if none are set.
    """
    data = await store.get([SETTINGS_KEY])
    settings = data.get(SETTINGS_KEY)
    if not isinstance(settings, dict):
        return None
    keys = settings.get("reminderOffsets")
    if not isinstance(keys, list):
        return None
    return [str(k).strip() for k in keys if str(k).strip()]
