"""
Configuration settings for duewatch.

Values come from the environment (prefix DUEWATCH_) or a local .env file.
Reminder offsets are user data and live in the store instead
(settings.reminderOffsets); this module only knows how to read their keys.
"""

from __future__ import annotations

import re
from datetime import timedelta
from typing import Iterable, List

from pydantic_settings import BaseSettings, SettingsConfigDict

from duewatch.model import ReminderOffset


DEFAULT_LISTING_URL = "https://lms.bahria.edu.pk/Student/Assignments.php"
DEFAULT_OFFSET_KEYS = ["reminder_3d", "reminder_2d", "reminder_today"]

_OFFSET_KEY_RE = re.compile(r"^reminder_(\d+)([dhm])$")
_UNITS = {"d": "days", "h": "hours", "m": "minutes"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="DUEWATCH_", env_file=".env", extra="ignore")

    log_level: str = "INFO"

    # Storage
    store_path: str = ""  # empty -> ~/.duewatch/store.json

    # Listing service
    listing_url: str = DEFAULT_LISTING_URL
    segment_param: str = "oc"
    request_timeout: float = 30.0

    # Sync session (seconds)
    navigation_timeout: float = 15.0
    min_navigation_timeout: float = 5.0
    slow_load_threshold: float = 3.0
    scrape_timeout: float = 2.5
    retry_backoff: float = 1.0
    segment_delay: float = 0.05
    recovery_ready_timeout: float = 20.0

    # Reminders (seconds)
    sweep_interval: float = 3 * 60 * 60
    catch_up_window: float = 12 * 60 * 60


def parse_offset_key(key: str) -> ReminderOffset:
    """
    Turn an offset key into a ReminderOffset.

    Accepted: "reminder_today" (at the deadline) and "reminder_<n><d|h|m>",
    e.g. "reminder_3d", "reminder_24h", "reminder_30m".
    Raises ValueError for anything else.
    """
    k = (key or "").strip()
    if k == "reminder_today":
        return ReminderOffset(key=k, duration=timedelta(0))
    m = _OFFSET_KEY_RE.match(k)
    if not m:
        raise ValueError(f"Unknown reminder offset: {key!r}")
    amount, unit = int(m.group(1)), m.group(2)
    return ReminderOffset(key=k, duration=timedelta(**{_UNITS[unit]: amount}))


def resolve_offsets(keys: Iterable[str] | None) -> List[ReminderOffset]:
    """
    Resolve offset keys in order, dropping duplicates.

    Falls back to DEFAULT_OFFSET_KEYS when no keys are given.
    """
    source = list(keys) if keys else list(DEFAULT_OFFSET_KEYS)
    out: List[ReminderOffset] = []
    seen: set[str] = set()
    for key in source:
        offset = parse_offset_key(key)
        if offset.key in seen:
            continue
        seen.add(offset.key)
        out.append(offset)
    return out
