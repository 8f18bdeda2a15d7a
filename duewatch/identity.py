"""
Record identity.

The same assignment is often listed under several courses (cross-listed or
shared sections). Identity therefore depends on title and deadline only,
never on the course, so every copy converges to one record.

Identifiers also name reminders and notifications: "<record_id>::<offset_key>".
"""

from __future__ import annotations

from duewatch.model import Record

SEPARATOR = "||"
NAME_SEPARATOR = "::"


def normalize(text: str | None) -> str:
    """Trim + lowercase."""
    return (text or "").strip().lower()


def _rolling_hash(text: str) -> int:
    """
    32-bit polynomial rolling hash (h = h * 31 + unit) over UTF-16 code units.

    Stable across runs and processes, unlike the builtin hash().
    """
    data = text.encode("utf-16-le")
    h = 0
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = (h * 31 + unit) & 0xFFFFFFFF
    # back to a signed 32-bit value
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


def record_id(record: Record) -> str:
    """
    Derive the stable identifier of a record.
    """
    key = f"{normalize(record.title)}{SEPARATOR}{normalize(record.deadline_raw)}"
    return f"a_{_rolling_hash(key)}"


def reminder_name(rid: str, offset_key: str) -> str:
    return f"{rid}{NAME_SEPARATOR}{offset_key}"


def split_reminder_name(name: str) -> tuple[str, str]:
    """
    Split "<record_id>::<offset_key>" into its two parts.

    Raises ValueError for anything that does not split into exactly two
    non-empty parts.
    """
    parts = (name or "").split(NAME_SEPARATOR)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise ValueError(f"Malformed reminder name: {name!r}")
    return parts[0], parts[1]


def reminder_prefix(rid: str) -> str:
    return f"{rid}{NAME_SEPARATOR}"
