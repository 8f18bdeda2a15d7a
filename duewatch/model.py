"""
Central data model definitions used across the project.

This module defines the canonical structure of the objects that flow between
the page agent, the merge engine, the reminder scheduler and the store, so that:
- all modules share the same field names
- the persisted JSON layout stays stable across releases
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, List


_NO_SUBMISSION_RE = re.compile(r"no\s+submission", re.IGNORECASE)
_SUBMISSION_RE = re.compile(r"submission", re.IGNORECASE)


def derive_submitted(status: str) -> bool:
    """
    Derive the submitted flag from the raw status column.

    "No Submission"     -> not submitted
    "Submission"        -> submitted
    "Added Submission"  -> submitted
    anything else       -> not submitted
    """
    text = (status or "").strip()
    if not text or _NO_SUBMISSION_RE.search(text):
        return False
    return bool(_SUBMISSION_RE.search(text))


def parse_instant(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 string into an aware datetime (UTC if no offset given).

    Returns None for missing or unparsable values.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        # fromisoformat() only learned the trailing "Z" in 3.11
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass
class Record:
    """
    One due item (assignment) as stored under "assignments".

    `id` is filled in by the identity resolver; scraped records arrive without one.
    """

    title: str
    course: str = ""
    deadline: Optional[datetime] = None
    deadline_raw: str = ""
    link: str = ""
    status: str = ""
    submitted: bool = False
    id: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Record":
        status = str(data.get("status", "") or "")
        submitted = data.get("submitted")
        return cls(
            id=str(data.get("id", "") or ""),
            title=str(data.get("title", "") or ""),
            course=str(data.get("course", "") or ""),
            deadline=parse_instant(data.get("deadline")),
            deadline_raw=str(data.get("deadlineRaw", data.get("deadlineText", "")) or ""),
            link=str(data.get("link", "") or ""),
            status=status,
            submitted=bool(submitted) if submitted is not None else derive_submitted(status),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "course": self.course,
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "deadlineRaw": self.deadline_raw,
            "link": self.link,
            "status": self.status,
            "submitted": self.submitted,
        }


@dataclass(frozen=True)
class SegmentDescriptor:
    """
    One entry of the course selector on the listing page.

    Entries with an empty value are placeholders ("Select Course").
    """

    value: str
    label: str

    @property
    def is_placeholder(self) -> bool:
        return not self.value.strip()


@dataclass(frozen=True)
class ReminderOffset:
    """A duration before a deadline at which a reminder should fire."""

    key: str
    duration: timedelta


@dataclass
class ScrapeResult:
    """Reply to a scrape request, tagged with the request's correlation id."""

    request_id: str
    records: List[Record] = field(default_factory=list)


@dataclass
class CommandResult:
    """Caller-facing result of a command: {ok, error?}."""

    ok: bool
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        if out["error"] is None:
            del out["error"]
        return out
