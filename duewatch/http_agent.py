"""
HTTP page agent (requests + BeautifulSoup).

Drives the LMS assignments page over plain HTTP with an already
authenticated session (cookies supplied by the caller) and scrapes it:

- segment options come from the course <select> (#courseId, #course,
  or select[name='courseName'])
- each table row with at least two cells is one assignment:
  col[1] = title, col[3] = submission status, last col = deadline

Blocking requests calls run in a worker thread so the event loop never stalls.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

import requests
from bs4 import BeautifulSoup

from duewatch.agent import PageAgent
from duewatch.errors import AgentUnreachableError, PermanentPageError, TransientPageError
from duewatch.model import Record, ScrapeResult, SegmentDescriptor, derive_submitted

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

COURSE_SELECTORS = ("#courseId", "#course", "select[name='courseName']")

_MONTH_RE = re.compile(
    r"\b(January|February|March|April|May|June|July|August|September|October|November|December"
    r"|Jan|Feb|Mar|Apr|Jun|Jul|Aug|Sep|Oct|Nov|Dec)\b",
    re.IGNORECASE,
)
_DATE_TAIL_RE = re.compile(r"\d{1,2}\s+\w+\s+\d{4}.*$")

DEADLINE_FORMATS = (
    "%d %B %Y %I:%M %p",
    "%d %b %Y %I:%M %p",
    "%d %B %Y %I:%M%p",
    "%d %B %Y %H:%M",
    "%d %b %Y %H:%M",
    "%d %B %Y",
    "%d %b %Y",
)


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def pick_deadline_text(cell_text: str) -> str:
    """
    Pick the deadline line out of the deadline cell.

    The cell often holds two boxes (label + date-time); prefer the first line
    that names a month, then normalize dash separators to spaces.
    """
    lines = [ln.strip() for ln in (cell_text or "").split("\n") if ln.strip()]
    if not lines:
        return ""
    text = next((ln for ln in lines if _MONTH_RE.search(ln)), lines[0])
    text = re.sub(r"\s+-\s+", " ", text)
    text = text.replace("–", " ").replace("—", " ")
    return re.sub(r"\s+", " ", text).strip()


def parse_deadline(text: str) -> Optional[datetime]:
    """
    Parse a deadline like "17 October 2025 12:00 pm" as local time.

    Returns an aware datetime, or None if nothing matched.
    """
    if not text:
        return None
    candidates = [text]
    m = _DATE_TAIL_RE.search(text)
    if m and m.group(0) != text:
        candidates.append(m.group(0))
    for candidate in candidates:
        for fmt in DEADLINE_FORMATS:
            try:
                return datetime.strptime(candidate, fmt).astimezone()
            except ValueError:
                continue
        try:
            dt = datetime.fromisoformat(candidate)
        except ValueError:
            continue
        return dt if dt.tzinfo else dt.astimezone()
    return None


def _course_select(soup: BeautifulSoup):
    for selector in COURSE_SELECTORS:
        select = soup.select_one(selector)
        if select is not None:
            return select
    return None


def parse_segment_options(html: str) -> List[SegmentDescriptor]:
    soup = BeautifulSoup(html, "html.parser")
    select = _course_select(soup)
    if select is None:
        return []
    return [
        SegmentDescriptor(value=str(opt.get("value", "")).strip(), label=opt.get_text(strip=True))
        for opt in select.find_all("option")
    ]


def parse_assignments(html: str, page_url: str = "") -> List[Record]:
    """
    Extract assignment records from the assignments table.
    """
    soup = BeautifulSoup(html, "html.parser")

    # current course label from the selector
    course = ""
    select = _course_select(soup)
    if select is not None:
        selected = select.select_one("option[selected]") or select.find("option")
        if selected is not None:
            course = selected.get_text(strip=True)

    records: List[Record] = []
    for row in soup.select("table tr"):
        cells = row.find_all("td")
        # header or layout row
        if len(cells) < 2:
            continue

        title = cells[1].get_text(" ", strip=True)
        if not title:
            continue

        deadline_raw = pick_deadline_text(cells[-1].get_text("\n", strip=True))
        status = cells[3].get_text(" ", strip=True) if len(cells) > 3 else ""

        records.append(
            Record(
                title=title,
                course=course,
                deadline=parse_deadline(deadline_raw),
                deadline_raw=deadline_raw,
                link=page_url,
                status=status,
                submitted=derive_submitted(status),
            )
        )
    return records


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------


@dataclass
class HttpPage:
    """One page context: the last loaded URL and its HTML."""

    url: str
    html: Optional[str] = None


class HttpPageAgent(PageAgent):
    def __init__(
        self,
        session: Optional[requests.Session] = None,
        cookies: Optional[dict[str, str]] = None,
        timeout: float = 30.0,
    ) -> None:
        self.session = session if session is not None else requests.Session()
        if cookies:
            self.session.cookies.update(cookies)
        self.timeout = timeout

    def _get(self, url: str, bypass_cache: bool = False) -> tuple[str, str]:
        headers = {"Cache-Control": "no-cache", "Pragma": "no-cache"} if bypass_cache else None
        try:
            resp = self.session.get(url, timeout=self.timeout, headers=headers)
        except requests.RequestException as exc:
            raise TransientPageError(f"Could not load {url}: {exc}") from exc
        if resp.status_code in (401, 403):
            raise PermanentPageError(f"Not authorized for {url} (HTTP {resp.status_code})")
        if resp.status_code >= 500:
            raise TransientPageError(f"Server error for {url} (HTTP {resp.status_code})")
        if resp.status_code >= 400:
            raise PermanentPageError(f"Could not load {url} (HTTP {resp.status_code})")
        return resp.url or url, resp.text

    async def _load(self, page: HttpPage, url: str, bypass_cache: bool = False) -> None:
        final_url, html = await asyncio.to_thread(self._get, url, bypass_cache)
        page.url = final_url
        page.html = html

    async def navigate(self, context: HttpPage, url: str) -> None:
        await self._load(context, url)

    async def request_scrape(self, context: HttpPage, request_id: str) -> ScrapeResult:
        if context.html is None:
            raise AgentUnreachableError("page not loaded")
        records = parse_assignments(context.html, context.url)
        logger.debug("Scraped %d rows from %s", len(records), context.url)
        return ScrapeResult(request_id=request_id, records=records)

    async def request_segment_options(self, context: HttpPage) -> List[SegmentDescriptor]:
        if context.html is None:
            raise AgentUnreachableError("page not loaded")
        return parse_segment_options(context.html)

    async def reinject(self, context: HttpPage) -> bool:
        # nothing runs inside the page over plain HTTP
        return False

    async def reload(self, context: HttpPage) -> None:
        await self._load(context, context.url, bypass_cache=True)

    async def open_fresh(self, url: str) -> HttpPage:
        page = HttpPage(url=url)
        await self._load(page, url)
        return page

    def current_url(self, context: HttpPage) -> Optional[str]:
        return context.url if context.html is not None else None
