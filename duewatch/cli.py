"""
CLI (Command Line Interface).

    duewatch sync --cookie PHPSESSID=... [--url URL]
    duewatch list
    duewatch done <record_id>
    duewatch sweep
    duewatch watch

Note:
- the caller brings an authenticated session (cookies); duewatch never logs in
- output is plain text (no rich formatting)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Any

from duewatch.config import Settings
from duewatch.events import COMPLETE, PROGRESS
from duewatch.http_agent import HttpPageAgent
from duewatch.service import DueWatch
from duewatch.storage import JsonFileStore


def _parse_cookies(pairs: list[str]) -> dict[str, str]:
    """
    Turn ["NAME=VALUE", ...] into a cookie dict. Raises ValueError on bad pairs.
    """
    cookies: dict[str, str] = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name.strip():
            raise ValueError(f"Invalid cookie (expected NAME=VALUE): {pair!r}")
        cookies[name.strip()] = value.strip()
    return cookies


def _print_progress(event: dict[str, Any]) -> None:
    print(f"[{event['current']}/{event['total']}] {event['label']}")


def _print_complete(event: dict[str, Any]) -> None:
    print(f"Sync finished: {event['totalRecords']} assignments")
    failed = event.get("failedCourses") or []
    if failed:
        print(f"Failed courses ({len(failed)}): {', '.join(failed)}")


async def _build_service(args: argparse.Namespace, settings: Settings, cookies: dict[str, str] | None = None) -> DueWatch:
    store = JsonFileStore(args.store or settings.store_path or None)
    agent = HttpPageAgent(cookies=cookies, timeout=settings.request_timeout)
    return await DueWatch.create(agent, store=store, settings=settings)


async def _cmd_sync(args: argparse.Namespace, settings: Settings) -> int:
    try:
        cookies = _parse_cookies(args.cookie or [])
    except ValueError as exc:
        print(str(exc))
        return 1

    url = (args.url or "").strip() or settings.listing_url
    app = await _build_service(args, settings, cookies)
    app.bus.subscribe(PROGRESS, _print_progress)
    app.bus.subscribe(COMPLETE, _print_complete)

    try:
        page = await app.agent.open_fresh(url)
    except Exception as exc:
        print(f"Could not open {url}: {exc}")
        return 1

    result = await app.request_full_sync(page)
    if not result.ok:
        print(f"Sync failed: {result.error}")
        return 1
    return 0


async def _cmd_list(args: argparse.Namespace, settings: Settings) -> int:
    app = await _build_service(args, settings)
    records = await app.list_records()
    if not records:
        print("No assignments stored.")
        return 0
    for r in records:
        due = r.deadline.astimezone().strftime("%Y-%m-%d %H:%M") if r.deadline else "no date"
        course = f" [{r.course}]" if r.course else ""
        print(f"{r.id} | {due} | {r.title}{course}")
    return 0


async def _cmd_done(args: argparse.Namespace, settings: Settings) -> int:
    app = await _build_service(args, settings)
    result = await app.mark_done(args.record_id)
    if result.ok:
        print(f"Marked done: {args.record_id}")
        return 0
    if result.error:
        print(f"Could not mark done: {result.error}")
        return 1
    print(f"Not found: {args.record_id}")
    return 0


async def _cmd_sweep(args: argparse.Namespace, settings: Settings) -> int:
    app = await _build_service(args, settings)
    shown = await app.sweeper.sweep()
    print(f"Reminders shown: {shown}")
    return 0


async def _cmd_watch(args: argparse.Namespace, settings: Settings) -> int:
    app = await _build_service(args, settings)
    await app.start()
    print("Watching deadlines (Ctrl+C to stop)...")
    try:
        await asyncio.Event().wait()
    finally:
        await app.stop()
    return 0


def build_parser() -> argparse.ArgumentParser:
    """
    Build the argparse CLI parser with sub-commands.
    """
    parser = argparse.ArgumentParser(prog="duewatch", description="duewatch CLI")
    parser.add_argument("--store", type=str, default="", help="Path to the store JSON file")
    sub = parser.add_subparsers(dest="command", required=True)

    p_sync = sub.add_parser("sync", help="Sync assignments from every course")
    p_sync.add_argument("--cookie", "-c", action="append", help="Session cookie NAME=VALUE (repeatable)")
    p_sync.add_argument("--url", type=str, default="", help="Assignments page URL")

    sub.add_parser("list", help="List stored assignments")

    p_done = sub.add_parser("done", help="Mark an assignment as done")
    p_done.add_argument("record_id", type=str, help="Record ID (e.g. a_123456)")

    sub.add_parser("sweep", help="Show reminders that are due now")
    sub.add_parser("watch", help="Keep running and remind before deadlines")

    return parser


COMMANDS = {
    "sync": _cmd_sync,
    "list": _cmd_list,
    "done": _cmd_done,
    "sweep": _cmd_sweep,
    "watch": _cmd_watch,
}


def main(argv: list[str] | None = None) -> None:
    """
    CLI entry point. Parses args, dispatches to command handlers,
    and exits via SystemExit with a return code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = Settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    handler = COMMANDS.get(args.command)
    if handler is None:
        raise SystemExit(2)
    try:
        raise SystemExit(asyncio.run(handler(args, settings)))
    except KeyboardInterrupt:
        raise SystemExit(130)
