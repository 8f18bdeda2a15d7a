"""
Simple pub/sub event bus for sync observers.

Topics:
    progress  {"current": int, "total": int, "label": str}
    complete  {"totalRecords": int, "failedCourses": [str, ...]}
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable

logger = logging.getLogger(__name__)

PROGRESS = "progress"
COMPLETE = "complete"

Event = dict[str, Any]
Handler = Callable[[Event], None]


class EventBus:
    """In-process event bus with topic routing."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, topic: str, handler: Handler) -> None:
        """Subscribe a handler to a topic ("*" for all)."""
        self._subscribers[topic].append(handler)

    def publish(self, topic: str, event: Event) -> None:
        """
        Publish an event to a topic.

        A failing observer (e.g. a closed UI) never breaks the publisher.
        """
        handlers = list(self._subscribers.get(topic, []))
        handlers.extend(self._subscribers.get("*", []))
        for handler in handlers:
            try:
                handler({"type": topic, **event})
            except Exception as exc:
                logger.error("EventBus handler failed for topic '%s': %s", topic, exc)
