"""
Error taxonomy.

PageError
    Anything that went wrong while talking to the page agent.
    - TransientPageError: timeouts, flaky navigation; retried once per segment
    - AgentUnreachableError: no agent listening in the page; escalates
      through the recovery ladder when fetching the segment list
    - PermanentPageError: the page told us something we cannot recover from

StorageError
    The store could not read or write. Always surfaced to the caller.

NotFound
    The target record is gone. Expected when deletions race, so callers
    treat it as a benign no-op.
"""

from __future__ import annotations


class DueWatchError(Exception):
    """Base class for all duewatch errors."""


class PageError(DueWatchError):
    pass


class TransientPageError(PageError):
    pass


class AgentUnreachableError(TransientPageError):
    """No page agent is listening in the current context."""


class EmptySegmentListError(AgentUnreachableError):
    """
    The agent answered, but the segment selector was empty.

    An empty selector usually means the page has not finished rendering,
    so this escalates exactly like an unreachable agent.
    """

    def __init__(self, message: str = "no segment list found") -> None:
        super().__init__(message)


class PermanentPageError(PageError):
    pass


class StorageError(DueWatchError):
    pass


class NotFound(DueWatchError):
    pass


class SyncInProgress(DueWatchError):
    def __init__(self, message: str = "sync already in progress") -> None:
        super().__init__(message)
