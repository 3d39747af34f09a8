"""
Bounded activity feed of launchpad actions and outcomes.
"""

from collections import deque
from typing import Deque, Tuple

from loguru import logger

from launchpad.config import LOG_HISTORY_LIMIT
from launchpad.solana.models import LogEntry


class ActivityLog:
    """
    Append-only feed keeping the most recent entries, newest first.

    Entries are mirrored to loguru; dropping old entries from the feed has no
    effect on the log sinks.
    """

    def __init__(self, limit: int = LOG_HISTORY_LIMIT):
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self.limit = limit
        self._entries: Deque[LogEntry] = deque(maxlen=limit)

    def append(self, message: str, ok: bool = True) -> LogEntry:
        entry = LogEntry(message=message, ok=ok)
        self._entries.appendleft(entry)
        if ok:
            logger.info(message)
        else:
            logger.warning(message)
        return entry

    def entries(self) -> Tuple[LogEntry, ...]:
        """Read-only snapshot of the feed, newest first."""
        return tuple(self._entries)

    def messages(self) -> Tuple[str, ...]:
        return tuple(entry.message for entry in self._entries)

    def __len__(self) -> int:
        return len(self._entries)
