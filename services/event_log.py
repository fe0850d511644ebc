"""Append-only event log with a single read cursor.

The producer appends; the poller reads everything after the cursor and
advances it by exactly what it read.  A terminal event closes the log,
after which appends are refused.  One lock per log makes each append and
each read-and-advance atomic, so concurrent readers are serialized and
every event is handed out exactly once.
"""

from __future__ import annotations

import threading
from typing import Generic, TypeVar

T = TypeVar("T")


class EventLog(Generic[T]):
    """Thread-safe append-only log with a read cursor and a closed flag."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: list[T] = []
        self._cursor = 0
        self._closed = False

    def append(self, event: T) -> bool:
        """Append ``event``; returns False (and drops it) once closed."""
        with self._lock:
            if self._closed:
                return False
            self._events.append(event)
            return True

    def close(self, final_event: T | None = None) -> bool:
        """Close the log, optionally appending a terminal event first.

        Returns False if the log was already closed; nothing is appended.
        """
        with self._lock:
            if self._closed:
                return False
            if final_event is not None:
                self._events.append(final_event)
            self._closed = True
            return True

    def read_new(self) -> tuple[list[T], bool]:
        """Return events after the cursor plus the closed flag, advancing the cursor."""
        with self._lock:
            events = self._events[self._cursor:]
            self._cursor = len(self._events)
            return events, self._closed

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def cursor(self) -> int:
        return self._cursor

    def __len__(self) -> int:
        return len(self._events)
