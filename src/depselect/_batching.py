"""Notification batching — dirty fields accumulate, listeners run once per flush.

Mutations add field names (and store events) to a NotificationQueue instead
of notifying synchronously. The first addition schedules a flush; later
additions before the flush runs are coalesced into it. A batch scope
(begin_batch/end_batch, nestable) holds the flush back until the outermost
scope exits.

Scheduling: by default the flush is queued with loop.call_soon on the
running asyncio loop, so listeners always run after the synchronous work
that triggered them. Without a running loop the flush runs synchronously
when the outermost mutation finishes. set_scheduler() replaces the default
for the whole process; a store can also be given its own scheduler.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Iterable

Scheduler = Callable[[Callable[[], None]], None]
Deliver = Callable[[list[str], list[Any]], None]

_scheduler: Scheduler | None = None


def default_scheduler(callback: Callable[[], None]) -> None:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        callback()
    else:
        loop.call_soon(callback)


def set_scheduler(scheduler: Scheduler | None) -> None:
    """Set the process-wide flush scheduler. None restores the asyncio default.

    Usage:
        depselect.set_scheduler(app.call_later)
    """
    global _scheduler
    _scheduler = scheduler


def get_scheduler() -> Scheduler:
    return _scheduler or default_scheduler


class NotificationQueue:
    """Pending field names and events for one store, flushed together."""

    def __init__(self, deliver: Deliver, scheduler: Scheduler | None = None) -> None:
        self._deliver = deliver
        self._scheduler = scheduler
        self._pending: dict[str, None] = {}  # ordered set
        self._events: list[Any] = []
        self._scheduled = False
        self._batch_depth = 0
        self._closed = False

    @property
    def pending_count(self) -> int:
        """Number of fields waiting for the next flush. Useful for testing."""
        return len(self._pending)

    @property
    def is_scheduled(self) -> bool:
        return self._scheduled

    def add(self, names: Iterable[str], events: Iterable[Any] = ()) -> None:
        if self._closed:
            return
        for name in names:
            self._pending[name] = None
        self._events.extend(events)
        if self._batch_depth == 0:
            self._schedule_flush()

    def begin_batch(self) -> None:
        """Enter a batching scope. Nested batches are supported."""
        self._batch_depth += 1

    def end_batch(self) -> None:
        """Exit a batching scope. The outermost exit schedules the flush."""
        self._batch_depth -= 1
        if self._batch_depth == 0:
            self._schedule_flush()

    def _schedule_flush(self) -> None:
        if self._scheduled or self._closed:
            return
        if not self._pending and not self._events:
            return
        self._scheduled = True
        (self._scheduler or get_scheduler())(self.flush)

    def flush(self) -> None:
        """Drain pending names and events into the deliver callback."""
        self._scheduled = False
        if self._closed:
            return
        names = list(self._pending)
        events = self._events
        self._pending.clear()
        self._events = []
        if names or events:
            self._deliver(names, events)

    def close(self) -> None:
        self._closed = True
        self._pending.clear()
        self._events = []
