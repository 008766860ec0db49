"""Store events — a push stream of what changed and why.

Listeners registered with Store.subscribe only learn *that* a field changed.
Store.events carries the details (previous/new values, cascade deletions,
load start/end) for diagnostics and devtools. Events are queued during a
mutation and emitted when the notification batch flushes.
"""

from __future__ import annotations

from dataclasses import dataclass, field as _field
from enum import Enum
from typing import Any, Callable, Generic, TypeVar

T = TypeVar("T")

Disposer = Callable[[], None]


class EventType(str, Enum):
    VALUE_CHANGE = "value:change"
    OPTIONS_CHANGE = "options:change"
    LOADING_START = "loading:start"
    LOADING_END = "loading:end"
    CASCADE_DELETE = "cascade:delete"
    SYNC_CONTROLLED = "sync:controlled"


@dataclass(frozen=True)
class StoreEvent:
    """One store event.

    payload by type:
        value:change     {"previous_value", "new_value"}
        options:change   {"options"}
        loading:start    {"key"}
        loading:end      {"key", "success"}
        cascade:delete   {"affected_fields", "deleted_values"}
        sync:controlled  {"values"}
    """

    type: EventType
    field: str | None = None
    payload: dict[str, Any] = _field(default_factory=dict)

    @property
    def fields(self) -> tuple[str, ...]:
        """Every field this event concerns."""
        if self.field is not None:
            return (self.field,)
        if self.type is EventType.CASCADE_DELETE:
            return tuple(self.payload.get("affected_fields", ()))
        if self.type is EventType.SYNC_CONTROLLED:
            return tuple(self.payload.get("values", {}))
        return ()


class EventStream(Generic[T]):
    """Push-based event stream with filter chaining; of_type and for_field narrow store events."""

    def __init__(self) -> None:
        self._subscribers: list[Callable[[T], None]] = []
        self._children: list[EventStream] = []  # derived streams, for dispose
        self._disposed = False
        self._parent_disposer: Disposer | None = None

    @property
    def disposed(self) -> bool:
        return self._disposed

    def emit(self, value: T) -> None:
        """Push a value to all subscribers."""
        if self._disposed:
            return
        for callback in list(self._subscribers):
            callback(value)

    def subscribe(self, callback: Callable[[T], None]) -> Disposer:
        """Register a callback. Returns a function that removes it."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            try:
                self._subscribers.remove(callback)
            except ValueError:
                pass  # already removed

        return _unsubscribe

    def filter(self, fn: Callable[[T], bool]) -> EventStream[T]:
        """Only pass events where fn returns True."""
        child: EventStream[T] = EventStream()
        self._adopt(child, self.subscribe(lambda v: child.emit(v) if fn(v) else None))
        return child

    def of_type(self: EventStream[StoreEvent], *types: EventType) -> EventStream[StoreEvent]:
        """Store events of the given types only."""
        wanted = frozenset(types)
        return self.filter(lambda event: event.type in wanted)

    def for_field(self: EventStream[StoreEvent], *names: str) -> EventStream[StoreEvent]:
        """Store events that concern any of the named fields.

        A cascade:delete event concerns every field in its affected_fields;
        sync:controlled concerns every field in its values.
        """
        wanted = frozenset(names)
        return self.filter(lambda event: not wanted.isdisjoint(event.fields))

    def dispose(self) -> None:
        """Tear down this stream and all derived streams."""
        self._disposed = True
        self._subscribers.clear()
        for child in list(self._children):
            child.dispose()
        self._children.clear()
        if self._parent_disposer is not None:
            self._parent_disposer()
            self._parent_disposer = None

    def _adopt(self, child: EventStream, unsubscribe: Disposer) -> None:
        self._children.append(child)

        def _detach() -> None:
            unsubscribe()
            if child in self._children:
                self._children.remove(child)

        child._parent_disposer = _detach
