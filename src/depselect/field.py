"""Per-field consumers — the subscribe/get-snapshot side of the store.

A rendering layer needs three things for one field: a cheap way to read
the field's current slice (get_field_snapshot), a way to be told when that
slice may have changed (subscribe), and the derived data it draws (options,
disabled-by-parent). FieldBinding packages those for one field.

reaction() is the selective flavor: it re-runs a selector on every
notification and only calls the effect when the selected value changes.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Callable, TypeVar

from depselect.options import are_parent_values_equal, format_options, is_empty
from depselect.store import Store
from depselect.types import FieldConfig, FieldSnapshot, FormattedOption, Option, OptionSet

T = TypeVar("T")

Disposer = Callable[[], None]


class FieldBinding:
    """Everything one select control needs from the store.

    Usage:
        city = FieldBinding(store, "city")
        dispose = city.subscribe(lambda: redraw(city.options, city.value))
        city.on_change(["D1", "D7"])
    """

    def __init__(self, store: Store, name: str, options: Sequence[Option] | None = None) -> None:
        self.store = store
        self.name = name
        self._raw: Sequence[Option] | None = None  # as passed in, for the identity check
        self._external: OptionSet | None = None
        if options is not None:
            self.set_options(options)

    @property
    def config(self) -> FieldConfig | None:
        return self.store.get_config(self.name)

    @property
    def snapshot(self) -> FieldSnapshot:
        return self.store.get_field_snapshot(self.name)

    @property
    def value(self) -> Any:
        return self.snapshot.value

    @property
    def parent_value(self) -> Any:
        return self.snapshot.parent_value

    @property
    def parent_values(self) -> Mapping[str, Any] | None:
        return self.snapshot.parent_values

    @property
    def is_loading(self) -> bool:
        return self.snapshot.is_loading

    @property
    def options(self) -> OptionSet:
        return self.store.get_options(self.name, self._external)

    @property
    def formatted_options(self) -> list[FormattedOption]:
        return format_options(self.options)

    @property
    def is_disabled_by_parent(self) -> bool:
        """True while any parent the field depends on is empty."""
        config = self.config
        if config is None or config.is_root:
            return False
        parent_value = self.snapshot.parent_value
        if isinstance(parent_value, Mapping):
            return any(is_empty(v) for v in parent_value.values())
        return is_empty(parent_value)

    def set_options(self, options: Sequence[Option] | None) -> None:
        """Use caller-supplied options; pushed into the store once per distinct list."""
        if options is self._raw:
            return
        self._raw = options
        self._external = None if options is None else OptionSet.of(options)
        if self._external is not None:
            self.store.set_external_options(self.name, self._external)

    def on_change(self, value: Any) -> None:
        self.store.set_value(self.name, value)

    def subscribe(self, listener: Callable[[], None]) -> Disposer:
        return self.store.subscribe(self.name, listener)

    def __repr__(self) -> str:
        return f"FieldBinding({self.name!r}, value={self.value!r})"


def subscribe_parent_value(store: Store, name: str, listener: Callable[[], None]) -> Disposer:
    """Subscribe to every parent of name (to name itself for a root field)."""
    config = store.get_config(name)
    if config is None or config.is_root:
        return store.subscribe(name, listener)

    disposers = [store.subscribe(parent, listener) for parent in config.parent_names]

    def _dispose() -> None:
        for dispose in disposers:
            dispose()

    return _dispose


class FieldReaction:
    """Internal: reaction(store, name, data_fn, effect_fn) implementation.

    On every notification for the field, re-runs data_fn on the snapshot.
    If the result differs from last time, calls effect_fn with the new value.
    """

    __slots__ = ("_store", "_name", "_data_fn", "_effect_fn", "_last_value", "_unsubscribe")

    def __init__(
        self,
        store: Store,
        name: str,
        data_fn: Callable[[FieldSnapshot], T],
        effect_fn: Callable[[T], None],
    ) -> None:
        self._store = store
        self._name = name
        self._data_fn = data_fn
        self._effect_fn = effect_fn
        self._last_value = data_fn(store.get_field_snapshot(name))
        self._unsubscribe: Disposer | None = store.subscribe(name, self._run)

    @property
    def disposed(self) -> bool:
        return self._unsubscribe is None

    def _run(self) -> None:
        if self._unsubscribe is None:
            return
        new_value = self._data_fn(self._store.get_field_snapshot(self._name))
        if new_value is self._last_value or are_parent_values_equal(new_value, self._last_value):
            return
        self._last_value = new_value
        self._effect_fn(new_value)

    def dispose(self) -> None:
        """Stop reacting. Idempotent."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def __repr__(self) -> str:
        state = "disposed" if self.disposed else "active"
        return f"FieldReaction({self._name!r}, {state})"


def reaction(
    store: Store,
    name: str,
    data_fn: Callable[[FieldSnapshot], T],
    effect_fn: Callable[[T], None],
    *,
    fire_immediately: bool = False,
) -> FieldReaction:
    """Call effect_fn whenever data_fn(snapshot) of field name changes.

    Unlike store.subscribe, effect_fn only fires when the *selected* value
    changes, not on every notification for the field.

    Usage:
        r = reaction(store, "city", lambda s: s.is_loading, spinner.set_visible)
        ...
        r.dispose()
    """
    r = FieldReaction(store, name, data_fn, effect_fn)
    if fire_immediately:
        effect_fn(r._last_value)
    return r
