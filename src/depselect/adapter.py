"""Form adapters — how committed store changes reach the caller's form.

The store never owns the value of record when an adapter is attached: every
commit is pushed outward through the adapter. When more than one field
changed in a commit (a cascade, or set_values), adapters that implement
on_fields_change receive the whole batch in one call.
"""

from __future__ import annotations

from collections.abc import Mapping, MutableMapping, Sequence
from typing import Any, Callable, Protocol, runtime_checkable

from depselect.types import FieldChange


@runtime_checkable
class FormAdapter(Protocol):
    def on_field_change(self, name: str, value: Any) -> None: ...


def sync_to_adapter(adapter: FormAdapter | None, changes: Sequence[FieldChange]) -> None:
    """Push changes through adapter, batched when the adapter supports it."""
    if adapter is None or not changes:
        return
    on_fields_change = getattr(adapter, "on_fields_change", None)
    if on_fields_change is not None and len(changes) > 1:
        on_fields_change(list(changes))
    else:
        for change in changes:
            adapter.on_field_change(change.name, change.value)


class CallbackAdapter:
    """Adapter from plain callables.

    Usage:
        adapter = CallbackAdapter(lambda name, value: form.set(name, value))
    """

    def __init__(
        self,
        on_field_change: Callable[[str, Any], None],
        on_fields_change: Callable[[list[FieldChange]], None] | None = None,
    ) -> None:
        self._on_field_change = on_field_change
        if on_fields_change is not None:
            self.on_fields_change = on_fields_change

    def on_field_change(self, name: str, value: Any) -> None:
        self._on_field_change(name, value)


class MappingAdapter:
    """Write changes into a mutable mapping, optionally under a dotted path.

    Usage:
        form = {}
        adapter = MappingAdapter(form, base_path="user.address")
        adapter.on_field_change("city", "D1")
        form  # {"user": {"address": {"city": "D1"}}}
    """

    def __init__(self, target: MutableMapping[str, Any], base_path: str | None = None) -> None:
        self.target = target
        self.base_path = base_path

    def _container(self) -> MutableMapping[str, Any]:
        container = self.target
        if self.base_path:
            for key in self.base_path.split("."):
                nested = container.get(key)
                if not isinstance(nested, MutableMapping):
                    nested = container[key] = {}
                container = nested
        return container

    def on_field_change(self, name: str, value: Any) -> None:
        self._container()[name] = value_copy(value)

    def on_fields_change(self, changes: list[FieldChange]) -> None:
        container = self._container()
        for change in changes:
            container[change.name] = value_copy(change.value)

    def values(self) -> Mapping[str, Any]:
        return self._container()


def value_copy(value: Any) -> Any:
    """Arrays are copied so the form never aliases store state."""
    return list(value) if isinstance(value, (list, tuple)) else value
