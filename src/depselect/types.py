"""Core value types — options, field declarations, snapshots.

Field declarations and option lists are immutable. Both FieldSchema and
OptionSet carry an integer identity from _anchor so anything derived from
them can be memoized without relying on object identity of mutable lists.
"""

from __future__ import annotations

import weakref
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterator, Union, overload

from depselect import _anchor
from depselect.errors import DuplicateFieldError

Scalar = Union[str, int]
FieldValues = dict[str, Any]
OptionsLoader = Callable[[Any], Awaitable[Sequence[Any]]]
OptionsFilter = Callable[[Sequence["Option"], Any], Sequence["Option"]]
StoreListener = Callable[[], None]


@dataclass(frozen=True)
class Option:
    """A selectable option.

    parent_value declares which parent value(s) make this option reachable:
    a scalar, a list of scalars, or for multi-parent fields a dict keyed by
    parent field name. None means reachable under any parent.
    """

    label: str
    value: Scalar
    parent_value: Any = None
    disabled: bool = False
    extra: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def coerce(cls, obj: Option | Mapping[str, Any]) -> Option:
        """Accept an Option or a plain mapping (camelCase parentValue allowed)."""
        if isinstance(obj, Option):
            return obj
        data = dict(obj)
        label = data.pop("label")
        value = data.pop("value")
        parent_value = data.pop("parent_value", data.pop("parentValue", None))
        disabled = bool(data.pop("disabled", False))
        return cls(label, value, parent_value, disabled, data)


@dataclass(frozen=True)
class FormattedOption:
    label: str
    value: Scalar
    disabled: bool = False


class OptionSet(Sequence[Option]):
    """Immutable option list with a stable identity for memoization."""

    __slots__ = ("_id", "_items", "__weakref__")

    def __init__(self, options: Sequence[Option | Mapping[str, Any]] = ()) -> None:
        self._id = _anchor.new_id()
        self._items = tuple(Option.coerce(o) for o in options)
        weakref.finalize(self, _anchor.release, self._id)

    @classmethod
    def of(cls, options: Sequence[Option | Mapping[str, Any]] | None) -> OptionSet:
        if isinstance(options, OptionSet):
            return options
        return cls(options or ())

    @overload
    def __getitem__(self, index: int) -> Option: ...

    @overload
    def __getitem__(self, index: slice) -> tuple[Option, ...]: ...

    def __getitem__(self, index):
        return self._items[index]

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Option]:
        return iter(self._items)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, OptionSet):
            return self is other or self._items == other._items
        if isinstance(other, (list, tuple)):
            return list(self._items) == list(other)
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"OptionSet({list(self._items)!r})"


EMPTY_OPTIONS = OptionSet()


# ─── Dependency tag ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Dependency:
    """Normalized depends_on: NoParent, SingleParent or MultiParent."""

    @property
    def names(self) -> tuple[str, ...]:
        return ()

    @staticmethod
    def parse(depends_on: str | Sequence[str] | None) -> Dependency:
        if not depends_on:
            return NO_PARENT
        if isinstance(depends_on, str):
            return SingleParent(depends_on)
        names = tuple(depends_on)
        if len(names) == 1:
            return SingleParent(names[0])
        return MultiParent(names)


@dataclass(frozen=True)
class NoParent(Dependency):
    pass


@dataclass(frozen=True)
class SingleParent(Dependency):
    name: str

    @property
    def names(self) -> tuple[str, ...]:
        return (self.name,)


@dataclass(frozen=True)
class MultiParent(Dependency):
    parents: tuple[str, ...]

    @property
    def names(self) -> tuple[str, ...]:
        return self.parents


NO_PARENT = NoParent()


# ─── Field declarations ──────────────────────────────────────────────────────


@dataclass(frozen=True, eq=False)
class FieldConfig:
    """Declaration of one cascading field.

    options is a static list, an async loader called with the resolved
    parent value, or None when options are supplied from outside the store.
    label, placeholder and select_props are opaque to the store.
    """

    name: str
    depends_on: str | Sequence[str] | None = None
    options: Sequence[Option] | OptionsLoader | None = None
    filter_options: OptionsFilter | None = None
    mode: str | None = None
    label: str | None = None
    placeholder: str | None = None
    select_props: Mapping[str, Any] | None = None
    dependency: Dependency = field(init=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "dependency", Dependency.parse(self.depends_on))
        if self.options is not None and not callable(self.options):
            object.__setattr__(self, "options", OptionSet.of(self.options))

    @property
    def parent_names(self) -> tuple[str, ...]:
        return self.dependency.names

    @property
    def is_root(self) -> bool:
        return isinstance(self.dependency, NoParent)

    @property
    def is_async(self) -> bool:
        return callable(self.options)

    @property
    def is_multiple(self) -> bool:
        return self.mode in ("multiple", "tags")


class FieldSchema(Sequence[FieldConfig]):
    """Immutable, ordered set of field declarations."""

    __slots__ = ("_id", "_configs", "_lookup", "__weakref__")

    def __init__(self, configs: Sequence[FieldConfig]) -> None:
        self._id = _anchor.new_id()
        self._configs = tuple(configs)
        self._lookup: dict[str, FieldConfig] = {}
        for config in self._configs:
            if config.name in self._lookup:
                raise DuplicateFieldError(config.name)
            self._lookup[config.name] = config
        weakref.finalize(self, _anchor.release, self._id)

    @classmethod
    def of(cls, configs: Sequence[FieldConfig]) -> FieldSchema:
        if isinstance(configs, FieldSchema):
            return configs
        return cls(configs)

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self._lookup)

    def get(self, name: str) -> FieldConfig | None:
        return self._lookup.get(name)

    def has(self, name: str) -> bool:
        return name in self._lookup

    @overload
    def __getitem__(self, index: int) -> FieldConfig: ...

    @overload
    def __getitem__(self, index: slice) -> tuple[FieldConfig, ...]: ...

    def __getitem__(self, index):
        return self._configs[index]

    def __len__(self) -> int:
        return len(self._configs)

    def __iter__(self) -> Iterator[FieldConfig]:
        return iter(self._configs)

    def __repr__(self) -> str:
        return f"FieldSchema({list(self._lookup)!r})"


# ─── Derived state ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class FieldRelationship:
    parent: Dependency
    children: tuple[str, ...] = ()


@dataclass(frozen=True)
class FieldSnapshot:
    """What a single-field consumer observes.

    parent_value is the parent's value for single-parent fields and a dict
    keyed by parent name for multi-parent fields (also in parent_values).
    """

    value: Any = None
    parent_value: Any = None
    parent_values: Mapping[str, Any] | None = None
    is_loading: bool = False


@dataclass(frozen=True)
class FieldChange:
    name: str
    value: Any
