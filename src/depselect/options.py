"""Pure helpers for values and options — filtering, cascade delete, equality.

Nothing here holds state except the memo tables in _anchor, which are keyed
by OptionSet identity. Plain lists are accepted everywhere and wrapped on
the way in (wrapped lists are not memoized across calls).

Reachability rule shared by filtering and cascade delete: an option with no
parent_value (or an empty list) is reachable under any non-empty parent.
A scalar or list parent_value is reachable when it intersects the parent
values. A dict parent_value (multi-parent) is reachable only when every
parent it names still holds at least one of the declared values.
"""

from __future__ import annotations

import functools
from collections.abc import Mapping, Sequence
from typing import Any, Callable, TypeVar

from depselect import _anchor
from depselect.types import FormattedOption, Option, OptionSet

T = TypeVar("T")

_ARRAY_TYPES = (list, tuple)


# ─── Memoization ─────────────────────────────────────────────────────────────


def memoize_by_identity(table: dict[int, Any]):
    """Decorator: cache fn(options) in table under the OptionSet id."""

    def decorator(fn: Callable[[OptionSet], T]) -> Callable[[Sequence[Option]], T]:
        @functools.wraps(fn)
        def wrapper(options: Sequence[Option]) -> T:
            options = OptionSet.of(options)
            try:
                return table[options._id]
            except KeyError:
                result = table[options._id] = fn(options)
                return result

        return wrapper

    return decorator


@memoize_by_identity(_anchor.option_lookups)
def option_lookup(options: OptionSet) -> dict[Any, Option]:
    """value -> Option. Later duplicates win."""
    return {option.value: option for option in options}


# ─── Value helpers ───────────────────────────────────────────────────────────


def normalize_depends_on(depends_on: str | Sequence[str] | None) -> list[str]:
    """normalize_depends_on("country") == ["country"]; None gives []."""
    if not depends_on:
        return []
    if isinstance(depends_on, str):
        return [depends_on]
    return list(depends_on)


def normalize_to_array(value: Any) -> list:
    if isinstance(value, _ARRAY_TYPES):
        return list(value)
    if value is None:
        return []
    return [value]


def is_empty(value: Any) -> bool:
    """None and empty arrays are empty. 0 and "" are real values."""
    if value is None:
        return True
    if isinstance(value, _ARRAY_TYPES):
        return len(value) == 0
    return False


def are_values_equal(a: Any, b: Any) -> bool:
    """Array-aware equality. Arrays compare element-wise, order-sensitive."""
    if a is b:
        return True
    a_is_array = isinstance(a, _ARRAY_TYPES)
    if a_is_array != isinstance(b, _ARRAY_TYPES):
        return False
    if a_is_array:
        return len(a) == len(b) and all(x is y or x == y for x, y in zip(a, b))
    return a == b


def are_arrays_equal_unordered(a: Sequence, b: Sequence) -> bool:
    if a is b:
        return True
    if len(a) != len(b):
        return False
    return set(a) == set(b)


def are_parent_values_equal(a: Any, b: Any) -> bool:
    """Structural compare for snapshot parent values.

    Dicts (multi-parent) compare shallowly by key, each entry array-aware.
    """
    if a is b:
        return True
    if isinstance(a, Mapping) and isinstance(b, Mapping):
        if len(a) != len(b):
            return False
        return all(key in b and are_values_equal(value, b[key]) for key, value in a.items())
    return are_values_equal(a, b)


def get_removed_values(old: Any, new: Any) -> list:
    """Entries of old that are no longer in new."""
    old_values = normalize_to_array(old)
    if not old_values:
        return []
    remaining = set(normalize_to_array(new))
    return [value for value in old_values if value not in remaining]


# ─── Reachability ────────────────────────────────────────────────────────────


def _intersects(declared: Any, available: set) -> bool:
    return any(value in available for value in normalize_to_array(declared))


def _is_reachable(option_parent: Any, parents: set) -> bool:
    if option_parent is None:
        return True
    if isinstance(option_parent, Mapping):
        return any(_intersects(declared, parents) for declared in option_parent.values())
    if isinstance(option_parent, _ARRAY_TYPES):
        return not option_parent or _intersects(option_parent, parents)
    return option_parent in parents


def _satisfies_all(option_parent: Mapping[str, Any], remaining: Mapping[str, set]) -> bool:
    """Conjunction: every parent named by the option must still reach it."""
    for parent_name, declared in option_parent.items():
        available = remaining.get(parent_name)
        if not available or not _intersects(declared, available):
            return False
    return True


def _is_reachable_multi(option_parent: Any, remaining: Mapping[str, set], union: set) -> bool:
    if option_parent is None:
        return True
    if isinstance(option_parent, Mapping):
        return _satisfies_all(option_parent, remaining)
    return _is_reachable(option_parent, union)


def _parent_value_key(parent_value: Any) -> tuple:
    if parent_value is None:
        return ("none",)
    if isinstance(parent_value, _ARRAY_TYPES):
        return ("array", frozenset(parent_value))
    if isinstance(parent_value, Mapping):
        return (
            "map",
            tuple(sorted((name, _parent_value_key(v)) for name, v in parent_value.items())),
        )
    return ("scalar", parent_value)


# ─── Filtering ───────────────────────────────────────────────────────────────


def _filter_by_parent(options: OptionSet, parent_value: Any) -> list[Option]:
    if isinstance(parent_value, Mapping):
        remaining = {name: set(normalize_to_array(v)) for name, v in parent_value.items()}
        union = set().union(*remaining.values()) if remaining else set()
        if not union:
            return []
        return [o for o in options if _is_reachable_multi(o.parent_value, remaining, union)]

    parents = set(normalize_to_array(parent_value))
    if not parents:
        return []
    return [o for o in options if _is_reachable(o.parent_value, parents)]


def filter_options_by_parent(options: Sequence[Option], parent_value: Any) -> OptionSet:
    """Options reachable from parent_value, memoized per option set.

    Usage:
        filter_options_by_parent(cities, "HCM")          # cities under HCM
        filter_options_by_parent(cities, ["HCM", "HN"])  # cities under either
        filter_options_by_parent(cities, [])             # nothing
    """
    options = OptionSet.of(options)
    cache = _anchor.filtered_options.setdefault(options._id, {})
    key = _parent_value_key(parent_value)
    cached = cache.get(key)
    if cached is None:
        cached = cache[key] = OptionSet(_filter_by_parent(options, parent_value))
    return cached


def create_options_filter(options: Sequence[Option]) -> Callable[[Any], list[Option]]:
    """Index options by parent value once; the returned filter is a dict lookup.

    Intended for single-parent option lists. Dict parent values are indexed
    under every value they declare.
    """
    options = OptionSet.of(options)
    index: dict[Any, list[int]] = {}
    unconstrained: list[int] = []

    for position, option in enumerate(options):
        declared = option.parent_value
        if isinstance(declared, Mapping):
            declared = [v for values in declared.values() for v in normalize_to_array(values)]
        declared = normalize_to_array(declared)
        if not declared:
            unconstrained.append(position)
        for parent in declared:
            index.setdefault(parent, []).append(position)

    def filter_options(parent_value: Any) -> list[Option]:
        parents = normalize_to_array(parent_value)
        if not parents:
            return []
        positions = set(unconstrained)
        for parent in parents:
            positions.update(index.get(parent, ()))
        return [options[i] for i in sorted(positions)]

    return filter_options


# ─── Cascade delete ──────────────────────────────────────────────────────────


def _drop_invalid(current: Any, is_invalid: Callable[[Any], bool]) -> Any:
    if not isinstance(current, _ARRAY_TYPES):
        return None if is_invalid(current) else current
    kept = [value for value in current if not is_invalid(value)]
    return current if len(kept) == len(current) else kept


def _single_parent_checker(lookup: Mapping[Any, Option], remaining: set) -> Callable[[Any], bool]:
    def is_invalid(value: Any) -> bool:
        option = lookup.get(value)
        if option is None:
            return False
        return not _is_reachable(option.parent_value, remaining)

    return is_invalid


def cascade_delete(
    current: Any,
    remaining_parent_values: Sequence[Any],
    options: Sequence[Option],
) -> Any:
    """Drop selections whose option is no longer reachable from the parents.

    Usage:
        # D1, D7 belong to HCM; HK belongs to HN
        cascade_delete(["D1", "D7", "HK"], ["HN"], city_options)  # ["HK"]
        cascade_delete("D1", ["HN"], city_options)                # None
    """
    if is_empty(current):
        return current
    checker = _single_parent_checker(option_lookup(options), set(remaining_parent_values))
    return _drop_invalid(current, checker)


def cascade_delete_multi_parent(
    current: Any,
    remaining_parent_values: Mapping[str, Sequence[Any]],
    options: Sequence[Option],
) -> Any:
    """Cascade delete for options whose parent_value is a dict per parent field.

    An option survives only if every parent it names still holds one of
    its declared values:

        # comment 1: {"user_ids": [1], "task_ids": [5]}
        cascade_delete_multi_parent([1], {"user_ids": [1, 2], "task_ids": [5]}, comments)  # [1]
        cascade_delete_multi_parent([1], {"user_ids": [2], "task_ids": [5]}, comments)     # []
    """
    if is_empty(current):
        return current
    lookup = option_lookup(options)
    remaining = {name: set(values) for name, values in remaining_parent_values.items()}

    def is_invalid(value: Any) -> bool:
        option = lookup.get(value)
        if option is None or not isinstance(option.parent_value, Mapping):
            return False
        return not _satisfies_all(option.parent_value, remaining)

    return _drop_invalid(current, is_invalid)


def create_cascade_delete(options: Sequence[Option]) -> Callable[[Any, Sequence[Any]], Any]:
    """Bind cascade_delete to one option list."""
    lookup = option_lookup(options)

    def delete(current: Any, remaining_parent_values: Sequence[Any]) -> Any:
        if is_empty(current):
            return current
        return _drop_invalid(current, _single_parent_checker(lookup, set(remaining_parent_values)))

    return delete


# ─── Formatting ──────────────────────────────────────────────────────────────


@memoize_by_identity(_anchor.formatted_options)
def format_options(options: OptionSet) -> list[FormattedOption]:
    """Strip parent_value and extras for a rendering layer."""
    return [FormattedOption(o.label, o.value, o.disabled) for o in options]
