"""Identity anchor — integer ids and the memo tables keyed by them.

Field schemas and option sets are immutable once built, so everything
derived from them (relationship maps, value lookups, filtered and formatted
option lists) is computed once and stored here under the owner's id.
Entries are dropped when the owner is garbage collected.
"""

import itertools

# FieldSchema id -> relationship map
relationship_maps: dict[int, dict] = {}

# OptionSet id -> {value: Option}
option_lookups: dict[int, dict] = {}

# OptionSet id -> {parent value key: filtered OptionSet}
filtered_options: dict[int, dict] = {}

# OptionSet id -> list[FormattedOption]
formatted_options: dict[int, list] = {}

_tables = (relationship_maps, option_lookups, filtered_options, formatted_options)

# itertools.count is thread-safe under the GIL
_id_counter = itertools.count(1)


def new_id() -> int:
    return next(_id_counter)


def release(owner_id: int) -> None:
    """Forget everything memoized for owner_id. Registered via weakref.finalize."""
    for table in _tables:
        table.pop(owner_id, None)
