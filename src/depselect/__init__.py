"""depselect: cascading dependent-select state for Python.

Fields declare which other fields they depend on; the store keeps their
values consistent (cascade delete), loads and caches async options keyed by
parent value, and notifies per-field subscribers in batches.
"""

from importlib.metadata import version as _version

__version__ = _version("depselect")

from depselect._batching import set_scheduler
from depselect.adapter import CallbackAdapter, FormAdapter, MappingAdapter, sync_to_adapter
from depselect.async_state import AsyncState, Error, Idle, Loading, Success
from depselect.errors import ConfigError, CyclicDependencyError, DuplicateFieldError
from depselect.events import EventStream, EventType, StoreEvent
from depselect.field import FieldBinding, FieldReaction, reaction, subscribe_parent_value
from depselect.infinite import FetchRequest, FetchResponse, PagedOptions
from depselect.options import (
    are_arrays_equal_unordered,
    are_parent_values_equal,
    are_values_equal,
    cascade_delete,
    cascade_delete_multi_parent,
    create_cascade_delete,
    create_options_filter,
    filter_options_by_parent,
    format_options,
    get_removed_values,
    is_empty,
    normalize_depends_on,
    normalize_to_array,
)
from depselect.relationships import (
    build_relationship_map,
    create_descendants_getter,
    get_descendants,
)
from depselect.store import Store
from depselect.types import (
    Dependency,
    FieldChange,
    FieldConfig,
    FieldRelationship,
    FieldSchema,
    FieldSnapshot,
    FormattedOption,
    MultiParent,
    NoParent,
    Option,
    OptionSet,
    SingleParent,
)
# textual is opt-in: import depselect.textual explicitly

__all__ = [
    "Store",
    "FieldConfig",
    "FieldSchema",
    "Option",
    "OptionSet",
    "FormattedOption",
    "FieldSnapshot",
    "FieldChange",
    "FieldRelationship",
    "Dependency",
    "NoParent",
    "SingleParent",
    "MultiParent",
    "ConfigError",
    "DuplicateFieldError",
    "CyclicDependencyError",
    "FormAdapter",
    "CallbackAdapter",
    "MappingAdapter",
    "sync_to_adapter",
    "EventStream",
    "EventType",
    "StoreEvent",
    "FieldBinding",
    "FieldReaction",
    "reaction",
    "subscribe_parent_value",
    "set_scheduler",
    "PagedOptions",
    "FetchRequest",
    "FetchResponse",
    "AsyncState",
    "Idle",
    "Loading",
    "Success",
    "Error",
    "build_relationship_map",
    "get_descendants",
    "create_descendants_getter",
    "filter_options_by_parent",
    "create_options_filter",
    "cascade_delete",
    "cascade_delete_multi_parent",
    "create_cascade_delete",
    "format_options",
    "normalize_depends_on",
    "normalize_to_array",
    "is_empty",
    "are_values_equal",
    "are_arrays_equal_unordered",
    "are_parent_values_equal",
    "get_removed_values",
]
