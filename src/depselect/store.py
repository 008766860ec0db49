"""Store — field values, cascade delete, async options, batched notifications.

One Store is built per form session from an immutable list of FieldConfig
and handed to every consumer by reference. Consumers read through
get_field_snapshot()/get_options() and learn about changes through
subscribe(); all writes go through set_value()/set_values() (or
sync_controlled_value() when an outside form owns the values).

Every committed write swaps in a new value dict, bumps version, pushes the
changes through the form adapter, and queues one notification per affected
field (plus its direct children) for the next flush.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from contextlib import contextmanager
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Sequence

from depselect._batching import NotificationQueue, Scheduler
from depselect.adapter import FormAdapter, sync_to_adapter
from depselect.events import EventStream, EventType, StoreEvent
from depselect.options import (
    are_parent_values_equal,
    are_values_equal,
    cascade_delete,
    cascade_delete_multi_parent,
    filter_options_by_parent,
    get_removed_values,
    is_empty,
    normalize_to_array,
)
from depselect.relationships import (
    DescendantsGetter,
    RelationshipMap,
    build_relationship_map,
    topological_order,
)
from depselect.types import (
    EMPTY_OPTIONS,
    FieldChange,
    FieldConfig,
    FieldSchema,
    FieldSnapshot,
    FieldValues,
    MultiParent,
    Option,
    OptionSet,
    SingleParent,
    StoreListener,
)

logger = logging.getLogger("depselect.store")

EMPTY_SNAPSHOT = FieldSnapshot()

_CURRENT = object()


def request_key(field_name: str, parent_value: Any) -> str:
    """Async cache key: field name plus the serialized parent value."""
    return f"{field_name}:{json.dumps(parent_value, sort_keys=True, default=str)}"


class _SnapshotEntry:
    __slots__ = ("snapshot", "version")

    def __init__(self, snapshot: FieldSnapshot, version: int) -> None:
        self.snapshot = snapshot
        self.version = version


class _OptionsEntry:
    __slots__ = ("options", "raw", "parent_value", "version")

    def __init__(self, options: OptionSet, raw: OptionSet, parent_value: Any, version: int) -> None:
        self.options = options
        self.raw = raw
        self.parent_value = parent_value
        self.version = version


class Store:
    """Reactive container for a set of cascading fields.

    Usage:
        store = Store(
            [
                FieldConfig("country", options=countries),
                FieldConfig("province", depends_on="country", options=provinces),
                FieldConfig("city", depends_on="province", options=load_cities, mode="multiple"),
            ],
            {"country": "VN"},
            adapter=MappingAdapter(form_values),
        )
        unsubscribe = store.subscribe("city", lambda: render(store.get_field_snapshot("city")))
        store.set_value("province", "HCM")  # loads cities, notifies province + city
    """

    def __init__(
        self,
        configs: FieldSchema | Sequence[FieldConfig],
        initial_values: Mapping[str, Any] | None = None,
        adapter: FormAdapter | None = None,
        *,
        scheduler: Scheduler | None = None,
    ) -> None:
        self._schema = FieldSchema.of(configs)
        self._relationships = build_relationship_map(self._schema)
        self._descendants = DescendantsGetter(self._relationships)
        self._values: FieldValues = dict(initial_values or {})
        self._adapter = adapter
        self._version = 0
        self._destroyed = False

        self._subscribers: dict[str, dict[StoreListener, None]] = {}
        self._snapshot_cache: dict[str, _SnapshotEntry] = {}
        self._filtered_cache: dict[str, _OptionsEntry] = {}
        self._external_options: dict[str, OptionSet] = {}

        # Async options: request key -> options, field -> most recent result
        self._async_options: dict[str, OptionSet] = {}
        self._latest_async: dict[str, OptionSet] = {}
        self._in_flight: dict[str, asyncio.Task] = {}
        self._loading: dict[str, set[str]] = {}
        self._deferred: set[str] = set()

        self._warned: set[str] = set()
        self.events: EventStream[StoreEvent] = EventStream()
        self._notifications = NotificationQueue(self._deliver, scheduler)

        self._enforce_parent_invariant()
        for config in self._schema:
            if config.is_async:
                self._maybe_load(config.name)

    # ─── Introspection ───────────────────────────────────────────────────

    @property
    def version(self) -> int:
        return self._version

    @property
    def is_destroyed(self) -> bool:
        return self._destroyed

    @property
    def schema(self) -> FieldSchema:
        return self._schema

    @property
    def relationships(self) -> RelationshipMap:
        return self._relationships

    def get_config(self, name: str) -> FieldConfig | None:
        return self._schema.get(name)

    def get_configs(self) -> FieldSchema:
        return self._schema

    def has_field(self, name: str) -> bool:
        return self._schema.has(name)

    def get_descendants(self, name: str) -> list[str]:
        return list(self._descendants(name))

    def get_values(self) -> Mapping[str, Any]:
        """Read-only view of the committed values (stays valid after later writes)."""
        return MappingProxyType(self._values)

    def get_value(self, name: str) -> Any:
        return self._values.get(name)

    # ─── Reads ───────────────────────────────────────────────────────────

    def get_field_snapshot(self, name: str) -> FieldSnapshot:
        """Memoized snapshot; the same object is returned until its slice changes."""
        config = self._schema.get(name)
        if config is None:
            self._warn_unknown(name)
            return EMPTY_SNAPSHOT

        cached = self._snapshot_cache.get(name)
        if cached is not None and cached.version == self._version:
            return cached.snapshot

        value = self._values.get(name)
        parent_value, parent_values = self._parent_value_of(config, self._values)
        is_loading = bool(self._loading.get(name))

        if cached is not None:
            previous = cached.snapshot
            if (
                previous.value is value
                and previous.is_loading == is_loading
                and are_parent_values_equal(previous.parent_value, parent_value)
            ):
                cached.version = self._version
                return previous

        snapshot = FieldSnapshot(value, parent_value, parent_values, is_loading)
        self._snapshot_cache[name] = _SnapshotEntry(snapshot, self._version)
        return snapshot

    def get_options(
        self, name: str, external_options: Sequence[Option] | None = None
    ) -> OptionSet:
        """Options reachable from the field's current parent value.

        Source precedence: external_options argument, options injected with
        set_external_options(), static config options, async cache.
        """
        config = self._schema.get(name)
        if config is None:
            self._warn_unknown(name)
            return EMPTY_OPTIONS

        raw = self._resolve_options(config, self._values, external_options)
        if not raw:
            return EMPTY_OPTIONS
        if config.is_root:
            return raw

        parent_value, _ = self._parent_value_of(config, self._values)
        cached = self._filtered_cache.get(name)
        if (
            cached is not None
            and cached.version == self._version
            and cached.raw is raw
            and are_parent_values_equal(cached.parent_value, parent_value)
        ):
            return cached.options

        if config.filter_options is not None:
            filtered = OptionSet.of(config.filter_options(raw, parent_value))
        else:
            filtered = filter_options_by_parent(raw, parent_value)
        self._filtered_cache[name] = _OptionsEntry(filtered, raw, parent_value, self._version)
        return filtered

    def is_loading(self, name: str) -> bool:
        return bool(self._loading.get(name))

    # ─── Writes ──────────────────────────────────────────────────────────

    def set_value(self, name: str, value: Any) -> None:
        """Set one field, cascade-deleting now-unreachable descendant values."""
        if self._destroyed:
            return
        if not self._schema.has(name):
            self._warn_unknown(name)
            return
        if are_values_equal(self._values.get(name), value):
            return

        self._version += 1
        new_values = dict(self._values)
        new_values[name] = value
        changes = {name: value}
        deleted: dict[str, list] = {}
        self._cascade_delete_descendants(name, new_values, changes, deleted)
        self._commit(new_values, changes, deleted)

    def set_values(self, values: Mapping[str, Any]) -> None:
        """Set several fields with one version bump, one flush and one adapter call."""
        if self._destroyed:
            return

        new_values = dict(self._values)
        changes: dict[str, Any] = {}
        for name, value in values.items():
            if not self._schema.has(name):
                self._warn_unknown(name)
                continue
            if not are_values_equal(self._values.get(name), value):
                new_values[name] = value
                changes[name] = value

        if not changes:
            return

        self._version += 1
        deleted: dict[str, list] = {}
        explicit = frozenset(changes)
        for name in list(changes):
            self._cascade_delete_descendants(name, new_values, changes, deleted, explicit)
        self._commit(new_values, changes, deleted)

    def sync_controlled_value(self, values: Mapping[str, Any]) -> None:
        """Adopt values from an outside form that owns them.

        Changed fields are republished to subscribers. Cascade delete is not
        re-run and nothing is pushed back through the adapter.
        """
        if self._destroyed:
            return

        changed = [
            name
            for name in self._schema.names
            if not are_values_equal(self._values.get(name), values.get(name))
        ]
        if not changed:
            return

        self._version += 1
        self._values = dict(values)
        event = StoreEvent(
            EventType.SYNC_CONTROLLED,
            None,
            {"values": {name: self._values.get(name) for name in changed}},
        )
        self._notify(changed, [event])
        self._load_for_changes(changed)

    def set_external_options(self, name: str, options: Sequence[Option]) -> None:
        """Inject options fetched elsewhere (e.g. a paged remote list)."""
        if self._destroyed:
            return
        options = OptionSet.of(options)
        current = self._external_options.get(name)
        if current is options or (current is not None and _same_options(current, options)):
            return

        self._external_options[name] = options
        self._version += 1
        self._filtered_cache.pop(name, None)
        event = StoreEvent(EventType.OPTIONS_CHANGE, name, {"options": options})
        self._notifications.add([name], [event])

    def set_adapter(self, adapter: FormAdapter | None) -> None:
        self._adapter = adapter

    @contextmanager
    def batch(self):
        """Hold notifications until the block exits.

        Usage:
            with store.batch():
                store.set_value("country", "VN")
                store.set_value("currency", "VND")
            # one flush for both
        """
        self._notifications.begin_batch()
        try:
            yield self
        finally:
            self._notifications.end_batch()

    # ─── Subscriptions ───────────────────────────────────────────────────

    def subscribe(self, name: str, listener: StoreListener):
        """Call listener after every flush that touches name. Returns an unsubscribe function."""
        self._subscribers.setdefault(name, {})[listener] = None

        def _unsubscribe() -> None:
            listeners = self._subscribers.get(name)
            if listeners is not None:
                listeners.pop(listener, None)
                if not listeners:
                    del self._subscribers[name]

        return _unsubscribe

    def subscriber_count(self, name: str) -> int:
        return len(self._subscribers.get(name, ()))

    # ─── Async options ───────────────────────────────────────────────────

    async def load_options(self, name: str, parent_value: Any = _CURRENT) -> OptionSet:
        """Load (or join the in-flight load of) a field's async options.

        parent_value defaults to the field's current parent value. Concurrent
        calls for the same key share one loader invocation.
        """
        config = self._schema.get(name)
        if config is None or not config.is_async or self._destroyed:
            if config is None:
                self._warn_unknown(name)
            return EMPTY_OPTIONS

        if parent_value is _CURRENT:
            parent_value, _ = self._parent_value_of(config, self._values)
        key = request_key(name, parent_value)
        cached = self._async_options.get(key)
        if cached is not None:
            return cached

        task = self._in_flight.get(key)
        if task is None:
            task = self._start_load(config, parent_value, key)
        return await asyncio.shield(task)

    async def settle(self) -> None:
        """Start deferred loads, wait for all loads, then let the flush run."""
        self._start_deferred()
        while self._in_flight and not self._destroyed:
            await asyncio.gather(
                *(asyncio.shield(t) for t in list(self._in_flight.values())),
                return_exceptions=True,
            )
        await asyncio.sleep(0)

    # ─── Lifecycle ───────────────────────────────────────────────────────

    def destroy(self) -> None:
        """Tear down. In-flight loads may finish but their results are dropped."""
        self._destroyed = True
        self._notifications.close()
        self._subscribers.clear()
        self._snapshot_cache.clear()
        self._filtered_cache.clear()
        self._in_flight.clear()
        self._loading.clear()
        self._deferred.clear()
        self._async_options.clear()
        self._latest_async.clear()
        self._external_options.clear()
        self.events.dispose()
        logger.debug("Store destroyed (%d fields)", len(self._schema))

    def __repr__(self) -> str:
        state = "destroyed" if self._destroyed else f"v{self._version}"
        return f"Store({list(self._schema.names)!r}, {state})"

    # ─── Internals: values ───────────────────────────────────────────────

    def _parent_value_of(self, config: FieldConfig, values: Mapping[str, Any]):
        dependency = config.dependency
        if isinstance(dependency, SingleParent):
            return values.get(dependency.name), None
        if isinstance(dependency, MultiParent):
            parent_values = {name: values.get(name) for name in dependency.parents}
            return parent_values, parent_values
        return None, None

    def _dependency_satisfied(self, config: FieldConfig, values: Mapping[str, Any]) -> bool:
        return all(not is_empty(values.get(name)) for name in config.parent_names)

    @staticmethod
    def _cleared(config: FieldConfig, current: Any) -> Any:
        if isinstance(current, (list, tuple)) or config.is_multiple:
            return []
        return None

    def _enforce_parent_invariant(self) -> None:
        """A child whose parents are all empty holds no value."""
        changes: list[FieldChange] = []
        for name in topological_order(self._relationships):
            config = self._schema.get(name)
            if config.is_root or is_empty(self._values.get(name)):
                continue
            if all(is_empty(self._values.get(parent)) for parent in config.parent_names):
                cleared = self._cleared(config, self._values[name])
                self._values[name] = cleared
                changes.append(FieldChange(name, cleared))
        if changes:
            logger.debug("Cleared orphaned initial values: %s", [c.name for c in changes])
            sync_to_adapter(self._adapter, changes)

    def _cascade_delete_descendants(
        self,
        name: str,
        values: dict[str, Any],
        changes: dict[str, Any],
        deleted: dict[str, list],
        explicit: frozenset[str] = frozenset(),
    ) -> None:
        """Clear or filter every descendant against the working copy `values`.

        Options are resolved against the committed values, i.e. the option
        list the current selection was made from. Fields in `explicit` were
        written by the caller in the same batch and are not blanket-cleared
        when their options carry no parent_value.
        """
        touched = {name}
        for descendant in self._descendants.ordered(name):
            config = self._schema.get(descendant)
            parents = config.parent_names
            if touched.isdisjoint(parents):
                continue  # no parent changed in this pass
            current = values.get(descendant)
            if is_empty(current):
                continue

            if all(is_empty(values.get(parent)) for parent in parents):
                updated = self._cleared(config, current)
            else:
                options = self._resolve_options(config, self._values, fallback_latest=True)
                if any(option.parent_value is not None for option in options):
                    if isinstance(config.dependency, MultiParent):
                        remaining = {p: normalize_to_array(values.get(p)) for p in parents}
                        updated = cascade_delete_multi_parent(current, remaining, options)
                    else:
                        remaining = normalize_to_array(values.get(parents[0]))
                        updated = cascade_delete(current, remaining, options)
                elif descendant in explicit:
                    updated = current
                else:
                    updated = self._cleared(config, current)

            if not are_values_equal(current, updated):
                values[descendant] = updated
                changes[descendant] = updated
                deleted[descendant] = get_removed_values(current, updated)
                touched.add(descendant)

    def _commit(
        self,
        new_values: dict[str, Any],
        changes: dict[str, Any],
        deleted: dict[str, list],
    ) -> None:
        previous = self._values
        self._values = new_values

        events = [
            StoreEvent(
                EventType.VALUE_CHANGE,
                name,
                {"previous_value": previous.get(name), "new_value": value},
            )
            for name, value in changes.items()
        ]
        if deleted:
            events.append(
                StoreEvent(
                    EventType.CASCADE_DELETE,
                    None,
                    {"affected_fields": list(deleted), "deleted_values": deleted},
                )
            )
            logger.debug("Cascade delete: %s", deleted)

        sync_to_adapter(self._adapter, [FieldChange(n, v) for n, v in changes.items()])
        self._notify(changes, events)
        self._load_for_changes(changes)

    # ─── Internals: options ──────────────────────────────────────────────

    def _resolve_options(
        self,
        config: FieldConfig,
        values: Mapping[str, Any],
        external_options: Sequence[Option] | None = None,
        *,
        fallback_latest: bool = False,
    ) -> OptionSet:
        if external_options is not None:
            return OptionSet.of(external_options)
        stored = self._external_options.get(config.name)
        if stored is not None:
            return stored
        if config.is_async:
            parent_value, _ = self._parent_value_of(config, values)
            cached = self._async_options.get(request_key(config.name, parent_value))
            if cached is not None:
                return cached
            if fallback_latest:
                return self._latest_async.get(config.name, EMPTY_OPTIONS)
            return EMPTY_OPTIONS
        if config.options is None:
            return EMPTY_OPTIONS
        return config.options

    # ─── Internals: async loading ────────────────────────────────────────

    def _load_for_changes(self, names: Iterable[str]) -> None:
        self._start_deferred()
        seen: set[str] = set()
        for name in names:
            relationship = self._relationships.get(name)
            if relationship is None:
                continue
            for child in relationship.children:
                if child not in seen and self._schema.get(child).is_async:
                    seen.add(child)
                    self._maybe_load(child)

    def _start_deferred(self) -> None:
        if not self._deferred:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return
        deferred, self._deferred = self._deferred, set()
        for name in deferred:
            self._maybe_load(name)

    def _maybe_load(self, name: str) -> None:
        config = self._schema.get(name)
        if self._destroyed or not self._dependency_satisfied(config, self._values):
            return
        parent_value, _ = self._parent_value_of(config, self._values)
        key = request_key(name, parent_value)
        if key in self._async_options or key in self._in_flight:
            return
        self._start_load(config, parent_value, key)

    def _start_load(self, config: FieldConfig, parent_value: Any, key: str) -> asyncio.Task | None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; deferring option load for %r", config.name)
            self._deferred.add(config.name)
            return None

        self._loading.setdefault(config.name, set()).add(key)
        self._version += 1
        event = StoreEvent(EventType.LOADING_START, config.name, {"key": key})
        self._notifications.add([config.name], [event])

        task = loop.create_task(self._run_loader(config, parent_value, key))
        self._in_flight[key] = task
        return task

    async def _run_loader(self, config: FieldConfig, parent_value: Any, key: str) -> OptionSet:
        success = False
        options = EMPTY_OPTIONS
        try:
            result = config.options(parent_value)
            if inspect.isawaitable(result):
                result = await result
            options = OptionSet.of(result)
            success = True
        except Exception:
            logger.exception("Failed to load options for %r (key %s)", config.name, key)
        finally:
            # Also runs on cancellation, so the key can be requested again.
            if not self._destroyed:
                self._finish_load(config.name, key, options if success else None)
        return options

    def _finish_load(self, name: str, key: str, options: OptionSet | None) -> None:
        self._in_flight.pop(key, None)
        keys = self._loading.get(name)
        if keys is not None:
            keys.discard(key)
            if not keys:
                del self._loading[name]

        events = [
            StoreEvent(EventType.LOADING_END, name, {"key": key, "success": options is not None})
        ]
        if options is not None:
            self._async_options[key] = options
            self._latest_async[name] = options
            events.append(StoreEvent(EventType.OPTIONS_CHANGE, name, {"options": options}))
        self._version += 1
        self._filtered_cache.pop(name, None)
        self._notifications.add([name], events)

    # ─── Internals: notifications ────────────────────────────────────────

    def _notify(self, names: Iterable[str], events: list[StoreEvent]) -> None:
        """Queue names and their direct children (their parent_value changed)."""
        dirty: list[str] = []
        for name in names:
            dirty.append(name)
            relationship = self._relationships.get(name)
            if relationship is not None:
                dirty.extend(relationship.children)
        self._notifications.add(dirty, events)

    def _deliver(self, names: list[str], events: list[StoreEvent]) -> None:
        if self._destroyed:
            return
        for event in events:
            try:
                self.events.emit(event)
            except Exception:
                logger.exception("Store event subscriber failed on %s", event.type.value)
        for name in names:
            listeners = self._subscribers.get(name)
            if not listeners:
                continue
            for listener in list(listeners):
                try:
                    listener()
                except Exception:
                    logger.exception("Listener for field %r failed", name)

    def _warn_unknown(self, name: str) -> None:
        if name not in self._warned:
            self._warned.add(name)
            logger.warning(
                "Unknown field %r (declared: %s)", name, ", ".join(self._schema.names)
            )


def _same_options(a: OptionSet, b: OptionSet) -> bool:
    """Equal by value and parent_value, not by instance."""
    if len(a) != len(b):
        return False
    return all(
        x.value == y.value and are_parent_values_equal(x.parent_value, y.parent_value)
        for x, y in zip(a, b)
    )
