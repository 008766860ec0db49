"""Tests for EventStream and store events."""

from depselect import EventStream, EventType, FieldConfig, Option, Store, StoreEvent


def _change(field, new_value):
    return StoreEvent(EventType.VALUE_CHANGE, field, {"new_value": new_value})


class TestEmitSubscribe:
    def test_delivers_in_order(self):
        stream = EventStream()
        received = []
        stream.subscribe(received.append)
        stream.emit("country")
        stream.emit("province")
        assert received == ["country", "province"]

    def test_unsubscribe_is_idempotent(self):
        stream = EventStream()
        received = []
        unsubscribe = stream.subscribe(received.append)
        unsubscribe()
        unsubscribe()
        stream.emit(1)
        assert received == []

    def test_subscriber_added_during_emit_waits_for_next(self):
        stream = EventStream()
        late = []

        def _first(value):
            stream.subscribe(late.append)

        stream.subscribe(_first)
        stream.emit(1)
        assert late == []


class TestOperators:
    def test_chained_filters(self):
        stream = EventStream()
        cities = stream.filter(lambda e: e.field != "country").filter(lambda e: e.field == "city")
        received = []
        cities.subscribe(lambda e: received.append(e.field))
        stream.emit(_change("country", "VN"))
        stream.emit(_change("province", "HN"))
        stream.emit(_change("city", ["D1"]))
        assert received == ["city"]

    def test_for_field(self):
        stream = EventStream()
        city = stream.for_field("city")
        received = []
        city.subscribe(lambda e: received.append(e.type))
        stream.emit(_change("country", None))
        stream.emit(StoreEvent(EventType.LOADING_START, "city", {"key": "k"}))
        stream.emit(
            StoreEvent(
                EventType.CASCADE_DELETE,
                None,
                {"affected_fields": ["province", "city"], "deleted_values": {}},
            )
        )
        stream.emit(StoreEvent(EventType.SYNC_CONTROLLED, None, {"values": {"country": "VN"}}))
        assert received == [EventType.LOADING_START, EventType.CASCADE_DELETE]

    def test_event_fields(self):
        assert _change("city", None).fields == ("city",)
        sync = StoreEvent(EventType.SYNC_CONTROLLED, None, {"values": {"a": 1, "b": 2}})
        assert sync.fields == ("a", "b")
        assert StoreEvent(EventType.OPTIONS_CHANGE).fields == ()

    def test_of_type(self):
        stream = EventStream()
        loading = stream.of_type(EventType.LOADING_START, EventType.LOADING_END)
        received = []
        loading.subscribe(lambda e: received.append(e.type))
        stream.emit(_change("city", None))
        stream.emit(StoreEvent(EventType.LOADING_START, "city", {"key": "k"}))
        stream.emit(StoreEvent(EventType.LOADING_END, "city", {"key": "k", "success": True}))
        assert received == [EventType.LOADING_START, EventType.LOADING_END]

    def test_event_type_values(self):
        assert EventType.CASCADE_DELETE.value == "cascade:delete"
        assert EventType("sync:controlled") is EventType.SYNC_CONTROLLED


class TestDispose:
    def test_emit_after_dispose(self):
        stream = EventStream()
        received = []
        stream.subscribe(received.append)
        stream.dispose()
        stream.emit(1)
        assert received == []
        assert stream.disposed

    def test_propagates_to_derived(self):
        stream = EventStream()
        derived = stream.of_type(EventType.VALUE_CHANGE).for_field("city")
        stream.dispose()
        assert derived.disposed

    def test_derived_dispose_leaves_source(self):
        stream = EventStream()
        derived = stream.filter(lambda e: True)
        received = []
        stream.subscribe(received.append)
        derived.dispose()
        stream.emit(1)
        assert received == [1]
        assert not stream.disposed
        assert len(stream._subscribers) == 1  # derived filter detached


class TestStoreEvents:
    def _store(self):
        return Store(
            [
                FieldConfig("country", options=[Option("Vietnam", "VN")]),
                FieldConfig("province", depends_on="country", options=[Option("Ha Noi", "HN", "VN")]),
            ],
            {"country": "VN", "province": "HN"},
        )

    def test_value_change_payload(self):
        store = self._store()
        events = []
        store.events.of_type(EventType.VALUE_CHANGE).subscribe(events.append)
        store.set_value("country", None)
        assert [(e.field, e.payload) for e in events] == [
            ("country", {"previous_value": "VN", "new_value": None}),
            ("province", {"previous_value": "HN", "new_value": None}),
        ]

    def test_sync_controlled_payload(self):
        store = self._store()
        events = []
        store.events.subscribe(events.append)
        store.sync_controlled_value({"country": "VN", "province": None})
        assert len(events) == 1
        assert events[0].type is EventType.SYNC_CONTROLLED
        assert events[0].payload == {"values": {"province": None}}

    def test_options_change_payload(self):
        store = self._store()
        events = []
        store.events.of_type(EventType.OPTIONS_CHANGE).subscribe(events.append)
        store.set_external_options("province", [Option("Hue", "HUE", "VN")])
        assert events[0].field == "province"
        assert [o.value for o in events[0].payload["options"]] == ["HUE"]

    def test_field_scoped_events(self):
        store = self._store()
        events = []
        store.events.for_field("province").subscribe(lambda e: events.append(e.type))
        store.set_value("country", None)
        assert events == [EventType.VALUE_CHANGE, EventType.CASCADE_DELETE]

    def test_failing_event_subscriber_does_not_block_listeners(self, caplog):
        store = self._store()
        log = []

        def _boom(event):
            raise RuntimeError("devtools crashed")

        store.events.subscribe(_boom)
        store.subscribe("country", lambda: log.append(1))
        store.set_value("country", None)
        assert log == [1]
        assert "devtools crashed" in caplog.text
