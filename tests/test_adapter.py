"""Tests for form adapters."""

from depselect import CallbackAdapter, FieldChange, FormAdapter, MappingAdapter, sync_to_adapter
from depselect.adapter import value_copy


class _SingleOnly:
    def __init__(self):
        self.calls = []

    def on_field_change(self, name, value):
        self.calls.append((name, value))


class TestSyncToAdapter:
    def test_none_adapter(self):
        sync_to_adapter(None, [FieldChange("a", 1)])  # no error

    def test_per_field_without_batch_method(self):
        adapter = _SingleOnly()
        sync_to_adapter(adapter, [FieldChange("a", 1), FieldChange("b", 2)])
        assert adapter.calls == [("a", 1), ("b", 2)]

    def test_batch_method_for_several_changes(self):
        single, batches = [], []
        adapter = CallbackAdapter(lambda n, v: single.append(n), batches.append)
        sync_to_adapter(adapter, [FieldChange("a", 1), FieldChange("b", 2)])
        assert single == []
        assert batches == [[FieldChange("a", 1), FieldChange("b", 2)]]

    def test_single_change_uses_field_method(self):
        single, batches = [], []
        adapter = CallbackAdapter(lambda n, v: single.append(n), batches.append)
        sync_to_adapter(adapter, [FieldChange("a", 1)])
        assert single == ["a"]
        assert batches == []

    def test_protocol(self):
        assert isinstance(_SingleOnly(), FormAdapter)
        assert isinstance(MappingAdapter({}), FormAdapter)
        assert not isinstance(object(), FormAdapter)


class TestMappingAdapter:
    def test_flat(self):
        form = {"other": 1}
        MappingAdapter(form).on_field_change("country", "VN")
        assert form == {"other": 1, "country": "VN"}

    def test_base_path(self):
        form = {"user": {"name": "Lan"}}
        adapter = MappingAdapter(form, base_path="user.address")
        adapter.on_fields_change([FieldChange("province", "HN"), FieldChange("city", ["HK"])])
        assert form == {"user": {"name": "Lan", "address": {"province": "HN", "city": ["HK"]}}}
        assert adapter.values() == {"province": "HN", "city": ["HK"]}

    def test_arrays_copied(self):
        form = {}
        cities = ["D1"]
        MappingAdapter(form).on_field_change("city", cities)
        cities.append("D7")
        assert form["city"] == ["D1"]

    def test_value_copy(self):
        assert value_copy(("a",)) == ["a"]
        assert value_copy("a") == "a"
