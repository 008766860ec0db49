"""Tests for value helpers, option filtering and cascade delete."""

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
    option_lookup,
)
from depselect.types import FormattedOption, Option, OptionSet

CITIES = OptionSet([
    Option("District 1", "D1", "HCM"),
    Option("District 7", "D7", "HCM"),
    Option("Hoan Kiem", "HK", "HN"),
    Option("Anywhere", "ANY"),
])

COMMENTS = OptionSet([
    Option("c1", 1, {"user_ids": [1], "task_ids": [5]}),
    Option("c2", 2, {"user_ids": [2], "task_ids": [5, 6]}),
    Option("c3", 3, {"user_ids": [1, 2], "task_ids": [7]}),
])


def _values(options):
    return [o.value for o in options]


class TestValueHelpers:
    def test_normalize_depends_on(self):
        assert normalize_depends_on(None) == []
        assert normalize_depends_on("a") == ["a"]
        assert normalize_depends_on(("a", "b")) == ["a", "b"]

    def test_normalize_to_array(self):
        assert normalize_to_array(None) == []
        assert normalize_to_array(0) == [0]
        assert normalize_to_array((1, 2)) == [1, 2]

    def test_is_empty(self):
        assert is_empty(None)
        assert is_empty([])
        assert not is_empty(0)
        assert not is_empty("")
        assert not is_empty([None])

    def test_are_values_equal(self):
        assert are_values_equal([1, 2], [1, 2])
        assert not are_values_equal([1, 2], [2, 1])
        assert not are_values_equal([1], 1)
        assert are_values_equal(None, None)
        assert not are_values_equal(None, [])

    def test_are_arrays_equal_unordered(self):
        assert are_arrays_equal_unordered([1, 2], [2, 1])
        assert not are_arrays_equal_unordered([1, 2], [1, 3])

    def test_are_parent_values_equal(self):
        assert are_parent_values_equal({"a": [1], "b": 2}, {"a": [1], "b": 2})
        assert not are_parent_values_equal({"a": [1]}, {"a": [2]})
        assert not are_parent_values_equal({"a": 1}, {"a": 1, "b": None})
        assert are_parent_values_equal("HCM", "HCM")

    def test_get_removed_values(self):
        assert get_removed_values(["D1", "D7"], ["D7"]) == ["D1"]
        assert get_removed_values("D1", None) == ["D1"]
        assert get_removed_values(None, "D1") == []


class TestFilterOptionsByParent:
    def test_single_parent(self):
        assert _values(filter_options_by_parent(CITIES, "HCM")) == ["D1", "D7", "ANY"]

    def test_multiple_parent_values(self):
        assert _values(filter_options_by_parent(CITIES, ["HCM", "HN"])) == ["D1", "D7", "HK", "ANY"]

    def test_empty_parent_gives_nothing(self):
        assert filter_options_by_parent(CITIES, None) == []
        assert filter_options_by_parent(CITIES, []) == []

    def test_memoized(self):
        first = filter_options_by_parent(CITIES, ["HN", "HCM"])
        assert filter_options_by_parent(CITIES, ["HCM", "HN"]) is first
        assert filter_options_by_parent(CITIES, "HN") is not first

    def test_list_parent_value_on_option(self):
        options = [Option("Shared", "S", ["HCM", "HN"]), Option("Open", "O", [])]
        assert _values(filter_options_by_parent(options, "HN")) == ["S", "O"]

    def test_multi_parent_requires_every_parent(self):
        visible = filter_options_by_parent(COMMENTS, {"user_ids": [1], "task_ids": [5]})
        assert _values(visible) == [1]
        visible = filter_options_by_parent(COMMENTS, {"user_ids": [1, 2], "task_ids": [5, 7]})
        assert _values(visible) == [1, 2, 3]

    def test_multi_parent_all_empty(self):
        assert filter_options_by_parent(COMMENTS, {"user_ids": [], "task_ids": None}) == []


class TestCreateOptionsFilter:
    def test_matches_filter_options_by_parent(self):
        f = create_options_filter(CITIES)
        assert _values(f("HCM")) == ["D1", "D7", "ANY"]
        assert _values(f(["HN"])) == ["HK", "ANY"]
        assert f(None) == []

    def test_keeps_declaration_order(self):
        f = create_options_filter(CITIES)
        assert _values(f(["HN", "HCM"])) == ["D1", "D7", "HK", "ANY"]


class TestCascadeDelete:
    def test_array_value(self):
        assert cascade_delete(["D1", "D7", "HK"], ["HN"], CITIES) == ["HK"]

    def test_scalar_value(self):
        assert cascade_delete("D1", ["HN"], CITIES) is None
        assert cascade_delete("HK", ["HN"], CITIES) == "HK"

    def test_unchanged_returns_same_object(self):
        current = ["D1", "D7"]
        assert cascade_delete(current, ["HCM"], CITIES) is current

    def test_unknown_values_kept(self):
        assert cascade_delete(["??"], ["HN"], CITIES) == ["??"]

    def test_unconstrained_options_survive(self):
        assert cascade_delete(["ANY", "D1"], ["HN"], CITIES) == ["ANY"]

    def test_empty_current(self):
        assert cascade_delete([], ["HN"], CITIES) == []
        assert cascade_delete(None, ["HN"], CITIES) is None

    def test_bound_variant(self):
        delete = create_cascade_delete(CITIES)
        assert delete(["D1", "HK"], ["HCM"]) == ["D1"]

    def test_multi_parent_conjunction(self):
        assert cascade_delete_multi_parent([1], {"user_ids": [1, 2], "task_ids": [5]}, COMMENTS) == [1]
        assert cascade_delete_multi_parent([1], {"user_ids": [2], "task_ids": [5]}, COMMENTS) == []
        assert cascade_delete_multi_parent(
            [1, 2, 3], {"user_ids": [2], "task_ids": [5, 7]}, COMMENTS
        ) == [2, 3]


class TestLookupsAndFormatting:
    def test_option_lookup(self):
        lookup = option_lookup(CITIES)
        assert lookup["HK"].parent_value == "HN"
        assert option_lookup(CITIES) is lookup

    def test_format_options(self):
        formatted = format_options(CITIES)
        assert formatted[0] == FormattedOption("District 1", "D1", False)
        assert format_options(CITIES) is formatted
