"""Tests for the value serializer."""

import datetime
import enum
import json
from collections.abc import Mapping

from console_relay.config import CaptureOptions
from console_relay.serializer import (
    CIRCULAR,
    ValueKind,
    classify,
    format_preview,
    serialize,
    serialize_values,
)

OPTIONS = CaptureOptions()


def _nesting(value) -> int:
    """How many list/dict levels deep value goes."""
    if isinstance(value, list):
        return 1 + max((_nesting(v) for v in value), default=0)
    if isinstance(value, dict):
        return 1 + max((_nesting(v) for v in value.values()), default=0)
    return 0


class Color(enum.Enum):
    RED = 1


class Element:
    def __init__(self, tag_name, id=None):
        self.tag_name = tag_name
        self.id = id


class Cart:
    def __init__(self):
        self.items = [{"sku": "A-100", "qty": 2}]
        self.owner = self


class Point:
    __slots__ = ("x", "y")

    def __init__(self, x, y):
        self.x = x
        self.y = y


class TestPrimitives:
    def test_pass_through(self):
        assert serialize(None, OPTIONS) is None
        assert serialize(True, OPTIONS) is True
        assert serialize(42, OPTIONS) == 42
        assert serialize(2.5, OPTIONS) == 2.5

    def test_large_int_becomes_string(self):
        assert serialize(2**60, OPTIONS) == str(2**60)
        assert serialize(-(2**60), OPTIONS) == str(-(2**60))

    def test_symbol_like_values_become_strings(self):
        assert serialize(Color.RED, OPTIONS) == "Color.RED"
        assert serialize(float("nan"), OPTIONS) == "nan"
        assert serialize(float("inf"), OPTIONS) == "inf"


class TestStrings:
    def test_short_string_unchanged(self):
        assert serialize("hello", OPTIONS) == "hello"

    def test_long_string_truncated(self):
        opts = CaptureOptions(max_string_length=5)
        result = serialize("abcdefghij", opts)
        assert result == "abcde..."
        assert len(result) == 5 + len("...")

    def test_exact_length_not_truncated(self):
        opts = CaptureOptions(max_string_length=5)
        assert serialize("abcde", opts) == "abcde"

    def test_bytes_decoded(self):
        assert serialize(b"hi", OPTIONS) == "hi"


class TestSpecialValues:
    def test_named_function(self):
        def checkout():
            pass

        assert serialize(checkout, OPTIONS) == "[Function checkout]"

    def test_lambda_is_anonymous(self):
        assert serialize(lambda: None, OPTIONS) == "[Function anonymous]"

    def test_raised_error(self):
        try:
            raise ValueError("boom")
        except ValueError as e:
            result = serialize(e, OPTIONS)
        assert result["name"] == "ValueError"
        assert result["message"] == "boom"
        assert "ValueError: boom" in result["stack"]

    def test_unraised_error_has_no_stack(self):
        assert serialize(KeyError("k"), OPTIONS) == {
            "name": "KeyError",
            "message": "'k'",
            "stack": None,
        }

    def test_dates(self):
        dt = datetime.datetime(2024, 1, 15, 10, 30, tzinfo=datetime.timezone.utc)
        assert serialize(dt, OPTIONS) == "2024-01-15T10:30:00+00:00"
        assert serialize(datetime.date(2024, 1, 15), OPTIONS) == "2024-01-15"

    def test_handles(self):
        assert serialize(Element("DIV", "main"), OPTIONS) == "<div#main>"
        assert serialize(Element("span"), OPTIONS) == "<span>"


class TestCycles:
    def test_direct_self_reference(self):
        obj = {"a": 1}
        obj["self"] = obj
        assert serialize(obj, CaptureOptions(max_depth=4)) == {"a": 1, "self": CIRCULAR}

    def test_list_self_reference(self):
        items = [1]
        items.append(items)
        assert serialize(items, OPTIONS) == [1, CIRCULAR]

    def test_indirect_cycle(self):
        a = {"name": "a"}
        b = {"a": a}
        a["b"] = b
        assert serialize(a, OPTIONS) == {"name": "a", "b": {"a": CIRCULAR}}

    def test_object_cycle(self):
        result = serialize(Cart(), OPTIONS)
        assert result == {"items": [{"sku": "A-100", "qty": 2}], "owner": CIRCULAR}

    def test_shared_sibling_is_not_a_cycle(self):
        shared = {"x": 1}
        assert serialize({"left": shared, "right": shared}, OPTIONS) == {
            "left": {"x": 1},
            "right": {"x": 1},
        }

    def test_dense_cyclic_graph_terminates(self):
        nodes = [{"id": i} for i in range(20)]
        for node in nodes:
            node["links"] = nodes
        result = serialize(nodes, CaptureOptions(max_depth=3, max_array=5, max_props=5))
        json.dumps(result)
        assert result[0]["links"] == CIRCULAR


class TestLimits:
    def test_depth_marker_for_mapping(self):
        nested = {"l1": {"l2": {"l3": {}}}}
        assert serialize(nested, CaptureOptions(max_depth=2)) == {"l1": {"l2": "[Object]"}}

    def test_depth_marker_for_array(self):
        assert serialize([[1, 2, 3]], CaptureOptions(max_depth=1)) == ["[Array(3)]"]

    def test_depth_bound_holds_for_any_depth(self):
        chain = []
        for _ in range(50):
            chain = [chain]
        for depth in range(1, 6):
            result = serialize(chain, CaptureOptions(max_depth=depth))
            assert _nesting(result) <= depth

    def test_array_truncation(self):
        result = serialize(list(range(10)), CaptureOptions(max_array=3))
        assert result == [0, 1, 2, "... (7 more)"]
        assert len(result) == 3 + 1

    def test_mapping_truncation(self):
        value = {f"k{i}": i for i in range(5)}
        result = serialize(value, CaptureOptions(max_props=2))
        assert result == {"k0": 0, "k1": 1, "__truncated__": "3 more keys"}

    def test_enumeration_order_preserved(self):
        value = {"z": 1, "a": 2, "m": 3}
        assert list(serialize(value, OPTIONS)) == ["z", "a", "m"]


class TestContainers:
    def test_tuple_and_set_are_arrays(self):
        assert serialize((1, 2), OPTIONS) == [1, 2]
        assert serialize({7}, OPTIONS) == [7]

    def test_non_string_keys(self):
        assert serialize({1: "a", None: "b"}, OPTIONS) == {"1": "a", "None": "b"}

    def test_slotted_object(self):
        assert serialize(Point(1, 2), OPTIONS) == {"x": 1, "y": 2}

    def test_result_is_json_safe(self):
        weird = {
            "when": datetime.datetime(2024, 1, 1),
            "tags": {"a"},
            "obj": object(),
            "big": 10**30,
            "fn": print,
        }
        json.dumps(serialize(weird, OPTIONS), allow_nan=False)

    def test_serialize_values_independent(self):
        shared = {"x": 1}
        assert serialize_values([shared, shared], OPTIONS) == [{"x": 1}, {"x": 1}]


class TestClassify:
    def test_tags(self):
        assert classify(None) is ValueKind.PRIMITIVE
        assert classify("s") is ValueKind.STRING
        assert classify(len) is ValueKind.CALLABLE
        assert classify(ValueError()) is ValueKind.ERROR
        assert classify(datetime.date.today()) is ValueKind.DATE
        assert classify(Element("p")) is ValueKind.HANDLE
        assert classify([]) is ValueKind.ARRAY
        assert classify({}) is ValueKind.MAPPING

    def test_visiting_marks_cycle(self):
        value = {}
        assert classify(value, {id(value)}) is ValueKind.CYCLIC


class TestPreview:
    def test_strings_and_json(self):
        assert format_preview(["hello", {"a": 1}, 3]) == 'hello {"a": 1} 3'

    def test_falls_back_to_str(self):
        cyclic = {}
        cyclic["self"] = cyclic
        assert format_preview([cyclic]) == "{'self': {...}}"

    def test_unprintable_value(self):
        class Broken:
            def __str__(self):
                raise RuntimeError("no")

        assert format_preview([Broken()]) == "<unprintable Broken>"


class Unreadable(Mapping):
    """A mapping whose contents cannot be enumerated."""

    def __getitem__(self, key):
        raise KeyError(key)

    def __iter__(self):
        raise RuntimeError("boom")

    def __len__(self):
        return 1


class TestUnserializable:
    def test_mapping_that_raises_on_iteration(self):
        assert serialize(Unreadable(), OPTIONS) == "[Unserializable Unreadable]"

    def test_siblings_still_serialized(self):
        result = serialize_values(["before", [1, Unreadable()], {"ok": True}], OPTIONS)
        assert result == ["before", [1, "[Unserializable Unreadable]"], {"ok": True}]
        json.dumps(result)

    def test_slot_that_raises_is_skipped(self):
        class Lazy:
            __slots__ = ("ready", "pending")

            def __init__(self):
                self.ready = 1

            def __getattribute__(self, name):
                if name == "pending":
                    raise RuntimeError("not loaded")
                return object.__getattribute__(self, name)

        assert serialize(Lazy(), OPTIONS) == {"ready": 1}


class TestErrorLimits:
    def test_stack_and_message_truncated(self):
        opts = CaptureOptions(max_string_length=40)
        try:
            raise ValueError("x" * 500)
        except ValueError as e:
            result = serialize(e, opts)
        assert len(result["message"]) == 40 + len("...")
        assert len(result["stack"]) == 40 + len("...")
        assert result["stack"].startswith("Traceback")


class TestKeyCollisions:
    def test_stringified_keys_do_not_overwrite(self):
        assert serialize({1: "a", "1": "b"}, OPTIONS) == {"1": "a", "1~2": "b"}

    def test_suffix_skips_taken_names(self):
        value = {"1~2": "c", 1: "a", "1": "b"}
        assert serialize(value, OPTIONS) == {"1~2": "c", "1": "a", "1~3": "b"}

    def test_real_truncated_key_kept(self):
        value = {"__truncated__": "mine", "b": 1, "c": 2}
        result = serialize(value, CaptureOptions(max_props=1))
        assert result == {"__truncated__": "mine", "__truncated__~2": "2 more keys"}
