"""Tests for chain models and output mapping."""

from types import SimpleNamespace

import pytest

from mcp_composer.chains.mapping import apply_output_mapping, get_nested_value
from mcp_composer.chains.models import ChainDefinition, ChainStep


class TestGetNestedValue:
    def test_walks_dicts_and_list_indices(self):
        result = {"content": [{"type": "text", "text": "hello"}], "meta": {"count": 2}}

        assert get_nested_value(result, "content.0.text") == "hello"
        assert get_nested_value(result, "meta.count") == 2

    def test_missing_segments_yield_none(self):
        result = {"content": [{"text": "hello"}]}

        assert get_nested_value(result, "content.5.text") is None
        assert get_nested_value(result, "content.first") is None
        assert get_nested_value(result, "missing.deeper") is None
        assert get_nested_value(None, "anything") is None

    def test_attributes(self):
        obj = SimpleNamespace(inner=SimpleNamespace(value=42))

        assert get_nested_value(obj, "inner.value") == 42
        assert get_nested_value(obj, "inner.other") is None

    def test_falsy_values_are_returned(self):
        assert get_nested_value({"count": 0}, "count") == 0
        assert get_nested_value({"flag": False}, "flag") is False

    def test_negative_indices_do_not_resolve(self):
        result = {"items": ["first", "last"]}

        assert get_nested_value(result, "items.-1") is None
        assert get_nested_value(result, "items.+1") is None
        assert get_nested_value(result, "items.1") == "last"

    def test_default_distinguishes_missing_from_null(self):
        missing = object()

        assert get_nested_value({"count": None}, "count", missing) is None
        assert get_nested_value({"count": None}, "count.deeper", missing) is missing
        assert get_nested_value({}, "count", missing) is missing
        assert get_nested_value(SimpleNamespace(), "value", missing) is missing


class TestApplyOutputMapping:
    def test_writes_resolved_values(self):
        args = {"static": "kept"}

        apply_output_mapping(1, args, {"n": "count", "first": "items.0"}, {"count": 3, "items": ["a"]})

        assert args == {"static": "kept", "n": 3, "first": "a"}

    def test_unresolved_paths_leave_argument_untouched(self):
        args = {"n": "default"}

        apply_output_mapping(1, args, {"n": "missing", "m": "also.missing"}, {"count": 3})

        assert args == {"n": "default"}

    def test_null_values_are_written(self):
        args = {"n": 7, "m": "kept"}

        apply_output_mapping(1, args, {"n": "count", "m": "items.-1"}, {"count": None, "items": ["a"]})

        assert args == {"n": None, "m": "kept"}


class TestChainModels:
    def test_step_accepts_camel_and_snake_case(self):
        camel = ChainStep.from_dict(
            {"toolName": "search", "args": {"q": 1}, "outputMapping": {"q": "x"}, "fromStep": 0}
        )
        snake = ChainStep.from_dict(
            {"tool_name": "search", "arguments": {"q": 1}, "output_mapping": {"q": "x"}, "from_step": 0}
        )

        assert camel == snake
        assert camel.tool_name == "search"
        assert camel.from_step == 0

    @pytest.mark.parametrize(
        "data",
        [
            {},
            {"tool": ""},
            {"tool": "x", "args": ["not", "a", "mapping"]},
            {"tool": "x", "output_mapping": "count"},
            {"tool": "x", "from_step": "0"},
        ],
    )
    def test_invalid_steps(self, data):
        with pytest.raises(ValueError):
            ChainStep.from_dict(data)

    def test_definition_from_dict(self):
        definition = ChainDefinition.from_dict(
            {
                "name": "pipeline",
                "description": "Search then read",
                "steps": [{"tool": "search"}, {"tool": "read"}],
                "output": {"steps": [1]},
            }
        )

        assert definition.name == "pipeline"
        assert [s.tool_name for s in definition.steps] == ["search", "read"]
        assert definition.output.steps == [1]
        assert definition.output.final is False

    def test_definition_requires_name_and_steps(self):
        with pytest.raises(ValueError, match="name"):
            ChainDefinition.from_dict({"steps": []})
        with pytest.raises(ValueError, match="steps"):
            ChainDefinition.from_dict({"name": "x", "steps": {"tool": "a"}})
