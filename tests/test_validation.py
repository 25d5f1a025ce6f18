"""Tests for argument decoding and ToolValidator."""

import pytest

from chatloop.errors import ArgumentDecodeError, ToolExecutionError
from chatloop.tools.base import FunctionTool
from chatloop.tools.builtin import CurrentWeatherTool
from chatloop.tools.validation import ToolValidator, normalize_schema, parse_arguments
from tests.mock_tools import EchoTool


class TestParseArguments:
    def test_object_decoded(self):
        assert parse_arguments("echo", '{"message": "hi"}') == {"message": "hi"}

    def test_empty_text_means_no_arguments(self):
        assert parse_arguments("echo", "") == {}
        assert parse_arguments("echo", "   ") == {}

    def test_truncated_json_fails(self):
        with pytest.raises(ArgumentDecodeError, match="Invalid JSON") as exc_info:
            parse_arguments("echo", '{"message": ')
        assert exc_info.value.tool_name == "echo"

    @pytest.mark.parametrize("text", ["[1, 2]", '"str"', "42", "null"])
    def test_non_object_fails(self, text):
        with pytest.raises(ArgumentDecodeError, match="JSON object"):
            parse_arguments("echo", text)


class TestToolValidator:
    """Test suite for ToolValidator.validate()."""

    def test_valid_args_pass(self):
        ToolValidator.validate(EchoTool(), {"message": "hello"})

    def test_missing_required_arg_fails(self):
        with pytest.raises(ArgumentDecodeError, match="message"):
            ToolValidator.validate(EchoTool(), {})

    def test_extra_unknown_keys_rejected(self):
        with pytest.raises(ArgumentDecodeError):
            ToolValidator.validate(EchoTool(), {"message": "hello", "rogue": "value"})

    def test_type_mismatch(self):
        with pytest.raises(ArgumentDecodeError):
            ToolValidator.validate(EchoTool(), {"message": 12345})

    def test_enum_enforced(self):
        with pytest.raises(ArgumentDecodeError):
            ToolValidator.validate(
                CurrentWeatherTool(), {"location": "Oslo", "format": "kelvin"}
            )

    def test_invalid_schema_is_a_tool_failure(self):
        tool = FunctionTool(
            "broken", "", lambda **kwargs: "x",
            parameters={"type": "object", "properties": {"a": {"type": 12}}},
        )
        with pytest.raises(ToolExecutionError, match="Invalid parameter schema") as exc_info:
            ToolValidator.validate(tool, {"a": 1})
        assert exc_info.value.tool_name == "broken"

    def test_decode_returns_arguments(self):
        args = {"location": "Oslo", "format": "celsius"}
        assert CurrentWeatherTool().decode(args) == args


class TestNormalizeSchema:
    def test_defaults_filled(self):
        assert normalize_schema({}) == {
            "type": "object",
            "properties": {},
            "additionalProperties": False,
        }

    def test_explicit_values_kept(self):
        s = normalize_schema({"additionalProperties": True, "required": ["x"]})
        assert s["additionalProperties"] is True
        assert s["required"] == ["x"]

    def test_input_not_mutated(self):
        original = {"properties": {"x": {"type": "string"}}}
        normalize_schema(original)
        assert "type" not in original
