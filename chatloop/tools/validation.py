from __future__ import annotations

import json
from typing import TYPE_CHECKING

import jsonschema

from chatloop.errors import ArgumentDecodeError, ToolExecutionError

if TYPE_CHECKING:
    from chatloop.tools.base import Tool


def normalize_schema(schema: dict) -> dict:
    s = dict(schema or {})
    s.setdefault("type", "object")
    s.setdefault("properties", {})
    s.setdefault("additionalProperties", False)
    return s


def parse_arguments(tool_name: str, arguments_text: str) -> dict:
    """Decode a tool call's serialized arguments into a mapping.

    Empty text means no arguments.
    """
    if not arguments_text.strip():
        return {}
    try:
        args = json.loads(arguments_text)
    except json.JSONDecodeError as e:
        raise ArgumentDecodeError(tool_name, f"Invalid JSON arguments: {e}") from e
    if not isinstance(args, dict):
        raise ArgumentDecodeError(
            tool_name, f"Arguments must be a JSON object, got {type(args).__name__}"
        )
    return args


class ToolValidator:
    @staticmethod
    def validate(tool: Tool, arguments: dict) -> None:
        """Check *arguments* against the tool's parameter schema.

        A violation is the caller's fault and raises ``ArgumentDecodeError``.
        A schema that is itself invalid is the tool's fault and raises
        ``ToolExecutionError``.
        """
        try:
            jsonschema.validate(
                instance=arguments,
                schema=normalize_schema(tool.parameters),
            )
        except jsonschema.ValidationError as e:
            raise ArgumentDecodeError(tool.name, str(e.message)) from e
        except jsonschema.SchemaError as e:
            raise ToolExecutionError(
                tool.name, f"Invalid parameter schema: {e.message}"
            ) from e
