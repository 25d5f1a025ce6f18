"""Demo tools shipped with chatloop."""

from __future__ import annotations

from chatloop.tools.base import Tool


class CurrentWeatherTool(Tool):
    @property
    def name(self) -> str:
        return "getCurrentWeather"

    @property
    def description(self) -> str:
        return "Get the current weather"

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "location": {
                    "type": "string",
                    "description": "The city and state, e.g. San Francisco, CA",
                },
                "format": {
                    "type": "string",
                    "enum": ["celsius", "fahrenheit"],
                    "description": "The temperature unit to use. Infer this from the users location.",
                },
            },
            "required": ["location", "format"],
        }

    async def execute(self, **kwargs) -> str:
        # Fixed reading; there is no weather service behind this tool.
        return "27"


class AnswerToUniverseTool(Tool):
    @property
    def name(self) -> str:
        return "getAnswerToUniverse"

    @property
    def description(self) -> str:
        return "The answer to the universe, life, and everything."

    @property
    def parameters(self) -> dict:
        return {}

    async def execute(self, **kwargs) -> str:
        return "42"


def builtin_tools() -> list[Tool]:
    return [CurrentWeatherTool(), AnswerToUniverseTool()]
