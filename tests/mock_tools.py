"""Mock tool implementations for testing."""

import asyncio

from chatloop.tools.base import Tool


class EchoTool(Tool):
    def __init__(self):
        self.calls: list[dict] = []

    @property
    def name(self) -> str:
        return "echo"

    @property
    def description(self) -> str:
        return "Echoes the input message back."

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "message": {"type": "string", "description": "Message to echo"},
            },
            "required": ["message"],
        }

    async def execute(self, **kwargs) -> str:
        self.calls.append(kwargs)
        return kwargs.get("message", "")


class FailingTool(Tool):
    @property
    def name(self) -> str:
        return "explode"

    @property
    def description(self) -> str:
        return "Always raises."

    @property
    def parameters(self) -> dict:
        return {}

    async def execute(self, **kwargs) -> str:
        raise RuntimeError("boom")


class SlowTool(Tool):
    def __init__(self, delay: float = 1.0):
        self.delay = delay

    @property
    def name(self) -> str:
        return "slow"

    @property
    def description(self) -> str:
        return "Sleeps before answering."

    @property
    def parameters(self) -> dict:
        return {}

    async def execute(self, **kwargs) -> str:
        await asyncio.sleep(self.delay)
        return "done"
