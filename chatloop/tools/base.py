from __future__ import annotations

import inspect
from abc import ABC, abstractmethod
from typing import Any, Callable

from chatloop.tools.validation import ToolValidator, normalize_schema


class Tool(ABC):
    @property
    @abstractmethod
    def name(self) -> str: ...

    @property
    @abstractmethod
    def description(self) -> str: ...

    @property
    @abstractmethod
    def parameters(self) -> dict: ...

    def decode(self, arguments: dict) -> dict:
        """Validate decoded arguments and return the keyword arguments for ``execute``.

        Raises ``ArgumentDecodeError`` when the arguments do not match the schema.
        """
        ToolValidator.validate(self, arguments)
        return arguments

    @abstractmethod
    async def execute(self, **kwargs) -> str: ...

    def to_openai_schema(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": normalize_schema(self.parameters),
            },
        }


class FunctionTool(Tool):
    """Adapts a plain callable (sync or async) returning a string into a ``Tool``."""

    def __init__(
        self,
        name: str,
        description: str,
        func: Callable[..., Any],
        parameters: dict | None = None,
    ) -> None:
        self._name = name
        self._description = description
        self._func = func
        self._parameters = parameters or {}

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def parameters(self) -> dict:
        return self._parameters

    async def execute(self, **kwargs) -> str:
        result = self._func(**kwargs)
        if inspect.isawaitable(result):
            result = await result
        return str(result)
