from __future__ import annotations

import asyncio
import logging
from importlib.metadata import entry_points

from chatloop.errors import ToolError, ToolExecutionError, UnknownTool
from chatloop.tools.base import Tool

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Name to tool lookup.  Holds no per-call state, so one registry can
    serve turns on many conversations at once."""

    def __init__(self):
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool, *, overwrite: bool = False) -> None:
        if tool.name in self._tools and not overwrite:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def require(self, name: str) -> Tool:
        t = self.get(name)
        if not t:
            raise UnknownTool(name)
        return t

    def list(self) -> list[Tool]:
        return sorted(self._tools.values(), key=lambda t: t.name)

    def __len__(self) -> int:
        return len(self._tools)

    def declare(self) -> list[dict]:
        """Tool declarations for the ``tools`` field of a completion request."""
        return [t.to_openai_schema() for t in self.list()]

    async def invoke(self, name: str, args: dict, timeout: float | None = None) -> str:
        """
        Decode *args* for the named tool and run it.

        Raises ``UnknownTool`` if *name* is not registered,
        ``ArgumentDecodeError`` if *args* do not fit the tool's schema, and
        ``ToolExecutionError`` if decoding fails for any other reason or the
        tool raises or exceeds *timeout*.
        """
        tool = self.require(name)
        try:
            kwargs = tool.decode(args)
        except ToolError:
            raise
        except Exception as e:
            logger.exception("Tool %s could not decode its arguments", name)
            raise ToolExecutionError(name, f"Tool exception: {e}") from e
        try:
            if timeout:
                return await asyncio.wait_for(tool.execute(**kwargs), timeout=timeout)
            return await tool.execute(**kwargs)
        except asyncio.TimeoutError as e:
            raise ToolExecutionError(name, f"Tool timed out after {timeout}s") from e
        except Exception as e:
            logger.exception("Tool %s failed", name)
            raise ToolExecutionError(name, f"Tool exception: {e}") from e

    def load_plugins(
        self,
        *,
        enabled: bool,
        group: str = "chatloop.tools",
        allow_distributions: set[str] | None = None,
        allow_tools: set[str] | None = None,
    ) -> int:
        """Register tools published under the *group* entry point.

        Each entry point must resolve to a ``Tool`` subclass constructible
        with no arguments.
        """
        if not enabled:
            return 0
        loaded = 0
        for ep in entry_points(group=group):
            dist = getattr(ep, "dist", None)
            dist_name = getattr(dist, "name", None)
            if allow_distributions and dist_name and dist_name not in allow_distributions:
                continue
            if allow_tools and ep.name not in allow_tools:
                continue
            tool = ep.load()()
            if not isinstance(tool, Tool):
                logger.warning("Entry point %s did not produce a Tool; skipped", ep.name)
                continue
            self.register(tool)
            loaded += 1
        logger.info("Loaded %d plugin tool(s) from %s", loaded, group)
        return loaded
