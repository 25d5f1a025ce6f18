"""
Exception hierarchy for turn processing.

Only ``TransportError``, ``PersistenceError``, ``TurnInProgressError`` and
``MaxRoundsExceeded`` escape ``TurnOrchestrator.run_turn``.  Everything else
is handled inside the turn: malformed fragments are logged and dropped, and
tool failures are written back to the conversation as tool messages.
"""

from __future__ import annotations


class ChatloopError(Exception):
    """Base class for all chatloop errors."""


class TransportError(ChatloopError):
    """The completion backend could not be reached or returned an error."""


class MalformedFragment(ChatloopError):
    """A streamed fragment violated the streaming contract."""

    def __init__(self, message: str, index: int | None = None) -> None:
        super().__init__(message)
        self.index = index


class ToolError(ChatloopError):
    """Base class for failures while resolving or running a tool."""

    def __init__(self, tool_name: str, message: str) -> None:
        super().__init__(message)
        self.tool_name = tool_name


class UnknownTool(ToolError):
    def __init__(self, tool_name: str) -> None:
        super().__init__(tool_name, f"Unknown tool: {tool_name}")


class ToolExecutionError(ToolError):
    """The tool's callable raised or timed out."""


class ArgumentDecodeError(ToolError):
    """Tool-call arguments were not a valid argument mapping for the tool."""


class PersistenceError(ChatloopError):
    """A message store read or write failed."""


class TurnInProgressError(ChatloopError):
    def __init__(self, conversation_id: str) -> None:
        super().__init__(
            f"A turn is already in progress for conversation {conversation_id}"
        )
        self.conversation_id = conversation_id


class MaxRoundsExceeded(ChatloopError):
    def __init__(self, conversation_id: str, max_rounds: int) -> None:
        super().__init__(
            f"Conversation {conversation_id} reached the limit of "
            f"{max_rounds} tool-call rounds"
        )
        self.conversation_id = conversation_id
        self.max_rounds = max_rounds
