"""Core types for conversations, streamed fragments and completions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_TOOL = "tool"
ROLE_SYSTEM = "system"

ROLES = (ROLE_USER, ROLE_ASSISTANT, ROLE_TOOL, ROLE_SYSTEM)


class FinishReason(str, Enum):
    """Backend-reported terminal status of one response or stream."""

    TOOL_CALLS = "tool_calls"
    STOP = "stop"
    LENGTH = "length"
    CONTENT_FILTER = "content_filter"

    @classmethod
    def parse(cls, raw: str | None) -> FinishReason | None:
        """Map a wire value to a ``FinishReason``; unknown values give ``None``."""
        if not raw:
            return None
        if raw == "function_call":
            return cls.TOOL_CALLS
        try:
            return cls(raw)
        except ValueError:
            return None

    @property
    def is_terminal(self) -> bool:
        return self is not FinishReason.TOOL_CALLS


@dataclass
class ToolCall:
    """
    One tool invocation requested by the assistant.

    ``index`` is the position within the assistant turn's tool-call list and
    is the only stable key while streaming.  ``arguments_text`` is the raw
    serialized argument object, built by concatenating fragments.
    """

    index: int
    id: str = ""
    function_name: str = ""
    arguments_text: str = ""

    @property
    def is_empty(self) -> bool:
        return not (self.id or self.function_name or self.arguments_text)


@dataclass
class Message:
    """A single message in a conversation."""

    role: str
    content: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None
    tool_name: str | None = None
    id: str | None = None
    conversation_id: str | None = None
    created_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValueError(f"Unknown message role: {self.role!r}")
        if self.role == ROLE_TOOL and (self.tool_call_id is None or self.tool_name is None):
            raise ValueError("Tool messages require tool_call_id and tool_name")


@dataclass
class Conversation:
    id: str
    title: str = ""
    created_at: datetime | None = None


@dataclass
class ToolCallDelta:
    """An incremental piece of one indexed tool call from a stream."""

    index: int
    id: str | None = None
    function_name: str | None = None
    arguments_chunk: str = ""


@dataclass
class Fragment:
    """
    One partial unit of a streamed response.

    Any combination of fields may be set.  A fragment that carries only a
    ``finish_reason`` marks the end of the response.
    """

    role: str | None = None
    text: str | None = None
    tool_calls: list[ToolCallDelta] | None = None
    finish_reason: FinishReason | None = None


@dataclass
class CompletionResponse:
    """A complete, non-streamed assistant response."""

    message: Message
    finish_reason: FinishReason | None = None
    model: str | None = None
