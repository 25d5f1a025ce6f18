"""Abstract message store used by the aggregator and orchestrator."""

from __future__ import annotations

from abc import ABC, abstractmethod

from chatloop.llm.types import Conversation, Message, ToolCall


class MessageStore(ABC):
    """
    Durable keyed storage of conversations, messages and tool-call records.

    Every write is scoped by conversation or message id, so turns running on
    different conversations never touch the same rows.  Implementations wrap
    backend failures in ``chatloop.errors.PersistenceError``.
    """

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    @abstractmethod
    async def create_conversation(self, title: str = "") -> str: ...

    @abstractmethod
    async def get_conversation(self, conversation_id: str) -> Conversation | None: ...

    @abstractmethod
    async def list_conversations(self) -> list[Conversation]: ...

    @abstractmethod
    async def delete_conversation(self, conversation_id: str) -> None:
        """Delete a conversation together with its messages and tool calls."""
        ...

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    @abstractmethod
    async def create_message(
        self,
        conversation_id: str,
        role: str,
        content: str | None = None,
        *,
        tool_call_id: str | None = None,
        tool_name: str | None = None,
    ) -> str:
        """Append a message to the conversation and return its id."""
        ...

    @abstractmethod
    async def update_message(
        self,
        message_id: str,
        *,
        content: str | None = None,
        tool_call_ids: list[str] | None = None,
    ) -> None:
        """
        Update a message in place.

        ``content`` replaces the stored text (last write wins).
        ``tool_call_ids`` links previously created tool-call records to the
        message.  Fields left as ``None`` are not touched.
        """
        ...

    @abstractmethod
    async def delete_message(self, message_id: str) -> None: ...

    @abstractmethod
    async def get_message(self, message_id: str) -> Message | None: ...

    @abstractmethod
    async def get_messages(self, conversation_id: str) -> list[Message]:
        """Return the conversation's messages in append order."""
        ...

    # ------------------------------------------------------------------
    # Tool calls
    # ------------------------------------------------------------------

    @abstractmethod
    async def create_tool_call(self, tool_call: ToolCall) -> str:
        """
        Persist a resolved tool call and return its record id.

        The record is attached to a message by a later
        ``update_message(..., tool_call_ids=[...])``.
        """
        ...
