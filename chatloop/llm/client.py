"""Abstract base class for chat-completion network clients."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator

from chatloop.llm.types import CompletionResponse, Fragment, Message


class NetworkClient(ABC):
    """
    A client encapsulates access to a single chat-completion endpoint.

    Implementations must support:
      - Single-shot completions (``complete``).
      - Streaming completions (``stream``), yielding ``Fragment`` objects in
        the order the backend delivered them.

    Failures are raised as ``httpx.HTTPError`` (or a subclass); the
    orchestrator converts them to ``TransportError``.  Closing the iterator
    returned by ``stream`` must release the underlying connection.
    """

    @abstractmethod
    async def complete(
        self,
        messages: list[Message],
        tools: list[dict] | None = None,
        tool_choice: str | None = None,
    ) -> CompletionResponse:
        """Request one complete response."""
        ...

    @abstractmethod
    def stream(
        self,
        messages: list[Message],
        tools: list[dict] | None = None,
        tool_choice: str | None = None,
    ) -> AsyncIterator[Fragment]:
        """
        Request a streamed response.

        Each yielded ``Fragment`` is one chunk.  Normal exhaustion means the
        stream completed; a raised exception means it failed.
        """
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable client name (e.g. ``"openai-compat"``)."""
        ...
