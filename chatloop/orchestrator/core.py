"""
Orchestrator core -- drives one conversation turn to completion.

A turn:
1. Persists the user message (if any)
2. Sends the conversation history to the network client with tool declarations
3. Consumes a single response, or a stream of fragments via a DeltaAggregator
4. On a ``tool_calls`` finish, runs each tool in index order and appends the
   results as tool messages, then starts another round
5. Stops on ``stop``, ``length`` or ``content_filter``
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass, field

import httpx

from chatloop.config import (
    BAD_ARGUMENT_POLICIES,
    BAD_ARGUMENTS_DROP,
)
from chatloop.errors import (
    ArgumentDecodeError,
    MaxRoundsExceeded,
    ToolError,
    TransportError,
    TurnInProgressError,
)
from chatloop.llm.aggregator import DeltaAggregator
from chatloop.llm.client import NetworkClient
from chatloop.llm.types import (
    ROLE_ASSISTANT,
    ROLE_SYSTEM,
    ROLE_TOOL,
    ROLE_USER,
    FinishReason,
    Message,
    ToolCall,
)
from chatloop.store.base import MessageStore
from chatloop.tools.registry import ToolRegistry
from chatloop.tools.validation import parse_arguments

logger = logging.getLogger(__name__)


@dataclass
class TurnResult:
    """Outcome of ``TurnOrchestrator.run_turn``."""

    conversation_id: str
    finish_reason: FinishReason
    content: str = ""
    message_ids: list[str] = field(default_factory=list)
    rounds: int = 0


@dataclass
class _RoundOutcome:
    message_id: str | None
    content: str
    tool_calls: list[ToolCall]
    finish_reason: FinishReason | None


class TurnOrchestrator:
    """
    Runs turns against a network client, persisting everything it observes.

    Parameters
    ----------
    store : MessageStore
        Where messages and tool calls are written.
    client : NetworkClient
        Chat-completion backend.
    registry : ToolRegistry
        Tools offered to the model.
    streaming : bool
        Default mode when ``run_turn`` is not told explicitly.
    max_rounds : int
        Max request rounds per turn.  ``0`` disables the limit.
    on_bad_arguments : str
        ``"drop"`` writes nothing for a tool call whose arguments cannot be
        decoded; ``"report"`` writes a tool message describing the problem.
    system_prompt : str
        Prepended to every request when non-empty.  Never persisted.
    tool_timeout : float
        Max seconds for a single tool execution.
    fixed_tool_slots : bool
        Passed to each ``DeltaAggregator``.
    """

    def __init__(
        self,
        store: MessageStore,
        client: NetworkClient,
        registry: ToolRegistry,
        *,
        streaming: bool = True,
        max_rounds: int = 20,
        on_bad_arguments: str = BAD_ARGUMENTS_DROP,
        system_prompt: str = "",
        tool_timeout: float = 30.0,
        fixed_tool_slots: bool = True,
    ) -> None:
        if on_bad_arguments not in BAD_ARGUMENT_POLICIES:
            raise ValueError(f"Unknown on_bad_arguments policy: {on_bad_arguments!r}")
        self.store = store
        self.client = client
        self.registry = registry
        self.streaming = streaming
        self.max_rounds = max_rounds
        self.on_bad_arguments = on_bad_arguments
        self.system_prompt = system_prompt
        self.tool_timeout = tool_timeout
        self.fixed_tool_slots = fixed_tool_slots
        self._in_flight: dict[str, asyncio.Task | None] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def send_message(
        self, conversation_id: str, text: str, streaming: bool | None = None
    ) -> TurnResult:
        """Append a user message and run a turn for it."""
        return await self.run_turn(conversation_id, user_message=text, streaming=streaming)

    async def run_turn(
        self,
        conversation_id: str,
        user_message: str | None = None,
        streaming: bool | None = None,
    ) -> TurnResult:
        """
        Run one full turn, including any tool round-trips.

        At most one turn may be in flight per conversation; a second call
        raises ``TurnInProgressError`` without writing anything.  Run turns
        in their own task if they need to be cancellable via ``cancel``.
        """
        if conversation_id in self._in_flight:
            raise TurnInProgressError(conversation_id)
        self._in_flight[conversation_id] = asyncio.current_task()
        try:
            return await self._run(
                conversation_id,
                user_message,
                self.streaming if streaming is None else streaming,
            )
        finally:
            self._in_flight.pop(conversation_id, None)

    def is_running(self, conversation_id: str) -> bool:
        return conversation_id in self._in_flight

    def cancel(self, conversation_id: str) -> bool:
        """
        Cancel the task running a turn on *conversation_id*.

        The network stream is closed and no further writes happen; messages
        already written stay.  Returns ``False`` if nothing was cancelled.
        """
        task = self._in_flight.get(conversation_id)
        if task is None or task is asyncio.current_task() or task.done():
            return False
        logger.info("Cancelling turn on conversation %s", conversation_id)
        task.cancel()
        return True

    async def delete_conversation(self, conversation_id: str) -> None:
        """Cancel any in-flight turn, then delete the conversation."""
        task = self._in_flight.get(conversation_id)
        if self.cancel(conversation_id) and task is not None:
            await asyncio.wait([task])
        await self.store.delete_conversation(conversation_id)

    async def delete_message(self, message_id: str) -> None:
        await self.store.delete_message(message_id)

    # ------------------------------------------------------------------
    # Turn loop
    # ------------------------------------------------------------------

    async def _run(
        self, conversation_id: str, user_message: str | None, streaming: bool
    ) -> TurnResult:
        message_ids: list[str] = []
        if user_message is not None:
            message_ids.append(
                await self.store.create_message(conversation_id, ROLE_USER, user_message)
            )

        tools = self.registry.declare() or None
        tool_choice = "auto" if tools else None

        rounds = 0
        while True:
            if self.max_rounds and rounds >= self.max_rounds:
                logger.warning(
                    "Conversation %s hit max_rounds=%d", conversation_id, self.max_rounds
                )
                raise MaxRoundsExceeded(conversation_id, self.max_rounds)
            rounds += 1

            history = await self._history(conversation_id)
            logger.info(
                "Round %d on %s: %d message(s), stream=%s",
                rounds, conversation_id, len(history), streaming,
            )

            try:
                if streaming:
                    outcome = await self._consume_stream(
                        conversation_id, history, tools, tool_choice
                    )
                else:
                    outcome = await self._consume_response(
                        conversation_id, history, tools, tool_choice
                    )
            except httpx.HTTPError as exc:
                logger.error("Transport failure on %s: %s", conversation_id, exc)
                raise TransportError(str(exc) or type(exc).__name__) from exc

            if outcome.message_id:
                message_ids.append(outcome.message_id)

            finish = outcome.finish_reason
            if finish is None:
                finish = FinishReason.TOOL_CALLS if outcome.tool_calls else FinishReason.STOP
                logger.warning("No finish reason reported; assuming %s", finish.value)

            if finish.is_terminal:
                if finish is FinishReason.STOP and outcome.content:
                    logger.debug("Final answer: %s", outcome.content[:200])
                elif finish is not FinishReason.STOP:
                    logger.info("Turn on %s ended with %s", conversation_id, finish.value)
                return TurnResult(
                    conversation_id=conversation_id,
                    finish_reason=finish,
                    content=outcome.content,
                    message_ids=message_ids,
                    rounds=rounds,
                )

            if not outcome.tool_calls:
                logger.warning("tool_calls finish without any usable tool call")
                return TurnResult(
                    conversation_id=conversation_id,
                    finish_reason=finish,
                    content=outcome.content,
                    message_ids=message_ids,
                    rounds=rounds,
                )

            for tool_call in sorted(outcome.tool_calls, key=lambda tc: tc.index):
                result_id = await self._execute_tool_call(conversation_id, tool_call)
                if result_id is not None:
                    message_ids.append(result_id)

    async def _history(self, conversation_id: str) -> list[Message]:
        messages = await self.store.get_messages(conversation_id)
        if self.system_prompt:
            messages = [Message(role=ROLE_SYSTEM, content=self.system_prompt)] + messages
        return messages

    async def _consume_stream(
        self,
        conversation_id: str,
        history: list[Message],
        tools: list[dict] | None,
        tool_choice: str | None,
    ) -> _RoundOutcome:
        aggregator = DeltaAggregator(
            self.store, conversation_id, fixed_slots=self.fixed_tool_slots
        )
        async with aclosing(
            self.client.stream(history, tools=tools, tool_choice=tool_choice)
        ) as fragments:
            async for fragment in fragments:
                await aggregator.feed(fragment)

        if aggregator.state.dropped:
            logger.warning(
                "Dropped %d malformed fragment(s) on %s",
                len(aggregator.state.dropped), conversation_id,
            )
        content, tool_calls = await aggregator.finalize()
        return _RoundOutcome(
            message_id=aggregator.message_id,
            content=content,
            tool_calls=tool_calls,
            finish_reason=aggregator.finish_reason,
        )

    async def _consume_response(
        self,
        conversation_id: str,
        history: list[Message],
        tools: list[dict] | None,
        tool_choice: str | None,
    ) -> _RoundOutcome:
        response = await self.client.complete(history, tools=tools, tool_choice=tool_choice)
        message = response.message
        content = message.content or ""

        message_id = await self.store.create_message(conversation_id, ROLE_ASSISTANT, content)
        tool_calls = sorted(message.tool_calls, key=lambda tc: tc.index)
        if tool_calls:
            record_ids = [await self.store.create_tool_call(tc) for tc in tool_calls]
            await self.store.update_message(message_id, tool_call_ids=record_ids)

        return _RoundOutcome(
            message_id=message_id,
            content=content,
            tool_calls=tool_calls,
            finish_reason=response.finish_reason,
        )

    # ------------------------------------------------------------------
    # Tool execution
    # ------------------------------------------------------------------

    async def _execute_tool_call(
        self, conversation_id: str, tool_call: ToolCall
    ) -> str | None:
        """
        Run one tool call and persist its result as a tool message.

        Returns the tool message id, or ``None`` when the call was dropped
        because its arguments could not be decoded.
        """
        name = tool_call.function_name
        logger.debug("Invoking tool %s (%s)", name, tool_call.id)
        try:
            args = parse_arguments(name, tool_call.arguments_text)
            content = await self.registry.invoke(name, args, timeout=self.tool_timeout)
        except ArgumentDecodeError as exc:
            logger.warning("Bad arguments for %s (%s): %s", name, tool_call.id, exc)
            if self.on_bad_arguments == BAD_ARGUMENTS_DROP:
                return None
            content = f"Error: could not decode arguments for {name}: {exc}"
        except ToolError as exc:
            logger.warning("Tool call %s (%s) failed: %s", name, tool_call.id, exc)
            content = f"Error: {exc}"

        return await self.store.create_message(
            conversation_id,
            ROLE_TOOL,
            content,
            tool_call_id=tool_call.id,
            tool_name=name,
        )
