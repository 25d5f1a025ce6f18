"""
Reassembles one assistant message from a stream of ``Fragment`` objects.

Design goals:
  - At most one assistant message is created in the store per stream.  It is
    created when the backend announces the assistant role, or lazily on the
    first text or tool call if the role never arrives.
  - Text is accumulated and the full content is written back after every
    fragment, so the stored content only ever grows.
  - Tool calls are keyed by their positional ``index``.  The slot list is
    sized from the first tool-call fragment; ids and names are taken from the
    first non-empty value, arguments are concatenated in arrival order.
  - Fragments that reference a slot that does not exist are *dropped* and
    recorded in ``state.dropped``; they never abort the stream.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from chatloop.errors import MalformedFragment
from chatloop.llm.types import (
    ROLE_ASSISTANT,
    FinishReason,
    Fragment,
    ToolCall,
    ToolCallDelta,
)

if TYPE_CHECKING:
    from chatloop.store.base import MessageStore

logger = logging.getLogger(__name__)


@dataclass
class StreamState:
    """Per-stream accumulation state.  Owned by exactly one aggregator."""

    message_id: str | None = None
    content: str = ""
    slots: list[ToolCall] | None = None
    finish_reason: FinishReason | None = None
    dropped: list[str] = field(default_factory=list)


class DeltaAggregator:
    """
    Feeds streamed fragments into a single in-progress assistant message.

    Parameters
    ----------
    store:
        Message store the in-progress message is written to.
    conversation_id:
        Conversation the assistant message belongs to.
    fixed_slots:
        When ``True`` the tool-call slot count is fixed by the first tool-call
        fragment and later out-of-range indices are dropped.  When ``False``
        the slot list grows to fit any non-negative index.
    """

    def __init__(
        self,
        store: MessageStore,
        conversation_id: str,
        *,
        fixed_slots: bool = True,
    ) -> None:
        self._store = store
        self._conversation_id = conversation_id
        self._fixed_slots = fixed_slots
        self.state = StreamState()

    @property
    def message_id(self) -> str | None:
        return self.state.message_id

    @property
    def finish_reason(self) -> FinishReason | None:
        return self.state.finish_reason

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def feed(self, fragment: Fragment) -> None:
        """Route one fragment: role, then text, then tool calls, then finish."""
        if fragment.role:
            await self.on_role_announced(fragment.role)

        if fragment.text:
            await self.on_text_fragment(fragment.text)

        if fragment.tool_calls:
            announced = len(fragment.tool_calls)
            for delta in fragment.tool_calls:
                await self.on_tool_call_fragment(delta, announced=announced)

        if fragment.finish_reason is not None:
            self.state.finish_reason = fragment.finish_reason

    async def on_role_announced(self, role: str) -> None:
        if role != ROLE_ASSISTANT:
            logger.debug("Ignoring role announcement %r", role)
            return
        await self._ensure_message()

    async def on_text_fragment(self, text: str) -> None:
        if not text:
            return
        message_id = await self._ensure_message()
        self.state.content += text
        await self._store.update_message(message_id, content=self.state.content)

    async def on_tool_call_fragment(self, delta: ToolCallDelta, *, announced: int = 1) -> None:
        """
        Merge one tool-call delta into its slot.

        *announced* is the number of tool-call deltas carried by the fragment
        this delta came from; it sizes the slot list on first sight.
        """
        if self.state.slots is None:
            self.state.slots = [ToolCall(index=i) for i in range(max(announced, 1))]

        try:
            slot = self._slot_for(delta.index)
        except MalformedFragment as exc:
            logger.warning("Dropping tool-call fragment: %s", exc)
            self.state.dropped.append(str(exc))
            return

        if delta.id and not slot.id:
            slot.id = delta.id
        if delta.function_name and not slot.function_name:
            slot.function_name = delta.function_name
        slot.arguments_text += delta.arguments_chunk or ""

        logger.debug(
            "tool slot %d: %s %s", slot.index, slot.function_name, slot.arguments_text
        )

    async def finalize(self) -> tuple[str, list[ToolCall]]:
        """
        Resolve the stream into its final text and tool calls.

        Tool calls are persisted and linked to the in-progress message.
        Slots that never received a fragment are discarded.
        """
        tool_calls: list[ToolCall] = []
        for slot in self.state.slots or []:
            if slot.is_empty:
                logger.warning("Discarding unused tool-call slot %d", slot.index)
                continue
            if not slot.id:
                slot.id = f"call_{slot.index}"
            tool_calls.append(slot)

        if tool_calls:
            message_id = await self._ensure_message()
            record_ids = [await self._store.create_tool_call(tc) for tc in tool_calls]
            await self._store.update_message(message_id, tool_call_ids=record_ids)

        return self.state.content, tool_calls

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _ensure_message(self) -> str:
        if self.state.message_id is None:
            self.state.message_id = await self._store.create_message(
                self._conversation_id, ROLE_ASSISTANT, ""
            )
        return self.state.message_id

    def _slot_for(self, index: object) -> ToolCall:
        slots = self.state.slots
        assert slots is not None
        if not isinstance(index, int) or isinstance(index, bool):
            raise MalformedFragment(f"non-integer tool-call index {index!r}")
        if index < 0:
            raise MalformedFragment(f"negative tool-call index {index}", index=index)
        if index >= len(slots):
            if self._fixed_slots:
                raise MalformedFragment(
                    f"tool-call index {index} outside {len(slots)} allocated slot(s)",
                    index=index,
                )
            slots.extend(ToolCall(index=i) for i in range(len(slots), index + 1))
        return slots[index]
