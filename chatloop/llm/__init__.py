"""LLM subsystem -- network clients, wire types, and streamed delta aggregation."""

from chatloop.llm.types import (
    CompletionResponse,
    Conversation,
    FinishReason,
    Fragment,
    Message,
    ToolCall,
    ToolCallDelta,
)
from chatloop.llm.aggregator import DeltaAggregator, StreamState
from chatloop.llm.client import NetworkClient

__all__ = [
    "CompletionResponse",
    "Conversation",
    "DeltaAggregator",
    "FinishReason",
    "Fragment",
    "Message",
    "NetworkClient",
    "StreamState",
    "ToolCall",
    "ToolCallDelta",
]
