"""
Network client for OpenAI-style ``/chat/completions`` endpoints.

Covers OpenAI itself and the self-hosted servers that copy its wire format
(vLLM, LM Studio, LocalAI, llama.cpp server).  Streaming responses arrive as
Server-Sent Events and are turned into ``Fragment`` objects one ``data:``
line at a time; nothing is buffered beyond the current line.

Dependencies: ``httpx`` (async HTTP client).  No ``openai`` SDK needed.
"""

from __future__ import annotations

import json
import logging
from contextlib import aclosing
from typing import AsyncIterator

import httpx

from chatloop.llm.client import NetworkClient
from chatloop.llm.types import (
    ROLE_ASSISTANT,
    CompletionResponse,
    FinishReason,
    Fragment,
    Message,
    ToolCall,
    ToolCallDelta,
)

logger = logging.getLogger(__name__)

_DONE = "[DONE]"


def _is_retryable(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def _status_error(response: httpx.Response) -> httpx.HTTPStatusError:
    return httpx.HTTPStatusError(
        f"HTTP {response.status_code} from {response.request.url}",
        request=response.request,
        response=response,
    )


class OpenAICompatClient(NetworkClient):
    """
    Stream-capable client for any OpenAI-API-compatible endpoint.

    Parameters
    ----------
    url:
        Base URL of the API, e.g. ``"https://api.openai.com/v1"`` or
        ``"http://localhost:8080/v1"``.
    model:
        Model identifier sent in the ``model`` field.
    api_key:
        Bearer token.  Pass ``""`` for unauthenticated local endpoints.
    timeout:
        HTTP request timeout in seconds.
    max_retries:
        Extra attempts after a 429, a 5xx or a connection failure.  A stream
        is never retried once it has yielded a fragment.
    transport:
        Optional ``httpx`` transport, used by tests to stub the endpoint.
    """

    def __init__(
        self,
        url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o",
        api_key: str = "",
        timeout: float = 120.0,
        max_retries: int = 2,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._endpoint = f"{url.rstrip('/')}/chat/completions"
        self._model = model
        self._api_key = api_key
        self._timeout = timeout
        self._max_retries = max_retries
        self._transport = transport

    @property
    def name(self) -> str:
        return "openai-compat"

    # ------------------------------------------------------------------
    # NetworkClient interface
    # ------------------------------------------------------------------

    async def complete(
        self,
        messages: list[Message],
        tools: list[dict] | None = None,
        tool_choice: str | None = None,
    ) -> CompletionResponse:
        body = self._build_body(messages, tools, tool_choice, stream=False)
        return self.parse_completion(await self._post_json(body))

    async def stream(
        self,
        messages: list[Message],
        tools: list[dict] | None = None,
        tool_choice: str | None = None,
    ) -> AsyncIterator[Fragment]:
        body = self._build_body(messages, tools, tool_choice, stream=True)
        async with aclosing(self._post_stream(body)) as fragments:
            async for fragment in fragments:
                yield fragment

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def _client(self) -> httpx.AsyncClient:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return httpx.AsyncClient(
            timeout=self._timeout, transport=self._transport, headers=headers
        )

    @staticmethod
    def encode_message(msg: Message) -> dict:
        """Encode one ``Message`` in the chat-completions wire shape."""
        wire: dict = {"role": msg.role, "content": msg.content}
        if msg.tool_calls:
            wire["content"] = msg.content or None
            wire["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {"name": tc.function_name, "arguments": tc.arguments_text},
                }
                for tc in msg.tool_calls
            ]
        if msg.tool_call_id:
            wire["tool_call_id"] = msg.tool_call_id
        if msg.tool_name:
            wire["name"] = msg.tool_name
        return wire

    def _build_body(
        self,
        messages: list[Message],
        tools: list[dict] | None,
        tool_choice: str | None,
        stream: bool,
    ) -> dict:
        body: dict = {
            "model": self._model,
            "messages": [self.encode_message(m) for m in messages],
            "stream": stream,
        }
        if tools:
            body["tools"] = tools
            if tool_choice:
                body["tool_choice"] = tool_choice
        logger.info(
            "REQUEST: model=%s stream=%s tools=%d messages=%d",
            self._model, stream, len(tools or ()), len(messages),
        )
        return body

    def _should_retry(self, attempt: int, error: Exception) -> bool:
        if attempt >= self._max_retries:
            return False
        logger.warning("Attempt %d/%d failed: %s", attempt + 1, self._max_retries + 1, error)
        return True

    # ------------------------------------------------------------------
    # Streaming request
    # ------------------------------------------------------------------

    async def _post_stream(self, body: dict) -> AsyncIterator[Fragment]:
        attempt = 0
        while True:
            yielded = False
            try:
                async with self._client() as client:
                    async with client.stream(
                        "POST", self._endpoint, json=body,
                        headers={"Accept": "text/event-stream"},
                    ) as response:
                        if response.is_error:
                            # Read the body so the connection is released.
                            await response.aread()
                            error = _status_error(response)
                            if _is_retryable(response.status_code) and self._should_retry(attempt, error):
                                attempt += 1
                                continue
                            raise error

                        async with aclosing(self._iter_events(response)) as fragments:
                            async for fragment in fragments:
                                yielded = True
                                yield fragment
                        return
            except httpx.TransportError as exc:
                if yielded or not self._should_retry(attempt, exc):
                    raise
                attempt += 1

    async def _iter_events(self, response: httpx.Response) -> AsyncIterator[Fragment]:
        """
        Parse Server-Sent Events from the response line stream.

        Only ``data:`` lines matter; comments and other fields are skipped.
        ``data: [DONE]`` ends the stream.
        """
        async for line in response.aiter_lines():
            if not line.startswith("data:"):
                continue
            payload = line[len("data:"):].strip()
            if payload == _DONE:
                return
            try:
                data = json.loads(payload)
            except json.JSONDecodeError:
                logger.warning("Skipping undecodable SSE payload: %s", payload[:200])
                continue
            fragment = self.parse_chunk(data)
            if fragment is not None:
                yield fragment

    @staticmethod
    def parse_chunk(data: dict) -> Fragment | None:
        """
        Convert one streamed ``chat.completion.chunk`` into a ``Fragment``.

        Returns ``None`` for chunks without choices.  Chunks whose shape does
        not match the wire format are logged and skipped the same way; a
        tool-call entry that is not an object is dropped on its own.
        """
        if not isinstance(data, dict):
            logger.warning("Skipping non-object SSE payload: %r", data)
            return None
        choices = data.get("choices")
        if not choices:
            return None
        choice = choices[0] if isinstance(choices, list) else None
        if not isinstance(choice, dict):
            logger.warning("Skipping chunk with malformed choice: %r", choices)
            return None
        delta = choice.get("delta") or {}
        if not isinstance(delta, dict):
            logger.warning("Skipping chunk with malformed delta: %r", delta)
            return None

        tool_deltas = None
        raw_calls = delta.get("tool_calls")
        if isinstance(raw_calls, list) and raw_calls:
            tool_deltas = []
            for raw in raw_calls:
                if not isinstance(raw, dict):
                    logger.warning("Dropping malformed tool-call delta: %r", raw)
                    continue
                func = raw.get("function")
                if not isinstance(func, dict):
                    func = {}
                tool_deltas.append(
                    ToolCallDelta(
                        index=raw.get("index", 0),
                        id=raw.get("id"),
                        function_name=func.get("name"),
                        arguments_chunk=func.get("arguments") or "",
                    )
                )
            tool_deltas = tool_deltas or None

        role = delta.get("role")
        text = delta.get("content")
        return Fragment(
            role=role if isinstance(role, str) else None,
            text=text if isinstance(text, str) else None,
            tool_calls=tool_deltas,
            finish_reason=FinishReason.parse(choice.get("finish_reason")),
        )

    # ------------------------------------------------------------------
    # Non-streaming request
    # ------------------------------------------------------------------

    async def _post_json(self, body: dict) -> dict:
        attempt = 0
        while True:
            try:
                async with self._client() as client:
                    resp = await client.post(self._endpoint, json=body)
            except httpx.TransportError as exc:
                if not self._should_retry(attempt, exc):
                    raise
                attempt += 1
                continue

            if resp.is_error:
                error = _status_error(resp)
                if _is_retryable(resp.status_code) and self._should_retry(attempt, error):
                    attempt += 1
                    continue
                raise error

            try:
                data = resp.json()
            except ValueError as exc:
                raise httpx.DecodingError(
                    f"Invalid JSON response: {exc}", request=resp.request
                ) from exc
            if not isinstance(data, dict):
                raise httpx.DecodingError(
                    f"Expected a JSON object, got {type(data).__name__}",
                    request=resp.request,
                )
            return data

    @staticmethod
    def parse_completion(data: dict) -> CompletionResponse:
        """Convert a ``chat.completion`` object into a ``CompletionResponse``."""
        choices = data.get("choices") or []
        if not choices:
            return CompletionResponse(
                message=Message(role=ROLE_ASSISTANT, content=""),
                model=data.get("model"),
            )

        choice = choices[0]
        message = choice.get("message") or {}

        tool_calls = []
        for position, raw in enumerate(message.get("tool_calls") or []):
            func = raw.get("function") or {}
            index = raw.get("index", position)
            tool_calls.append(
                ToolCall(
                    index=index,
                    id=raw.get("id") or f"call_{index}",
                    function_name=func.get("name") or "",
                    arguments_text=func.get("arguments") or "",
                )
            )

        return CompletionResponse(
            message=Message(
                role=ROLE_ASSISTANT,
                content=message.get("content"),
                tool_calls=tool_calls,
            ),
            finish_reason=FinishReason.parse(choice.get("finish_reason")),
            model=data.get("model"),
        )
