"""Tests for the OpenAI-compatible client against a stubbed transport."""

from __future__ import annotations

import json

import httpx
import pytest

from chatloop.llm.providers.openai_compat import OpenAICompatClient
from chatloop.llm.types import FinishReason, Message, ToolCall

TOOLS = [{"type": "function", "function": {"name": "echo", "description": "", "parameters": {}}}]


def _sse(*payloads: dict, done: bool = True) -> bytes:
    lines = [f"data: {json.dumps(p)}\n\n" for p in payloads]
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode()


def _chunk(delta: dict, finish_reason: str | None = None) -> dict:
    return {"choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}]}


def _client(handler, **kwargs) -> OpenAICompatClient:
    kwargs.setdefault("max_retries", 0)
    return OpenAICompatClient(
        url="http://llm.test/v1",
        model="test-model",
        api_key="sk-test",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


async def _collect(client, messages, **kwargs):
    return [f async for f in client.stream(messages, **kwargs)]


class TestStreaming:
    async def test_text_stream(self):
        def handler(request):
            return httpx.Response(200, content=_sse(
                _chunk({"role": "assistant"}),
                _chunk({"content": "Hel"}),
                _chunk({"content": "lo"}),
                _chunk({}, "stop"),
            ))

        fragments = await _collect(_client(handler), [Message(role="user", content="Hi")])

        assert fragments[0].role == "assistant"
        assert "".join(f.text or "" for f in fragments) == "Hello"
        assert fragments[-1].finish_reason is FinishReason.STOP

    async def test_tool_call_deltas(self):
        def handler(request):
            return httpx.Response(200, content=_sse(
                _chunk({"role": "assistant", "tool_calls": [
                    {"index": 0, "id": "tc1", "type": "function",
                     "function": {"name": "echo", "arguments": ""}},
                ]}),
                _chunk({"tool_calls": [{"index": 0, "function": {"arguments": '{"message"'}}]}),
                _chunk({"tool_calls": [{"index": 0, "function": {"arguments": ': "x"}'}}]}),
                _chunk({}, "tool_calls"),
            ))

        fragments = await _collect(_client(handler), [Message(role="user", content="Hi")])

        deltas = [d for f in fragments for d in (f.tool_calls or [])]
        assert deltas[0].id == "tc1"
        assert deltas[0].function_name == "echo"
        assert all(d.index == 0 for d in deltas)
        assert "".join(d.arguments_chunk for d in deltas) == '{"message": "x"}'
        assert fragments[-1].finish_reason is FinishReason.TOOL_CALLS

    async def test_garbage_lines_skipped(self):
        def handler(request):
            body = b": keep-alive\n\ndata: not json\n\n" + _sse(_chunk({"content": "ok"}, "stop"))
            return httpx.Response(200, content=body)

        fragments = await _collect(_client(handler), [Message(role="user", content="Hi")])

        assert [f.text for f in fragments] == ["ok"]

    async def test_retry_on_server_error(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) == 1:
                return httpx.Response(503, content=b"busy")
            return httpx.Response(200, content=_sse(_chunk({"content": "ok"}, "stop")))

        fragments = await _collect(
            _client(handler, max_retries=1), [Message(role="user", content="Hi")]
        )

        assert len(attempts) == 2
        assert fragments[0].text == "ok"

    async def test_client_error_raised(self):
        def handler(request):
            return httpx.Response(401, json={"error": "bad key"})

        with pytest.raises(httpx.HTTPStatusError):
            await _collect(_client(handler), [Message(role="user", content="Hi")])

    async def test_connect_error_raised_after_retries(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(httpx.ConnectError):
            await _collect(_client(handler, max_retries=1), [Message(role="user", content="Hi")])
        assert len(attempts) == 2


class TestRequestBody:
    async def test_tools_and_tool_choice_sent(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, content=_sse(_chunk({}, "stop")))

        await _collect(
            _client(handler),
            [Message(role="user", content="Hi")],
            tools=TOOLS,
            tool_choice="auto",
        )

        body = seen["body"]
        assert body["model"] == "test-model"
        assert body["stream"] is True
        assert body["tools"] == TOOLS
        assert body["tool_choice"] == "auto"
        assert seen["auth"] == "Bearer sk-test"

    async def test_tool_fields_omitted_without_tools(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=_sse(_chunk({}, "stop")))

        await _collect(_client(handler), [Message(role="user", content="Hi")], tool_choice="auto")

        assert "tools" not in seen["body"]
        assert "tool_choice" not in seen["body"]

    def test_encode_assistant_tool_calls(self):
        msg = Message(
            role="assistant",
            content="",
            tool_calls=[ToolCall(0, "tc1", "echo", '{"message": "x"}')],
        )
        wire = OpenAICompatClient.encode_message(msg)
        assert wire["content"] is None
        assert wire["tool_calls"] == [{
            "id": "tc1",
            "type": "function",
            "function": {"name": "echo", "arguments": '{"message": "x"}'},
        }]

    def test_encode_tool_result(self):
        msg = Message(role="tool", content="42", tool_call_id="tc1", tool_name="getAnswerToUniverse")
        wire = OpenAICompatClient.encode_message(msg)
        assert wire == {
            "role": "tool",
            "content": "42",
            "tool_call_id": "tc1",
            "name": "getAnswerToUniverse",
        }


class TestSingleShot:
    async def test_text_response(self):
        def handler(request):
            assert json.loads(request.content)["stream"] is False
            return httpx.Response(200, json={
                "model": "test-model",
                "choices": [{
                    "index": 0,
                    "message": {"role": "assistant", "content": "Hello"},
                    "finish_reason": "stop",
                }],
            })

        resp = await _client(handler).complete([Message(role="user", content="Hi")])

        assert resp.message.content == "Hello"
        assert resp.finish_reason is FinishReason.STOP
        assert resp.model == "test-model"

    async def test_tool_call_response(self):
        def handler(request):
            return httpx.Response(200, json={
                "choices": [{
                    "message": {
                        "role": "assistant",
                        "content": None,
                        "tool_calls": [
                            {"id": "c1", "type": "function",
                             "function": {"name": "echo", "arguments": '{"message": "a"}'}},
                            {"type": "function",
                             "function": {"name": "echo", "arguments": '{"message": "b"}'}},
                        ],
                    },
                    "finish_reason": "tool_calls",
                }],
            })

        resp = await _client(handler).complete([Message(role="user", content="Hi")], tools=TOOLS)

        assert resp.finish_reason is FinishReason.TOOL_CALLS
        assert [(tc.index, tc.id) for tc in resp.message.tool_calls] == [(0, "c1"), (1, "call_1")]

    async def test_invalid_json_raises_decoding_error(self):
        def handler(request):
            return httpx.Response(200, content=b"<html>oops</html>")

        with pytest.raises(httpx.DecodingError):
            await _client(handler).complete([Message(role="user", content="Hi")])


class TestParseChunk:
    def test_no_choices(self):
        assert OpenAICompatClient.parse_chunk({"choices": []}) is None

    def test_legacy_function_call_finish(self):
        fragment = OpenAICompatClient.parse_chunk(_chunk({}, "function_call"))
        assert fragment.finish_reason is FinishReason.TOOL_CALLS

    def test_unknown_finish_reason(self):
        fragment = OpenAICompatClient.parse_chunk(_chunk({}, "something_new"))
        assert fragment.finish_reason is None

    @pytest.mark.parametrize("payload", [
        ["not", "an", "object"],
        "text",
        {"choices": ["junk"]},
        {"choices": "junk"},
        {"choices": [{"delta": "junk"}]},
    ])
    def test_malformed_chunk_skipped(self, payload):
        assert OpenAICompatClient.parse_chunk(payload) is None

    def test_malformed_tool_call_entry_dropped(self):
        fragment = OpenAICompatClient.parse_chunk(_chunk({"tool_calls": [
            "junk",
            {"index": 0, "id": "a", "function": "junk"},
            {"index": None, "function": {"arguments": "{}"}},
        ]}))
        assert [(d.index, d.id, d.function_name) for d in fragment.tool_calls] == [
            (0, "a", None),
            (None, None, None),
        ]

    def test_non_string_content_ignored(self):
        fragment = OpenAICompatClient.parse_chunk(_chunk({"role": 1, "content": ["x"]}))
        assert fragment.role is None
        assert fragment.text is None


class TestMalformedStream:
    async def test_malformed_chunks_do_not_end_stream(self):
        def handler(request):
            body = _sse(
                [1, 2],
                {"choices": ["junk"]},
                _chunk({"content": "still "}),
                _chunk({"tool_calls": ["junk"]}),
                _chunk({"content": "here"}, "stop"),
            )
            return httpx.Response(200, content=body)

        fragments = await _collect(_client(handler), [Message(role="user", content="Hi")])

        assert "".join(f.text or "" for f in fragments) == "still here"
        assert fragments[-1].finish_reason is FinishReason.STOP
