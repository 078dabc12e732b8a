"""Tests for OpenAICompatProvider, driven through httpx.MockTransport."""

from __future__ import annotations

import json

import httpx
import pytest

from storyforge.errors import ProviderRefusalError, TransportError
from storyforge.llm.providers.openai_compat import OpenAICompatProvider
from storyforge.llm.transport import Transport
from storyforge.llm.types import (
    Done,
    Error,
    GenerationRequest,
    Message,
    SamplingOptions,
    SessionInfo,
    TextDelta,
    ToolCall,
    ToolCallRequest,
    Usage,
)


def _request(stream: bool = True, **kwargs) -> GenerationRequest:
    return GenerationRequest(
        system_prompt="You are terse.",
        messages=(Message(role="user", content="Say hello"),),
        options=SamplingOptions(stream=stream, **kwargs),
    )


def _sse(*frames: str) -> bytes:
    return "".join(frames).encode("utf-8")


def _chunk(content: str | None = None, finish: str | None = None, **delta) -> str:
    if content is not None:
        delta["content"] = content
    payload = {"choices": [{"index": 0, "delta": delta, "finish_reason": finish}]}
    return f"data: {json.dumps(payload)}\n\n"


async def _collect(provider: OpenAICompatProvider, request: GenerationRequest) -> list:
    return [f async for f in provider.fragments(request)]


class Recorder:
    """MockTransport handler that records requests and replays a response."""

    def __init__(self, response: httpx.Response) -> None:
        self.response = response
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.response

    @property
    def body(self) -> dict:
        return json.loads(self.requests[-1].content)


def _provider(handler, **kwargs) -> OpenAICompatProvider:
    return OpenAICompatProvider(
        url="https://llm.test/v1",
        model="test-model",
        api_key=kwargs.pop("api_key", "sk-test-123456"),
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestRequestBody:
    async def test_body_and_headers(self):
        rec = Recorder(httpx.Response(200, content=_sse("data: [DONE]\n\n")))
        await _collect(_provider(rec), _request(temperature=0.3, max_tokens=50))

        req = rec.requests[0]
        assert req.url == "https://llm.test/v1/chat/completions"
        assert req.headers["Authorization"] == "Bearer sk-test-123456"
        assert req.headers["Accept"] == "text/event-stream"
        body = rec.body
        assert body["model"] == "test-model"
        assert body["messages"] == [
            {"role": "system", "content": "You are terse."},
            {"role": "user", "content": "Say hello"},
        ]
        assert body["temperature"] == 0.3
        assert body["max_tokens"] == 50
        assert body["stream"] is True
        assert body["stream_options"] == {"include_usage": True}
        assert "tools" not in body

    async def test_request_model_overrides_default(self):
        rec = Recorder(httpx.Response(200, content=_sse("data: [DONE]\n\n")))
        await _collect(_provider(rec), _request(model="other-model"))
        assert rec.body["model"] == "other-model"

    async def test_no_authorization_without_key(self):
        rec = Recorder(httpx.Response(200, content=_sse("data: [DONE]\n\n")))
        await _collect(_provider(rec, api_key=""), _request())
        assert "Authorization" not in rec.requests[0].headers

    async def test_tools_and_tool_messages_serialized(self):
        rec = Recorder(httpx.Response(200, content=_sse("data: [DONE]\n\n")))
        request = _request().with_messages(
            Message(
                role="assistant",
                content="",
                tool_calls=(ToolCall(id="c1", name="lookup", arguments='{"q": 1}'),),
            ),
            Message(role="tool", content="found", tool_call_id="c1"),
        )
        schema = {"type": "function", "function": {"name": "lookup", "parameters": {}}}
        await _collect(_provider(rec), request.with_tools([schema]))

        body = rec.body
        assert body["tools"] == [schema]
        assert body["tool_choice"] == "auto"
        assert body["messages"][2]["tool_calls"] == [
            {"id": "c1", "type": "function", "function": {"name": "lookup", "arguments": '{"q": 1}'}}
        ]
        assert body["messages"][3] == {"role": "tool", "content": "found", "tool_call_id": "c1"}


class TestStreamParsing:
    async def test_text_deltas_then_done(self):
        content = _sse(_chunk("Hel"), _chunk("lo"), _chunk(" world"), "data: [DONE]\n\n")
        fragments = await _collect(_provider(Recorder(httpx.Response(200, content=content))), _request())
        assert fragments == [TextDelta("Hel"), TextDelta("lo"), TextDelta(" world"), Done()]

    async def test_frames_split_across_network_chunks(self):
        raw = _sse(_chunk("Hel"), _chunk("lo"), "data: [DONE]\n\n")

        async def pieces():
            for i in range(0, len(raw), 5):
                yield raw[i : i + 5]

        provider = _provider(lambda req: httpx.Response(200, content=pieces()))
        assert await _collect(provider, _request()) == [TextDelta("Hel"), TextDelta("lo"), Done()]

    async def test_event_types(self):
        content = _sse(
            'event: session\ndata: {"session_id": "abc"}\n\n',
            'event: message\ndata: {"choices": [{"delta": {"content": "hi"}}]}\n\n',
            "event: done\ndata: {}\n\n",
            _chunk("never seen"),
        )
        fragments = await _collect(_provider(Recorder(httpx.Response(200, content=content))), _request())
        assert fragments == [SessionInfo({"session_id": "abc"}), TextDelta("hi"), Done()]

    async def test_error_event(self):
        content = _sse(_chunk("par"), 'event: error\ndata: {"error": "model overloaded"}\n\n')
        fragments = await _collect(_provider(Recorder(httpx.Response(200, content=content))), _request())
        assert fragments == [TextDelta("par"), Error("model overloaded")]

    async def test_error_payload_in_data(self):
        content = _sse('data: {"error": {"message": "rate limited"}}\n\n')
        fragments = await _collect(_provider(Recorder(httpx.Response(200, content=content))), _request())
        assert fragments == [Error("rate limited")]

    async def test_usage_frame(self):
        content = _sse(
            _chunk("x", finish="stop"),
            'data: {"choices": [], "usage": {"prompt_tokens": 4, "completion_tokens": 1, "total_tokens": 5}}\n\n',
            "data: [DONE]\n\n",
        )
        fragments = await _collect(_provider(Recorder(httpx.Response(200, content=content))), _request())
        assert fragments == [TextDelta("x"), Usage(4, 1, 5), Done()]

    async def test_garbage_frames_skipped(self):
        content = _sse(": ping\n\n", "data: not-json\n\n", "data: [1, 2]\n\n", _chunk("ok"))
        fragments = await _collect(_provider(Recorder(httpx.Response(200, content=content))), _request())
        assert fragments == [TextDelta("ok"), Done()]

    async def test_tool_call_deltas_assembled(self):
        content = _sse(
            _chunk(tool_calls=[{"index": 0, "id": "call_9", "function": {"name": "look", "arguments": ""}}]),
            _chunk(tool_calls=[{"index": 0, "function": {"name": "up", "arguments": '{"q":'}}]),
            _chunk(tool_calls=[{"index": 0, "function": {"arguments": ' "dragon"}'}}]),
            _chunk(finish="tool_calls"),
            "data: [DONE]\n\n",
        )
        fragments = await _collect(_provider(Recorder(httpx.Response(200, content=content))), _request())
        assert fragments == [
            ToolCallRequest(name="lookup", arguments='{"q": "dragon"}', id="call_9"),
            Done(),
        ]


class TestBlocking:
    async def test_choices_shape(self):
        rec = Recorder(
            httpx.Response(
                200,
                json={
                    "choices": [{"message": {"role": "assistant", "content": "Hello!"}}],
                    "usage": {"prompt_tokens": 2, "completion_tokens": 1, "total_tokens": 3},
                },
            )
        )
        fragments = await _collect(_provider(rec), _request(stream=False))
        assert fragments == [TextDelta("Hello!"), Usage(2, 1, 3), Done()]
        assert rec.body["stream"] is False
        assert "stream_options" not in rec.body

    async def test_response_shape(self):
        rec = Recorder(httpx.Response(200, json={"response": "single completion"}))
        fragments = await _collect(_provider(rec), _request(stream=False))
        assert fragments == [TextDelta("single completion"), Done()]

    async def test_error_shape(self):
        rec = Recorder(httpx.Response(200, json={"error": {"message": "invalid model"}}))
        fragments = await _collect(_provider(rec), _request(stream=False))
        assert fragments == [Error("invalid model")]

    async def test_empty_body_is_refusal(self):
        rec = Recorder(httpx.Response(200, json={}))
        fragments = await _collect(_provider(rec), _request(stream=False))
        assert fragments == [Error("no content in provider response")]

    async def test_tool_calls_in_message(self):
        rec = Recorder(
            httpx.Response(
                200,
                json={
                    "choices": [
                        {
                            "message": {
                                "content": None,
                                "tool_calls": [
                                    {"id": "t1", "function": {"name": "roll", "arguments": '{"sides": 6}'}}
                                ],
                            }
                        }
                    ]
                },
            )
        )
        fragments = await _collect(_provider(rec), _request(stream=False))
        assert fragments == [ToolCallRequest(name="roll", arguments='{"sides": 6}', id="t1"), Done()]

    async def test_non_json_body(self):
        rec = Recorder(httpx.Response(200, content=b"<html>oops</html>"))
        with pytest.raises(TransportError, match="not JSON"):
            await _collect(_provider(rec), _request(stream=False))


class TestTransportErrors:
    @pytest.mark.parametrize("stream", [True, False])
    async def test_non_2xx_status(self, stream):
        rec = Recorder(httpx.Response(503, text="upstream unavailable"))
        with pytest.raises(TransportError, match="HTTP 503") as exc_info:
            await _collect(_provider(rec), _request(stream=stream))
        assert exc_info.value.status_code == 503
        assert "upstream unavailable" in str(exc_info.value)

    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransportError, match="failed"):
            await _collect(_provider(handler), _request())

    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)

        with pytest.raises(TransportError, match="timed out"):
            await _collect(_provider(handler), _request(stream=False))


class TestThroughTransport:
    async def test_refusal_surfaces_as_exception(self):
        content = _sse('event: error\ndata: {"error": "content policy"}\n\n')
        transport = Transport(_provider(Recorder(httpx.Response(200, content=content))))
        with pytest.raises(ProviderRefusalError, match="content policy"):
            await transport.stream(_request(), None)

    async def test_stream_and_blocking_agree(self):
        streamed = _sse(_chunk('{"a": '), _chunk("1}"), "data: [DONE]\n\n")
        blocking = {"choices": [{"message": {"content": '{"a": 1}'}}]}
        stream_transport = Transport(_provider(Recorder(httpx.Response(200, content=streamed))))
        block_transport = Transport(_provider(Recorder(httpx.Response(200, json=blocking))))
        a = await stream_transport.stream(_request(), None)
        b = await block_transport.complete(_request(stream=False))
        assert a.text == b.text == '{"a": 1}'
