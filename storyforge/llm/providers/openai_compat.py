"""
OpenAI-compatible chat-completion provider.

Works with any endpoint that speaks the OpenAI ``/v1/chat/completions`` wire
protocol -- OpenAI itself, Azure OpenAI, vLLM, LM Studio, DeepSeek, etc.

Dependencies: ``httpx`` (async HTTP client).  No ``openai`` SDK needed.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

import httpx

from storyforge.errors import TransportError
from storyforge.llm.providers.base import Provider, mask_key, raise_for_status
from storyforge.llm.sse import SSEDecoder, SSEEvent
from storyforge.llm.tool_call_assembler import RawToolDelta, ToolCallAssembler
from storyforge.llm.types import (
    Done,
    Error,
    GenerationRequest,
    SessionInfo,
    StreamFragment,
    TERMINAL_FRAGMENTS,
    TextDelta,
    Usage,
)

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


class OpenAICompatProvider(Provider):
    """
    Stream-capable provider for any OpenAI-API-compatible endpoint.

    Parameters
    ----------
    url:
        Base URL of the API, e.g. ``"https://api.openai.com/v1"`` or
        ``"http://localhost:8080/v1"``.
    model:
        Default model identifier; a request's ``options.model`` wins.
    api_key:
        Bearer token.  Pass ``""`` for unauthenticated local endpoints.
    timeout:
        Ceiling in seconds for a blocking request.  Streaming requests use it
        for connecting only; reads wait as long as the connection lives.
    transport:
        Optional ``httpx`` transport, mainly for tests
        (``httpx.MockTransport``).
    """

    def __init__(
        self,
        url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o-mini",
        api_key: str = "",
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url.rstrip("/")
        self._model = model
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport

    # ------------------------------------------------------------------
    # Provider interface
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return "openai-compat"

    @property
    def endpoint(self) -> str:
        return f"{self._url}/chat/completions"

    async def fragments(
        self, request: GenerationRequest
    ) -> AsyncIterator[StreamFragment]:
        body = self.build_body(request)
        headers = self._build_headers(request.options.stream)

        try:
            if request.options.stream:
                async for fragment in self._stream_request(body, headers):
                    yield fragment
            else:
                for fragment in await self._blocking_request(body, headers):
                    yield fragment
        except httpx.TimeoutException as exc:
            raise TransportError(f"request to {self.endpoint} timed out") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"request to {self.endpoint} failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def _build_headers(self, stream: bool) -> dict[str, str]:
        headers: dict[str, str] = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream" if stream else "application/json",
        }
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def build_body(self, request: GenerationRequest) -> dict:
        wire_messages = []
        for msg in request.wire_messages():
            m: dict = {"role": msg.role, "content": msg.content}
            if msg.tool_calls:
                m["tool_calls"] = [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {"name": tc.name, "arguments": tc.arguments},
                    }
                    for tc in msg.tool_calls
                ]
            if msg.tool_call_id:
                m["tool_call_id"] = msg.tool_call_id
            wire_messages.append(m)

        options = request.options
        body: dict = {
            "model": options.model or self._model,
            "messages": wire_messages,
            "temperature": options.temperature,
            "stream": options.stream,
        }
        if options.max_tokens:
            body["max_tokens"] = options.max_tokens
        if options.stream:
            body["stream_options"] = {"include_usage": True}
        if request.tools:
            body["tools"] = list(request.tools)
            body["tool_choice"] = "auto"

        logger.info(
            "REQUEST: model=%s messages=%d tools=%d stream=%s api_key=%s",
            body["model"],
            len(wire_messages),
            len(request.tools),
            options.stream,
            mask_key(self._api_key),
        )
        return body

    def _client(self, timeout: httpx.Timeout) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    # ------------------------------------------------------------------
    # Streaming request
    # ------------------------------------------------------------------

    async def _stream_request(
        self, body: dict, headers: dict[str, str]
    ) -> AsyncIterator[StreamFragment]:
        timeout = httpx.Timeout(self._timeout, read=None)
        async with self._client(timeout) as client:
            async with client.stream(
                "POST", self.endpoint, json=body, headers=headers
            ) as response:
                await raise_for_status(response)
                async for fragment in self._parse_sse_stream(response):
                    yield fragment

    async def _parse_sse_stream(
        self, response: httpx.Response
    ) -> AsyncIterator[StreamFragment]:
        """
        Translate SSE frames into fragments, one frame at a time.

        A ``data: [DONE]`` frame or an ``event: done`` frame ends the stream;
        an ``event: error`` frame ends it with an ``Error`` fragment.  If the
        connection closes without either, a ``Done`` is synthesised.
        """
        decoder = SSEDecoder()
        assembler = ToolCallAssembler()

        async for text in response.aiter_text():
            for event in decoder.feed(text):
                for fragment in self._event_to_fragments(event, assembler):
                    yield fragment
                    if isinstance(fragment, TERMINAL_FRAGMENTS):
                        return

        for event in decoder.flush():
            for fragment in self._event_to_fragments(event, assembler):
                yield fragment
                if isinstance(fragment, TERMINAL_FRAGMENTS):
                    return

        for fragment in self._flush_tool_calls(assembler):
            yield fragment
        yield Done()

    def _event_to_fragments(
        self, event: SSEEvent, assembler: ToolCallAssembler
    ) -> list[StreamFragment]:
        data_str = event.data.strip()

        if event.event == "done" or data_str == DONE_SENTINEL:
            return [*self._flush_tool_calls(assembler), Done()]

        if event.event == "error":
            return [Error(message=_error_message(data_str))]

        if event.event == "session":
            return [SessionInfo(data=_session_payload(data_str))]

        if not data_str:
            return []

        try:
            data = json.loads(data_str)
        except json.JSONDecodeError:
            logger.warning("Failed to parse SSE data: %s", data_str[:200])
            return []
        if not isinstance(data, dict):
            logger.warning("Ignoring non-object SSE payload: %s", data_str[:200])
            return []

        refusal = _payload_error(data)
        if refusal:
            return [Error(message=refusal)]

        fragments: list[StreamFragment] = []
        choices = data.get("choices") or []
        if choices:
            choice = choices[0]
            delta = choice.get("delta") or {}

            text_delta = delta.get("content") or ""
            if text_delta:
                fragments.append(TextDelta(text=text_delta))

            for raw_tc in delta.get("tool_calls") or []:
                func = raw_tc.get("function") or {}
                assembler.feed(
                    RawToolDelta(
                        call_index=raw_tc.get("index", 0),
                        id=raw_tc.get("id"),
                        name_delta=func.get("name") or "",
                        args_delta=func.get("arguments") or "",
                    )
                )

            if choice.get("finish_reason") is not None:
                fragments.extend(self._flush_tool_calls(assembler))

        usage = _parse_usage(data.get("usage"))
        if usage is not None:
            fragments.append(usage)
        return fragments

    def _flush_tool_calls(self, assembler: ToolCallAssembler) -> list[StreamFragment]:
        calls: list[StreamFragment] = list(assembler.flush())
        for err in assembler.errors:
            logger.warning("Tool-call assembly problem: %s", err)
        assembler.errors.clear()
        return calls

    # ------------------------------------------------------------------
    # Non-streaming request
    # ------------------------------------------------------------------

    async def _blocking_request(
        self, body: dict, headers: dict[str, str]
    ) -> list[StreamFragment]:
        async with self._client(httpx.Timeout(self._timeout)) as client:
            response = await client.post(self.endpoint, json=body, headers=headers)
            await raise_for_status(response)
            try:
                data = response.json()
            except ValueError as exc:
                raise TransportError(
                    f"response from {self.endpoint} is not JSON"
                ) from exc
        return self.parse_completion(data)

    def parse_completion(self, data: Any) -> list[StreamFragment]:
        """Convert a complete response body into the equivalent fragments."""
        if not isinstance(data, dict):
            return [Error(message="response body is not a JSON object")]

        refusal = _payload_error(data)
        if refusal:
            return [Error(message=refusal)]

        fragments: list[StreamFragment] = []
        choices = data.get("choices")
        if choices:
            message = choices[0].get("message") or {}
            content = message.get("content") or ""
            if content:
                fragments.append(TextDelta(text=content))

            assembler = ToolCallAssembler()
            for idx, raw_tc in enumerate(message.get("tool_calls") or []):
                func = raw_tc.get("function") or {}
                arguments = func.get("arguments", "")
                if not isinstance(arguments, str):
                    arguments = json.dumps(arguments)
                assembler.feed(
                    RawToolDelta(
                        call_index=idx,
                        id=raw_tc.get("id"),
                        name_delta=func.get("name") or "",
                        args_delta=arguments,
                    )
                )
            fragments.extend(self._flush_tool_calls(assembler))
        elif isinstance(data.get("response"), str):
            # Single-completion shape served behind a chat-compatible URL.
            if data["response"]:
                fragments.append(TextDelta(text=data["response"]))
        else:
            return [Error(message="no content in provider response")]

        usage = _parse_usage(data.get("usage"))
        if usage is not None:
            fragments.append(usage)
        fragments.append(Done())
        return fragments


# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------


def _payload_error(data: dict) -> str | None:
    err = data.get("error")
    if not err:
        return None
    if isinstance(err, dict):
        return str(err.get("message") or err)
    return str(err)


def _error_message(data_str: str) -> str:
    try:
        data = json.loads(data_str)
    except json.JSONDecodeError:
        return data_str or "provider reported an error"
    if isinstance(data, dict):
        return _payload_error(data) or str(data.get("message") or data)
    return str(data)


def _session_payload(data_str: str) -> dict:
    try:
        data = json.loads(data_str)
    except json.JSONDecodeError:
        return {"value": data_str}
    return data if isinstance(data, dict) else {"value": data}


def _parse_usage(raw: Any) -> Usage | None:
    if not isinstance(raw, dict):
        return None
    return Usage(
        prompt_tokens=int(raw.get("prompt_tokens") or 0),
        completion_tokens=int(raw.get("completion_tokens") or 0),
        total_tokens=int(raw.get("total_tokens") or 0),
    )
