"""
Ollama provider.

Talks to a local Ollama instance through its single-completion
``/api/generate`` endpoint.  The body carries one flattened ``prompt`` plus a
``system`` string; the response is either one JSON document with a
``response`` field or, when streaming, newline-delimited JSON objects ending
with ``"done": true``.

Dependencies: ``httpx``.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

import httpx

from storyforge.errors import TransportError
from storyforge.llm.providers.base import Provider, raise_for_status
from storyforge.llm.types import (
    Done,
    Error,
    GenerationRequest,
    StreamFragment,
    TERMINAL_FRAGMENTS,
    TextDelta,
    Usage,
)

logger = logging.getLogger(__name__)


class OllamaProvider(Provider):
    """
    Provider for a local `Ollama <https://ollama.com>`_ instance.

    Parameters
    ----------
    url:
        Base URL of the Ollama HTTP API (e.g. ``"http://localhost:11434"``).
    model:
        Default model tag, e.g. ``"llama3"`` or ``"qwen2.5"``.
    timeout:
        Ceiling in seconds for a blocking request.
    transport:
        Optional ``httpx`` transport, mainly for tests.
    """

    def __init__(
        self,
        url: str = "http://localhost:11434",
        model: str = "llama3",
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url.rstrip("/")
        self._model = model
        self._timeout = timeout
        self._transport = transport

    # ------------------------------------------------------------------
    # Provider interface
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return "ollama"

    @property
    def endpoint(self) -> str:
        return f"{self._url}/api/generate"

    async def fragments(
        self, request: GenerationRequest
    ) -> AsyncIterator[StreamFragment]:
        body = self.build_body(request)
        try:
            if request.options.stream:
                async for fragment in self._stream_request(body):
                    yield fragment
            else:
                for fragment in await self._blocking_request(body):
                    yield fragment
        except httpx.TimeoutException as exc:
            raise TransportError(f"request to {self.endpoint} timed out") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"request to {self.endpoint} failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def build_body(self, request: GenerationRequest) -> dict:
        if request.tools:
            logger.warning("Ollama generate endpoint ignores %d tool(s)", len(request.tools))

        options: dict[str, Any] = {"temperature": request.options.temperature}
        if request.options.max_tokens:
            options["num_predict"] = request.options.max_tokens

        body: dict = {
            "model": request.options.model or self._model,
            "prompt": _flatten_prompt(request),
            "stream": request.options.stream,
            "options": options,
        }
        if request.system_prompt:
            body["system"] = request.system_prompt
        return body

    def _client(self, timeout: httpx.Timeout) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def _stream_request(self, body: dict) -> AsyncIterator[StreamFragment]:
        timeout = httpx.Timeout(self._timeout, read=None)
        async with self._client(timeout) as client:
            async with client.stream("POST", self.endpoint, json=body) as response:
                await raise_for_status(response)

                async for line in response.aiter_lines():
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        data = json.loads(line)
                    except json.JSONDecodeError:
                        logger.warning("Ollama: failed to parse line: %s", line[:200])
                        continue

                    for fragment in self._data_to_fragments(data):
                        yield fragment
                        if isinstance(fragment, TERMINAL_FRAGMENTS):
                            return

                # Connection closed without a done line.
                yield Done()

    def _data_to_fragments(self, data: Any) -> list[StreamFragment]:
        """Convert one Ollama JSON object into fragments."""
        if not isinstance(data, dict):
            return []
        if data.get("error"):
            return [Error(message=str(data["error"]))]

        fragments: list[StreamFragment] = []
        text = data.get("response") or ""
        if text:
            fragments.append(TextDelta(text=text))

        if data.get("done"):
            prompt_tokens = int(data.get("prompt_eval_count") or 0)
            completion_tokens = int(data.get("eval_count") or 0)
            if prompt_tokens or completion_tokens:
                fragments.append(
                    Usage(
                        prompt_tokens=prompt_tokens,
                        completion_tokens=completion_tokens,
                        total_tokens=prompt_tokens + completion_tokens,
                    )
                )
            fragments.append(Done())
        return fragments

    # ------------------------------------------------------------------
    # Non-streaming
    # ------------------------------------------------------------------

    async def _blocking_request(self, body: dict) -> list[StreamFragment]:
        async with self._client(httpx.Timeout(self._timeout)) as client:
            response = await client.post(self.endpoint, json=body)
            await raise_for_status(response)
            try:
                data = response.json()
            except ValueError as exc:
                raise TransportError(
                    f"response from {self.endpoint} is not JSON"
                ) from exc

        if not isinstance(data, dict) or ("error" not in data and "response" not in data):
            return [Error(message="no content in provider response")]
        return self._data_to_fragments({**data, "done": True})


def _flatten_prompt(request: GenerationRequest) -> str:
    """Render the conversation as one prompt string for a completion endpoint."""
    turns = [m for m in request.messages if m.role != "system"]
    if len(turns) == 1 and turns[0].role == "user":
        return turns[0].content
    return "\n\n".join(f"{m.role.capitalize()}: {m.content}" for m in turns)
