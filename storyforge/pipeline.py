"""
Structured-generation pipeline.

``StructuredPipeline`` ties the stages together::

    GenerationRequest -> Transport -> (text | fragments) -> Sanitizer
                      -> Extractor -> Decoder -> typed result

and, when a ``ToolRegistry`` is attached, loops tool calls back through
the dispatcher until the model answers with text.

The pipeline keeps no per-call state, so one instance can serve any number of
concurrent calls; the registry is the only shared mutable object.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import replace
from typing import Any, TypeVar

from storyforge.errors import (
    ToolArgumentsError,
    ToolLoopError,
    UnknownToolError,
)
from storyforge.llm.transport import FragmentCallback, Transport
from storyforge.llm.types import (
    AssembledResponse,
    GenerationRequest,
    Message,
    StreamFragment,
    TextDelta,
)
from storyforge.parsing.decoder import Decoder
from storyforge.parsing.sanitizer import StreamingSanitizer
from storyforge.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_TOOL_ROUNDS = 5


class StructuredPipeline:
    """
    Parameters
    ----------
    transport : Transport
        Sends requests to the provider.
    decoder : Decoder
        Extraction strategy and preview bound for decoding.
    registry : ToolRegistry, optional
        Tools offered to the model by ``run_tools``.
    max_tool_rounds : int
        Tool-call rounds allowed before ``ToolLoopError``.
    """

    def __init__(
        self,
        transport: Transport,
        decoder: Decoder | None = None,
        registry: ToolRegistry | None = None,
        max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS,
    ) -> None:
        self.transport = transport
        self.decoder = decoder or Decoder()
        self.registry = registry
        self.max_tool_rounds = max_tool_rounds

    # ------------------------------------------------------------------
    # Structured results
    # ------------------------------------------------------------------

    async def generate(self, request: GenerationRequest, schema: type[T] | Any) -> T:
        """Blocking call decoded into *schema*."""
        request = _with_stream(request, False)
        response = await self.transport.complete(request)
        return self.decoder.decode(response.text, schema)

    async def generate_stream(
        self,
        request: GenerationRequest,
        schema: type[T] | Any,
        callback: FragmentCallback | None = None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> T:
        """
        Streaming call decoded into *schema*.

        Text is repaired fragment by fragment as it arrives; *callback* still
        sees the provider's fragments unmodified.
        """
        request = _with_stream(request, True)
        sanitizer = StreamingSanitizer()

        async def on_fragment(fragment: StreamFragment) -> None:
            if isinstance(fragment, TextDelta):
                sanitizer.feed(fragment.text)
            if callback is not None:
                outcome = callback(fragment)
                if inspect.isawaitable(outcome):
                    await outcome

        response = await self.transport.stream(request, on_fragment, cancel=cancel)
        return self.decoder.decode_sanitized(sanitizer.finish(), schema, raw=response.text)

    def generate_sync(self, request: GenerationRequest, schema: type[T] | Any) -> T:
        """``generate`` for callers without a running event loop."""
        return asyncio.run(self.generate(request, schema))

    # ------------------------------------------------------------------
    # Plain text
    # ------------------------------------------------------------------

    async def generate_text(
        self,
        request: GenerationRequest,
        callback: FragmentCallback | None = None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> str:
        response = await self.transport.run(request, callback, cancel=cancel)
        return response.text.strip()

    # ------------------------------------------------------------------
    # Tool calls
    # ------------------------------------------------------------------

    async def run_tools(
        self,
        request: GenerationRequest,
        callback: FragmentCallback | None = None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> AssembledResponse:
        """
        Alternate between the model and the registry until the model stops
        asking for tools.

        Each round appends the assistant turn and one ``tool`` message per
        call.  Unknown tools and rejected arguments are reported back to the
        model as error text; any other tool failure propagates.
        """
        if self.registry is None:
            raise RuntimeError("run_tools requires a ToolRegistry")

        schemas = self.registry.to_openai_schema()
        if schemas:
            request = request.with_tools(schemas)

        for round_no in range(1, self.max_tool_rounds + 1):
            response = await self.transport.run(request, callback, cancel=cancel)
            if not response.tool_calls:
                return response

            logger.info(
                "Tool round %d: %s",
                round_no,
                ", ".join(call.name for call in response.tool_calls),
            )
            followups = [
                Message(
                    role="assistant",
                    content=response.text,
                    tool_calls=tuple(response.tool_calls),
                )
            ]
            for call in response.tool_calls:
                try:
                    result = await self.registry.adispatch(call.name, call.arguments)
                except (UnknownToolError, ToolArgumentsError) as exc:
                    result = f"[Error: {exc.code}] {exc}"
                followups.append(
                    Message(role="tool", content=result, tool_call_id=call.id)
                )
            request = request.with_messages(*followups)

        raise ToolLoopError(
            f"model still requesting tools after {self.max_tool_rounds} rounds"
        )

    async def generate_with_tools(
        self, request: GenerationRequest, schema: type[T] | Any
    ) -> T:
        response = await self.run_tools(request)
        return self.decoder.decode(response.text, schema)


def _with_stream(request: GenerationRequest, stream: bool) -> GenerationRequest:
    if request.options.stream == stream:
        return request
    return replace(request, options=replace(request.options, stream=stream))
