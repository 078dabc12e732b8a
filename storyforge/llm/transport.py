"""
Transport -- drives a provider and delivers its fragments to the caller.

Both call modes run the same loop:

  1. Pull ``StreamFragment`` objects from the provider one at a time.
  2. Hand each one to the consumer callback (streaming) or to nobody
     (blocking) and fold it into an ``AssembledResponse``.
  3. Stop at the first ``Done`` (success) or ``Error`` (raises
     ``ProviderRefusalError``).

The loop awaits the callback before pulling the next fragment, so a slow
consumer throttles the read side of the connection.  Cancellation is
checked at every fragment boundary and also interrupts a pending read, so a
stalled stream stops as soon as the caller cancels.  Leaving the loop for
any reason closes the provider generator, which releases the HTTP connection.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from contextlib import aclosing
from typing import Any, AsyncIterator, Awaitable, Callable

from storyforge.errors import (
    CallbackAbortedError,
    ProviderRefusalError,
    StreamCancelledError,
    TransportError,
)
from storyforge.llm.providers.base import Provider
from storyforge.llm.types import (
    AssembledResponse,
    Done,
    Error,
    GenerationRequest,
    SessionInfo,
    StreamFragment,
    TextDelta,
    ToolCallRequest,
    Usage,
)

logger = logging.getLogger(__name__)

FragmentCallback = Callable[[StreamFragment], "Awaitable[Any] | Any"]

DEFAULT_TIMEOUT = 60.0

_END = object()


class Transport:
    """
    Sends a ``GenerationRequest`` through a provider.

    Parameters
    ----------
    provider:
        The provider that speaks the upstream wire format.
    timeout:
        Ceiling in seconds for ``complete``.  Streaming calls are bounded
        only by the connection lifetime and by caller cancellation.
    """

    def __init__(self, provider: Provider, timeout: float = DEFAULT_TIMEOUT) -> None:
        self._provider = provider
        self._timeout = timeout
        self.total_usage = Usage()

    @property
    def provider(self) -> Provider:
        return self._provider

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(
        self,
        request: GenerationRequest,
        callback: FragmentCallback | None = None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> AssembledResponse:
        """Dispatch on ``request.options.stream``."""
        if request.options.stream:
            return await self.stream(request, callback, cancel=cancel)
        return await self.complete(request)

    async def complete(self, request: GenerationRequest) -> AssembledResponse:
        """Blocking call: collect every fragment, return the assembled turn."""
        try:
            return await asyncio.wait_for(
                self._drive(request, None, None), timeout=self._timeout
            )
        except asyncio.TimeoutError as exc:
            raise TransportError(
                f"{self._provider.name} did not answer within {self._timeout:g}s"
            ) from exc

    async def complete_text(self, request: GenerationRequest) -> str:
        return (await self.complete(request)).text

    async def stream(
        self,
        request: GenerationRequest,
        callback: FragmentCallback | None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> AssembledResponse:
        """
        Streaming call: deliver each fragment to *callback* as it arrives.

        Raises ``StreamCancelledError`` once *cancel* is set,
        ``CallbackAbortedError`` if the callback raises, and
        ``ProviderRefusalError`` after delivering an ``Error`` fragment.
        """
        return await self._drive(request, callback, cancel)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _drive(
        self,
        request: GenerationRequest,
        callback: FragmentCallback | None,
        cancel: asyncio.Event | None,
    ) -> AssembledResponse:
        started = time.monotonic()
        result = AssembledResponse(provider=self._provider.name)
        text_parts: list[str] = []

        async with aclosing(self._provider.fragments(request)) as fragments:
            terminated = False
            while True:
                fragment = await _next_fragment(fragments, cancel)
                if fragment is _END:
                    break
                _fold(result, text_parts, fragment)
                await self._emit(callback, fragment)

                if isinstance(fragment, Error):
                    logger.warning(
                        "Provider %s refused: %s", self._provider.name, fragment.message
                    )
                    raise ProviderRefusalError(fragment.message)
                if isinstance(fragment, Done):
                    terminated = True
                    break
                _check_cancel(cancel)

            if not terminated:
                await self._emit(callback, Done())

        result.text = "".join(text_parts)
        if result.usage is not None:
            self._add_usage(result.usage)
        logger.info(
            "Call completed: provider=%s duration=%.2fs chars=%d tool_calls=%d usage=%s",
            self._provider.name,
            time.monotonic() - started,
            len(result.text),
            len(result.tool_calls),
            result.usage,
        )
        return result

    async def _emit(
        self, callback: FragmentCallback | None, fragment: StreamFragment
    ) -> None:
        if callback is None:
            return
        try:
            outcome = callback(fragment)
            if inspect.isawaitable(outcome):
                await outcome
        except StreamCancelledError:
            raise
        except Exception as exc:
            logger.info("Fragment callback failed, aborting stream: %s", exc)
            raise CallbackAbortedError(f"fragment callback failed: {exc}") from exc

    def _add_usage(self, usage: Usage) -> None:
        self.total_usage = Usage(
            prompt_tokens=self.total_usage.prompt_tokens + usage.prompt_tokens,
            completion_tokens=self.total_usage.completion_tokens + usage.completion_tokens,
            total_tokens=self.total_usage.total_tokens + usage.total_tokens,
        )


def _check_cancel(cancel: asyncio.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise StreamCancelledError("stream cancelled by caller")


async def _next_fragment(
    fragments: AsyncIterator[StreamFragment], cancel: asyncio.Event | None
) -> Any:
    """Pull one fragment, giving up as soon as *cancel* is set."""
    if cancel is None:
        return await anext(fragments, _END)
    _check_cancel(cancel)

    read = asyncio.ensure_future(anext(fragments, _END))
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({read, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not read.done():
            read.cancel()
            # the generator must unwind before aclose() may run
            await asyncio.wait({read})

    _check_cancel(cancel)
    return read.result()


def _fold(
    result: AssembledResponse, text_parts: list[str], fragment: StreamFragment
) -> None:
    if isinstance(fragment, TextDelta):
        text_parts.append(fragment.text)
    elif isinstance(fragment, ToolCallRequest):
        result.tool_calls.append(fragment.to_call())
    elif isinstance(fragment, Usage):
        result.usage = fragment
    elif isinstance(fragment, SessionInfo):
        result.session.update(fragment.data)
