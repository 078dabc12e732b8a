"""Abstract base class for LLM providers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator

import httpx

from storyforge.errors import TransportError
from storyforge.llm.types import GenerationRequest, StreamFragment


class Provider(ABC):
    """
    A provider encapsulates access to a single LLM endpoint.

    ``fragments`` is the only entry point: it yields ``StreamFragment``
    objects in arrival order and always finishes with exactly one ``Done`` or
    ``Error``.  With ``request.options.stream`` unset the provider makes one
    blocking request and replays the complete body as fragments, so
    streaming and non-streaming callers share one code path.

    Transport-level failures (connection errors, timeouts, non-2xx
    statuses) are raised as ``TransportError``; errors the provider reports
    inside a well-formed payload are yielded as an ``Error`` fragment.
    """

    @abstractmethod
    async def fragments(
        self, request: GenerationRequest
    ) -> AsyncIterator[StreamFragment]:
        ...
        # Make the method an async generator so sub-classes can ``yield``.
        if False:  # pragma: no cover
            yield  # type: ignore[misc]

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable provider name (e.g. ``"openai-compat"``)."""
        ...


def mask_key(api_key: str) -> str:
    return f"{api_key[:6]}..." if api_key else "(none)"


async def raise_for_status(response: httpx.Response) -> None:
    """Turn a non-2xx response into ``TransportError``, keeping a body excerpt."""
    if response.is_success:
        return
    body = await response.aread()
    excerpt = body.decode("utf-8", errors="replace")[:200]
    raise TransportError(
        f"HTTP {response.status_code} from {response.request.url}: {excerpt}",
        status_code=response.status_code,
    )
