"""Core types for the LLM subsystem."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

ROLES = ("system", "user", "assistant", "tool")


@dataclass(frozen=True)
class ToolCall:
    """A finished tool call; *arguments* is the raw JSON text from the model."""

    id: str
    name: str
    arguments: str


@dataclass(frozen=True)
class Message:
    """A single message in a conversation."""

    role: str  # "system", "user", "assistant", "tool"
    content: str
    tool_calls: tuple[ToolCall, ...] = ()
    tool_call_id: str | None = None

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValueError(f"invalid message role: {self.role!r}")


@dataclass(frozen=True)
class SamplingOptions:
    model: str = ""
    temperature: float = 0.7
    max_tokens: int | None = None
    stream: bool = False

    def __post_init__(self) -> None:
        if not 0.0 <= self.temperature <= 2.0:
            raise ValueError(
                f"temperature must be within [0, 2], got {self.temperature}"
            )
        if self.max_tokens is not None and self.max_tokens <= 0:
            raise ValueError(f"max_tokens must be positive, got {self.max_tokens}")


@dataclass(frozen=True)
class GenerationRequest:
    """
    A model-agnostic request: system prompt, ordered messages, sampling.

    Built once per call by the request builder and never mutated.  Follow-up
    turns (tool results) are produced with ``with_messages``.
    """

    system_prompt: str = ""
    messages: tuple[Message, ...] = ()
    options: SamplingOptions = field(default_factory=SamplingOptions)
    tools: tuple[dict, ...] = ()

    def with_messages(self, *extra: Message) -> GenerationRequest:
        return GenerationRequest(
            system_prompt=self.system_prompt,
            messages=self.messages + tuple(extra),
            options=self.options,
            tools=self.tools,
        )

    def with_tools(self, tools: list[dict]) -> GenerationRequest:
        return GenerationRequest(
            system_prompt=self.system_prompt,
            messages=self.messages,
            options=self.options,
            tools=tuple(tools),
        )

    def wire_messages(self) -> list[Message]:
        """Messages as sent to a chat endpoint, system prompt first."""
        if self.system_prompt:
            return [Message(role="system", content=self.system_prompt), *self.messages]
        return list(self.messages)


# ---------------------------------------------------------------------------
# Stream fragments
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class SessionInfo:
    """Opaque metadata the provider attaches to a stream (e.g. a session id)."""

    data: dict


@dataclass(frozen=True)
class ToolCallRequest:
    name: str
    arguments: str
    id: str = ""

    def to_call(self) -> ToolCall:
        return ToolCall(id=self.id, name=self.name, arguments=self.arguments)


@dataclass(frozen=True)
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class Done:
    pass


@dataclass(frozen=True)
class Error:
    message: str


StreamFragment = Union[TextDelta, SessionInfo, ToolCallRequest, Usage, Done, Error]

TERMINAL_FRAGMENTS = (Done, Error)


@dataclass
class AssembledResponse:
    """
    Everything a finished call produced.

    Built by ``Transport`` from the fragments it delivered, for callers that
    want the whole turn at once.
    """

    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: Usage | None = None
    session: dict = field(default_factory=dict)
    provider: str | None = None
