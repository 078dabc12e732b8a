"""LLM subsystem -- providers, transport, and streaming tool-call assembly."""

from storyforge.llm.types import (
    AssembledResponse,
    Done,
    Error,
    GenerationRequest,
    Message,
    SamplingOptions,
    SessionInfo,
    StreamFragment,
    TextDelta,
    ToolCall,
    ToolCallRequest,
    Usage,
)
from storyforge.llm.tool_call_assembler import RawToolDelta, ToolCallAssembler
from storyforge.llm.transport import Transport

__all__ = [
    "AssembledResponse",
    "Done",
    "Error",
    "GenerationRequest",
    "Message",
    "RawToolDelta",
    "SamplingOptions",
    "SessionInfo",
    "StreamFragment",
    "TextDelta",
    "ToolCall",
    "ToolCallAssembler",
    "ToolCallRequest",
    "Transport",
    "Usage",
]
