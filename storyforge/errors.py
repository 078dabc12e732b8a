"""
Exception hierarchy for the generation pipeline.

Every failure the pipeline can surface is a ``PipelineError`` subclass with a
stable ``code`` (see ``ErrorCode``) and a ``user_facing`` flag.  Callers use
the flag to choose between showing a generic failure to the user (transport
and provider problems) and logging the raw model output for debugging
(extraction and decoding problems).
"""

from __future__ import annotations


class ErrorCode:
    TRANSPORT = "transport"
    PROVIDER_REFUSAL = "provider_refusal"
    CALLBACK_ABORTED = "callback_aborted"
    CANCELLED = "cancelled"
    NO_JSON_OBJECT = "no_json_object"
    DECODE_FAILED = "decode_failed"
    UNKNOWN_TOOL = "unknown_tool"
    VALIDATION_ERROR = "validation_error"
    TOOL_LOOP = "tool_loop"


DEFAULT_PREVIEW_CHARS = 300


def preview(text: str, limit: int = DEFAULT_PREVIEW_CHARS) -> str:
    """Truncate *text* to *limit* characters, marking the cut with ``...``."""
    if limit <= 0 or len(text) <= limit:
        return text
    return text[:limit] + "..."


class PipelineError(RuntimeError):
    code: str = "pipeline_error"
    user_facing: bool = False


class TransportError(PipelineError):
    """Network failure, timeout, or non-2xx HTTP status."""

    code = ErrorCode.TRANSPORT
    user_facing = True

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProviderRefusalError(PipelineError):
    """The provider answered with a well-formed error payload."""

    code = ErrorCode.PROVIDER_REFUSAL
    user_facing = True


class CallbackAbortedError(PipelineError):
    """The consumer callback failed while a stream was being delivered."""

    code = ErrorCode.CALLBACK_ABORTED


class StreamCancelledError(PipelineError):
    code = ErrorCode.CANCELLED


class NoJSONObjectError(PipelineError):
    code = ErrorCode.NO_JSON_OBJECT

    def __init__(self, message: str, *, preview: str = "") -> None:
        super().__init__(message)
        self.preview = preview


class DecodeFailedError(PipelineError):
    code = ErrorCode.DECODE_FAILED

    def __init__(self, message: str, *, preview: str = "") -> None:
        super().__init__(message)
        self.preview = preview


class UnknownToolError(PipelineError):
    code = ErrorCode.UNKNOWN_TOOL

    def __init__(self, name: str) -> None:
        super().__init__(f"unknown tool: {name}")
        self.name = name


class ToolArgumentsError(PipelineError):
    code = ErrorCode.VALIDATION_ERROR


class ToolLoopError(PipelineError):
    """The model kept requesting tools past the configured round limit."""

    code = ErrorCode.TOOL_LOOP
