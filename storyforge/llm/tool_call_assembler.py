"""
Assembles streaming tool-call deltas into complete ToolCallRequest fragments.

OpenAI-style streams split a tool call across many frames: the first carries
the id and (part of) the function name, later ones append argument text.
The assembler accumulates fragments keyed by ``index``; a call is finished
when the stream reports a ``finish_reason`` or ends.

The argument string is passed through untouched -- dispatch needs the exact
text the model produced.  A call whose arguments are not valid JSON is still
emitted but recorded in ``errors`` so the caller can log it.
"""

from __future__ import annotations

import json
from dataclasses import dataclass

from storyforge.llm.types import ToolCallRequest


@dataclass
class RawToolDelta:
    """One incremental tool-call fragment as it arrives on the wire."""

    call_index: int
    id: str | None = None
    name_delta: str = ""
    args_delta: str = ""


class ToolCallAssembler:
    """Buffers raw tool-call deltas and emits finished ``ToolCallRequest``s."""

    def __init__(self) -> None:
        self._buf: dict[int, dict] = {}
        self.errors: list[str] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def feed(self, delta: RawToolDelta) -> None:
        buf = self._buf.setdefault(
            delta.call_index, {"id": None, "name": "", "args": ""}
        )

        if delta.id and not buf["id"]:
            buf["id"] = delta.id

        if delta.name_delta:
            buf["name"] += delta.name_delta

        if delta.args_delta:
            buf["args"] += delta.args_delta

    @property
    def pending(self) -> bool:
        return bool(self._buf)

    def flush(self) -> list[ToolCallRequest]:
        """Finalize every buffered call, in index order."""
        calls: list[ToolCallRequest] = []
        for idx in sorted(self._buf):
            call = self._finalize(idx)
            if call is not None:
                calls.append(call)
        self._buf.clear()
        return calls

    def reset(self) -> None:
        """Discard all accumulated state."""
        self._buf.clear()
        self.errors.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _finalize(self, idx: int) -> ToolCallRequest | None:
        buf = self._buf[idx]
        name = buf["name"].strip()
        if not name:
            self.errors.append(f"tool_call_missing_name idx={idx}")
            return None

        raw_args = buf["args"] or "{}"
        try:
            json.loads(raw_args)
        except ValueError as exc:
            self.errors.append(
                f"tool_call_json_parse_failed idx={idx} err={exc}"
            )

        return ToolCallRequest(
            name=name,
            arguments=raw_args,
            id=buf["id"] or f"call_{idx}",
        )
