"""
Incremental Server-Sent-Events frame decoder.

Each event has the form::

    event: <type>\\n
    data: <payload>\\n
    \\n

``event:`` is optional (the type defaults to ``"message"``); several
``data:`` lines in one frame are joined with ``\\n``.  Comment lines (leading
``:``) and unknown fields are ignored.  The decoder holds at most one
partial line plus one partial frame, so memory use does not grow with the
length of the stream.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SSEEvent:
    event: str
    data: str


class SSEDecoder:
    def __init__(self) -> None:
        self._buffer = ""
        self._event = ""
        self._data: list[str] = []

    def feed(self, text: str) -> list[SSEEvent]:
        """Consume a chunk of decoded text; return events completed by it."""
        self._buffer += text
        events: list[SSEEvent] = []
        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            event = self._process_line(line.rstrip("\r"))
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> list[SSEEvent]:
        """Finish the stream, emitting a trailing frame with no blank line."""
        events: list[SSEEvent] = []
        if self._buffer:
            line, self._buffer = self._buffer, ""
            event = self._process_line(line.rstrip("\r"))
            if event is not None:
                events.append(event)
        event = self._dispatch()
        if event is not None:
            events.append(event)
        return events

    def _process_line(self, line: str) -> SSEEvent | None:
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None

        field_name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if field_name == "event":
            self._event = value.strip()
        elif field_name == "data":
            self._data.append(value)
        return None

    def _dispatch(self) -> SSEEvent | None:
        if not self._data and not self._event:
            return None
        event = SSEEvent(event=self._event or "message", data="\n".join(self._data))
        self._event = ""
        self._data = []
        return event
