"""
Text repair for near-JSON model output.

Models asked for "pure JSON" still wrap it in Markdown fences, use
typographic quotes and full-width punctuation, leak zero-width or control
characters, and put literal newlines inside string values.  ``sanitize``
undoes all of that in a single left-to-right pass:

  * typographic quotes and full-width ``：，｛｝［］`` become ASCII;
  * zero-width characters, BOMs and C0/DEL control characters are dropped,
    except newline, carriage return and tab;
  * newline, carriage return and tab *inside a double-quoted string* become
    a single space each; outside strings they pass through untouched;
  * leading/trailing Markdown fences and surrounding whitespace are removed.

String boundaries are tracked with two flags, "inside a string" and
"escape pending".  When quotes are unbalanced the scan just carries on;
the extractor or decoder then fails cleanly rather than the sanitizer
guessing further.

``StreamingSanitizer`` applies the same character rules incrementally, so a
stream can be repaired fragment by fragment.
"""

from __future__ import annotations

FENCE = "```"
FENCE_LANGS = ("json", "JSON")

# Applied per character before the string-state scan.
CHAR_MAP: dict[str, str] = {
    "“": '"',  # left double quotation mark
    "”": '"',  # right double quotation mark
    "‘": "'",  # left single quotation mark
    "’": "'",  # right single quotation mark
    "：": ":",  # full-width colon
    "，": ",",  # full-width comma
    "｛": "{",  # full-width left brace
    "｝": "}",  # full-width right brace
    "［": "[",  # full-width left bracket
    "］": "]",  # full-width right bracket
}

ZERO_WIDTH = frozenset("​‌‍⁠﻿")
STRING_WHITESPACE = frozenset("\n\r\t")


def _is_dropped_control(ch: str) -> bool:
    code = ord(ch)
    return (code < 0x20 and ch not in STRING_WHITESPACE) or code == 0x7F


class StreamingSanitizer:
    """
    Incremental sanitizer.

    ``feed`` returns the repaired text for each chunk as it arrives; the
    string/escape state survives chunk boundaries.  ``finish`` returns the
    whole repaired text with fences and outer whitespace stripped.
    """

    def __init__(self) -> None:
        self.in_string = False
        self.escape_pending = False
        self._parts: list[str] = []

    def feed(self, chunk: str | bytes) -> str:
        if isinstance(chunk, bytes):
            chunk = chunk.decode("utf-8", errors="ignore")

        out: list[str] = []
        for ch in chunk:
            ch = CHAR_MAP.get(ch, ch)
            if ch in ZERO_WIDTH or _is_dropped_control(ch):
                continue

            if self.escape_pending:
                self.escape_pending = False
                out.append(ch)
                continue

            if self.in_string:
                if ch == "\\":
                    self.escape_pending = True
                elif ch == '"':
                    self.in_string = False
                elif ch in STRING_WHITESPACE:
                    ch = " "
            elif ch == '"':
                self.in_string = True
            out.append(ch)

        repaired = "".join(out)
        self._parts.append(repaired)
        return repaired

    @property
    def text(self) -> str:
        """Everything repaired so far, before fence stripping."""
        return "".join(self._parts)

    def finish(self) -> str:
        return strip_fences(self.text)


def strip_fences(text: str) -> str:
    """
    Remove leading/trailing Markdown code fences and outer whitespace.

    Repeats until nothing changes, so stripping is idempotent even for
    doubled fences.
    """
    while True:
        stripped = text.strip()
        if stripped.startswith(FENCE):
            stripped = stripped[len(FENCE):]
            for lang in FENCE_LANGS:
                if stripped.startswith(lang):
                    stripped = stripped[len(lang):]
                    break
        if stripped.endswith(FENCE):
            stripped = stripped[: -len(FENCE)]
        stripped = stripped.strip()
        if stripped == text:
            return stripped
        text = stripped


def sanitize(text: str | bytes) -> str:
    """Repair *text* so a standard JSON decoder has a chance to parse it."""
    sanitizer = StreamingSanitizer()
    sanitizer.feed(text)
    return sanitizer.finish()
