"""
Isolate the JSON object inside sanitized model output.

Two strategies are available:

``first_last`` (default)
    From the first ``{`` to the last ``}`` by index.  Handles leading prose
    and trailing commentary, which covers nearly all observed output.
``balanced``
    From the first ``{`` to the brace that closes it, counting depth and
    ignoring braces inside string literals.  Survives trailing text that
    itself contains ``}``.

Either way, commas directly before ``}`` or ``]`` (outside strings) are then
removed.
"""

from __future__ import annotations

from typing import Literal

from storyforge.errors import NoJSONObjectError, preview

Strategy = Literal["first_last", "balanced"]
STRATEGIES: tuple[str, ...] = ("first_last", "balanced")


def extract_json_object(
    text: str,
    strategy: Strategy = "first_last",
    preview_chars: int = 300,
) -> str:
    """Return the JSON object substring of *text* with trailing commas removed."""
    if strategy == "first_last":
        span = _first_last_span(text)
    elif strategy == "balanced":
        span = _balanced_span(text)
    else:
        raise ValueError(f"unknown extraction strategy: {strategy!r}")

    if span is None:
        raise NoJSONObjectError(
            "no JSON object found in model output",
            preview=preview(text, preview_chars),
        )
    start, end = span
    return remove_trailing_commas(text[start : end + 1])


def _first_last_span(text: str) -> tuple[int, int] | None:
    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end <= start:
        return None
    return start, end


def _balanced_span(text: str) -> tuple[int, int] | None:
    start = text.find("{")
    if start < 0:
        return None

    depth = 0
    in_string = False
    escape = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return start, i
    return None


def remove_trailing_commas(text: str) -> str:
    """Drop commas followed (after optional whitespace) by ``}`` or ``]``."""
    out: list[str] = []
    pending_comma: int | None = None
    in_string = False
    escape = False

    for ch in text:
        if in_string:
            out.append(ch)
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue

        if ch in "}]" and pending_comma is not None:
            del out[pending_comma]
            pending_comma = None
        elif not ch.isspace():
            pending_comma = None

        if ch == ",":
            pending_comma = len(out)
        elif ch == '"':
            in_string = True
        out.append(ch)

    return "".join(out)
