"""
Sectioned prompt builder.

A prompt is an ordered list of ``PromptSection``s, each pairing a predicate
("does this request have anything for me?") with a renderer.  Sections are
emitted in a fixed kind order -- context, setting, constraints, task -- and
within a kind in declaration order.  Sections whose predicate is false or
whose renderer returns an empty string are skipped, so empty request fields
simply disappear from the prompt.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import IntEnum
from typing import Callable, Generic, Iterable, TypeVar

from storyforge.llm.types import GenerationRequest, Message, SamplingOptions

R = TypeVar("R")

SECTION_SEPARATOR = "\n\n"


class SectionKind(IntEnum):
    CONTEXT = 10
    SETTING = 20
    CONSTRAINTS = 30
    TASK = 40


def _always(_request: object) -> bool:
    return True


@dataclass(frozen=True)
class PromptSection(Generic[R]):
    name: str
    kind: SectionKind
    render: Callable[[R], str]
    when: Callable[[R], bool] = _always


class PromptBuilder(Generic[R]):
    """
    Turns a domain request into a ``GenerationRequest``.

    Parameters
    ----------
    system_prompt:
        Fixed system prompt for every request built here.
    sections:
        Sections in declaration order; ``render`` sorts them by kind.
    options:
        Default sampling options (temperature, max tokens).
    """

    def __init__(
        self,
        system_prompt: str,
        sections: Iterable[PromptSection[R]],
        options: SamplingOptions | None = None,
    ) -> None:
        self.system_prompt = system_prompt
        self.sections = sorted(sections, key=lambda s: s.kind)
        self.options = options or SamplingOptions()

    def rendered_sections(self, request: R) -> list[tuple[str, str]]:
        """``(name, text)`` for each section that contributes to *request*."""
        out: list[tuple[str, str]] = []
        for section in self.sections:
            if not section.when(request):
                continue
            text = section.render(request).strip()
            if text:
                out.append((section.name, text))
        return out

    def render(self, request: R) -> str:
        return SECTION_SEPARATOR.join(text for _, text in self.rendered_sections(request))

    def build(
        self,
        request: R,
        *,
        stream: bool = False,
        model: str | None = None,
    ) -> GenerationRequest:
        options = replace(self.options, stream=stream)
        if model:
            options = replace(options, model=model)
        return GenerationRequest(
            system_prompt=self.system_prompt,
            messages=(Message(role="user", content=self.render(request)),),
            options=options,
        )


# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------


def labelled(label: str, value: object) -> str:
    """``"label: value"`` or ``""`` when *value* is empty."""
    if value in (None, "", 0, [], ()):
        return ""
    return f"{label}: {value}"


def block(title: str, body: str) -> str:
    body = (body or "").strip()
    if not body:
        return ""
    return f"[{title}]\n{body}"


def numbered(title: str, items: Iterable[str]) -> str:
    lines = [f"{i}. {item}" for i, item in enumerate((x for x in items if x), start=1)]
    if not lines:
        return ""
    return block(title, "\n".join(lines))


def lines(*parts: str) -> str:
    return "\n".join(p for p in parts if p)
