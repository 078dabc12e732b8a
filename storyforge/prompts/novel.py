"""Prompt templates for the novel-writing generators."""

from __future__ import annotations

from dataclasses import dataclass

from storyforge.llm.types import SamplingOptions
from storyforge.prompts.builder import (
    PromptBuilder,
    PromptSection,
    SectionKind,
    block,
    labelled,
    lines,
    numbered,
)

JSON_ONLY = (
    "Return plain JSON only: no Markdown fences, no commentary, standard "
    "double quotes, and no raw line breaks inside string values."
)

DEFAULT_WORD_COUNT = 2000


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChapterRequest:
    title: str
    novel_title: str = ""
    novel_genre: str = ""
    world_setting: str = ""
    style_guide: str = ""
    outline: str = ""
    characters: tuple[str, ...] = ()
    plot_points: tuple[str, ...] = ()
    previous_summary: str = ""
    chapter_number: int = 1
    target_word_count: int = 0
    writing_style: str = ""
    focus_points: tuple[str, ...] = ()
    avoid_complete: bool = False


@dataclass(frozen=True)
class ChapterSuggestionsRequest:
    novel_title: str
    novel_genre: str = ""
    world_setting: str = ""
    previous_summary: str = ""
    chapter_number: int = 1
    count: int = 5


@dataclass(frozen=True)
class CharacterRequest:
    name: str
    novel_title: str = ""
    novel_genre: str = ""
    role: str = ""
    personality: str = ""
    background: str = ""


@dataclass(frozen=True)
class PlotRequest:
    title: str
    novel_title: str = ""
    novel_genre: str = ""
    world_setting: str = ""
    characters: str = ""
    plot_type: str = ""
    context: str = ""


@dataclass(frozen=True)
class ChapterSummaryRequest:
    chapter_title: str
    content: str
    max_words: int = 200


# ---------------------------------------------------------------------------
# Chapter
# ---------------------------------------------------------------------------

CHAPTER_SYSTEM = f"""You are a professional serial-fiction author who writes gripping chapters.

Principles:
1. Keep close to the target word count (within 200 words).
2. Tell the story progressively and leave room for later chapters.
3. Plant foreshadowing and keep suspense.
4. Show character through dialogue and action rather than description.
5. Do not resolve a storyline unless explicitly asked.

Respond with a JSON object with these fields:
{{
  "title": "chapter title",
  "content": "full chapter text",
  "summary": "summary, at most 200 words",
  "keyEvents": ["event 1", "event 2"],
  "characterDev": "character development notes",
  "plotProgress": "plot progress notes",
  "foreshadowing": "foreshadowing notes",
  "nextChapterHint": "hint for the next chapter"
}}

{JSON_ONLY}"""


def _chapter_basics(r: ChapterRequest) -> str:
    words = r.target_word_count or DEFAULT_WORD_COUNT
    return block(
        "Basics",
        lines(
            labelled("Novel", r.novel_title),
            f"Chapter: {r.chapter_number} - {r.title}",
            labelled("Genre", r.novel_genre),
            f"Target length: about {words} words (within 200)",
        ),
    )


CHAPTER_BUILDER: PromptBuilder[ChapterRequest] = PromptBuilder(
    system_prompt=CHAPTER_SYSTEM,
    options=SamplingOptions(temperature=0.8, max_tokens=3000),
    sections=[
        PromptSection("basics", SectionKind.CONTEXT, _chapter_basics),
        PromptSection(
            "previous",
            SectionKind.CONTEXT,
            lambda r: block("Story so far", r.previous_summary)
            + "\nKeep this chapter consistent with the story so far.",
            when=lambda r: bool(r.previous_summary),
        ),
        PromptSection(
            "world",
            SectionKind.SETTING,
            lambda r: block("World setting", r.world_setting)
            + "\nStay within the rules of this world; no abilities beyond it.",
            when=lambda r: bool(r.world_setting),
        ),
        PromptSection(
            "style_guide",
            SectionKind.SETTING,
            lambda r: block("Style guide", r.style_guide),
        ),
        PromptSection(
            "characters", SectionKind.SETTING, lambda r: numbered("Characters", r.characters)
        ),
        PromptSection("outline", SectionKind.CONSTRAINTS, lambda r: block("Outline", r.outline)),
        PromptSection(
            "plot_points",
            SectionKind.CONSTRAINTS,
            lambda r: numbered("Plot points", r.plot_points)
            + (
                "\nOnly advance these plot lines; do not conclude any of them."
                if r.avoid_complete
                else ""
            ),
            when=lambda r: bool(r.plot_points),
        ),
        PromptSection(
            "focus", SectionKind.CONSTRAINTS, lambda r: numbered("Focus", r.focus_points)
        ),
        PromptSection(
            "writing_style",
            SectionKind.CONSTRAINTS,
            lambda r: block("Writing style", r.writing_style),
        ),
        PromptSection(
            "task",
            SectionKind.TASK,
            lambda r: "Write the complete chapter with a clear arc and a "
            "suspenseful ending. " + JSON_ONLY,
        ),
    ],
)


# ---------------------------------------------------------------------------
# Chapter suggestions
# ---------------------------------------------------------------------------

SUGGESTIONS_SYSTEM = f"""You are a story consultant who proposes where a novel goes next.

Respond with a JSON object:
{{
  "suggestions": [
    {{
      "title": "chapter title",
      "outline": "Scene 1: ... Scene 2: ... Scene 3: ...",
      "description": "what makes this direction distinct",
      "type": "action"
    }}
  ]
}}

The outline must be a single line. {JSON_ONLY}"""

SUGGESTIONS_BUILDER: PromptBuilder[ChapterSuggestionsRequest] = PromptBuilder(
    system_prompt=SUGGESTIONS_SYSTEM,
    options=SamplingOptions(temperature=0.8, max_tokens=2000),
    sections=[
        PromptSection(
            "basics",
            SectionKind.CONTEXT,
            lambda r: block(
                "Novel",
                lines(
                    labelled("Novel", r.novel_title),
                    f"Next chapter: {r.chapter_number}",
                    labelled("Genre", r.novel_genre),
                ),
            ),
        ),
        PromptSection(
            "previous", SectionKind.CONTEXT, lambda r: block("Story so far", r.previous_summary)
        ),
        PromptSection(
            "world", SectionKind.SETTING, lambda r: block("World setting", r.world_setting)
        ),
        PromptSection(
            "task",
            SectionKind.TASK,
            lambda r: f"Propose {r.count} distinct directions for the next chapter, "
            "each with a compelling title and a concrete but brief outline "
            "that follows from the story so far.",
        ),
    ],
)


# ---------------------------------------------------------------------------
# Character
# ---------------------------------------------------------------------------

CHARACTER_SYSTEM = f"""You are a character designer for novels who builds rounded, believable characters.

Respond with a JSON object:
{{
  "name": "character name",
  "description": "full description",
  "personality": "personality traits",
  "background": "backstory",
  "appearance": "appearance",
  "skills": "skills and strengths",
  "goals": "goals and motivation",
  "weaknesses": "flaws and weaknesses"
}}

{JSON_ONLY}"""

CHARACTER_BUILDER: PromptBuilder[CharacterRequest] = PromptBuilder(
    system_prompt=CHARACTER_SYSTEM,
    options=SamplingOptions(temperature=0.8),
    sections=[
        PromptSection(
            "basics",
            SectionKind.CONTEXT,
            lambda r: lines(
                f"Character name: {r.name}",
                labelled("Novel", r.novel_title),
                labelled("Genre", r.novel_genre),
                labelled("Role", r.role),
                labelled("Personality hints", r.personality),
            ),
        ),
        PromptSection(
            "background",
            SectionKind.SETTING,
            lambda r: block("World and background", r.background)
            + "\nThe character's history and abilities must fit this world.",
            when=lambda r: bool(r.background),
        ),
        PromptSection(
            "genre",
            SectionKind.CONSTRAINTS,
            lambda r: f"Make the character fit a {r.novel_genre} novel.",
            when=lambda r: bool(r.novel_genre),
        ),
        PromptSection(
            "task",
            SectionKind.TASK,
            lambda r: "Create the complete character profile. " + JSON_ONLY,
        ),
    ],
)


# ---------------------------------------------------------------------------
# Plot
# ---------------------------------------------------------------------------

PLOT_SYSTEM = f"""You are a plot designer for novels who builds engaging, coherent storylines.

Respond with a JSON object:
{{
  "title": "plot title",
  "content": "detailed plot",
  "summary": "short summary",
  "conflict": "core conflict",
  "development": "possible developments",
  "characters": "characters involved",
  "impact": "impact on the story"
}}

{JSON_ONLY}"""

PLOT_BUILDER: PromptBuilder[PlotRequest] = PromptBuilder(
    system_prompt=PLOT_SYSTEM,
    options=SamplingOptions(temperature=0.8),
    sections=[
        PromptSection(
            "basics",
            SectionKind.CONTEXT,
            lambda r: lines(
                f"Plot title: {r.title}",
                labelled("Novel", r.novel_title),
                labelled("Genre", r.novel_genre),
                labelled("Plot type", r.plot_type),
            ),
        ),
        PromptSection("context", SectionKind.CONTEXT, lambda r: block("Context", r.context)),
        PromptSection(
            "world", SectionKind.SETTING, lambda r: block("World setting", r.world_setting)
        ),
        PromptSection(
            "characters", SectionKind.SETTING, lambda r: block("Characters", r.characters)
        ),
        PromptSection(
            "task",
            SectionKind.TASK,
            lambda r: "Design the complete plot. " + JSON_ONLY,
        ),
    ],
)


# ---------------------------------------------------------------------------
# Chapter summary (plain text)
# ---------------------------------------------------------------------------

SUMMARY_BUILDER: PromptBuilder[ChapterSummaryRequest] = PromptBuilder(
    system_prompt="You condense novel chapters into short context summaries.",
    options=SamplingOptions(temperature=0.5),
    sections=[
        PromptSection(
            "chapter",
            SectionKind.CONTEXT,
            lambda r: f"Chapter title: {r.chapter_title}\n\n{block('Chapter text', r.content)}",
        ),
        PromptSection(
            "task",
            SectionKind.TASK,
            lambda r: f"Summarize the chapter in at most {r.max_words} words, covering "
            "key plot developments, important character actions, and open "
            "foreshadowing. Return only the summary text.",
        ),
    ],
)
