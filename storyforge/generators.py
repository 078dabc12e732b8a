"""
Novel-writing generators built on ``StructuredPipeline``.

Each generator pairs a prompt builder from ``storyforge.prompts.novel`` with
a pydantic result model.  Passing a *callback* switches the call to
streaming mode; the callback then receives every fragment as it arrives.
"""

from __future__ import annotations

import asyncio
import logging

from pydantic import BaseModel, ConfigDict, Field

from storyforge.llm.transport import FragmentCallback
from storyforge.pipeline import StructuredPipeline
from storyforge.prompts.builder import PromptBuilder
from storyforge.prompts.novel import (
    CHAPTER_BUILDER,
    CHARACTER_BUILDER,
    PLOT_BUILDER,
    SUGGESTIONS_BUILDER,
    SUMMARY_BUILDER,
    ChapterRequest,
    ChapterSuggestionsRequest,
    ChapterSummaryRequest,
    CharacterRequest,
    PlotRequest,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result models
# ---------------------------------------------------------------------------


class ChapterDraft(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str
    content: str
    summary: str = ""
    key_events: list[str] = Field(default_factory=list, alias="keyEvents")
    character_dev: str = Field("", alias="characterDev")
    plot_progress: str = Field("", alias="plotProgress")
    foreshadowing: str = ""
    next_chapter_hint: str = Field("", alias="nextChapterHint")


class ChapterSuggestion(BaseModel):
    title: str
    outline: str = ""
    description: str = ""
    type: str = ""


class ChapterSuggestions(BaseModel):
    suggestions: list[ChapterSuggestion] = Field(default_factory=list)


class CharacterProfile(BaseModel):
    name: str
    description: str
    personality: str = ""
    background: str = ""
    appearance: str = ""
    skills: str = ""
    goals: str = ""
    weaknesses: str = ""


class PlotOutline(BaseModel):
    title: str
    content: str
    summary: str = ""
    conflict: str = ""
    development: str = ""
    characters: str = ""
    impact: str = ""


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------


class NovelGenerator:
    """
    Parameters
    ----------
    pipeline:
        The structured pipeline every call goes through.
    model:
        Overrides the provider's default model for requests built here.
    """

    def __init__(self, pipeline: StructuredPipeline, model: str | None = None) -> None:
        self.pipeline = pipeline
        self.model = model

    async def generate_chapter(
        self,
        request: ChapterRequest,
        callback: FragmentCallback | None = None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> ChapterDraft:
        logger.info("Generating chapter %d: %s", request.chapter_number, request.title)
        return await self._structured(CHAPTER_BUILDER, request, ChapterDraft, callback, cancel)

    async def suggest_chapters(
        self,
        request: ChapterSuggestionsRequest,
        callback: FragmentCallback | None = None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> list[ChapterSuggestion]:
        logger.info(
            "Suggesting %d directions for chapter %d of %s",
            request.count,
            request.chapter_number,
            request.novel_title,
        )
        result = await self._structured(
            SUGGESTIONS_BUILDER, request, ChapterSuggestions, callback, cancel
        )
        return result.suggestions

    async def generate_character(
        self,
        request: CharacterRequest,
        callback: FragmentCallback | None = None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> CharacterProfile:
        logger.info("Generating character %s", request.name)
        return await self._structured(
            CHARACTER_BUILDER, request, CharacterProfile, callback, cancel
        )

    async def generate_plot(
        self,
        request: PlotRequest,
        callback: FragmentCallback | None = None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> PlotOutline:
        logger.info("Generating plot %s", request.title)
        return await self._structured(PLOT_BUILDER, request, PlotOutline, callback, cancel)

    async def summarize_chapter(self, request: ChapterSummaryRequest) -> str:
        """Plain-text summary, used as context for the next chapter."""
        built = SUMMARY_BUILDER.build(request, model=self.model)
        return await self.pipeline.generate_text(built)

    async def _structured(self, builder: PromptBuilder, request, schema, callback, cancel):
        if callback is None:
            built = builder.build(request, model=self.model)
            return await self.pipeline.generate(built, schema)
        built = builder.build(request, stream=True, model=self.model)
        return await self.pipeline.generate_stream(built, schema, callback, cancel=cancel)
