"""
Turn raw model output into a value of the caller's schema.

``Decoder.decode`` runs sanitize -> extract -> parse.  If the first attempt
fails it re-locates the object inside the sanitized text with the other
extraction strategy and tries exactly once more.  The result is either a
fully validated value or an exception; nothing partial is ever returned.

A schema is anything pydantic's ``TypeAdapter`` accepts (dataclasses,
``BaseModel`` subclasses, ``TypedDict``, ``dict``, ``list[...]``), or a raw
JSON-schema document wrapped in ``JsonSchema``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, TypeVar, overload

import jsonschema
from pydantic import TypeAdapter, ValidationError

from storyforge.errors import (
    DEFAULT_PREVIEW_CHARS,
    DecodeFailedError,
    NoJSONObjectError,
    preview,
)
from storyforge.parsing.extractor import Strategy, extract_json_object
from storyforge.parsing.sanitizer import sanitize

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class JsonSchema:
    """A JSON-schema document; decoding yields a validated ``dict``."""

    schema: dict

    def validate(self, instance: Any) -> Any:
        jsonschema.validate(instance=instance, schema=self.schema)
        return instance


@lru_cache(maxsize=128)
def _adapter(schema: Any) -> TypeAdapter:
    return TypeAdapter(schema)


def convert(data: Any, schema: Any) -> Any:
    """Validate already-parsed JSON *data* against *schema*."""
    if isinstance(schema, JsonSchema):
        return schema.validate(data)
    return _adapter(schema).validate_python(data)


# json.loads raises RecursionError on pathologically nested input
_ATTEMPT_ERRORS = (ValueError, RecursionError, ValidationError, jsonschema.ValidationError)


class Decoder:
    """
    Parameters
    ----------
    strategy:
        Extraction strategy for the first attempt; the retry uses the other.
    preview_chars:
        Length bound for the raw-text preview carried by errors.
    """

    def __init__(
        self,
        strategy: Strategy = "first_last",
        preview_chars: int = DEFAULT_PREVIEW_CHARS,
    ) -> None:
        self.strategy = strategy
        self.preview_chars = preview_chars

    @property
    def fallback_strategy(self) -> Strategy:
        return "balanced" if self.strategy == "first_last" else "first_last"

    @overload
    def decode(self, raw: str, schema: type[T]) -> T: ...

    @overload
    def decode(self, raw: str, schema: Any) -> Any: ...

    def decode(self, raw, schema):
        """Sanitize, extract and validate *raw* provider text."""
        return self.decode_sanitized(sanitize(raw), schema, raw=raw)

    def decode_sanitized(self, cleaned: str, schema: Any, *, raw: str | None = None) -> Any:
        """
        Extract and validate text that has already been sanitized.

        *raw* is the original provider text, used only for error previews.
        """
        raw = cleaned if raw is None else raw
        if "{" not in cleaned:
            raise NoJSONObjectError(
                "no JSON object found in model output",
                preview=preview(raw, self.preview_chars),
            )

        try:
            return self._attempt(cleaned, schema, self.strategy)
        except (NoJSONObjectError, *_ATTEMPT_ERRORS) as first:
            logger.warning(
                "Decode attempt with %s extraction failed (%s); retrying with %s",
                self.strategy,
                _describe(first),
                self.fallback_strategy,
            )
            first_error = first

        try:
            return self._attempt(cleaned, schema, self.fallback_strategy)
        except NoJSONObjectError as second:
            if isinstance(first_error, NoJSONObjectError):
                logger.error("No JSON object in model output: %s", second.preview)
                raise NoJSONObjectError(
                    "no JSON object found in model output",
                    preview=preview(raw, self.preview_chars),
                ) from second
            self._fail(raw, first_error)
        except _ATTEMPT_ERRORS as second:
            self._fail(raw, second)

    def _attempt(self, cleaned: str, schema: Any, strategy: Strategy) -> Any:
        extracted = extract_json_object(cleaned, strategy, self.preview_chars)
        return convert(json.loads(extracted), schema)

    def _fail(self, raw: str, cause: BaseException) -> None:
        text_preview = preview(raw, self.preview_chars)
        logger.error("Failed to decode model output: %s (response: %s)",
                     _describe(cause), text_preview)
        raise DecodeFailedError(
            f"failed to decode model output: {_describe(cause)}",
            preview=text_preview,
        ) from cause


def _describe(exc: BaseException) -> str:
    if isinstance(exc, jsonschema.ValidationError):
        return exc.message
    if isinstance(exc, ValidationError):
        return f"{exc.error_count()} validation error(s) for {exc.title}"
    return str(exc)


def decode(
    raw: str,
    schema: Any,
    *,
    strategy: Strategy = "first_last",
    preview_chars: int = DEFAULT_PREVIEW_CHARS,
) -> Any:
    """Module-level shortcut for ``Decoder(strategy, preview_chars).decode``."""
    return Decoder(strategy, preview_chars).decode(raw, schema)
