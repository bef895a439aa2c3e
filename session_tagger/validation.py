"""Strict validation of model replies into suggestion records."""

import json
import logging
import re
from typing import Any, Literal, Union

from pydantic import BaseModel, Field, StrictFloat, StrictInt, ValidationError, field_validator

from .config import MAX_SUGGESTIONS
from .errors import ResponseValidationError
from .models import TagSuggestionResult

logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r"^```(?:json)?\s*\n(.*?)\n?```$", re.DOTALL)


class SuggestionEntry(BaseModel):
    """One entry of the model's ``suggestions`` array."""

    tagName: str = Field(min_length=1)
    confidence: Union[StrictFloat, StrictInt]
    category: Literal["task_type", "technology", "domain", "complexity", "outcome", "pattern"]
    reasoning: str = Field(min_length=1)

    @field_validator("tagName", "reasoning", mode="before")
    @classmethod
    def strip_text(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("confidence", mode="before")
    @classmethod
    def reject_bool(cls, value):
        if isinstance(value, bool):
            raise ValueError("confidence must be a number, not a boolean")
        return value

    @field_validator("confidence")
    @classmethod
    def within_unit_range(cls, value):
        if not 0 <= value <= 1:
            raise ValueError("confidence must be between 0 and 1")
        return value


class SuggestionEnvelope(BaseModel):
    suggestions: list[Any]


def _strip_code_fence(text: str) -> str:
    stripped = text.strip()
    match = _CODE_FENCE.match(stripped)
    return match.group(1) if match else stripped


def _first_error(exc: ValidationError) -> str:
    error = exc.errors()[0]
    location = ".".join(str(part) for part in error["loc"]) or "value"
    return f"{location}: {error['msg']}"


def validate_suggestion(suggestion) -> TagSuggestionResult:
    try:
        entry = SuggestionEntry.model_validate(suggestion)
    except ValidationError as e:
        raise ResponseValidationError(f"Invalid suggestion ({_first_error(e)})") from e

    return TagSuggestionResult(
        name=entry.tagName,
        confidence=float(entry.confidence),
        category=entry.category,
        reasoning=entry.reasoning,
    )


def parse_suggestions(response_text: str) -> list[TagSuggestionResult]:
    """Parse a model reply into at most MAX_SUGGESTIONS validated results.

    Raises:
        ResponseValidationError: if the reply is not the expected JSON shape
            or any single entry is invalid. No partial results are returned.
    """
    try:
        parsed = json.loads(_strip_code_fence(response_text))
    except (json.JSONDecodeError, TypeError) as e:
        logger.error(f"Failed to parse model response as JSON: {response_text[:200]!r}")
        raise ResponseValidationError("Response is not valid JSON") from e

    try:
        suggestions = SuggestionEnvelope.model_validate(parsed).suggestions
    except ValidationError as e:
        raise ResponseValidationError(
            f"Response must be an object with a suggestions array ({_first_error(e)})"
        ) from e

    if not suggestions:
        logger.warning("Model returned zero suggestions")
        return []

    if len(suggestions) > MAX_SUGGESTIONS:
        logger.warning(
            f"Model returned {len(suggestions)} suggestions, truncating to {MAX_SUGGESTIONS}"
        )
        suggestions = suggestions[:MAX_SUGGESTIONS]

    results = []
    for index, suggestion in enumerate(suggestions):
        try:
            results.append(validate_suggestion(suggestion))
        except ResponseValidationError as e:
            logger.warning(f"Invalid suggestion at index {index}: {e}")
            raise
    return results
