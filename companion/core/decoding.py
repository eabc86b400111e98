"""
CareCompanion — Model output decoding.

Every JSON-shaped LLM response passes through `decode_json_model()`, which
strips code fences, parses, and validates against a pydantic model. The
result is a `Decoded` value: callers branch on `.ok` instead of catching
exceptions deep inside business logic.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Generic, TypeVar

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass(frozen=True)
class Decoded(Generic[ModelT]):
    """Outcome of decoding one model response."""

    value: ModelT | None = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.value is not None


def clean_llm_response(raw_text: str) -> str:
    """Remove markdown code block delimiters from LLM's raw response."""
    cleaned_text = raw_text.strip()
    if cleaned_text.startswith("```json"):
        cleaned_text = cleaned_text.removeprefix("```json")
    elif cleaned_text.startswith("```"):
        cleaned_text = cleaned_text.removeprefix("```")
    if cleaned_text.endswith("```"):
        cleaned_text = cleaned_text.removesuffix("```")
    return cleaned_text.strip()


def decode_json_model(raw_text: str | None, model: type[ModelT]) -> Decoded[ModelT]:
    """Parse *raw_text* as a JSON object and validate it against *model*."""
    if not raw_text or not raw_text.strip():
        return Decoded(error="empty response")

    cleaned = clean_llm_response(raw_text)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        logger.warning("Model response is not JSON: %s — raw: '%s'", exc, cleaned[:200])
        return Decoded(error=f"invalid JSON: {exc}")

    if not isinstance(data, dict):
        logger.warning("Model returned %s instead of an object", type(data).__name__)
        return Decoded(error=f"expected object, got {type(data).__name__}")

    try:
        return Decoded(value=model.model_validate(data))
    except ValidationError as exc:
        logger.warning("Model response failed %s validation: %s", model.__name__, exc)
        return Decoded(error=f"schema mismatch: {exc.error_count()} error(s)")
