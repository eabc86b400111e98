"""
CareCompanion — Semantic Parser.

Converts one free-text utterance ("I took my meds", "I feel dizzy") into a
typed Intent with a confidence score and an ambiguity flag, using the
configured LLM provider as a constrained JSON parser.

The parser never raises: provider errors, timeouts and malformed output all
degrade to an `unknown` intent with confidence 0 so the orchestrator can
still answer.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from companion.core.decoding import decode_json_model
from companion.core.llm import CompleteFn, LLMError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Intent contract — consumed by the resolver, event logger and orchestrator
# ---------------------------------------------------------------------------


class IntentType(str, Enum):
    MEDICATION_TAKEN = "medication_taken"
    MEDICATION_MISSED = "medication_missed"
    MEAL_LOGGED = "meal_logged"
    SYMPTOM_REPORTED = "symptom_reported"
    ACTIVITY_STARTED = "activity_started"
    ACTIVITY_ENDED = "activity_ended"
    LOCATION_UPDATE = "location_update"
    QUESTION = "question"
    UNKNOWN = "unknown"


# Intents that write a domain record and therefore may need disambiguation
MUTATING_INTENTS = frozenset({
    IntentType.MEDICATION_TAKEN,
    IntentType.MEDICATION_MISSED,
    IntentType.MEAL_LOGGED,
    IntentType.SYMPTOM_REPORTED,
    IntentType.ACTIVITY_STARTED,
    IntentType.ACTIVITY_ENDED,
})

_TYPE_SYNONYMS = {
    "med_taken": "medication_taken",
    "med_missed": "medication_missed",
}

_DEFAULT_AMBIGUITY_REASON = "missing details needed to log this safely"


class Intent(BaseModel):
    """Structured interpretation of one utterance.

    JSON example:
    {
        "type": "meal_logged",
        "entities": {"mealType": null, "foods": ""},
        "confidence": 0.6,
        "ambiguous": true,
        "ambiguityReason": "meal or snack"
    }
    """

    type: IntentType = IntentType.UNKNOWN
    entities: dict[str, Any] = Field(default_factory=dict)
    confidence: float = 0.0
    ambiguous: bool = False
    ambiguity_reason: str = Field(default="", alias="ambiguityReason")

    model_config = {"populate_by_name": True}

    @field_validator("type", mode="before")
    @classmethod
    def coerce_type(cls, v: Any) -> IntentType:
        if isinstance(v, IntentType):
            return v
        raw = str(v).strip().lower()
        try:
            return IntentType(_TYPE_SYNONYMS.get(raw, raw))
        except ValueError:
            logger.warning("LLM returned unknown intent: '%s'", v)
            return IntentType.UNKNOWN

    @field_validator("entities", mode="before")
    @classmethod
    def coerce_entities(cls, v: Any) -> dict[str, Any]:
        return v if isinstance(v, dict) else {}

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> float:
        try:
            value = float(v)
        except (TypeError, ValueError):
            return 0.0
        return min(1.0, max(0.0, value))

    @field_validator("ambiguity_reason", mode="before")
    @classmethod
    def coerce_reason(cls, v: Any) -> str:
        return "" if v is None else str(v)

    def model_post_init(self, __context: Any) -> None:
        # An ambiguous intent must always explain itself
        if self.ambiguous and not self.ambiguity_reason.strip():
            self.ambiguity_reason = _DEFAULT_AMBIGUITY_REASON

    @property
    def is_mutating(self) -> bool:
        return self.type in MUTATING_INTENTS


def unknown_intent() -> Intent:
    return Intent(type=IntentType.UNKNOWN, confidence=0.0, ambiguous=False)


@dataclass
class ParserContext:
    """Read-only user context handed to the parser for each turn."""

    medication_names: list[str] = field(default_factory=list)
    medication_doses: dict[str, str] = field(default_factory=dict)  # name → dose
    aliases: dict[str, str] = field(default_factory=dict)           # alias → resolved name


# ---------------------------------------------------------------------------
# Follow-up questions — deterministic so they stay stable and testable
# ---------------------------------------------------------------------------


def follow_up_question(intent: Intent) -> str:
    """Return the clarifying question for an ambiguous intent."""
    entities = intent.entities
    if intent.type in (IntentType.MEDICATION_TAKEN, IntentType.MEDICATION_MISSED):
        return "Which medicine did you take?"
    if intent.type is IntentType.MEAL_LOGGED:
        if not entities.get("mealType"):
            return "Was that a meal or a snack?"
        return "What did you eat?"
    if intent.type is IntentType.SYMPTOM_REPORTED:
        if not entities.get("symptom"):
            return "Can you tell me more? Are you feeling dizzy, weak, nauseous, or something else?"
        return "How severe is it, on a scale of 1 to 5?"
    if intent.type in (IntentType.ACTIVITY_STARTED, IntentType.ACTIVITY_ENDED):
        return "What activity are you doing?"
    return "Can you tell me more about that?"


# ---------------------------------------------------------------------------
# System prompt for LLM
# ---------------------------------------------------------------------------

_SYSTEM_PROMPT = """\
You are a natural language parser for a health tracking app used by older adults.
Parse the user's message into ONE structured intent.

User's medications: {medications}
User's known aliases: {aliases}

Return ONLY a JSON object with this shape:
{{
  "type": one of {types},
  "entities": {{ ... }},
  "confidence": 0.0-1.0,
  "ambiguous": true/false,
  "ambiguityReason": "why it's ambiguous (empty if not ambiguous)"
}}

Entities by type:
- medication_taken / medication_missed: {{"medication": "name or null", "time": "HH:MM or null"}}
- meal_logged: {{"mealType": "breakfast|lunch|dinner|snack or null", "foods": "description", "time": "HH:MM or null"}}
- symptom_reported: {{"symptom": "name or null", "severity": 1-5, "notes": "optional"}}
- activity_started / activity_ended: {{"activity": "walking|resting|going out|back home|..."}}
- location_update: {{"location": "home|outside|traveling"}}
- question: {{"question": "the user's question"}}

Resolve known aliases to the medication they stand for.

Examples:
- "I took my meds" → medication_taken, ambiguous (which medication?) when there is more than one medication
- "I took Metformin" → medication_taken, not ambiguous
- "I ate" → meal_logged, ambiguous, ambiguityReason "meal or snack"
- "I had lunch" → meal_logged, not ambiguous
- "I feel dizzy" → symptom_reported, symptom "dizziness", severity 3, not ambiguous
- "Going for a walk" → activity_started, not ambiguous
- "Can I eat pizza?" → question

Mark as ambiguous ONLY if resolving it matters for safety or correctness of
what gets logged — never just because the message is short.
No markdown, no explanation, no extra text.
"""


def _build_system_prompt(context: ParserContext) -> str:
    meds = ", ".join(
        f"{name} ({context.medication_doses[name]})" if context.medication_doses.get(name) else name
        for name in context.medication_names
    )
    aliases = ", ".join(f'"{alias}" = {target}' for alias, target in context.aliases.items())
    return _SYSTEM_PROMPT.format(
        medications=meds or "None",
        aliases=aliases or "None",
        types=json.dumps([t.value for t in IntentType]),
    )


def _aliases_in_text(text: str, aliases: dict[str, str]) -> list[str]:
    return [
        alias for alias in aliases
        if re.search(rf"\b{re.escape(alias)}\b", text, re.IGNORECASE)
    ]


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


class SemanticParser:
    """Maps one utterance to an Intent via the completion boundary."""

    def __init__(self, complete: CompleteFn) -> None:
        self._complete = complete

    async def parse(self, text: str, context: ParserContext | None = None) -> Intent:
        """Parse *text* into an Intent. Never raises."""
        context = context or ParserContext()

        try:
            raw_text = await self._complete(
                system=_build_system_prompt(context),
                user_message=text,
                max_tokens=400,
                temperature=0.3,
                json_mode=True,
            )
        except LLMError as exc:
            logger.warning("Parser LLM call failed, degrading to unknown: %s", exc)
            return unknown_intent()
        except Exception as exc:
            logger.error("Unexpected error in parse: %s", exc)
            return unknown_intent()

        logger.debug("LLM raw parse response: %s", raw_text)
        decoded = decode_json_model(raw_text, Intent)
        if not decoded.ok:
            logger.warning("Parse failed for '%s': %s", text[:80], decoded.error)
            return unknown_intent()

        intent = decoded.value
        logger.info(
            "Parsed '%s' → %s (confidence %.2f, ambiguous=%s)",
            text[:80], intent.type.value, intent.confidence, intent.ambiguous,
        )
        return intent

    @staticmethod
    def aliases_used(text: str, context: ParserContext) -> list[str]:
        """Return the known aliases that appear as whole words in *text*."""
        return _aliases_in_text(text, context.aliases)
