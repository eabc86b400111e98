"""
CareCompanion — Ambiguity Resolver.

Given an ambiguous Intent, the follow-up answer the user gave, and the
conversation so far, asks the LLM for a fully resolved intent and an
alias-creation decision.

The alias policy is enforced here in code regardless of what the model
decides, and this is the only module allowed to create aliases.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, field_validator

from companion.core.decoding import decode_json_model
from companion.core.llm import CompleteFn, LLMError
from companion.core.parser import Intent, IntentType
from companion.data.models import MEAL_TYPES, Alias
from companion.ports.health_repository import RepositoryError

if TYPE_CHECKING:
    from companion.data.models import ConversationTurn, Medication
    from companion.ports.health_repository import HealthRepository

logger = logging.getLogger(__name__)

_ALIAS_ENTITY_TYPES = frozenset({"medication", "meal", "activity"})

# Meal-type clarifications are one-off answers, never reusable shorthand
_NON_ALIAS_WORDS = frozenset(MEAL_TYPES) | {"meal", "a meal", "a snack", "yes", "no"}


def _clean_answer(answer: str) -> str:
    return answer.strip().strip(".!?,").strip().lower()


class AliasMapping(BaseModel):
    alias: str
    resolved_to: str = Field(alias="resolvedTo")
    entity_type: str = Field(default="medication", alias="entityType")

    model_config = {"populate_by_name": True}

    @field_validator("alias", "resolved_to", "entity_type", mode="before")
    @classmethod
    def strip_text(cls, v: Any) -> str:
        return str(v).strip() if v is not None else ""


class _ResolutionPayload(BaseModel):
    resolved_intent: dict[str, Any] = Field(alias="resolvedIntent")
    should_create_alias: bool = Field(default=False, alias="shouldCreateAlias")
    alias_mapping: AliasMapping | None = Field(default=None, alias="aliasMapping")

    model_config = {"populate_by_name": True}


@dataclass
class Resolution:
    """Outcome of resolving one ambiguity.

    `resolved_intent` is None when the model call or decode failed.
    """

    resolved_intent: Intent | None
    should_create_alias: bool = False
    alias_mapping: AliasMapping | None = None


# ---------------------------------------------------------------------------
# Alias policy
# ---------------------------------------------------------------------------


def alias_allowed(
    mapping: AliasMapping | None,
    medications: list[Medication],
    existing: list[Alias],
    original: Intent | None = None,
    answer: str = "",
) -> bool:
    """Apply the alias-creation rules independently of the model's opinion.

    An alias is created only when it is likely to recur (not a meal-type
    answer), unambiguous (doesn't already point elsewhere, and a medication
    alias names a real medication), and not a one-off reference (the
    shorthand differs from the target name itself).

    A meal-type clarification never becomes an alias: neither the answer nor
    the target may be a meal type when resolving a logged meal.
    """
    if mapping is None or not mapping.alias or not mapping.resolved_to:
        return False

    alias_key = mapping.alias.lower()
    target_key = mapping.resolved_to.lower()
    if target_key in MEAL_TYPES:
        return False
    if original is not None and original.type == IntentType.MEAL_LOGGED:
        if _clean_answer(answer) in _NON_ALIAS_WORDS:
            return False
    if mapping.entity_type.lower() not in _ALIAS_ENTITY_TYPES:
        return False
    if alias_key in _NON_ALIAS_WORDS:
        return False
    if alias_key == target_key:
        return False

    for known in existing:
        if known.alias.lower() == alias_key and known.resolved_to.lower() != target_key:
            logger.info("Alias '%s' already maps to %s — not remapping", mapping.alias, known.resolved_to)
            return False

    if mapping.entity_type.lower() == "medication":
        names = {m.name.lower() for m in medications}
        if target_key not in names:
            return False

    return True


# ---------------------------------------------------------------------------
# System prompt for LLM
# ---------------------------------------------------------------------------

_SYSTEM_PROMPT = """\
You are an ambiguity resolution engine. The user gave an ambiguous input,
we asked a follow-up question, and now we need to resolve it.

Original intent: {original}
Follow-up answer: "{answer}"

User's medications: {medications}
Known aliases: {aliases}

Recent conversation:
{conversation}

Resolve the ambiguity and return ONLY a JSON object:
{{
  "resolvedIntent": {{
    "type": "same as original",
    "entities": {{ ... fully resolved entities ... }},
    "confidence": 0.0-1.0
  }},
  "shouldCreateAlias": true/false,
  "aliasMapping": {{
    "alias": "what the user said (e.g. 'it', 'BP med', 'morning one')",
    "resolvedTo": "actual entity name",
    "entityType": "medication|meal|activity"
  }}
}}

Create an alias only if:
1. The user used a shorthand likely to be reused ("BP med", "morning one", "it")
2. The alias is unambiguous in context
3. It's not a one-time reference

Examples:
- Original "I took my meds", follow-up "The morning one" → resolve to the morning medication, create alias
- Original "I ate", follow-up "Lunch" → meal_logged with mealType lunch, no alias
- Original "I took it", follow-up "Metformin" → medication_taken, alias "it" → Metformin

If no alias should be created, set "aliasMapping" to null.
No markdown, no explanation, no extra text.
"""


def _format_conversation(turns: list[ConversationTurn]) -> str:
    if not turns:
        return "(none)"
    return "\n".join(f"{t.sender}: {t.text}" for t in turns)


class AmbiguityResolver:
    """Turns (ambiguous intent, follow-up answer) into a resolved intent."""

    def __init__(self, repository: HealthRepository, complete: CompleteFn) -> None:
        self._repo = repository
        self._complete = complete

    async def resolve(
        self,
        user_id: int,
        original: Intent,
        follow_up_answer: str,
        conversation: list[ConversationTurn] | None = None,
    ) -> Resolution:
        """Resolve *original* with the user's *follow_up_answer*.

        On `should_create_alias` the alias is written to the repository
        before returning. Never raises for model failures.
        """
        logger.info("Resolving ambiguity for intent type: %s", original.type.value)

        medications = await self._repo.get_medications(user_id)
        aliases = await self._repo.get_aliases(user_id)

        system_prompt = _SYSTEM_PROMPT.format(
            original=json.dumps(original.model_dump(mode="json", by_alias=True)),
            answer=follow_up_answer,
            medications=", ".join(f"{m.name} ({m.dose})" for m in medications) or "None",
            aliases=", ".join(f'"{a.alias}" = {a.resolved_to}' for a in aliases) or "None",
            conversation=_format_conversation(conversation or []),
        )

        try:
            raw = await self._complete(
                system=system_prompt,
                user_message="Resolve this ambiguity",
                max_tokens=400,
                temperature=0.3,
                json_mode=True,
            )
        except LLMError as exc:
            logger.warning("Resolver LLM call failed: %s", exc)
            return Resolution(resolved_intent=None)

        decoded = decode_json_model(raw, _ResolutionPayload)
        if not decoded.ok:
            logger.warning("Resolver output rejected: %s", decoded.error)
            return Resolution(resolved_intent=None)

        payload = decoded.value
        intent_data = dict(payload.resolved_intent)
        intent_data.setdefault("type", original.type.value)
        intent_data["ambiguous"] = False
        intent_data["ambiguityReason"] = ""
        resolved = Intent.model_validate(intent_data)

        # The model may not flip a resolved intent to an unrelated unknown
        if resolved.type.value == "unknown":
            resolved = resolved.model_copy(update={"type": original.type})

        mapping = payload.alias_mapping
        create = payload.should_create_alias and alias_allowed(
            mapping, medications, aliases, original, follow_up_answer
        )
        if payload.should_create_alias and not create:
            logger.info("Alias suggestion rejected by policy: %s", mapping)

        if create:
            try:
                await self._repo.upsert_alias(Alias(
                    user_id=user_id,
                    alias=mapping.alias,
                    resolved_to=mapping.resolved_to,
                    entity_type=mapping.entity_type.lower(),
                ))
                logger.info("Created alias: '%s' → %s", mapping.alias, mapping.resolved_to)
            except RepositoryError as exc:
                logger.error("Failed to store alias '%s': %s", mapping.alias, exc)
                create = False

        return Resolution(
            resolved_intent=resolved,
            should_create_alias=create,
            alias_mapping=mapping if create else None,
        )
