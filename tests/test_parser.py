"""Tests for companion.core.parser — utterance → Intent."""

import json

import pytest
from unittest.mock import AsyncMock

from companion.core.llm import LLMError
from companion.core.parser import (
    Intent,
    IntentType,
    ParserContext,
    SemanticParser,
    follow_up_question,
)


def _reply(**fields):
    return json.dumps(fields)


# ---------------------------------------------------------------------------
# Intent contract
# ---------------------------------------------------------------------------


class TestIntentModel:
    def test_unknown_type_degrades(self):
        intent = Intent.model_validate({"type": "book_flight", "confidence": 0.9})
        assert intent.type is IntentType.UNKNOWN

    def test_legacy_type_synonym(self):
        assert Intent.model_validate({"type": "med_taken"}).type is IntentType.MEDICATION_TAKEN

    def test_confidence_is_clamped(self):
        assert Intent.model_validate({"confidence": 3}).confidence == 1.0
        assert Intent.model_validate({"confidence": -1}).confidence == 0.0
        assert Intent.model_validate({"confidence": "high"}).confidence == 0.0

    def test_ambiguous_always_has_reason(self):
        intent = Intent.model_validate({"type": "meal_logged", "ambiguous": True})
        assert intent.ambiguity_reason.strip() != ""

    def test_reason_alias(self):
        intent = Intent.model_validate(
            {"type": "meal_logged", "ambiguous": True, "ambiguityReason": "meal or snack"}
        )
        assert intent.ambiguity_reason == "meal or snack"

    def test_non_dict_entities(self):
        assert Intent.model_validate({"entities": "oops"}).entities == {}

    def test_is_mutating(self):
        assert Intent(type=IntentType.MEAL_LOGGED).is_mutating
        assert not Intent(type=IntentType.QUESTION).is_mutating
        assert not Intent(type=IntentType.LOCATION_UPDATE).is_mutating


# ---------------------------------------------------------------------------
# Follow-up table
# ---------------------------------------------------------------------------


class TestFollowUpQuestion:
    def test_medication(self):
        intent = Intent(type=IntentType.MEDICATION_TAKEN, ambiguous=True)
        assert follow_up_question(intent) == "Which medicine did you take?"

    def test_meal_without_type(self):
        intent = Intent(type=IntentType.MEAL_LOGGED, ambiguous=True, entities={"mealType": None})
        assert follow_up_question(intent) == "Was that a meal or a snack?"

    def test_meal_with_type(self):
        intent = Intent(type=IntentType.MEAL_LOGGED, entities={"mealType": "lunch"})
        assert follow_up_question(intent) == "What did you eat?"

    def test_symptom_without_name(self):
        assert follow_up_question(Intent(type=IntentType.SYMPTOM_REPORTED)).startswith("Can you tell me more?")

    def test_symptom_with_name(self):
        intent = Intent(type=IntentType.SYMPTOM_REPORTED, entities={"symptom": "headache"})
        assert "scale of 1 to 5" in follow_up_question(intent)

    def test_activity(self):
        assert follow_up_question(Intent(type=IntentType.ACTIVITY_STARTED)) == "What activity are you doing?"

    def test_other(self):
        assert follow_up_question(Intent(type=IntentType.QUESTION)) == "Can you tell me more about that?"


# ---------------------------------------------------------------------------
# SemanticParser (LLM mocked)
# ---------------------------------------------------------------------------


_CONTEXT = ParserContext(
    medication_names=["Metformin", "Amlodipine"],
    medication_doses={"Metformin": "500mg", "Amlodipine": "5mg"},
    aliases={"BP med": "Amlodipine"},
)


class TestSemanticParser:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "text, response, expected_type, expected_ambiguous",
        [
            ("I took Metformin",
             _reply(type="medication_taken", entities={"medication": "Metformin"}, confidence=0.95, ambiguous=False),
             IntentType.MEDICATION_TAKEN, False),
            ("I took my meds",
             _reply(type="medication_taken", entities={"medication": None}, confidence=0.6, ambiguous=True,
                    ambiguityReason="which medication?"),
             IntentType.MEDICATION_TAKEN, True),
            ("I ate",
             _reply(type="meal_logged", entities={"mealType": None}, confidence=0.6, ambiguous=True,
                    ambiguityReason="meal or snack"),
             IntentType.MEAL_LOGGED, True),
            ("I feel dizzy",
             _reply(type="symptom_reported", entities={"symptom": "dizziness", "severity": 3},
                    confidence=0.9, ambiguous=False),
             IntentType.SYMPTOM_REPORTED, False),
        ],
    )
    async def test_regression_set(self, text, response, expected_type, expected_ambiguous):
        complete = AsyncMock(return_value=response)
        intent = await SemanticParser(complete).parse(text, _CONTEXT)
        assert (intent.type, intent.ambiguous) == (expected_type, expected_ambiguous)

    @pytest.mark.asyncio
    async def test_meal_ambiguity_reason(self):
        complete = AsyncMock(return_value=_reply(
            type="meal_logged", entities={}, confidence=0.6, ambiguous=True, ambiguityReason="meal or snack",
        ))
        intent = await SemanticParser(complete).parse("I ate")
        assert "snack" in intent.ambiguity_reason

    @pytest.mark.asyncio
    async def test_prompt_contains_context(self):
        complete = AsyncMock(return_value=_reply(type="question", confidence=0.9))
        await SemanticParser(complete).parse("Can I eat pizza?", _CONTEXT)
        kwargs = complete.call_args.kwargs
        assert "Metformin (500mg)" in kwargs["system"]
        assert '"BP med" = Amlodipine' in kwargs["system"]
        assert kwargs["json_mode"] is True
        assert kwargs["temperature"] == 0.3
        assert kwargs["user_message"] == "Can I eat pizza?"

    @pytest.mark.asyncio
    async def test_invalid_json_degrades_to_unknown(self):
        intent = await SemanticParser(AsyncMock(return_value="not json")).parse("???")
        assert intent.type is IntentType.UNKNOWN
        assert intent.confidence == 0.0
        assert intent.ambiguous is False

    @pytest.mark.asyncio
    async def test_llm_error_degrades_to_unknown(self):
        complete = AsyncMock(side_effect=LLMError("timeout"))
        intent = await SemanticParser(complete).parse("I took it")
        assert intent.type is IntentType.UNKNOWN
        assert intent.confidence == 0.0

    @pytest.mark.asyncio
    async def test_unexpected_error_degrades_to_unknown(self):
        complete = AsyncMock(side_effect=RuntimeError("boom"))
        intent = await SemanticParser(complete).parse("hello")
        assert intent.type is IntentType.UNKNOWN

    @pytest.mark.asyncio
    async def test_fenced_response(self):
        complete = AsyncMock(return_value='```json\n{"type": "activity_started", "entities": {"activity": "walking"}, "confidence": 0.9}\n```')
        intent = await SemanticParser(complete).parse("Going for a walk")
        assert intent.type is IntentType.ACTIVITY_STARTED
        assert intent.entities["activity"] == "walking"


class TestAliasesUsed:
    def test_whole_word_match(self):
        assert SemanticParser.aliases_used("I took my BP med", _CONTEXT) == ["BP med"]

    def test_case_insensitive(self):
        assert SemanticParser.aliases_used("took the bp med today", _CONTEXT) == ["BP med"]

    def test_no_partial_word(self):
        assert SemanticParser.aliases_used("BP medication list", _CONTEXT) == []

    def test_trailing_punctuation(self):
        assert SemanticParser.aliases_used("I took my BP med.", _CONTEXT) == ["BP med"]
        assert SemanticParser.aliases_used("BP med, then breakfast", _CONTEXT) == ["BP med"]
