"""Tests for companion.core.risk_guard — critical rules, heuristics, alerts."""

import json
from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import AsyncMock, MagicMock

from companion.core.llm import LLMError
from companion.core.risk_guard import (
    ALL_CLEAR,
    RiskEngine,
    RiskLevel,
    RiskSnapshot,
    check_critical,
    check_medication_food_timing,
    check_symptom_patterns,
    check_weather_interactions,
    collect_triggers,
    escalate,
)
from companion.data.models import MealLog, MedicationDose, RiskAlert, SymptomLog
from companion.ports.weather_port import Weather

UTC = timezone.utc
NOW = datetime(2026, 3, 10, 13, 0, tzinfo=UTC)
USER_ID = 12345

_EXPLANATION = json.dumps({
    "title": "Medication timing",
    "unusual": "Metformin is waiting for a meal",
    "why": "It works best with food",
    "action": "Have a light meal and take it",
    "baseline": "You usually eat lunch around 12:30",
})


def _dose(name, hour, taken=False, missed=False, before_food=False):
    return MedicationDose(
        id=0, user_id=USER_ID, medication_id=1, medication_name=name,
        scheduled_time=NOW.replace(hour=hour), taken=taken, missed=missed,
        before_food=before_food,
    )


def _symptom(name, severity=3, days_ago=0):
    return SymptomLog(
        id=0, user_id=USER_ID, symptom=name, severity=severity,
        logged_at=NOW - timedelta(days=days_ago),
    )


def _meal(hour):
    return MealLog(id=0, user_id=USER_ID, meal_type="breakfast", logged_at=NOW.replace(hour=hour))


def _repo(active=None):
    repo = MagicMock()
    repo.get_active_risk_alerts = AsyncMock(return_value=list(active or []))

    async def _create(user_id, **fields):
        return RiskAlert(id=1, user_id=user_id, **fields)

    repo.create_risk_alert = AsyncMock(side_effect=_create)
    return repo


class TestEscalate:
    @pytest.mark.parametrize("current", list(RiskLevel))
    @pytest.mark.parametrize("new", list(RiskLevel))
    def test_monotone(self, current, new):
        result = escalate(current, new)
        assert result in (current, new)
        assert escalate(result, current) == result
        assert escalate(result, new) == result

    def test_never_downgrades(self):
        assert escalate(RiskLevel.HIGH, RiskLevel.LOW) is RiskLevel.HIGH


class TestCriticalRules:
    def test_two_severe_symptoms(self):
        snapshot = RiskSnapshot(now=NOW, symptoms=[_symptom("chest pain", 5), _symptom("dizziness", 5)])
        assert check_critical(snapshot) == ["Multiple severe symptoms reported today"]

    def test_one_severe_symptom_not_critical(self):
        snapshot = RiskSnapshot(now=NOW, symptoms=[_symptom("headache", 5), _symptom("tired", 2)])
        assert check_critical(snapshot) == []

    def test_missed_insulin_is_critical(self):
        snapshot = RiskSnapshot(now=NOW, doses=[_dose("Insulin", 8)])
        assert check_critical(snapshot) == ["Critical medication missed: Insulin"]

    def test_insulin_within_grace_not_critical(self):
        snapshot = RiskSnapshot(now=NOW, doses=[_dose("Insulin", 12)])
        assert check_critical(snapshot) == []

    def test_flagged_missed_heart_med(self):
        snapshot = RiskSnapshot(now=NOW, doses=[_dose("Heart tablet", 12, missed=True)])
        assert check_critical(snapshot) == ["Critical medication missed: Heart tablet"]

    def test_taken_dose_never_missed(self):
        snapshot = RiskSnapshot(now=NOW, doses=[_dose("Insulin", 8, taken=True, missed=True)])
        assert check_critical(snapshot) == []


class TestHeuristics:
    def test_after_food_without_meal(self):
        snapshot = RiskSnapshot(now=NOW, doses=[_dose("Metformin", 12)])
        trigger = check_medication_food_timing(snapshot)
        assert trigger.level is RiskLevel.MEDIUM
        assert trigger.description == "Metformin should be taken after food, but no meal has been logged today"

    def test_after_food_with_old_meal(self):
        snapshot = RiskSnapshot(now=NOW, doses=[_dose("Metformin", 12)], meals=[_meal(7)])
        trigger = check_medication_food_timing(snapshot)
        assert trigger.description == "Metformin should be taken after food, but last meal was 6 hours ago"

    def test_after_food_with_recent_meal(self):
        snapshot = RiskSnapshot(now=NOW, doses=[_dose("Metformin", 12)], meals=[_meal(11)])
        assert check_medication_food_timing(snapshot) is None

    def test_before_food_dose_ignored(self):
        snapshot = RiskSnapshot(now=NOW, doses=[_dose("Omeprazole", 12, before_food=True)])
        assert check_medication_food_timing(snapshot) is None

    def test_weekly_symptom_recurrence(self):
        recent = [_symptom("Headache", days_ago=d) for d in range(3)]
        trigger = check_symptom_patterns(RiskSnapshot(now=NOW, recent_symptoms=recent))
        assert trigger.description == "headache reported 3 times in the past week"

    def test_two_symptoms_not_enough(self):
        recent = [_symptom("Headache", days_ago=d) for d in range(2)]
        assert check_symptom_patterns(RiskSnapshot(now=NOW, recent_symptoms=recent)) is None

    def test_heat_with_sensitive_medication(self):
        snapshot = RiskSnapshot(
            now=NOW,
            doses=[_dose("Blood pressure pill", 20)],
            weather=Weather(location="Pune", temp_c=34.4),
        )
        trigger = check_weather_interactions(snapshot)
        assert trigger.description == "High temperature (34°C) may affect Blood pressure pill"

    @pytest.mark.parametrize("weather", [None, Weather(location="Pune", temp_c=None), Weather(location="Pune", temp_c=30)])
    def test_no_heat_trigger(self, weather):
        snapshot = RiskSnapshot(now=NOW, doses=[_dose("Diuretic", 20)], weather=weather)
        assert check_weather_interactions(snapshot) is None

    def test_collect_triggers_empty(self):
        assert collect_triggers(RiskSnapshot(now=NOW)) == (RiskLevel.LOW, [])


# ---------------------------------------------------------------------------
# RiskEngine (LLM mocked)
# ---------------------------------------------------------------------------


class TestRiskEngineAssess:
    @pytest.mark.asyncio
    async def test_critical_skips_llm(self):
        complete = AsyncMock(return_value=_EXPLANATION)
        snapshot = RiskSnapshot(now=NOW, symptoms=[_symptom("chest pain", 5), _symptom("dizziness", 5)])

        result = await RiskEngine(_repo(), complete).assess(snapshot)

        assert result.level is RiskLevel.HIGH
        assert result.alert_caregiver is True
        assert result.should_alert is True
        complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_all_clear_skips_llm(self):
        complete = AsyncMock(return_value=_EXPLANATION)

        result = await RiskEngine(_repo(), complete).assess(RiskSnapshot(now=NOW))

        assert result.level is RiskLevel.LOW
        assert result.title == ALL_CLEAR.title
        assert result.should_alert is False
        complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_heuristic_uses_one_llm_call(self):
        complete = AsyncMock(return_value=_EXPLANATION)
        snapshot = RiskSnapshot(now=NOW, doses=[_dose("Metformin", 12)])

        result = await RiskEngine(_repo(), complete).assess(snapshot)

        assert result.level is RiskLevel.MEDIUM
        assert result.title == "Medication timing"
        assert result.should_alert is True
        assert result.alert_caregiver is False
        complete.assert_awaited_once()
        assert complete.call_args.kwargs["json_mode"] is True

    @pytest.mark.asyncio
    async def test_llm_cannot_change_level(self):
        complete = AsyncMock(return_value=json.dumps({
            "title": "EMERGENCY", "unusual": "x", "why": "y", "action": "z", "level": "high",
        }))
        snapshot = RiskSnapshot(now=NOW, doses=[_dose("Metformin", 12)])
        result = await RiskEngine(_repo(), complete).assess(snapshot)
        assert result.level is RiskLevel.MEDIUM
        assert result.alert_caregiver is False

    @pytest.mark.asyncio
    async def test_llm_failure_uses_fallback_text(self):
        complete = AsyncMock(side_effect=LLMError("timeout"))
        snapshot = RiskSnapshot(now=NOW, doses=[_dose("Metformin", 12)])
        result = await RiskEngine(_repo(), complete).assess(snapshot)
        assert result.level is RiskLevel.MEDIUM
        assert result.title == "A few things to keep an eye on"
        assert "Metformin" in result.unusual

    @pytest.mark.asyncio
    async def test_malformed_explanation_uses_fallback_text(self):
        complete = AsyncMock(return_value="I think you are fine")
        snapshot = RiskSnapshot(now=NOW, doses=[_dose("Metformin", 12)])
        result = await RiskEngine(_repo(), complete).assess(snapshot)
        assert result.title == "A few things to keep an eye on"


class TestRiskEngineRecord:
    @pytest.mark.asyncio
    async def test_low_assessment_not_recorded(self):
        repo = _repo()
        engine = RiskEngine(repo, AsyncMock())
        assert await engine.record(USER_ID, ALL_CLEAR) is None
        repo.create_risk_alert.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_high_alert_notifies_caregiver(self):
        repo = _repo()
        alerts = MagicMock()
        alerts.notify_caregiver = AsyncMock(return_value=True)
        engine = RiskEngine(repo, AsyncMock(), alerts=alerts)
        snapshot = RiskSnapshot(now=NOW, doses=[_dose("Insulin", 8)])

        result = await engine.evaluate_and_record(USER_ID, snapshot)

        assert result.level is RiskLevel.HIGH
        repo.create_risk_alert.assert_awaited_once()
        alerts.notify_caregiver.assert_awaited_once()
        assert alerts.notify_caregiver.call_args.args[0] == USER_ID

    @pytest.mark.asyncio
    async def test_identical_active_alert_not_duplicated(self):
        existing = RiskAlert(
            id=7, user_id=USER_ID, level="high", title="Immediate attention needed",
            unusual="", why="", action="", triggers=["Critical medication missed: Insulin"],
        )
        repo = _repo(active=[existing])
        alerts = MagicMock()
        alerts.notify_caregiver = AsyncMock()
        engine = RiskEngine(repo, AsyncMock(), alerts=alerts)

        result = await engine.evaluate_and_record(USER_ID, RiskSnapshot(now=NOW, doses=[_dose("Insulin", 8)]))

        assert result.level is RiskLevel.HIGH
        repo.create_risk_alert.assert_not_awaited()
        alerts.notify_caregiver.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_medium_alert_does_not_page_caregiver(self):
        repo = _repo()
        alerts = MagicMock()
        alerts.notify_caregiver = AsyncMock()
        engine = RiskEngine(repo, AsyncMock(return_value=_EXPLANATION), alerts=alerts)

        await engine.evaluate_and_record(USER_ID, RiskSnapshot(now=NOW, doses=[_dose("Metformin", 12)]))

        repo.create_risk_alert.assert_awaited_once()
        alerts.notify_caregiver.assert_not_awaited()
