"""
CareCompanion — Risk Guard.

Two-phase live risk assessment:

1. Deterministic critical rules (no LLM): multiple severe symptoms today or a
   missed dose of a critical medication class. Any hit returns a canned
   high-severity assessment immediately.
2. Heuristic triggers: after-food medication timing, recurring symptoms over
   the week, heat combined with heat-sensitive medication. The level is the
   max over the triggers that fired. Only when something fired is the LLM
   asked to phrase an explanation, and its text never changes the level.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel

from companion.core.decoding import decode_json_model
from companion.core.llm import CompleteFn, LLMError
from companion.data.models import MealLog, MedicationDose, RoutineBaseline, SymptomLog

if TYPE_CHECKING:
    from companion.core.alerts import AlertDispatcher
    from companion.data.models import RiskAlert
    from companion.ports.health_repository import HealthRepository
    from companion.ports.weather_port import Weather

logger = logging.getLogger(__name__)


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


_LEVEL_RANK = {RiskLevel.LOW: 0, RiskLevel.MEDIUM: 1, RiskLevel.HIGH: 2}

CRITICAL_MEDICATION_KEYWORDS = ("insulin", "blood pressure", "heart")
HEAT_SENSITIVE_KEYWORDS = ("diuretic", "blood pressure", "beta blocker")
SEVERE_SYMPTOM_THRESHOLD = 4
SEVERE_SYMPTOM_COUNT = 2
AFTER_FOOD_MAX_HOURS = 4
WEEKLY_SYMPTOM_RECURRENCE = 3
HEAT_THRESHOLD_C = 30
_NO_MEAL_HOURS = 999


def escalate(current: RiskLevel, new: RiskLevel) -> RiskLevel:
    """Monotone max: a level can only go up within one assessment."""
    return new if _LEVEL_RANK[new] > _LEVEL_RANK[current] else current


@dataclass
class RiskSnapshot:
    """Everything the guard looks at for one assessment."""

    now: datetime
    baseline: RoutineBaseline | None = None
    doses: list[MedicationDose] = field(default_factory=list)
    meals: list[MealLog] = field(default_factory=list)
    symptoms: list[SymptomLog] = field(default_factory=list)
    recent_symptoms: list[SymptomLog] = field(default_factory=list)
    weather: Weather | None = None
    missed_dose_grace: timedelta = timedelta(minutes=120)


@dataclass
class RiskAssessment:
    level: RiskLevel
    title: str
    unusual: str
    why: str
    action: str
    baseline: str
    triggers: list[str] = field(default_factory=list)
    should_alert: bool = False
    alert_caregiver: bool = False


@dataclass(frozen=True)
class Trigger:
    description: str
    level: RiskLevel


class _Explanation(BaseModel):
    title: str
    unusual: str
    why: str
    action: str
    baseline: str = ""


ALL_CLEAR = RiskAssessment(
    level=RiskLevel.LOW,
    title="Everything looks good",
    unusual="No unusual patterns detected",
    why="Your routine is on track",
    action="Keep up the good work!",
    baseline="Following your usual routine",
)


# ---------------------------------------------------------------------------
# Phase 1 — critical rules
# ---------------------------------------------------------------------------


def _is_missed(dose: MedicationDose, now: datetime, grace: timedelta) -> bool:
    if dose.taken:
        return False
    return dose.missed or dose.scheduled_time + grace <= now


def check_critical(snapshot: RiskSnapshot) -> list[str]:
    """Return the critical findings; any hit forces a high-level alert."""
    critical: list[str] = []

    severe = [s for s in snapshot.symptoms if s.severity >= SEVERE_SYMPTOM_THRESHOLD]
    if len(severe) >= SEVERE_SYMPTOM_COUNT:
        critical.append("Multiple severe symptoms reported today")

    missed_critical = [
        d for d in snapshot.doses
        if _is_missed(d, snapshot.now, snapshot.missed_dose_grace)
        and any(k in d.medication_name.lower() for k in CRITICAL_MEDICATION_KEYWORDS)
    ]
    if missed_critical:
        critical.append(f"Critical medication missed: {missed_critical[0].medication_name}")

    return critical


def build_critical_assessment(critical: list[str]) -> RiskAssessment:
    return RiskAssessment(
        level=RiskLevel.HIGH,
        title="Immediate attention needed",
        unusual=". ".join(critical),
        why="These patterns indicate a potentially serious situation that requires immediate attention.",
        action="Please contact your doctor or caregiver immediately. If symptoms worsen, seek emergency care.",
        baseline="This is significantly different from your normal patterns",
        triggers=list(critical),
        should_alert=True,
        alert_caregiver=True,
    )


# ---------------------------------------------------------------------------
# Phase 2 — heuristic triggers
# ---------------------------------------------------------------------------


def check_medication_food_timing(snapshot: RiskSnapshot) -> Trigger | None:
    pending_after_food = [
        d for d in snapshot.doses
        if not d.before_food and not d.taken and d.scheduled_time <= snapshot.now
    ]
    if not pending_after_food:
        return None

    if snapshot.meals:
        last_meal = max(m.logged_at for m in snapshot.meals)
        hours_since = (snapshot.now - last_meal).total_seconds() / 3600
    else:
        hours_since = _NO_MEAL_HOURS

    if hours_since <= AFTER_FOOD_MAX_HOURS:
        return None

    name = pending_after_food[0].medication_name
    if hours_since == _NO_MEAL_HOURS:
        return Trigger(f"{name} should be taken after food, but no meal has been logged today",
                       RiskLevel.MEDIUM)
    return Trigger(
        f"{name} should be taken after food, but last meal was {round(hours_since)} hours ago",
        RiskLevel.MEDIUM,
    )


def check_symptom_patterns(snapshot: RiskSnapshot) -> Trigger | None:
    counts = Counter(s.symptom.strip().lower() for s in snapshot.recent_symptoms)
    for symptom, count in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0])):
        if count >= WEEKLY_SYMPTOM_RECURRENCE:
            return Trigger(f"{symptom} reported {count} times in the past week", RiskLevel.MEDIUM)
    return None


def check_weather_interactions(snapshot: RiskSnapshot) -> Trigger | None:
    weather = snapshot.weather
    if weather is None or weather.temp_c is None or weather.temp_c <= HEAT_THRESHOLD_C:
        return None

    sensitive = [
        d for d in snapshot.doses
        if any(k in d.medication_name.lower() for k in HEAT_SENSITIVE_KEYWORDS)
    ]
    if not sensitive:
        return None
    return Trigger(
        f"High temperature ({weather.temp_c:.0f}°C) may affect {sensitive[0].medication_name}",
        RiskLevel.MEDIUM,
    )


HEURISTIC_CHECKS = (
    check_medication_food_timing,
    check_symptom_patterns,
    check_weather_interactions,
)


def collect_triggers(snapshot: RiskSnapshot) -> tuple[RiskLevel, list[Trigger]]:
    """Run every heuristic check, escalating the level as triggers fire."""
    level = RiskLevel.LOW
    triggers: list[Trigger] = []
    for check in HEURISTIC_CHECKS:
        trigger = check(snapshot)
        if trigger is not None:
            triggers.append(trigger)
            level = escalate(level, trigger.level)
    return level, triggers


# ---------------------------------------------------------------------------
# Explanation prompt
# ---------------------------------------------------------------------------

_EXPLAIN_PROMPT = """\
You are a health risk explanation writer for an older adult's companion app.
Write a clear, supportive explanation of the situation below.

Risk level: {level}
Triggers: {triggers}

User's usual routine: {baseline}
Today's medications: {scheduled} scheduled, {taken} taken
Today's meals: {meals}

Return ONLY a JSON object:
{{
  "title": "Short, clear title (max 8 words)",
  "unusual": "What's different from their normal routine (1-2 sentences)",
  "why": "Why this matters for their health (1-2 sentences)",
  "action": "Specific, actionable next step (1-2 sentences)",
  "baseline": "What their normal pattern is (1 sentence)"
}}

Use simple, supportive language. Be specific and actionable. Don't alarm unnecessarily.
No markdown, no explanation, no extra text.
"""


def _describe_baseline(baseline: RoutineBaseline | None) -> str:
    if baseline is None:
        return "not learned yet"
    windows = ", ".join(f"{meal} {w.start}-{w.end}" for meal, w in baseline.meal_windows.items())
    return f"meals: {windows or 'no pattern yet'}; medication adherence {baseline.adherence_rate}%"


def _fallback_explanation(level: RiskLevel, triggers: list[Trigger]) -> _Explanation:
    return _Explanation(
        title="Something needs your attention" if level is RiskLevel.HIGH else "A few things to keep an eye on",
        unusual=". ".join(t.description for t in triggers),
        why="Changes like these can affect how you feel later today.",
        action="Take a moment to check on this, and tell me if anything feels off.",
        baseline="This differs from your usual routine.",
    )


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class RiskEngine:
    """Assesses live risk and records alerts when warranted."""

    def __init__(
        self,
        repository: HealthRepository,
        complete: CompleteFn,
        alerts: AlertDispatcher | None = None,
    ) -> None:
        self._repo = repository
        self._complete = complete
        self._alerts = alerts

    async def assess(self, snapshot: RiskSnapshot) -> RiskAssessment:
        """Run both phases and return the aggregate assessment."""
        critical = check_critical(snapshot)
        if critical:
            logger.warning("Critical risk rules fired: %s", critical)
            return build_critical_assessment(critical)

        level, triggers = collect_triggers(snapshot)
        if not triggers:
            return replace(ALL_CLEAR, triggers=[])

        explanation = await self._explain(snapshot, level, triggers)
        logger.info("Risk level %s from %d trigger(s)", level.value, len(triggers))
        return RiskAssessment(
            level=level,
            title=explanation.title,
            unusual=explanation.unusual,
            why=explanation.why,
            action=explanation.action,
            baseline=explanation.baseline,
            triggers=[t.description for t in triggers],
            should_alert=level is not RiskLevel.LOW,
            alert_caregiver=level is RiskLevel.HIGH,
        )

    async def _explain(
        self, snapshot: RiskSnapshot, level: RiskLevel, triggers: list[Trigger],
    ) -> _Explanation:
        system_prompt = _EXPLAIN_PROMPT.format(
            level=level.value,
            triggers="; ".join(t.description for t in triggers),
            baseline=_describe_baseline(snapshot.baseline),
            scheduled=len(snapshot.doses),
            taken=sum(1 for d in snapshot.doses if d.taken),
            meals=", ".join(m.meal_type for m in snapshot.meals) or "none logged",
        )
        try:
            raw = await self._complete(
                system=system_prompt,
                user_message="Generate risk explanation",
                max_tokens=400,
                temperature=0.5,
                json_mode=True,
            )
        except LLMError as exc:
            logger.warning("Risk explanation call failed, using fallback text: %s", exc)
            return _fallback_explanation(level, triggers)

        decoded = decode_json_model(raw, _Explanation)
        if not decoded.ok:
            logger.warning("Risk explanation rejected (%s), using fallback text", decoded.error)
            return _fallback_explanation(level, triggers)
        return decoded.value

    async def record(self, user_id: int, assessment: RiskAssessment) -> RiskAlert | None:
        """Persist an alert when the assessment calls for one.

        An identical active alert (same level and triggers) is returned
        as-is instead of being recorded and delivered again.
        """
        if not assessment.should_alert:
            return None

        for active in await self._repo.get_active_risk_alerts(user_id):
            if active.level == assessment.level.value and sorted(active.triggers) == sorted(assessment.triggers):
                logger.debug("Risk alert #%d already active for user %d", active.id, user_id)
                return active

        alert = await self._repo.create_risk_alert(
            user_id,
            level=assessment.level.value,
            title=assessment.title,
            unusual=assessment.unusual,
            why=assessment.why,
            action=assessment.action,
            baseline=assessment.baseline,
            triggers=assessment.triggers,
        )
        if assessment.alert_caregiver and self._alerts is not None:
            await self._alerts.notify_caregiver(user_id, alert)
        return alert

    async def evaluate_and_record(self, user_id: int, snapshot: RiskSnapshot) -> RiskAssessment:
        assessment = await self.assess(snapshot)
        await self.record(user_id, assessment)
        return assessment
