"""
CareCompanion — Event Logger.

Applies a resolved, non-ambiguous Intent to the health record: marks doses
taken or missed, writes meal, symptom and activity logs, and composes the
acknowledgement the user sees.

Routing is an exhaustive `match` over IntentType; conversational intents
(question, location update, unknown) return None so the controller answers
them with full context instead.
"""

from __future__ import annotations

import difflib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from typing import TYPE_CHECKING, Any, assert_never

from companion.core.baseline import at_local_time, local_day_bounds, minute_of_day, time_to_minutes
from companion.core.parser import Intent, IntentType, follow_up_question
from companion.data.models import MEAL_TYPES

if TYPE_CHECKING:
    from companion.core.background import BackgroundRunner
    from companion.core.memory import MemoryStore
    from companion.data.models import Medication, MedicationDose
    from companion.ports.health_repository import HealthRepository

logger = logging.getLogger(__name__)

LATE_DOSE = timedelta(hours=1)
MEAL_LATE_MINUTES = 60
SEVERE_SYMPTOM = 4
DEFAULT_SEVERITY = 3
SYMPTOM_LOOKBACK = timedelta(days=7)


@dataclass
class HandlerResult:
    """What the user sees after an event was applied.

    `follow_up_question` is set when the answer to this reply should be
    resolved against the same intent on the next turn.
    """

    reply: str
    needs_follow_up: bool = False
    follow_up_question: str | None = None


def _format_clock(dt: datetime, tz: tzinfo | None) -> str:
    local = dt.astimezone(tz) if tz is not None else dt
    return local.strftime("%I:%M %p").lstrip("0")


def _clamp_severity(raw: Any) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return DEFAULT_SEVERITY
    return max(1, min(5, value))


def suggest_medications(name: str, medications: list[Medication]) -> list[str]:
    """Closest medication names to *name* for a "did you mean" reply."""
    names = [m.name for m in medications]
    by_lower = {n.lower(): n for n in names}
    close = difflib.get_close_matches(name.lower(), list(by_lower), n=2, cutoff=0.4)
    return [by_lower[c] for c in close] or names[:2]


class EventLogger:
    """Writes domain events for resolved intents."""

    def __init__(
        self,
        repository: HealthRepository,
        memory: MemoryStore | None = None,
        runner: BackgroundRunner | None = None,
        tz: tzinfo | None = None,
    ) -> None:
        self._repo = repository
        self._memory = memory
        self._runner = runner
        self._tz = tz

    async def apply(self, user_id: int, intent: Intent, now: datetime) -> HandlerResult | None:
        """Apply *intent*; None means it is not a loggable event."""
        entities = intent.entities
        match intent.type:
            case IntentType.MEDICATION_TAKEN:
                return await self._medication_taken(user_id, intent, now)
            case IntentType.MEDICATION_MISSED:
                return await self._medication_missed(user_id, intent, now)
            case IntentType.MEAL_LOGGED:
                return await self._meal_logged(user_id, entities, now)
            case IntentType.SYMPTOM_REPORTED:
                return await self._symptom_reported(user_id, intent, now)
            case IntentType.ACTIVITY_STARTED | IntentType.ACTIVITY_ENDED:
                return await self._activity(user_id, intent, now)
            case IntentType.LOCATION_UPDATE | IntentType.QUESTION | IntentType.UNKNOWN:
                return None
            case _:
                assert_never(intent.type)

    # ------------------------------------------------------------------
    # Medications
    # ------------------------------------------------------------------

    async def _find_medication(
        self, user_id: int, intent: Intent,
    ) -> tuple[Medication | None, HandlerResult | None]:
        """Look up the named medication, or return the clarifying reply."""
        name = str(intent.entities.get("medication") or "").strip()
        if not name:
            question = follow_up_question(intent)
            return None, HandlerResult(question, needs_follow_up=True, follow_up_question=question)

        medication = await self._repo.get_medication_by_name(user_id, name)
        if medication is None:
            for alias in await self._repo.get_aliases(user_id):
                if alias.entity_type == "medication" and alias.alias.lower() == name.lower():
                    medication = await self._repo.get_medication_by_name(user_id, alias.resolved_to)
                    break

        if medication is not None:
            return medication, None

        suggestions = suggest_medications(name, await self._repo.get_medications(user_id))
        reply = f"Hmm, I don't see {name} in your medication list."
        if suggestions:
            reply += f" Did you mean {' or '.join(suggestions)}?"
        else:
            reply += " Could you check the name for me?"
        logger.info("Medication '%s' not found for user %d", name, user_id)
        return None, HandlerResult(reply, needs_follow_up=True, follow_up_question=reply)

    async def _todays_dose(self, user_id: int, medication: Medication, now: datetime) -> MedicationDose:
        start, end = local_day_bounds(now, self._tz)
        dose = await self._repo.get_dose_for_medication(user_id, medication.id, start, end)
        if dose is None:
            # Unscheduled today: record it against the usual timing
            scheduled = at_local_time(medication.timing, now, self._tz)
            dose = await self._repo.add_dose(user_id, medication.id, scheduled)
        return dose

    async def _medication_taken(self, user_id: int, intent: Intent, now: datetime) -> HandlerResult:
        medication, clarification = await self._find_medication(user_id, intent)
        if clarification is not None:
            return clarification

        taken_at = min(at_local_time(intent.entities.get("time"), now, self._tz), now)
        dose = await self._todays_dose(user_id, medication, now)
        await self._repo.mark_dose_taken(user_id, dose.id, taken_at)

        reply = f"Great! I've logged {medication.name} {medication.dose}. "
        if taken_at - dose.scheduled_time > LATE_DOSE:
            reply += f"I noticed you took it a bit later than your usual {medication.timing} time. Everything okay? "
        else:
            reply += "Right on schedule! "

        start, end = local_day_bounds(now, self._tz)
        upcoming = [
            d for d in await self._repo.get_doses(user_id, start, end)
            if not d.taken and d.id != dose.id and d.scheduled_time > now
        ]
        if upcoming:
            nxt = upcoming[0]
            reply += f"Your next dose is {nxt.medication_name} at {_format_clock(nxt.scheduled_time, self._tz)}."
        else:
            reply += "You're all caught up with medications for now!"
        return HandlerResult(reply)

    async def _medication_missed(self, user_id: int, intent: Intent, now: datetime) -> HandlerResult:
        medication, clarification = await self._find_medication(user_id, intent)
        if clarification is not None:
            return clarification

        dose = await self._todays_dose(user_id, medication, now)
        if dose.taken:
            return HandlerResult(
                f"My records show you already took {medication.name} today, so you're covered."
            )
        await self._repo.mark_dose_missed(user_id, dose.id)
        return HandlerResult(
            f"Thanks for telling me. I've noted that you missed {medication.name}. "
            "Please don't double up on your next dose; if you're unsure what to do, "
            "check with your doctor or pharmacist."
        )

    # ------------------------------------------------------------------
    # Meals, symptoms, activities
    # ------------------------------------------------------------------

    async def _meal_logged(self, user_id: int, entities: dict[str, Any], now: datetime) -> HandlerResult:
        meal_type = str(entities.get("mealType") or "").strip().lower()
        if meal_type not in MEAL_TYPES:
            meal_type = "snack"
        foods = str(entities.get("foods") or "").strip()
        logged_at = min(at_local_time(entities.get("time"), now, self._tz), now)

        await self._repo.add_meal(user_id, meal_type, logged_at, foods)

        reply = f"Perfect! I've logged your {meal_type}"
        if foods:
            reply += f" ({foods})"
        reply += f" at {_format_clock(logged_at, self._tz)}. "

        if await self._meal_is_late(user_id, meal_type, logged_at):
            reply += "That's a bit later than your usual time. Busy day? "

        start, end = local_day_bounds(now, self._tz)
        after_food = [
            d for d in await self._repo.get_doses(user_id, start, end)
            if not d.taken and not d.before_food
        ]
        if after_food:
            reply += f"Don't forget to take your {after_food[0].medication_name} after eating!"
        else:
            reply += "Hope you enjoyed it!"

        content = f"{meal_type} at {_format_clock(logged_at, self._tz)}" + (f": {foods}" if foods else "")
        self._remember(user_id, "meal", content, {"meal_type": meal_type})
        return HandlerResult(reply)

    async def _meal_is_late(self, user_id: int, meal_type: str, logged_at: datetime) -> bool:
        baseline = await self._repo.get_baseline(user_id)
        if baseline is None or meal_type not in baseline.meal_windows:
            return False
        try:
            window_end = time_to_minutes(baseline.meal_windows[meal_type].end)
        except ValueError:
            return False
        return minute_of_day(logged_at, self._tz) > window_end + MEAL_LATE_MINUTES

    async def _symptom_reported(self, user_id: int, intent: Intent, now: datetime) -> HandlerResult:
        symptom = str(intent.entities.get("symptom") or "").strip()
        if not symptom:
            question = follow_up_question(intent)
            return HandlerResult(question, needs_follow_up=True, follow_up_question=question)

        severity = _clamp_severity(intent.entities.get("severity", DEFAULT_SEVERITY))
        notes = str(intent.entities.get("notes") or "")
        await self._repo.add_symptom(user_id, symptom, severity, now, notes)

        _, day_end = local_day_bounds(now, self._tz)
        recent = await self._repo.get_symptoms(user_id, now - SYMPTOM_LOOKBACK, day_end)
        same = sum(1 for s in recent if s.symptom.strip().lower() == symptom.lower())

        reply = f"I've noted that you're experiencing {symptom}"
        reply += f" (severity {severity}/5). " if severity >= SEVERE_SYMPTOM else ". "
        if same >= 2:
            reply += f"I've noticed you've reported {symptom} {same} times this week. "

        if severity >= SEVERE_SYMPTOM:
            reply += (
                "This sounds uncomfortable. Please sit down and rest. If it gets worse or "
                "doesn't improve soon, please call your doctor. Your caregiver is notified "
                "automatically if today looks risky."
            )
        else:
            reply += "Take it easy and let me know if it gets worse. I'm keeping track of this for you."

        self._remember(
            user_id, "symptom", f"{symptom} (severity {severity}/5)" + (f": {notes}" if notes else ""),
            {"symptom": symptom, "severity": severity},
        )
        return HandlerResult(reply)

    async def _activity(self, user_id: int, intent: Intent, now: datetime) -> HandlerResult:
        activity = str(intent.entities.get("activity") or "").strip().lower()
        if not activity:
            question = follow_up_question(intent)
            return HandlerResult(question, needs_follow_up=True, follow_up_question=question)

        if intent.type is IntentType.ACTIVITY_STARTED:
            await self._repo.add_activity(user_id, activity, now)
            return HandlerResult(f"Noted! You're {activity}. Take it easy and enjoy!")

        duration = None
        for log in await self._repo.get_recent_activities(user_id, 5):
            if log.activity == activity and log.duration_minutes is None and log.logged_at <= now:
                duration = int((now - log.logged_at).total_seconds() // 60)
                break
        await self._repo.add_activity(user_id, activity, now, duration)
        if duration:
            return HandlerResult(f"Welcome back! That was about {duration} minutes of {activity}.")
        return HandlerResult(f"Welcome back! I've noted that you finished {activity}.")

    # ------------------------------------------------------------------

    def _remember(self, user_id: int, memory_type: str, content: str, metadata: dict) -> None:
        if self._memory is None or self._runner is None:
            return
        memory = self._memory
        self._runner.submit(
            f"remember-{memory_type}-{user_id}",
            lambda: memory.remember(user_id, memory_type, content, metadata),
        )
