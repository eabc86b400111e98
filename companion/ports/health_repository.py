"""Health repository port — abstract interface for durable health records.

Core modules depend on this protocol, never on a specific store.
Every operation is scoped by user id. Time ranges are half-open
[start, end) and use timezone-aware datetimes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from companion.data.models import (
    ActivityLog,
    Alias,
    ConversationTurn,
    MealLog,
    Medication,
    MedicationDose,
    RiskAlert,
    RoutineBaseline,
    SymptomLog,
    UserProfile,
    VectorMemory,
)


class RepositoryError(Exception):
    """Raised when any storage operation fails."""


class HealthRepository(Protocol):
    """Abstract storage interface used by core modules."""

    # Profiles
    async def get_profile(self, user_id: int) -> UserProfile | None: ...

    async def upsert_profile(self, profile: UserProfile) -> UserProfile: ...

    async def list_profiles(self) -> list[UserProfile]: ...

    # Medications and schedule entries
    async def get_medications(self, user_id: int) -> list[Medication]: ...

    async def get_medication_by_name(self, user_id: int, name: str) -> Medication | None: ...

    async def add_medication(
        self, user_id: int, name: str, dose: str, timing: str, before_food: bool = False,
    ) -> Medication: ...

    async def add_dose(
        self, user_id: int, medication_id: int, scheduled_time: datetime,
    ) -> MedicationDose: ...

    async def get_doses(
        self, user_id: int, start: datetime, end: datetime,
    ) -> list[MedicationDose]: ...

    async def get_dose_for_medication(
        self, user_id: int, medication_id: int, start: datetime, end: datetime,
    ) -> MedicationDose | None: ...

    async def mark_dose_taken(self, user_id: int, dose_id: int, taken_at: datetime) -> None: ...

    async def mark_dose_missed(self, user_id: int, dose_id: int) -> None: ...

    # Meals, symptoms, activities
    async def add_meal(
        self, user_id: int, meal_type: str, logged_at: datetime, foods: str = "",
    ) -> MealLog: ...

    async def get_meals(self, user_id: int, start: datetime, end: datetime) -> list[MealLog]: ...

    async def add_symptom(
        self, user_id: int, symptom: str, severity: int, logged_at: datetime, notes: str = "",
    ) -> SymptomLog: ...

    async def get_symptoms(
        self, user_id: int, start: datetime, end: datetime,
    ) -> list[SymptomLog]: ...

    async def add_activity(
        self, user_id: int, activity: str, logged_at: datetime,
        duration_minutes: int | None = None,
    ) -> ActivityLog: ...

    async def get_activities(
        self, user_id: int, start: datetime, end: datetime,
    ) -> list[ActivityLog]: ...

    async def get_recent_activities(self, user_id: int, limit: int) -> list[ActivityLog]: ...

    # Routine baseline (one row per user)
    async def get_baseline(self, user_id: int) -> RoutineBaseline | None: ...

    async def upsert_baseline(self, baseline: RoutineBaseline) -> None: ...

    # Aliases (idempotent on user + alias text)
    async def get_aliases(self, user_id: int) -> list[Alias]: ...

    async def upsert_alias(self, alias: Alias) -> Alias: ...

    async def bump_alias_usage(self, user_id: int, alias_text: str) -> None: ...

    # Risk alerts
    async def create_risk_alert(
        self,
        user_id: int,
        level: str,
        title: str,
        unusual: str,
        why: str,
        action: str,
        baseline: str,
        triggers: list[str],
    ) -> RiskAlert: ...

    async def get_active_risk_alerts(self, user_id: int) -> list[RiskAlert]: ...

    async def dismiss_risk_alert(self, user_id: int, alert_id: int) -> bool: ...

    # Conversation transcript
    async def append_turn(
        self, user_id: int, sender: str, text: str, metadata: dict | None = None,
    ) -> ConversationTurn: ...

    async def get_recent_turns(self, user_id: int, limit: int) -> list[ConversationTurn]: ...

    async def clear_turns(self, user_id: int) -> None: ...

    # Vector memories
    async def get_memories(
        self, user_id: int, memory_types: list[str] | None = None,
    ) -> list[VectorMemory]: ...

    async def add_memory(
        self,
        user_id: int,
        memory_type: str,
        content: str,
        embedding: list[float],
        metadata: dict | None = None,
    ) -> VectorMemory: ...
