"""
CareCompanion — Data Models.

The Memory pillar: every health record the companion reads or writes.
These are plain records owned by the repository; derived values (TwinState,
RiskAssessment) live next to the logic that computes them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

MEAL_TYPES = ("breakfast", "lunch", "dinner", "snack")
BASELINE_MEAL_TYPES = ("breakfast", "lunch", "dinner")


@dataclass
class UserProfile:
    """A companion user (keyed by Telegram user id)."""

    user_id: int
    name: str = ""
    age_group: str = ""
    language: str = "English"
    location: str = ""
    caregiver_chat_id: int | None = None
    created_at: str = ""


@dataclass
class Medication:
    """An active prescription, e.g. Metformin 500mg at 08:00 after food."""

    id: int
    user_id: int
    name: str
    dose: str
    timing: str                 # "HH:MM"
    before_food: bool = False
    active: bool = True


@dataclass
class MedicationDose:
    """One scheduled dose of a medication (a schedule entry)."""

    id: int
    user_id: int
    medication_id: int
    medication_name: str
    scheduled_time: datetime
    before_food: bool = False
    taken: bool = False
    taken_at: datetime | None = None
    missed: bool = False


@dataclass
class MealLog:
    id: int
    user_id: int
    meal_type: str              # breakfast | lunch | dinner | snack
    logged_at: datetime
    foods: str = ""


@dataclass
class SymptomLog:
    id: int
    user_id: int
    symptom: str
    severity: int               # 1-5
    logged_at: datetime
    notes: str = ""


@dataclass
class ActivityLog:
    id: int
    user_id: int
    activity: str               # walking, resting, going out, back home
    logged_at: datetime
    duration_minutes: int | None = None


@dataclass
class MealWindow:
    start: str                  # "HH:MM"
    end: str                    # "HH:MM"


@dataclass
class RoutineBaseline:
    """Per-user expected-normal timing, rebuilt wholesale from history."""

    user_id: int
    meal_windows: dict[str, MealWindow] = field(default_factory=dict)
    adherence_rate: int = 100
    total_scheduled: int = 0
    total_taken: int = 0
    activity_frequency: dict[str, int] = field(default_factory=dict)
    updated_at: str = ""


@dataclass
class Alias:
    """Learned per-user shorthand, e.g. "BP med" → "Amlodipine"."""

    user_id: int
    alias: str
    resolved_to: str
    entity_type: str            # medication | meal | activity
    usage_count: int = 0


@dataclass
class RiskAlert:
    """A persisted RiskAssessment that warranted an alert."""

    id: int
    user_id: int
    level: str                  # low | medium | high
    title: str
    unusual: str
    why: str
    action: str
    baseline: str = ""
    triggers: list[str] = field(default_factory=list)
    dismissed: bool = False
    created_at: str = ""


@dataclass
class ConversationTurn:
    """One immutable transcript entry."""

    id: int
    user_id: int
    sender: str                 # user | system
    text: str
    created_at: str = ""
    metadata: dict = field(default_factory=dict)


@dataclass
class VectorMemory:
    """An embedded memory passage used for retrieval."""

    id: int
    user_id: int
    memory_type: str            # conversation | symptom | meal | ...
    content: str
    embedding: list[float] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)
