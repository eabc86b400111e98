"""Routine twin — drift detection against the personal baseline.

Pure business logic, no I/O. Two independent steps:

- `collect_findings()` compares today's events with the baseline and
  returns one DriftFinding per deviation.
- `classify()` maps a findings vector to (score, state). It depends only on
  the multiset of severities, so the result is independent of finding order.

`evaluate()` composes both. Nothing is stored between calls: every
evaluation starts from scratch.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from enum import Enum

from companion.core.baseline import minute_of_day, time_to_minutes
from companion.data.models import (
    ActivityLog,
    MealLog,
    MedicationDose,
    RoutineBaseline,
    SymptomLog,
)

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RoutineState(str, Enum):
    ROUTINE = "routine"
    DRIFT = "drift"
    CONCERN = "concern"


SEVERITY_PENALTY = {Severity.HIGH: 20, Severity.MEDIUM: 10, Severity.LOW: 5}
_SEVERITY_RANK = {Severity.HIGH: 0, Severity.MEDIUM: 1, Severity.LOW: 2}

CONCERN_BELOW = 60
ROUTINE_FROM = 85
MEAL_LATE_GRACE_MINUTES = 60
ADHERENCE_DRIFT_BELOW = 80
ADHERENCE_HIGH_BELOW = 50
SYMPTOM_RECURRENCE_COUNT = 2

ROUTINE_MESSAGE = "You're following your usual routine today"


@dataclass(frozen=True)
class DriftFinding:
    """One detected deviation from the baseline."""

    category: str
    severity: Severity
    description: str
    baseline: str
    observed: str


@dataclass
class TwinState:
    state: RoutineState = RoutineState.ROUTINE
    score: int = 100
    message: str = ROUTINE_MESSAGE
    drift_reasons: list[str] = field(default_factory=list)


@dataclass
class TodayEvents:
    """Everything logged for the user today."""

    doses: list[MedicationDose] = field(default_factory=list)
    meals: list[MealLog] = field(default_factory=list)
    symptoms: list[SymptomLog] = field(default_factory=list)
    activities: list[ActivityLog] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Findings collection
# ---------------------------------------------------------------------------


def _meal_timing_findings(
    baseline: RoutineBaseline, meals: list[MealLog], now: datetime, tz: tzinfo | None,
) -> list[DriftFinding]:
    findings: list[DriftFinding] = []
    logged = {m.meal_type for m in meals}
    now_minutes = minute_of_day(now, tz)

    for meal_type, window in baseline.meal_windows.items():
        if meal_type in logged:
            continue
        try:
            window_end = time_to_minutes(window.end)
        except ValueError:
            logger.warning("Ignoring malformed %s window end: %r", meal_type, window.end)
            continue
        if now_minutes > window_end + MEAL_LATE_GRACE_MINUTES:
            findings.append(DriftFinding(
                category="meal_timing",
                severity=Severity.MEDIUM,
                description=f"{meal_type.capitalize()} is delayed by more than 1 hour",
                baseline=f"Usually between {window.start} - {window.end}",
                observed="Not logged yet",
            ))
    return findings


def _adherence_findings(doses: list[MedicationDose], now: datetime) -> list[DriftFinding]:
    due = [d for d in doses if d.scheduled_time <= now]
    if not due:
        return []

    taken = sum(1 for d in due if d.taken)
    rate = taken / len(due) * 100
    if rate >= ADHERENCE_DRIFT_BELOW:
        return []

    return [DriftFinding(
        category="medication_adherence",
        severity=Severity.HIGH if rate < ADHERENCE_HIGH_BELOW else Severity.MEDIUM,
        description=f"{len(due) - taken} medication(s) not taken on time",
        baseline="All medications taken on schedule",
        observed=f"{round(rate)}% adherence today",
    )]


def _symptom_findings(symptoms: list[SymptomLog]) -> list[DriftFinding]:
    counts = Counter(s.symptom.strip().lower() for s in symptoms)
    return [
        DriftFinding(
            category="symptom_pattern",
            severity=Severity.MEDIUM,
            description=f"{symptom} reported {count} times today",
            baseline="Occasional symptoms",
            observed=f"Recurring {symptom}",
        )
        for symptom, count in sorted(counts.items())
        if count >= SYMPTOM_RECURRENCE_COUNT
    ]


def collect_findings(
    baseline: RoutineBaseline | None,
    today: TodayEvents,
    now: datetime,
    tz: tzinfo | None = None,
) -> list[DriftFinding]:
    """Run every drift check. Returns an empty list without a baseline."""
    if baseline is None:
        return []

    findings: list[DriftFinding] = []
    findings.extend(_meal_timing_findings(baseline, today.meals, now, tz))
    findings.extend(_adherence_findings(today.doses, now))
    findings.extend(_symptom_findings(today.symptoms))
    return findings


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def score_findings(findings: list[DriftFinding]) -> int:
    score = 100 - sum(SEVERITY_PENALTY[f.severity] for f in findings)
    return max(0, min(100, score))


def classify(findings: list[DriftFinding]) -> tuple[int, RoutineState]:
    """Map findings to (score, state)."""
    score = score_findings(findings)
    if score < CONCERN_BELOW or any(f.severity is Severity.HIGH for f in findings):
        return score, RoutineState.CONCERN
    if score < ROUTINE_FROM or findings:
        return score, RoutineState.DRIFT
    return score, RoutineState.ROUTINE


def sort_by_severity(findings: list[DriftFinding]) -> list[DriftFinding]:
    """Stable sort, most severe first."""
    return sorted(findings, key=lambda f: _SEVERITY_RANK[f.severity])


def evaluate(
    baseline: RoutineBaseline | None,
    today: TodayEvents,
    now: datetime,
    tz: tzinfo | None = None,
) -> TwinState:
    """Compute today's TwinState from scratch."""
    if baseline is None:
        return TwinState()

    findings = sort_by_severity(collect_findings(baseline, today, now, tz))
    score, state = classify(findings)
    message = findings[0].description if findings else ROUTINE_MESSAGE

    logger.info("Twin state: %s (score %d, %d finding(s))", state.value, score, len(findings))
    return TwinState(
        state=state,
        score=score,
        message=message,
        drift_reasons=[f.description for f in findings],
    )
