"""Routine baseline builder — pure business logic.

Summarizes a user's last weeks of history into the expected-normal windows
the drift detector compares against: a ±30 minute window around the median
logging time of each meal, medication adherence, and activity frequency.

No I/O: this module only transforms data. A rebuild always produces a
complete replacement, never an incremental merge.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timedelta, tzinfo

from companion.data.models import (
    BASELINE_MEAL_TYPES,
    ActivityLog,
    MealLog,
    MealWindow,
    MedicationDose,
    RoutineBaseline,
)

logger = logging.getLogger(__name__)

MEAL_WINDOW_HALF_WIDTH = 30
_LAST_MINUTE_OF_DAY = 23 * 60 + 59


def minutes_to_time(minutes: int) -> str:
    """Format minutes since midnight as HH:MM."""
    hours, mins = divmod(minutes, 60)
    return f"{hours:02d}:{mins:02d}"


def time_to_minutes(raw: str) -> int:
    """Parse HH:MM into minutes since midnight.

    Raises ValueError on malformed input.
    """
    if ":" not in raw:
        raise ValueError(f"No colon in time: {raw!r}")
    hour, minute = map(int, raw.strip()[:5].split(":"))
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Hour/minute out of range: {hour}:{minute}")
    return hour * 60 + minute


def minute_of_day(dt: datetime, tz: tzinfo | None = None) -> int:
    local = dt.astimezone(tz) if tz is not None else dt
    return local.hour * 60 + local.minute


def local_day_bounds(now: datetime, tz: tzinfo | None = None) -> tuple[datetime, datetime]:
    """Return [start, end) of the local calendar day containing *now*."""
    local = now.astimezone(tz) if tz is not None else now
    start = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


def at_local_time(raw: str | None, now: datetime, tz: tzinfo | None = None) -> datetime:
    """Today at HH:MM local time, or *now* when *raw* is missing or malformed."""
    if not raw:
        return now
    try:
        minutes = time_to_minutes(str(raw))
    except ValueError:
        return now
    local = now.astimezone(tz) if tz is not None else now
    return local.replace(hour=minutes // 60, minute=minutes % 60, second=0, microsecond=0)


def median_minute(values: list[int]) -> int:
    """Upper median of *values* (the middle element after sorting)."""
    ordered = sorted(values)
    return ordered[len(ordered) // 2]


def calculate_meal_windows(meals: list[MealLog], tz: tzinfo | None = None) -> dict[str, MealWindow]:
    """Return a ±30 min window around the median time of each main meal."""
    times: dict[str, list[int]] = {meal: [] for meal in BASELINE_MEAL_TYPES}
    for meal in meals:
        if meal.meal_type in times:
            times[meal.meal_type].append(minute_of_day(meal.logged_at, tz))

    windows: dict[str, MealWindow] = {}
    for meal_type, values in times.items():
        if not values:
            continue
        median = median_minute(values)
        windows[meal_type] = MealWindow(
            start=minutes_to_time(max(0, median - MEAL_WINDOW_HALF_WIDTH)),
            end=minutes_to_time(min(_LAST_MINUTE_OF_DAY, median + MEAL_WINDOW_HALF_WIDTH)),
        )
    return windows


def calculate_adherence(doses: list[MedicationDose]) -> tuple[int, int, int]:
    """Return (adherence_rate %, total_scheduled, total_taken)."""
    total = len(doses)
    taken = sum(1 for d in doses if d.taken)
    rate = round(taken / total * 100) if total else 100
    return rate, total, taken


def calculate_activity_frequency(activities: list[ActivityLog]) -> dict[str, int]:
    return dict(Counter(a.activity for a in activities))


def rebuild_baseline(
    user_id: int,
    meals: list[MealLog],
    doses: list[MedicationDose],
    activities: list[ActivityLog],
    now: datetime,
    tz: tzinfo | None = None,
) -> RoutineBaseline:
    """Build a fresh RoutineBaseline from the lookback history."""
    rate, total, taken = calculate_adherence(doses)
    baseline = RoutineBaseline(
        user_id=user_id,
        meal_windows=calculate_meal_windows(meals, tz),
        adherence_rate=rate,
        total_scheduled=total,
        total_taken=taken,
        activity_frequency=calculate_activity_frequency(activities),
        updated_at=now.isoformat(),
    )
    logger.info(
        "Baseline rebuilt for user %d: %d meal window(s), adherence %d%%, %d activity type(s)",
        user_id, len(baseline.meal_windows), rate, len(baseline.activity_frequency),
    )
    return baseline
