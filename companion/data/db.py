"""
CareCompanion — SQLite Health Repository.

The Memory pillar: medications, logs, baselines, aliases, alerts and the
conversation transcript persist in SQLite across restarts.

Implements the HealthRepository port. sqlite3 is synchronous, so every
query runs through asyncio.to_thread. Timestamps are stored as UTC ISO
strings so range filters can compare them lexically.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from companion.data.models import (
    ActivityLog,
    Alias,
    ConversationTurn,
    MealLog,
    MealWindow,
    Medication,
    MedicationDose,
    RiskAlert,
    RoutineBaseline,
    SymptomLog,
    UserProfile,
    VectorMemory,
)
from companion.ports.health_repository import RepositoryError

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS profiles (
    user_id            INTEGER PRIMARY KEY,
    name               TEXT NOT NULL DEFAULT '',
    age_group          TEXT NOT NULL DEFAULT '',
    language           TEXT NOT NULL DEFAULT 'English',
    location           TEXT NOT NULL DEFAULT '',
    caregiver_chat_id  INTEGER,
    created_at         TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS medications (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id      INTEGER NOT NULL,
    name         TEXT    NOT NULL,
    dose         TEXT    NOT NULL,
    timing       TEXT    NOT NULL,
    before_food  INTEGER NOT NULL DEFAULT 0,
    active       INTEGER NOT NULL DEFAULT 1
);
CREATE TABLE IF NOT EXISTS medication_doses (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id         INTEGER NOT NULL,
    medication_id   INTEGER NOT NULL REFERENCES medications(id),
    scheduled_time  TEXT    NOT NULL,
    taken           INTEGER NOT NULL DEFAULT 0,
    taken_at        TEXT,
    missed          INTEGER NOT NULL DEFAULT 0
);
CREATE TABLE IF NOT EXISTS meal_logs (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id    INTEGER NOT NULL,
    meal_type  TEXT    NOT NULL,
    logged_at  TEXT    NOT NULL,
    foods      TEXT    NOT NULL DEFAULT ''
);
CREATE TABLE IF NOT EXISTS symptom_logs (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id    INTEGER NOT NULL,
    symptom    TEXT    NOT NULL,
    severity   INTEGER NOT NULL,
    logged_at  TEXT    NOT NULL,
    notes      TEXT    NOT NULL DEFAULT ''
);
CREATE TABLE IF NOT EXISTS activity_logs (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id           INTEGER NOT NULL,
    activity          TEXT    NOT NULL,
    logged_at         TEXT    NOT NULL,
    duration_minutes  INTEGER
);
CREATE TABLE IF NOT EXISTS routine_baselines (
    user_id             INTEGER PRIMARY KEY,
    meal_windows        TEXT    NOT NULL DEFAULT '{}',
    adherence_rate      INTEGER NOT NULL DEFAULT 100,
    total_scheduled     INTEGER NOT NULL DEFAULT 0,
    total_taken         INTEGER NOT NULL DEFAULT 0,
    activity_frequency  TEXT    NOT NULL DEFAULT '{}',
    updated_at          TEXT    NOT NULL
);
CREATE TABLE IF NOT EXISTS aliases (
    user_id           INTEGER NOT NULL,
    alias_normalized  TEXT    NOT NULL,
    alias             TEXT    NOT NULL,
    resolved_to       TEXT    NOT NULL,
    entity_type       TEXT    NOT NULL,
    usage_count       INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (user_id, alias_normalized)
);
CREATE TABLE IF NOT EXISTS risk_alerts (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id     INTEGER NOT NULL,
    level       TEXT    NOT NULL,
    title       TEXT    NOT NULL,
    unusual     TEXT    NOT NULL,
    why         TEXT    NOT NULL,
    action      TEXT    NOT NULL,
    baseline    TEXT    NOT NULL DEFAULT '',
    triggers    TEXT    NOT NULL DEFAULT '[]',
    dismissed   INTEGER NOT NULL DEFAULT 0,
    created_at  TEXT    NOT NULL
);
CREATE TABLE IF NOT EXISTS conversation_turns (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id     INTEGER NOT NULL,
    sender      TEXT    NOT NULL,
    text        TEXT    NOT NULL,
    metadata    TEXT    NOT NULL DEFAULT '{}',
    created_at  TEXT    NOT NULL
);
CREATE TABLE IF NOT EXISTS vector_memories (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id      INTEGER NOT NULL,
    memory_type  TEXT    NOT NULL,
    content      TEXT    NOT NULL,
    embedding    TEXT    NOT NULL DEFAULT '[]',
    metadata     TEXT    NOT NULL DEFAULT '{}',
    created_at   TEXT    NOT NULL
);
"""


def _ts(dt: datetime) -> str:
    """Serialize a datetime as a UTC ISO string."""
    return dt.astimezone(timezone.utc).isoformat()


def _dt(raw: str | None) -> datetime | None:
    if raw is None:
        return None
    return datetime.fromisoformat(raw)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class HealthDB:
    """SQLite-backed implementation of the HealthRepository port."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from companion.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        """Create all tables if they don't exist."""
        with self._connect() as conn:
            conn.executescript(_SCHEMA)
        logger.debug("Health tables initialized at %s", self._db_path)

    # ------------------------------------------------------------------
    # Low-level helpers
    # ------------------------------------------------------------------

    def _query_sync(self, sql: str, params: tuple | list) -> list[sqlite3.Row]:
        with self._connect() as conn:
            return conn.execute(sql, params).fetchall()

    def _execute_sync(self, sql: str, params: tuple | list) -> tuple[int, int]:
        with self._connect() as conn:
            cursor = conn.execute(sql, params)
            return cursor.lastrowid, cursor.rowcount

    async def _query(self, sql: str, params: tuple | list = ()) -> list[sqlite3.Row]:
        try:
            return await asyncio.to_thread(self._query_sync, sql, params)
        except sqlite3.Error as exc:
            logger.error("SQLite query failed: %s", exc)
            raise RepositoryError(str(exc)) from exc

    async def _execute(self, sql: str, params: tuple | list = ()) -> tuple[int, int]:
        try:
            return await asyncio.to_thread(self._execute_sync, sql, params)
        except sqlite3.Error as exc:
            logger.error("SQLite write failed: %s", exc)
            raise RepositoryError(str(exc)) from exc

    # ------------------------------------------------------------------
    # Row mappers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_profile(row: sqlite3.Row) -> UserProfile:
        return UserProfile(
            user_id=row["user_id"],
            name=row["name"],
            age_group=row["age_group"],
            language=row["language"],
            location=row["location"],
            caregiver_chat_id=row["caregiver_chat_id"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_medication(row: sqlite3.Row) -> Medication:
        return Medication(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            dose=row["dose"],
            timing=row["timing"],
            before_food=bool(row["before_food"]),
            active=bool(row["active"]),
        )

    @staticmethod
    def _row_to_dose(row: sqlite3.Row) -> MedicationDose:
        return MedicationDose(
            id=row["id"],
            user_id=row["user_id"],
            medication_id=row["medication_id"],
            medication_name=row["name"],
            scheduled_time=_dt(row["scheduled_time"]),
            before_food=bool(row["before_food"]),
            taken=bool(row["taken"]),
            taken_at=_dt(row["taken_at"]),
            missed=bool(row["missed"]),
        )

    @staticmethod
    def _row_to_alert(row: sqlite3.Row) -> RiskAlert:
        return RiskAlert(
            id=row["id"],
            user_id=row["user_id"],
            level=row["level"],
            title=row["title"],
            unusual=row["unusual"],
            why=row["why"],
            action=row["action"],
            baseline=row["baseline"],
            triggers=json.loads(row["triggers"]),
            dismissed=bool(row["dismissed"]),
            created_at=row["created_at"],
        )

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    async def get_profile(self, user_id: int) -> UserProfile | None:
        rows = await self._query("SELECT * FROM profiles WHERE user_id = ?", (user_id,))
        return self._row_to_profile(rows[0]) if rows else None

    async def upsert_profile(self, profile: UserProfile) -> UserProfile:
        if not profile.created_at:
            profile.created_at = _now()
        await self._execute(
            """
            INSERT INTO profiles
                (user_id, name, age_group, language, location, caregiver_chat_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                name = excluded.name,
                age_group = excluded.age_group,
                language = excluded.language,
                location = excluded.location,
                caregiver_chat_id = excluded.caregiver_chat_id
            """,
            (
                profile.user_id, profile.name, profile.age_group, profile.language,
                profile.location, profile.caregiver_chat_id, profile.created_at,
            ),
        )
        logger.info("Profile saved for user %d", profile.user_id)
        return profile

    async def list_profiles(self) -> list[UserProfile]:
        rows = await self._query("SELECT * FROM profiles ORDER BY created_at")
        return [self._row_to_profile(r) for r in rows]

    # ------------------------------------------------------------------
    # Medications and doses
    # ------------------------------------------------------------------

    async def get_medications(self, user_id: int) -> list[Medication]:
        rows = await self._query(
            "SELECT * FROM medications WHERE user_id = ? AND active = 1 ORDER BY timing",
            (user_id,),
        )
        return [self._row_to_medication(r) for r in rows]

    async def get_medication_by_name(self, user_id: int, name: str) -> Medication | None:
        """Case-insensitive exact match on an active medication name."""
        rows = await self._query(
            "SELECT * FROM medications WHERE user_id = ? AND active = 1 AND lower(name) = ?",
            (user_id, name.strip().lower()),
        )
        return self._row_to_medication(rows[0]) if rows else None

    async def add_medication(
        self, user_id: int, name: str, dose: str, timing: str, before_food: bool = False,
    ) -> Medication:
        med_id, _ = await self._execute(
            """
            INSERT INTO medications (user_id, name, dose, timing, before_food, active)
            VALUES (?, ?, ?, ?, ?, 1)
            """,
            (user_id, name.strip(), dose, timing, int(before_food)),
        )
        logger.info("Medication added: #%d '%s' for user %d", med_id, name, user_id)
        return Medication(
            id=med_id, user_id=user_id, name=name.strip(), dose=dose,
            timing=timing, before_food=before_food,
        )

    _DOSE_SELECT = """
        SELECT d.*, m.name, m.before_food
        FROM medication_doses d JOIN medications m ON m.id = d.medication_id
    """

    async def add_dose(
        self, user_id: int, medication_id: int, scheduled_time: datetime,
    ) -> MedicationDose:
        dose_id, _ = await self._execute(
            "INSERT INTO medication_doses (user_id, medication_id, scheduled_time) VALUES (?, ?, ?)",
            (user_id, medication_id, _ts(scheduled_time)),
        )
        rows = await self._query(self._DOSE_SELECT + " WHERE d.id = ?", (dose_id,))
        return self._row_to_dose(rows[0])

    async def get_doses(
        self, user_id: int, start: datetime, end: datetime,
    ) -> list[MedicationDose]:
        rows = await self._query(
            self._DOSE_SELECT
            + " WHERE d.user_id = ? AND d.scheduled_time >= ? AND d.scheduled_time < ?"
            + " ORDER BY d.scheduled_time",
            (user_id, _ts(start), _ts(end)),
        )
        return [self._row_to_dose(r) for r in rows]

    async def get_dose_for_medication(
        self, user_id: int, medication_id: int, start: datetime, end: datetime,
    ) -> MedicationDose | None:
        """Return the earliest untaken dose in range, else the earliest dose."""
        rows = await self._query(
            self._DOSE_SELECT
            + " WHERE d.user_id = ? AND d.medication_id = ?"
            + " AND d.scheduled_time >= ? AND d.scheduled_time < ?"
            + " ORDER BY d.taken, d.scheduled_time LIMIT 1",
            (user_id, medication_id, _ts(start), _ts(end)),
        )
        return self._row_to_dose(rows[0]) if rows else None

    async def mark_dose_taken(self, user_id: int, dose_id: int, taken_at: datetime) -> None:
        await self._execute(
            "UPDATE medication_doses SET taken = 1, missed = 0, taken_at = ? WHERE id = ? AND user_id = ?",
            (_ts(taken_at), dose_id, user_id),
        )
        logger.info("Dose #%d marked taken for user %d", dose_id, user_id)

    async def mark_dose_missed(self, user_id: int, dose_id: int) -> None:
        await self._execute(
            "UPDATE medication_doses SET missed = 1 WHERE id = ? AND user_id = ? AND taken = 0",
            (dose_id, user_id),
        )
        logger.info("Dose #%d marked missed for user %d", dose_id, user_id)

    # ------------------------------------------------------------------
    # Meals, symptoms, activities
    # ------------------------------------------------------------------

    async def add_meal(
        self, user_id: int, meal_type: str, logged_at: datetime, foods: str = "",
    ) -> MealLog:
        meal_id, _ = await self._execute(
            "INSERT INTO meal_logs (user_id, meal_type, logged_at, foods) VALUES (?, ?, ?, ?)",
            (user_id, meal_type, _ts(logged_at), foods),
        )
        logger.info("Meal logged: #%d %s for user %d", meal_id, meal_type, user_id)
        return MealLog(id=meal_id, user_id=user_id, meal_type=meal_type,
                       logged_at=logged_at, foods=foods)

    async def get_meals(self, user_id: int, start: datetime, end: datetime) -> list[MealLog]:
        rows = await self._query(
            "SELECT * FROM meal_logs WHERE user_id = ? AND logged_at >= ? AND logged_at < ?"
            " ORDER BY logged_at",
            (user_id, _ts(start), _ts(end)),
        )
        return [
            MealLog(id=r["id"], user_id=r["user_id"], meal_type=r["meal_type"],
                    logged_at=_dt(r["logged_at"]), foods=r["foods"])
            for r in rows
        ]

    async def add_symptom(
        self, user_id: int, symptom: str, severity: int, logged_at: datetime, notes: str = "",
    ) -> SymptomLog:
        symptom_id, _ = await self._execute(
            "INSERT INTO symptom_logs (user_id, symptom, severity, logged_at, notes)"
            " VALUES (?, ?, ?, ?, ?)",
            (user_id, symptom, severity, _ts(logged_at), notes),
        )
        logger.info("Symptom logged: #%d '%s' (%d/5) for user %d",
                    symptom_id, symptom, severity, user_id)
        return SymptomLog(id=symptom_id, user_id=user_id, symptom=symptom,
                          severity=severity, logged_at=logged_at, notes=notes)

    async def get_symptoms(
        self, user_id: int, start: datetime, end: datetime,
    ) -> list[SymptomLog]:
        rows = await self._query(
            "SELECT * FROM symptom_logs WHERE user_id = ? AND logged_at >= ? AND logged_at < ?"
            " ORDER BY logged_at",
            (user_id, _ts(start), _ts(end)),
        )
        return [
            SymptomLog(id=r["id"], user_id=r["user_id"], symptom=r["symptom"],
                       severity=r["severity"], logged_at=_dt(r["logged_at"]), notes=r["notes"])
            for r in rows
        ]

    async def add_activity(
        self, user_id: int, activity: str, logged_at: datetime,
        duration_minutes: int | None = None,
    ) -> ActivityLog:
        activity_id, _ = await self._execute(
            "INSERT INTO activity_logs (user_id, activity, logged_at, duration_minutes)"
            " VALUES (?, ?, ?, ?)",
            (user_id, activity, _ts(logged_at), duration_minutes),
        )
        logger.info("Activity logged: #%d '%s' for user %d", activity_id, activity, user_id)
        return ActivityLog(id=activity_id, user_id=user_id, activity=activity,
                           logged_at=logged_at, duration_minutes=duration_minutes)

    @staticmethod
    def _row_to_activity(r: sqlite3.Row) -> ActivityLog:
        return ActivityLog(id=r["id"], user_id=r["user_id"], activity=r["activity"],
                           logged_at=_dt(r["logged_at"]), duration_minutes=r["duration_minutes"])

    async def get_activities(
        self, user_id: int, start: datetime, end: datetime,
    ) -> list[ActivityLog]:
        rows = await self._query(
            "SELECT * FROM activity_logs WHERE user_id = ? AND logged_at >= ? AND logged_at < ?"
            " ORDER BY logged_at",
            (user_id, _ts(start), _ts(end)),
        )
        return [self._row_to_activity(r) for r in rows]

    async def get_recent_activities(self, user_id: int, limit: int) -> list[ActivityLog]:
        rows = await self._query(
            "SELECT * FROM activity_logs WHERE user_id = ? ORDER BY logged_at DESC LIMIT ?",
            (user_id, limit),
        )
        return [self._row_to_activity(r) for r in rows]

    # ------------------------------------------------------------------
    # Routine baseline
    # ------------------------------------------------------------------

    async def get_baseline(self, user_id: int) -> RoutineBaseline | None:
        rows = await self._query("SELECT * FROM routine_baselines WHERE user_id = ?", (user_id,))
        if not rows:
            return None
        row = rows[0]
        windows = {
            meal: MealWindow(start=w["start"], end=w["end"])
            for meal, w in json.loads(row["meal_windows"]).items()
        }
        return RoutineBaseline(
            user_id=row["user_id"],
            meal_windows=windows,
            adherence_rate=row["adherence_rate"],
            total_scheduled=row["total_scheduled"],
            total_taken=row["total_taken"],
            activity_frequency=json.loads(row["activity_frequency"]),
            updated_at=row["updated_at"],
        )

    async def upsert_baseline(self, baseline: RoutineBaseline) -> None:
        """Replace every derived field of the user's baseline."""
        windows = {
            meal: {"start": w.start, "end": w.end} for meal, w in baseline.meal_windows.items()
        }
        await self._execute(
            """
            INSERT INTO routine_baselines
                (user_id, meal_windows, adherence_rate, total_scheduled, total_taken,
                 activity_frequency, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                meal_windows = excluded.meal_windows,
                adherence_rate = excluded.adherence_rate,
                total_scheduled = excluded.total_scheduled,
                total_taken = excluded.total_taken,
                activity_frequency = excluded.activity_frequency,
                updated_at = excluded.updated_at
            """,
            (
                baseline.user_id, json.dumps(windows), baseline.adherence_rate,
                baseline.total_scheduled, baseline.total_taken,
                json.dumps(baseline.activity_frequency), baseline.updated_at or _now(),
            ),
        )
        logger.info("Baseline upserted for user %d", baseline.user_id)

    # ------------------------------------------------------------------
    # Aliases
    # ------------------------------------------------------------------

    async def get_aliases(self, user_id: int) -> list[Alias]:
        rows = await self._query(
            "SELECT * FROM aliases WHERE user_id = ? ORDER BY usage_count DESC, alias",
            (user_id,),
        )
        return [
            Alias(user_id=r["user_id"], alias=r["alias"], resolved_to=r["resolved_to"],
                  entity_type=r["entity_type"], usage_count=r["usage_count"])
            for r in rows
        ]

    async def upsert_alias(self, alias: Alias) -> Alias:
        """Create or overwrite the mapping for (user, alias text)."""
        await self._execute(
            """
            INSERT INTO aliases
                (user_id, alias_normalized, alias, resolved_to, entity_type, usage_count)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id, alias_normalized) DO UPDATE SET
                resolved_to = excluded.resolved_to,
                entity_type = excluded.entity_type
            """,
            (
                alias.user_id, alias.alias.strip().lower(), alias.alias.strip(),
                alias.resolved_to, alias.entity_type, alias.usage_count,
            ),
        )
        logger.info("Alias saved for user %d: '%s' → %s",
                    alias.user_id, alias.alias, alias.resolved_to)
        return alias

    async def bump_alias_usage(self, user_id: int, alias_text: str) -> None:
        await self._execute(
            "UPDATE aliases SET usage_count = usage_count + 1"
            " WHERE user_id = ? AND alias_normalized = ?",
            (user_id, alias_text.strip().lower()),
        )

    # ------------------------------------------------------------------
    # Risk alerts
    # ------------------------------------------------------------------

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
    ) -> RiskAlert:
        created_at = _now()
        alert_id, _ = await self._execute(
            """
            INSERT INTO risk_alerts
                (user_id, level, title, unusual, why, action, baseline, triggers,
                 dismissed, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, ?)
            """,
            (user_id, level, title, unusual, why, action, baseline,
             json.dumps(triggers), created_at),
        )
        logger.info("Risk alert #%d (%s) recorded for user %d", alert_id, level, user_id)
        return RiskAlert(
            id=alert_id, user_id=user_id, level=level, title=title, unusual=unusual,
            why=why, action=action, baseline=baseline, triggers=list(triggers),
            dismissed=False, created_at=created_at,
        )

    async def get_active_risk_alerts(self, user_id: int) -> list[RiskAlert]:
        rows = await self._query(
            "SELECT * FROM risk_alerts WHERE user_id = ? AND dismissed = 0"
            " ORDER BY created_at DESC, id DESC",
            (user_id,),
        )
        return [self._row_to_alert(r) for r in rows]

    async def dismiss_risk_alert(self, user_id: int, alert_id: int) -> bool:
        _, rowcount = await self._execute(
            "UPDATE risk_alerts SET dismissed = 1 WHERE id = ? AND user_id = ? AND dismissed = 0",
            (alert_id, user_id),
        )
        dismissed = rowcount > 0
        if dismissed:
            logger.info("Risk alert #%d dismissed by user %d", alert_id, user_id)
        return dismissed

    # ------------------------------------------------------------------
    # Conversation transcript
    # ------------------------------------------------------------------

    async def append_turn(
        self, user_id: int, sender: str, text: str, metadata: dict | None = None,
    ) -> ConversationTurn:
        created_at = _now()
        meta = metadata or {}
        turn_id, _ = await self._execute(
            "INSERT INTO conversation_turns (user_id, sender, text, metadata, created_at)"
            " VALUES (?, ?, ?, ?, ?)",
            (user_id, sender, text, json.dumps(meta), created_at),
        )
        return ConversationTurn(id=turn_id, user_id=user_id, sender=sender, text=text,
                                created_at=created_at, metadata=meta)

    async def get_recent_turns(self, user_id: int, limit: int) -> list[ConversationTurn]:
        """Return the last *limit* turns, oldest first."""
        rows = await self._query(
            "SELECT * FROM conversation_turns WHERE user_id = ? ORDER BY id DESC LIMIT ?",
            (user_id, limit),
        )
        return [
            ConversationTurn(id=r["id"], user_id=r["user_id"], sender=r["sender"],
                             text=r["text"], created_at=r["created_at"],
                             metadata=json.loads(r["metadata"]))
            for r in reversed(rows)
        ]

    async def clear_turns(self, user_id: int) -> None:
        await self._execute("DELETE FROM conversation_turns WHERE user_id = ?", (user_id,))
        logger.info("Conversation cleared for user %d", user_id)

    # ------------------------------------------------------------------
    # Vector memories
    # ------------------------------------------------------------------

    async def get_memories(
        self, user_id: int, memory_types: list[str] | None = None,
    ) -> list[VectorMemory]:
        query = "SELECT * FROM vector_memories WHERE user_id = ?"
        params: list[Any] = [user_id]
        if memory_types:
            query += f" AND memory_type IN ({', '.join('?' for _ in memory_types)})"
            params.extend(memory_types)
        rows = await self._query(query, params)
        return [
            VectorMemory(id=r["id"], user_id=r["user_id"], memory_type=r["memory_type"],
                         content=r["content"], embedding=json.loads(r["embedding"]),
                         metadata=json.loads(r["metadata"]))
            for r in rows
        ]

    async def add_memory(
        self,
        user_id: int,
        memory_type: str,
        content: str,
        embedding: list[float],
        metadata: dict | None = None,
    ) -> VectorMemory:
        meta = metadata or {}
        memory_id, _ = await self._execute(
            "INSERT INTO vector_memories"
            " (user_id, memory_type, content, embedding, metadata, created_at)"
            " VALUES (?, ?, ?, ?, ?, ?)",
            (user_id, memory_type, content, json.dumps(embedding), json.dumps(meta), _now()),
        )
        return VectorMemory(id=memory_id, user_id=user_id, memory_type=memory_type,
                            content=content, embedding=list(embedding), metadata=meta)
