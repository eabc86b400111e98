"""
CareCompanion — Caregiver summary.

Builds the daily caregiver digest: dose adherence, meals, symptoms and
active risk alerts over a lookback window. The counts and overall status
are computed here; the LLM only phrases an overview, recommendations and
highlights, and the summary is still produced when it fails.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, field_validator

from companion.core.decoding import decode_json_model
from companion.core.event_logger import SEVERE_SYMPTOM
from companion.core.llm import CompleteFn, LLMError

if TYPE_CHECKING:
    from companion.data.models import UserProfile
    from companion.ports.health_repository import HealthRepository

logger = logging.getLogger(__name__)

GOOD = "good"
FAIR = "fair"
NEEDS_ATTENTION = "needs attention"


@dataclass
class SummaryCounts:
    days: int
    doses_taken: int = 0
    doses_total: int = 0
    meals: int = 0
    symptoms: int = 0
    severe_symptoms: int = 0
    active_alerts: int = 0
    high_alerts: int = 0

    @property
    def adherence(self) -> int:
        if self.doses_total == 0:
            return 100
        return round(self.doses_taken / self.doses_total * 100)


@dataclass
class CaregiverSummary:
    """A digest ready for delivery to the caregiver."""

    user_id: int
    counts: SummaryCounts
    status: str
    overview: str = ""
    recommendations: list[str] = field(default_factory=list)
    highlights: list[str] = field(default_factory=list)


class _SummaryPhrasing(BaseModel):
    overview: str = ""
    recommendations: list[str] = Field(default_factory=list)
    positive_highlights: list[str] = Field(default_factory=list, alias="positiveHighlights")

    model_config = {"populate_by_name": True}

    @field_validator("recommendations", "positive_highlights", mode="before")
    @classmethod
    def as_list(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return [str(item) for item in v if item]


def overall_status(counts: SummaryCounts) -> str:
    if counts.high_alerts or counts.severe_symptoms or counts.adherence < 60:
        return NEEDS_ATTENTION
    if counts.active_alerts or counts.adherence < 90:
        return FAIR
    return GOOD


# ---------------------------------------------------------------------------
# System prompt for LLM
# ---------------------------------------------------------------------------

_SYSTEM_PROMPT = """\
Generate a short caregiver summary for {name} covering the last {days} day(s).

Facts (do not change them):
- Medication adherence: {adherence}% ({taken} of {total} doses taken)
- Meals logged: {meals}
- Symptoms reported: {symptoms} ({severe} severe)
- Active risk alerts: {alerts}
- Overall status: {status}

Return ONLY a JSON object:
{{
  "overview": "one or two sentences on how the day went",
  "recommendations": ["recommendation 1"],
  "positiveHighlights": ["positive 1"]
}}

Tone: informative and balanced. Mention both concerns and positives.
No markdown, no explanation, no extra text.
"""


class CaregiverSummarizer:
    """Collects the counts for a user and phrases them for the caregiver."""

    def __init__(self, repository: HealthRepository, complete: CompleteFn | None = None) -> None:
        self._repo = repository
        self._complete = complete

    async def collect(self, user_id: int, now: datetime, days: int = 1) -> SummaryCounts:
        since = now - timedelta(days=days)
        doses = await self._repo.get_doses(user_id, since, now)
        meals = await self._repo.get_meals(user_id, since, now)
        symptoms = await self._repo.get_symptoms(user_id, since, now)
        alerts = await self._repo.get_active_risk_alerts(user_id)

        return SummaryCounts(
            days=days,
            doses_taken=sum(1 for d in doses if d.taken),
            doses_total=len(doses),
            meals=len(meals),
            symptoms=len(symptoms),
            severe_symptoms=sum(1 for s in symptoms if s.severity >= SEVERE_SYMPTOM),
            active_alerts=len(alerts),
            high_alerts=sum(1 for a in alerts if a.level == "high"),
        )

    async def build(
        self,
        user_id: int,
        now: datetime,
        profile: UserProfile | None = None,
        days: int = 1,
    ) -> CaregiverSummary:
        counts = await self.collect(user_id, now, days)
        summary = CaregiverSummary(user_id=user_id, counts=counts, status=overall_status(counts))
        if self._complete is None:
            return summary

        name = profile.name if profile and profile.name else "the user"
        try:
            raw = await self._complete(
                system=_SYSTEM_PROMPT.format(
                    name=name,
                    days=days,
                    adherence=counts.adherence,
                    taken=counts.doses_taken,
                    total=counts.doses_total,
                    meals=counts.meals,
                    symptoms=counts.symptoms,
                    severe=counts.severe_symptoms,
                    alerts=counts.active_alerts,
                    status=summary.status,
                ),
                user_message="Generate summary",
                max_tokens=400,
                temperature=0.6,
                json_mode=True,
            )
        except LLMError as exc:
            logger.warning("Caregiver summary phrasing failed for user %d: %s", user_id, exc)
            return summary

        decoded = decode_json_model(raw, _SummaryPhrasing)
        if not decoded.ok:
            logger.warning("Caregiver summary output rejected: %s", decoded.error)
            return summary

        summary.overview = decoded.value.overview.strip()
        summary.recommendations = decoded.value.recommendations
        summary.highlights = decoded.value.positive_highlights
        return summary


def format_summary(summary: CaregiverSummary, profile: UserProfile | None = None) -> str:
    """Format a human-readable caregiver digest."""
    counts = summary.counts
    who = profile.name if profile and profile.name else f"user {summary.user_id}"
    period = "Daily" if counts.days == 1 else f"{counts.days}-day"
    lines = [
        f"📋 *{period} summary* for {who}: {summary.status}",
        f"Medications: {counts.adherence}% ({counts.doses_taken}/{counts.doses_total} doses taken)",
        f"Meals logged: {counts.meals}",
        f"Symptoms reported: {counts.symptoms}"
        + (f" ({counts.severe_symptoms} severe)" if counts.severe_symptoms else ""),
        f"Active alerts: {counts.active_alerts}",
    ]
    if summary.overview:
        lines.append(summary.overview)
    for item in summary.highlights:
        lines.append(f"👍 {item}")
    for item in summary.recommendations:
        lines.append(f"• {item}")
    return "\n".join(lines)
