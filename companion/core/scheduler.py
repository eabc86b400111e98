"""
CareCompanion — Nightly Scheduler.

Baseline rebuild: once a night (BASELINE_REBUILD_HOUR, local TIMEZONE) every
registered user gets the new day's dose schedule, their RoutineBaseline is
rebuilt from the lookback window, and the Twin/Risk recompute runs so a
drift that appeared overnight is caught. Each caregiver then receives a
summary of the past day.

This module is transport-agnostic: the Telegram job queue only supplies the
trigger (see bot/telegram_bot.py).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo
from typing import TYPE_CHECKING

from companion.core.baseline import local_day_bounds, time_to_minutes

if TYPE_CHECKING:
    from companion.core.alerts import AlertDispatcher
    from companion.core.caregiver_summary import CaregiverSummarizer
    from companion.core.orchestrator import CompanionController
    from companion.ports.health_repository import HealthRepository

logger = logging.getLogger(__name__)


@dataclass
class RebuildReport:
    rebuilt: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)
    doses_scheduled: int = 0
    summaries_sent: int = 0


async def schedule_doses_for_day(
    repository: HealthRepository,
    user_id: int,
    now: datetime,
    tz: tzinfo | None = None,
) -> int:
    """Create today's dose entries for each active medication.

    Idempotent: a medication that already has a dose today is skipped.
    Returns the number of doses created.
    """
    start, end = local_day_bounds(now, tz)
    scheduled = {d.medication_id for d in await repository.get_doses(user_id, start, end)}

    created = 0
    for med in await repository.get_medications(user_id):
        if med.id in scheduled:
            continue
        try:
            minutes = time_to_minutes(med.timing)
        except ValueError:
            logger.warning("Medication #%d has malformed timing %r, not scheduled", med.id, med.timing)
            continue
        await repository.add_dose(user_id, med.id, start + timedelta(minutes=minutes))
        created += 1

    if created:
        logger.info("Scheduled %d dose(s) for user %d", created, user_id)
    return created


async def rebuild_all_baselines(
    controller: CompanionController,
    repository: HealthRepository,
    extra_user_ids: list[int] | None = None,
    tz: tzinfo | None = None,
    summarizer: CaregiverSummarizer | None = None,
    dispatcher: AlertDispatcher | None = None,
) -> RebuildReport:
    """Rebuild the baseline for every profile (plus *extra_user_ids*).

    Also lays out the new day's dose schedule and, when a *summarizer* and
    *dispatcher* are given, sends each caregiver the past day's summary. A
    failure for one user is logged and skipped; the rest still run.
    """
    report = RebuildReport()
    now = datetime.now(timezone.utc)

    profiles = {p.user_id: p for p in await repository.list_profiles()}
    user_ids = list(profiles)
    for uid in extra_user_ids or []:
        if uid not in user_ids:
            user_ids.append(uid)

    for user_id in user_ids:
        try:
            report.doses_scheduled += await schedule_doses_for_day(repository, user_id, now, tz)
            await controller.rebuild_baseline(user_id)
            await controller.recompute(user_id)
            report.rebuilt.append(user_id)
        except Exception as exc:
            logger.error("Nightly baseline rebuild failed for user %d: %s", user_id, exc)
            report.failed.append(user_id)
            continue

        if summarizer is None or dispatcher is None:
            continue
        try:
            summary = await summarizer.build(user_id, now, profiles.get(user_id))
            if await dispatcher.send_summary(summary):
                report.summaries_sent += 1
        except Exception as exc:
            logger.error("Caregiver summary failed for user %d: %s", user_id, exc)

    logger.info(
        "Nightly baseline rebuild: %d rebuilt, %d failed, %d summaries sent",
        len(report.rebuilt), len(report.failed), report.summaries_sent,
    )
    return report
