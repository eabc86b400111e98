"""
CareCompanion — Caregiver alert delivery.

Formats a persisted RiskAlert or a daily CaregiverSummary and sends it
through the NotificationPort to the user's caregiver chat, falling back to
the CAREGIVER_CHAT_ID setting. Delivery failures are logged, never raised.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from companion.core.caregiver_summary import format_summary

if TYPE_CHECKING:
    from companion.core.caregiver_summary import CaregiverSummary
    from companion.data.models import RiskAlert, UserProfile
    from companion.ports.health_repository import HealthRepository
    from companion.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)

_LEVEL_ICON = {"high": "🚨", "medium": "⚠️", "low": "ℹ️"}


def format_alert(alert: RiskAlert, profile: UserProfile | None = None) -> str:
    """Format a human-readable caregiver notification."""
    who = profile.name if profile and profile.name else f"user {alert.user_id}"
    lines = [
        f"{_LEVEL_ICON.get(alert.level, '')} *{alert.title}* ({alert.level} risk) for {who}".strip(),
        f"What's unusual: {alert.unusual}",
        f"Why it matters: {alert.why}",
        f"Suggested action: {alert.action}",
    ]
    if alert.baseline:
        lines.append(f"Usual pattern: {alert.baseline}")
    return "\n".join(lines)


class AlertDispatcher:
    """Delivers caregiver alerts and summaries out of band."""

    def __init__(
        self,
        repository: HealthRepository,
        notifier: NotificationPort,
        default_chat_id: int | None = None,
    ) -> None:
        self._repo = repository
        self._notifier = notifier
        self._default_chat_id = default_chat_id

    async def _caregiver(self, user_id: int) -> tuple[int | None, UserProfile | None]:
        try:
            profile = await self._repo.get_profile(user_id)
        except Exception as exc:
            logger.warning("Could not load profile %d for caregiver delivery: %s", user_id, exc)
            profile = None
        chat_id = (profile.caregiver_chat_id if profile else None) or self._default_chat_id
        return chat_id, profile

    async def notify_caregiver(self, user_id: int, alert: RiskAlert) -> bool:
        """Send *alert* to the caregiver. Returns True when delivered."""
        chat_id, profile = await self._caregiver(user_id)
        if chat_id is None:
            logger.info("No caregiver chat configured for user %d, alert #%d stored only",
                        user_id, alert.id)
            return False

        try:
            await self._notifier.send_message(chat_id, format_alert(alert, profile))
        except Exception as exc:
            logger.error("Failed to deliver alert #%d to caregiver: %s", alert.id, exc)
            return False

        logger.info("Alert #%d delivered to caregiver chat %d", alert.id, chat_id)
        return True

    async def send_summary(self, summary: CaregiverSummary) -> bool:
        """Send a caregiver digest. Returns True when delivered."""
        chat_id, profile = await self._caregiver(summary.user_id)
        if chat_id is None:
            logger.info("No caregiver chat configured for user %d, summary skipped", summary.user_id)
            return False

        try:
            await self._notifier.send_message(chat_id, format_summary(summary, profile))
        except Exception as exc:
            logger.error("Failed to deliver summary for user %d: %s", summary.user_id, exc)
            return False

        logger.info("Summary for user %d delivered to caregiver chat %d", summary.user_id, chat_id)
        return True
