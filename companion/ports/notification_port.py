"""Notification port — abstract interface for out-of-band delivery.

Caregiver alerts go through this protocol; the core never knows whether the
far end is Telegram, push, email or SMS.
"""

from __future__ import annotations

from typing import Protocol


class NotificationPort(Protocol):
    """Abstract notification interface used by core modules."""

    async def send_message(self, chat_id: int, text: str) -> None: ...
