"""Tests for companion.core.alerts and the Telegram notifier adapter."""

import pytest
from unittest.mock import AsyncMock, MagicMock
from telegram.error import TelegramError

from companion.adapters.telegram_notifier import TelegramNotifier
from companion.core.alerts import AlertDispatcher, format_alert
from companion.data.models import RiskAlert, UserProfile

from tests.conftest import USER_ID


def _alert(**overrides):
    fields = dict(
        id=3, user_id=USER_ID, level="high", title="Immediate attention needed",
        unusual="Critical medication missed: Insulin", why="w", action="Call the doctor",
        baseline="Usually on time", triggers=["Critical medication missed: Insulin"],
    )
    fields.update(overrides)
    return RiskAlert(**fields)


def _repo(profile=None):
    repo = MagicMock()
    repo.get_profile = AsyncMock(return_value=profile)
    return repo


class TestFormatAlert:
    def test_includes_all_sections(self):
        text = format_alert(_alert(), UserProfile(user_id=USER_ID, name="Asha"))
        assert text.startswith("🚨 *Immediate attention needed* (high risk) for Asha")
        assert "What's unusual: Critical medication missed: Insulin" in text
        assert "Suggested action: Call the doctor" in text
        assert text.endswith("Usual pattern: Usually on time")

    def test_without_profile_or_baseline(self):
        text = format_alert(_alert(baseline=""))
        assert f"for user {USER_ID}" in text
        assert "Usual pattern" not in text


class TestAlertDispatcher:
    @pytest.mark.asyncio
    async def test_profile_caregiver_preferred(self):
        notifier = MagicMock()
        notifier.send_message = AsyncMock()
        profile = UserProfile(user_id=USER_ID, caregiver_chat_id=555)
        dispatcher = AlertDispatcher(_repo(profile), notifier, default_chat_id=999)

        assert await dispatcher.notify_caregiver(USER_ID, _alert()) is True
        assert notifier.send_message.call_args.args[0] == 555

    @pytest.mark.asyncio
    async def test_default_chat_fallback(self):
        notifier = MagicMock()
        notifier.send_message = AsyncMock()
        dispatcher = AlertDispatcher(_repo(None), notifier, default_chat_id=999)

        assert await dispatcher.notify_caregiver(USER_ID, _alert()) is True
        assert notifier.send_message.call_args.args[0] == 999

    @pytest.mark.asyncio
    async def test_no_chat_configured(self):
        notifier = MagicMock()
        notifier.send_message = AsyncMock()
        dispatcher = AlertDispatcher(_repo(None), notifier)

        assert await dispatcher.notify_caregiver(USER_ID, _alert()) is False
        notifier.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delivery_failure_not_raised(self):
        notifier = MagicMock()
        notifier.send_message = AsyncMock(side_effect=TelegramError("chat not found"))
        dispatcher = AlertDispatcher(_repo(None), notifier, default_chat_id=999)

        assert await dispatcher.notify_caregiver(USER_ID, _alert()) is False


class TestTelegramNotifier:
    @pytest.mark.asyncio
    async def test_sends_message(self):
        bot = MagicMock()
        bot.send_message = AsyncMock()
        await TelegramNotifier(bot).send_message(555, "hello")
        bot.send_message.assert_awaited_once_with(chat_id=555, text="hello")

    @pytest.mark.asyncio
    async def test_reraises_telegram_error(self):
        bot = MagicMock()
        bot.send_message = AsyncMock(side_effect=TelegramError("blocked"))
        with pytest.raises(TelegramError):
            await TelegramNotifier(bot).send_message(555, "hello")
