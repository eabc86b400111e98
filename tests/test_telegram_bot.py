"""Tests for companion.bot.telegram_bot — Telegram handlers.

Tests command parsing, authorization and the turn hand-off.
The controller and repository are mocked.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from companion.bot.telegram_bot import (
    cmd_addmed,
    cmd_alerts,
    cmd_dismiss,
    cmd_language,
    cmd_start,
    cmd_twin,
    handle_text,
    handle_voice,
    parse_addmed_args,
)
from companion.core.orchestrator import TurnReply
from companion.core.twin import RoutineState, TwinState
from companion.data.models import Medication, RiskAlert, UserProfile
from companion.ports.health_repository import RepositoryError


def _make_update(text="", user_id=12345, first_name="Asha"):
    """Create a mock Update with a text message from an authorized user."""
    update = MagicMock()
    update.message.text = text
    update.effective_user.id = user_id
    update.effective_user.first_name = first_name
    update.message.reply_text = AsyncMock()
    return update


def _make_context(args=None, controller=None, repository=None):
    """Create a mock context with controller and repository in bot_data."""
    context = MagicMock()
    context.args = args or []
    context.bot_data = {
        "controller": controller or MagicMock(),
        "repository": repository or MagicMock(),
    }
    return context


def _reply_text(update) -> str:
    return update.message.reply_text.call_args.args[0]


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


class TestParseAddmedArgs:
    def test_simple(self):
        assert parse_addmed_args(["Metformin", "500mg", "8:00"]) == ("Metformin", "500mg", "08:00", False)

    def test_multi_word_name_before_food(self):
        assert parse_addmed_args(["Vitamin", "D", "1000IU", "07:30", "before"]) == (
            "Vitamin D", "1000IU", "07:30", True,
        )

    @pytest.mark.parametrize("args", [[], ["Metformin"], ["Metformin", "500mg"], ["Metformin", "500mg", "noon"]])
    def test_invalid(self, args):
        assert parse_addmed_args(args) is None


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


class TestAuthorization:
    @pytest.mark.asyncio
    async def test_stranger_silently_ignored(self):
        controller = MagicMock()
        controller.handle_turn = AsyncMock()
        update = _make_update("hello", user_id=666)

        await handle_text(update, _make_context(controller=controller))

        controller.handle_turn.assert_not_awaited()
        update.message.reply_text.assert_not_awaited()


# ---------------------------------------------------------------------------
# Message handlers
# ---------------------------------------------------------------------------


class TestHandleText:
    @pytest.mark.asyncio
    async def test_turn_reply_sent(self):
        controller = MagicMock()
        controller.handle_turn = AsyncMock(return_value=TurnReply("Was that a meal or a snack?", True))
        update = _make_update("I ate")

        await handle_text(update, _make_context(controller=controller))

        controller.handle_turn.assert_awaited_once_with(12345, "I ate")
        assert _reply_text(update) == "Was that a meal or a snack?"


class TestHandleVoice:
    @pytest.mark.asyncio
    async def test_transcribed_then_handled(self):
        controller = MagicMock()
        controller.handle_turn = AsyncMock(return_value=TurnReply("Perfect!"))
        update = _make_update()
        context = _make_context(controller=controller)
        voice_file = MagicMock()
        voice_file.download_to_drive = AsyncMock()
        context.bot.get_file = AsyncMock(return_value=voice_file)

        with patch("companion.core.transcriber.transcribe_audio", AsyncMock(return_value="I had lunch")):
            await handle_voice(update, context)

        replies = [c.args[0] for c in update.message.reply_text.call_args_list]
        assert replies == ["🎤 I heard: I had lunch", "Perfect!"]
        controller.handle_turn.assert_awaited_once_with(12345, "I had lunch")

    @pytest.mark.asyncio
    async def test_transcription_failure(self):
        controller = MagicMock()
        controller.handle_turn = AsyncMock()
        update = _make_update()
        context = _make_context(controller=controller)
        context.bot.get_file = AsyncMock(side_effect=RuntimeError("download failed"))

        await handle_voice(update, context)

        assert "couldn't understand your voice message" in _reply_text(update)
        controller.handle_turn.assert_not_awaited()


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class TestCommands:
    @pytest.mark.asyncio
    async def test_start_registers_profile(self):
        repo = MagicMock()
        repo.get_profile = AsyncMock(return_value=None)
        repo.upsert_profile = AsyncMock()
        update = _make_update()

        await cmd_start(update, _make_context(repository=repo))

        profile = repo.upsert_profile.call_args.args[0]
        assert (profile.user_id, profile.name) == (12345, "Asha")
        assert _reply_text(update).startswith("Hello Asha!")

    @pytest.mark.asyncio
    async def test_twin_lists_reasons(self):
        controller = MagicMock()
        controller.get_twin_state = AsyncMock(return_value=TwinState(
            state=RoutineState.CONCERN, score=70, message="1 medication(s) not taken on time",
            drift_reasons=["1 medication(s) not taken on time", "Lunch is delayed by more than 1 hour"],
        ))
        update = _make_update()

        await cmd_twin(update, _make_context(controller=controller))

        text = _reply_text(update)
        assert text.startswith("🔴 Concern (70/100)")
        assert "• Lunch is delayed by more than 1 hour" in text

    @pytest.mark.asyncio
    async def test_alerts_empty(self):
        controller = MagicMock()
        controller.get_active_risk_alerts = AsyncMock(return_value=[])
        update = _make_update()
        await cmd_alerts(update, _make_context(controller=controller))
        assert _reply_text(update) == "No active alerts. Everything looks good!"

    @pytest.mark.asyncio
    async def test_alerts_listed(self):
        controller = MagicMock()
        controller.get_active_risk_alerts = AsyncMock(return_value=[RiskAlert(
            id=4, user_id=12345, level="medium", title="Medication timing",
            unusual="Metformin is waiting for a meal", why="w", action="Eat something light",
        )])
        update = _make_update()
        await cmd_alerts(update, _make_context(controller=controller))
        assert "#4 [medium] Medication timing" in _reply_text(update)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("args", [[], ["abc"]])
    async def test_dismiss_usage(self, args):
        update = _make_update()
        await cmd_dismiss(update, _make_context(args=args))
        assert _reply_text(update) == "Usage: /dismiss <id>"

    @pytest.mark.asyncio
    async def test_dismiss(self):
        controller = MagicMock()
        controller.dismiss_risk_alert = AsyncMock(return_value=True)
        update = _make_update()
        await cmd_dismiss(update, _make_context(args=["4"], controller=controller))
        controller.dismiss_risk_alert.assert_awaited_once_with(12345, 4)
        assert _reply_text(update) == "Alert #4 dismissed."

    @pytest.mark.asyncio
    async def test_addmed_saves(self):
        repo = MagicMock()
        repo.add_medication = AsyncMock(return_value=Medication(
            id=1, user_id=12345, name="Metformin", dose="500mg", timing="23:59",
        ))
        repo.add_dose = AsyncMock()
        update = _make_update()

        await cmd_addmed(update, _make_context(args=["Metformin", "500mg", "23:59"], repository=repo))

        repo.add_medication.assert_awaited_once_with(12345, "Metformin", "500mg", "23:59", False)
        assert _reply_text(update) == "Added Metformin 500mg at 23:59 (after food)."

    @pytest.mark.asyncio
    async def test_addmed_storage_error(self):
        repo = MagicMock()
        repo.add_medication = AsyncMock(side_effect=RepositoryError("locked"))
        update = _make_update()
        await cmd_addmed(update, _make_context(args=["Metformin", "500mg", "08:00"], repository=repo))
        assert "couldn't save that medication" in _reply_text(update)

    @pytest.mark.asyncio
    async def test_language_updates_profile(self):
        repo = MagicMock()
        repo.get_profile = AsyncMock(return_value=UserProfile(user_id=12345, name="Asha"))
        repo.upsert_profile = AsyncMock()
        update = _make_update()

        await cmd_language(update, _make_context(args=["hindi"], repository=repo))

        assert repo.upsert_profile.call_args.args[0].language == "Hindi"
        assert _reply_text(update) == "Got it, I'll reply in Hindi from now on."
