"""
CareCompanion — Telegram Bot.

Telegram is the thin transport in front of the CompanionController: text and
voice messages become turns, and a handful of commands expose the routine
twin, risk alerts and medication setup.

Security-first: unauthorized users are silently ignored.
"""

from __future__ import annotations

import logging
import tempfile
from datetime import datetime, timezone
from datetime import time as dt_time
from functools import wraps
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Coroutine
from zoneinfo import ZoneInfo

from telegram import Update
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from companion.config import settings
from companion.core.background import BackgroundRunner
from companion.core.baseline import at_local_time, time_to_minutes
from companion.data.models import UserProfile
from companion.ports.health_repository import RepositoryError

if TYPE_CHECKING:
    from companion.core.orchestrator import CompanionController
    from companion.ports.health_repository import HealthRepository
    from companion.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)

_STATE_ICON = {"routine": "🟢", "drift": "🟡", "concern": "🔴"}


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def authorized_only(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Decorator that silently ignores messages from unauthorized users.

    Does NOT send any response to strangers — the bot must not reveal
    its existence to unauthorized users.
    """

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        if user is None or user.id not in settings.ALLOWED_USER_IDS:
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized access attempt from user_id=%s", uid)
            return  # Silent ignore
        return await func(update, context)

    return wrapper


def _controller(context: ContextTypes.DEFAULT_TYPE) -> CompanionController:
    return context.bot_data["controller"]


def _repository(context: ContextTypes.DEFAULT_TYPE) -> HealthRepository:
    return context.bot_data["repository"]


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — register the profile and say hello."""
    user = update.effective_user
    repo = _repository(context)
    if await repo.get_profile(user.id) is None:
        await repo.upsert_profile(UserProfile(
            user_id=user.id,
            name=user.first_name or "",
            language=settings.DEFAULT_LANGUAGE,
            location=settings.DEFAULT_LOCATION,
        ))
        logger.info("Registered new profile for user %d", user.id)

    await update.message.reply_text(
        f"Hello {user.first_name or 'there'}! I'm your health companion.\n\n"
        "Just tell me how your day is going:\n"
        "• \"I took my Metformin\"\n"
        "• \"I had lunch\"\n"
        "• \"I feel dizzy\"\n"
        "• \"Can I eat a mango?\"\n\n"
        "You can also send a voice message. Type /help for the full command list.",
    )


@authorized_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help — list available commands."""
    await update.message.reply_text(
        "*Available commands:*\n"
        "/twin — How today compares with your usual routine\n"
        "/alerts — Active risk alerts\n"
        "/dismiss <id> — Dismiss an alert\n"
        "/meds — Your medication list\n"
        "/addmed <name> <dose> <HH:MM> [before] — Add a medication\n"
        "/language <name> — Set your reply language\n"
        "/rebuild — Re-learn your usual routine now\n"
        "/reset — Clear our conversation history\n"
        "/help — Show this message",
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_twin(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /twin — show today's routine state."""
    state = await _controller(context).get_twin_state(update.effective_user.id)
    lines = [f"{_STATE_ICON[state.state.value]} {state.state.value.capitalize()} ({state.score}/100)",
             state.message]
    if len(state.drift_reasons) > 1:
        lines.append("")
        lines.extend(f"• {reason}" for reason in state.drift_reasons)
    await update.message.reply_text("\n".join(lines))


@authorized_only
async def cmd_alerts(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /alerts — list active risk alerts."""
    alerts = await _controller(context).get_active_risk_alerts(update.effective_user.id)
    if not alerts:
        await update.message.reply_text("No active alerts. Everything looks good!")
        return

    lines = ["Active alerts:\n"]
    for alert in alerts:
        lines.append(f"#{alert.id} [{alert.level}] {alert.title}")
        lines.append(f"   {alert.unusual}")
        lines.append(f"   → {alert.action}")
    lines.append("\nUse /dismiss <id> once you've dealt with one.")
    await update.message.reply_text("\n".join(lines))


@authorized_only
async def cmd_dismiss(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /dismiss <id> — dismiss one alert."""
    if not context.args or not context.args[0].isdigit():
        await update.message.reply_text("Usage: /dismiss <id>")
        return

    alert_id = int(context.args[0])
    if await _controller(context).dismiss_risk_alert(update.effective_user.id, alert_id):
        await update.message.reply_text(f"Alert #{alert_id} dismissed.")
    else:
        await update.message.reply_text(f"No active alert #{alert_id}.")


@authorized_only
async def cmd_meds(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /meds — list active medications."""
    meds = await _repository(context).get_medications(update.effective_user.id)
    if not meds:
        await update.message.reply_text("No medications yet. Add one with /addmed.")
        return
    lines = [
        f"• {m.name} {m.dose} at {m.timing} ({'before' if m.before_food else 'after'} food)"
        for m in meds
    ]
    await update.message.reply_text("Your medications:\n" + "\n".join(lines))


def parse_addmed_args(args: list[str]) -> tuple[str, str, str, bool] | None:
    """Parse `<name...> <dose> <HH:MM> [before]` into (name, dose, timing, before_food)."""
    tokens = list(args)
    before_food = bool(tokens) and tokens[-1].lower() == "before"
    if before_food:
        tokens.pop()
    if len(tokens) < 3:
        return None

    timing = tokens[-1]
    try:
        minutes = time_to_minutes(timing)
    except ValueError:
        return None
    dose = tokens[-2]
    name = " ".join(tokens[:-2])
    return name, dose, f"{minutes // 60:02d}:{minutes % 60:02d}", before_food


@authorized_only
async def cmd_addmed(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /addmed — add a medication and today's dose if still ahead."""
    parsed = parse_addmed_args(context.args or [])
    if parsed is None:
        await update.message.reply_text(
            "Usage: /addmed <name> <dose> <HH:MM> [before]\n"
            "Example: /addmed Metformin 500mg 08:00"
        )
        return

    name, dose, timing, before_food = parsed
    user_id = update.effective_user.id
    repo = _repository(context)
    try:
        med = await repo.add_medication(user_id, name, dose, timing, before_food)
        now = datetime.now(timezone.utc)
        scheduled = at_local_time(timing, now, ZoneInfo(settings.TIMEZONE))
        if scheduled > now:
            await repo.add_dose(user_id, med.id, scheduled)
    except RepositoryError as exc:
        logger.error("Failed to add medication for user %d: %s", user_id, exc)
        await update.message.reply_text("Sorry, I couldn't save that medication. Please try again.")
        return

    await update.message.reply_text(
        f"Added {med.name} {med.dose} at {med.timing} ({'before' if before_food else 'after'} food)."
    )


@authorized_only
async def cmd_language(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /language <name> — set the preferred reply language."""
    if not context.args:
        await update.message.reply_text("Usage: /language <name>, e.g. /language Hindi")
        return

    language = context.args[0].capitalize()
    user = update.effective_user
    repo = _repository(context)
    profile = await repo.get_profile(user.id) or UserProfile(user_id=user.id, name=user.first_name or "")
    profile.language = language
    await repo.upsert_profile(profile)
    await update.message.reply_text(f"Got it, I'll reply in {language} from now on.")


@authorized_only
async def cmd_rebuild(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /rebuild — rebuild the routine baseline now."""
    baseline = await _controller(context).rebuild_baseline(update.effective_user.id)
    if not baseline.meal_windows:
        await update.message.reply_text(
            "I don't have enough meals logged yet to learn your routine. Keep telling me about your day!"
        )
        return
    windows = "\n".join(f"• {meal}: {w.start}–{w.end}" for meal, w in baseline.meal_windows.items())
    await update.message.reply_text(
        f"Your usual routine:\n{windows}\nMedication adherence: {baseline.adherence_rate}%"
    )


@authorized_only
async def cmd_reset(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /reset — clear the conversation transcript."""
    await _controller(context).clear_conversation(update.effective_user.id)
    await update.message.reply_text("Conversation cleared. Your health records are kept.")


# ---------------------------------------------------------------------------
# Message handlers
# ---------------------------------------------------------------------------


@authorized_only
async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle plain text messages — one conversational turn."""
    turn = await _controller(context).handle_turn(update.effective_user.id, update.message.text)
    await update.message.reply_text(turn.reply)


@authorized_only
async def handle_voice(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle voice messages — transcribe via Whisper, then one turn."""
    from companion.core.transcriber import transcribe_audio

    voice = update.message.voice
    tmp_path: str | None = None

    try:
        voice_file = await context.bot.get_file(voice.file_id)
        with tempfile.NamedTemporaryFile(suffix=".ogg", delete=False) as tmp:
            tmp_path = tmp.name
        await voice_file.download_to_drive(tmp_path)

        text = await transcribe_audio(tmp_path)
        logger.info("Voice transcribed: %s", text[:80])
    except Exception as exc:
        logger.error("Voice handling error: %s", exc)
        await update.message.reply_text(
            "Sorry, I couldn't understand your voice message. Please try again."
        )
        return
    finally:
        if tmp_path:
            Path(tmp_path).unlink(missing_ok=True)

    await update.message.reply_text(f"🎤 I heard: {text}")
    turn = await _controller(context).handle_turn(update.effective_user.id, text)
    await update.message.reply_text(turn.reply)


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def build_app(
    repository: HealthRepository | None = None,
    notifier: NotificationPort | None = None,
) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Args:
        repository: Health repository. Defaults to the SQLite HealthDB.
        notifier: Caregiver alert channel. Defaults to TelegramNotifier
                  (created from the bot instance after app is built).
    """
    from companion.core.orchestrator import build_controller

    runner = BackgroundRunner()

    async def _drain_background(_: Application) -> None:
        await runner.drain()

    app = (
        ApplicationBuilder()
        .token(settings.TELEGRAM_BOT_TOKEN)
        .post_shutdown(_drain_background)
        .build()
    )

    if repository is None:
        from companion.data.db import HealthDB
        repository = HealthDB()

    if notifier is None:
        from companion.adapters.telegram_notifier import TelegramNotifier
        notifier = TelegramNotifier(app.bot)

    controller = build_controller(repository, notifier, runner)

    # Store collaborators in bot_data for handler access
    app.bot_data["controller"] = controller
    app.bot_data["repository"] = repository
    app.bot_data["runner"] = runner

    # Commands
    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("twin", cmd_twin))
    app.add_handler(CommandHandler("alerts", cmd_alerts))
    app.add_handler(CommandHandler("dismiss", cmd_dismiss))
    app.add_handler(CommandHandler("meds", cmd_meds))
    app.add_handler(CommandHandler("addmed", cmd_addmed))
    app.add_handler(CommandHandler("language", cmd_language))
    app.add_handler(CommandHandler("rebuild", cmd_rebuild))
    app.add_handler(CommandHandler("reset", cmd_reset))

    # Text messages (non-command)
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text))

    # Voice messages
    app.add_handler(MessageHandler(filters.VOICE, handle_voice))

    _setup_nightly_rebuild(app, controller, repository, notifier)

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def _setup_nightly_rebuild(
    app: Application,
    controller: CompanionController,
    repository: HealthRepository,
    notifier: NotificationPort,
) -> None:
    """Register the nightly dose-schedule, baseline rebuild and summary job."""
    from companion.core.alerts import AlertDispatcher
    from companion.core.caregiver_summary import CaregiverSummarizer
    from companion.core.llm import complete
    from companion.core.scheduler import rebuild_all_baselines

    tz = ZoneInfo(settings.TIMEZONE)
    rebuild_time = dt_time(hour=settings.BASELINE_REBUILD_HOUR, minute=0, tzinfo=tz)
    summarizer = CaregiverSummarizer(repository, complete)
    dispatcher = AlertDispatcher(repository, notifier, settings.CAREGIVER_CHAT_ID)

    async def _nightly_job_callback(context: ContextTypes.DEFAULT_TYPE) -> None:
        await rebuild_all_baselines(
            controller, repository, settings.ALLOWED_USER_IDS, tz, summarizer, dispatcher,
        )

    app.job_queue.run_daily(
        _nightly_job_callback,
        time=rebuild_time,
        name="nightly_baseline_rebuild",
    )

    logger.info(
        "Nightly baseline rebuild scheduled at %02d:00 %s",
        settings.BASELINE_REBUILD_HOUR,
        settings.TIMEZONE,
    )


def main() -> None:
    """Entry point: build the app and start polling."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting CareCompanion bot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
