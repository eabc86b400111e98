"""
CareCompanion — Orchestration Controller.

Per-turn coordinator between the transport layer and the health pipeline:

    transcript write → translation / pending follow-up → topic gate
    → parse → (follow-up | event log | contextual answer) → reply
    → background Twin/Risk recompute

A pending follow-up expires after a bounded age, and a message that parses
to a new intent of its own is handled as that intent instead of as the answer.

`handle_turn()` never raises: any failure inside the pipeline is caught once
and answered with a friendly fallback, which is persisted like any reply.
"""

from __future__ import annotations

import asyncio
import logging
import random
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from typing import TYPE_CHECKING, Any, Callable

from companion.core import baseline as baseline_model
from companion.core import twin
from companion.core.baseline import local_day_bounds
from companion.core.memory import build_context
from companion.core.parser import Intent, IntentType, ParserContext, SemanticParser, follow_up_question
from companion.core.risk_guard import RiskSnapshot
from companion.core.topic_gate import polite_decline
from companion.ports.health_repository import RepositoryError

if TYPE_CHECKING:
    from companion.core.background import BackgroundRunner
    from companion.core.event_logger import EventLogger, HandlerResult
    from companion.core.llm import CompleteFn
    from companion.core.memory import MemoryStore
    from companion.core.resolver import AmbiguityResolver
    from companion.core.risk_guard import RiskEngine
    from companion.core.topic_gate import TopicGate
    from companion.data.models import (
        ConversationTurn,
        RiskAlert,
        RoutineBaseline,
        UserProfile,
    )
    from companion.ports.health_repository import HealthRepository
    from companion.ports.notification_port import NotificationPort
    from companion.ports.weather_port import WeatherPort

logger = logging.getLogger(__name__)

USER = "user"
SYSTEM = "system"

_TRANSLATE_RE = re.compile(r"translate\s+(?:the\s+)?last\s+message\s+to\s+(\w+)", re.IGNORECASE)

NOTHING_TO_TRANSLATE = "I don't have a previous message to translate. Please ask me a question first!"

# A new message must parse at least this confidently to replace a pending follow-up
NEW_INTENT_CONFIDENCE = 0.7

FALLBACK_REPLIES = (
    "I'm having a bit of trouble understanding. Could you rephrase that? Or try asking about your medications, meals, or how you're feeling.",
    "Hmm, I didn't quite catch that. Can you tell me more? I'm here to help with your health and daily routine.",
    "I want to make sure I understand you correctly. Could you say that differently? I can help with medications, symptoms, meals, and more.",
    "Let me make sure I got that right. Could you explain a bit more? I'm here for your health questions and daily check-ins.",
)


@dataclass
class TurnReply:
    """What the transport layer shows the user for one turn."""

    reply: str
    needs_follow_up: bool = False
    follow_up_question: str | None = None


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

_TRANSLATE_PROMPT = """\
You are a professional translator. Translate the given text to {language}.
- Keep the same meaning, tone and warmth
- Keep medication names unchanged
- Just translate the text directly and naturally
Return ONLY the translated text, nothing else.
"""

_ANSWER_PROMPT = """\
You are a warm and supportive health companion for older adults.

{language_instruction}

PERSONALITY:
- Warm, friendly, conversational
- Simple, clear language
- Empathetic and encouraging

USER PROFILE:
{profile}

USER'S CURRENT DATA:
Medications today: {medications}
Meals today: {meals}
Recent symptoms (past week): {symptoms}
Recent activities: {activities}
Usual routine: {routine}

Relevant past notes:
{memories}

INSTRUCTIONS:
- Answer directly and helpfully using the user's own data
- If data is missing, give general advice and encourage them to log it
- Be conversational (2-4 sentences)
- Never diagnose; suggest contacting a doctor for anything worrying
- Don't make up data: if you don't know, say so
"""


def _language_instruction(language: str) -> str:
    if language.lower() == "english":
        return "Always respond in English, even if the user writes in another language."
    return (
        f"LANGUAGE REQUIREMENT: respond 100% in {language}. Every single word of your "
        f"answer must be in {language}, even if the user writes in a different language."
    )


def _supersedes(intent: Intent, pending: Intent) -> bool:
    """True when *intent* is a new request rather than an answer to *pending*.

    An answer such as "Lunch" or "The morning one" parses to the pending type
    or to nothing useful; a symptom report or a question parses to its own.
    """
    if intent.type in (IntentType.UNKNOWN, pending.type):
        return False
    return intent.ambiguous or intent.confidence >= NEW_INTENT_CONFIDENCE


def _fmt_time(dt: datetime, tz: tzinfo | None) -> str:
    return (dt.astimezone(tz) if tz is not None else dt).strftime("%H:%M")


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


class CompanionController:
    """Coordinates one conversational turn and exposes the health read models."""

    def __init__(
        self,
        repository: HealthRepository,
        complete: CompleteFn,
        *,
        parser: SemanticParser,
        resolver: AmbiguityResolver,
        topic_gate: TopicGate,
        events: EventLogger,
        risk: RiskEngine,
        runner: BackgroundRunner,
        memory: MemoryStore | None = None,
        weather: WeatherPort | None = None,
        tz: tzinfo | None = None,
        clock: Callable[[], datetime] | None = None,
        default_language: str = "English",
        default_location: str = "",
        context_turns: int = 10,
        memory_top_k: int = 5,
        lookback_days: int = 30,
        missed_dose_grace_minutes: int = 120,
        pending_follow_up_minutes: int = 30,
    ) -> None:
        self._repo = repository
        self._complete = complete
        self._parser = parser
        self._resolver = resolver
        self._gate = topic_gate
        self._events = events
        self._risk = risk
        self._runner = runner
        self._memory = memory
        self._weather = weather
        self._tz = tz
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._default_language = default_language
        self._default_location = default_location
        self._context_turns = context_turns
        self._memory_top_k = memory_top_k
        self._lookback = timedelta(days=lookback_days)
        self._missed_grace = timedelta(minutes=missed_dose_grace_minutes)
        self._pending_ttl = timedelta(minutes=pending_follow_up_minutes)

    # ------------------------------------------------------------------
    # Turn handling
    # ------------------------------------------------------------------

    async def handle_turn(self, user_id: int, text: str) -> TurnReply:
        """Process one user message and return the reply. Never raises."""
        text = text.strip()
        try:
            await self._repo.append_turn(user_id, USER, text)
        except RepositoryError as exc:
            logger.error("Could not record turn for user %d: %s", user_id, exc)
            return await self._fallback(user_id)

        try:
            return await self._process(user_id, text)
        except Exception as exc:
            logger.error("Turn failed for user %d: %s", user_id, exc, exc_info=True)
            return await self._fallback(user_id)

    async def _process(self, user_id: int, text: str) -> TurnReply:
        now = self._clock()

        match = _TRANSLATE_RE.search(text)
        if match:
            return await self._translate_last(user_id, match.group(1).capitalize())

        recent = await self._repo.get_recent_turns(user_id, self._context_turns)
        pending = self._pending_intent(recent, now)
        if pending is not None:
            intent = await self._parser.parse(text, await self._parser_context(user_id, text))
            if not _supersedes(intent, pending):
                return await self._answer_follow_up(user_id, pending, text, recent, now)
            logger.info(
                "New %s intent replaces pending %s for user %d",
                intent.type.value, pending.type.value, user_id,
            )
        else:
            if not await self._gate.is_health_related(text):
                decline = polite_decline()
                await self._reply(user_id, decline, {"off_topic": True})
                return TurnReply(decline)
            intent = await self._parser.parse(text, await self._parser_context(user_id, text))

        if intent.ambiguous and intent.is_mutating:
            question = follow_up_question(intent)
            logger.info("Ambiguous %s for user %d: %s", intent.type.value, user_id, intent.ambiguity_reason)
            await self._reply(user_id, question, self._pending_metadata(intent, now))
            return TurnReply(question, needs_follow_up=True, follow_up_question=question)

        reply = await self._apply(user_id, intent, text, now)
        self._schedule_recompute(user_id)
        return reply

    def _pending_intent(self, recent: list[ConversationTurn], now: datetime) -> Intent | None:
        """The intent awaiting a follow-up answer, if it is still fresh."""
        last_system = next((t for t in reversed(recent) if t.sender == SYSTEM), None)
        if last_system is None or not last_system.metadata.get("pending_intent"):
            return None
        try:
            since = datetime.fromisoformat(last_system.metadata["pending_since"])
        except (KeyError, TypeError, ValueError):
            return None
        if since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)
        if now - since > self._pending_ttl:
            logger.info("Pending follow-up expired for user %d", last_system.user_id)
            return None
        return Intent.model_validate(last_system.metadata["pending_intent"])

    async def _answer_follow_up(
        self,
        user_id: int,
        pending: Intent,
        answer: str,
        recent: list[ConversationTurn],
        now: datetime,
    ) -> TurnReply:
        resolution = await self._resolver.resolve(user_id, pending, answer, recent)
        if resolution.resolved_intent is None:
            text = random.choice(FALLBACK_REPLIES)
            await self._reply(user_id, text, {"resolution_failed": True})
            return TurnReply(text)

        reply = await self._apply(user_id, resolution.resolved_intent, answer, now)
        self._schedule_recompute(user_id)
        return reply

    async def _apply(self, user_id: int, intent: Intent, text: str, now: datetime) -> TurnReply:
        """Log the intent as an event, or answer it with full context."""
        result: HandlerResult | None = await self._events.apply(user_id, intent, now)
        if result is None:
            answer = await self._answer_question(user_id, text, now)
            await self._reply(user_id, answer, {"intent": intent.type.value})
            return TurnReply(answer)

        metadata: dict[str, Any] = {"intent": intent.type.value}
        if result.follow_up_question:
            metadata.update(self._pending_metadata(intent, now))
        await self._reply(user_id, result.reply, metadata)
        return TurnReply(result.reply, result.needs_follow_up, result.follow_up_question)

    async def _parser_context(self, user_id: int, text: str) -> ParserContext:
        medications, aliases = await asyncio.gather(
            self._repo.get_medications(user_id),
            self._repo.get_aliases(user_id),
        )
        context = ParserContext(
            medication_names=[m.name for m in medications],
            medication_doses={m.name: m.dose for m in medications},
            aliases={a.alias: a.resolved_to for a in aliases},
        )
        for alias in SemanticParser.aliases_used(text, context):
            await self._repo.bump_alias_usage(user_id, alias)
        return context

    @staticmethod
    def _dump_intent(intent: Intent) -> dict[str, Any]:
        return intent.model_dump(mode="json", by_alias=True)

    def _pending_metadata(self, intent: Intent, now: datetime) -> dict[str, Any]:
        return {"pending_intent": self._dump_intent(intent), "pending_since": now.isoformat()}

    # ------------------------------------------------------------------
    # Translation
    # ------------------------------------------------------------------

    async def _translate_last(self, user_id: int, language: str) -> TurnReply:
        recent = await self._repo.get_recent_turns(user_id, self._context_turns)
        last_system = next((t for t in reversed(recent) if t.sender == SYSTEM), None)
        if last_system is None:
            await self._reply(user_id, NOTHING_TO_TRANSLATE, {})
            return TurnReply(NOTHING_TO_TRANSLATE)

        translation = await self._complete(
            system=_TRANSLATE_PROMPT.format(language=language),
            user_message=f"Translate this to {language}:\n\n{last_system.text}",
            max_tokens=500,
            temperature=0.3,
        )
        translation = translation.strip()
        await self._reply(user_id, translation, {"is_translation": True, "target_language": language})
        logger.info("Translated last message to %s for user %d", language, user_id)
        return TurnReply(translation)

    # ------------------------------------------------------------------
    # Contextual answer
    # ------------------------------------------------------------------

    async def _answer_question(self, user_id: int, question: str, now: datetime) -> str:
        start, end = local_day_bounds(now, self._tz)
        profile, doses, meals, symptoms, activities, baseline, hits = await asyncio.gather(
            self._repo.get_profile(user_id),
            self._repo.get_doses(user_id, start, end),
            self._repo.get_meals(user_id, start, end),
            self._repo.get_symptoms(user_id, now - timedelta(days=7), end),
            self._repo.get_recent_activities(user_id, 5),
            self._repo.get_baseline(user_id),
            self._retrieve(user_id, question),
        )

        language = (profile.language if profile and profile.language else self._default_language)
        system_prompt = _ANSWER_PROMPT.format(
            language_instruction=_language_instruction(language),
            profile=self._describe_profile(profile, language),
            medications=", ".join(
                f"{d.medication_name} at {_fmt_time(d.scheduled_time, self._tz)} "
                f"({'taken' if d.taken else 'missed' if d.missed else 'pending'})"
                for d in doses
            ) or "No medications scheduled today",
            meals=", ".join(
                f"{m.meal_type} at {_fmt_time(m.logged_at, self._tz)}" + (f" ({m.foods})" if m.foods else "")
                for m in meals
            ) or "No meals logged today",
            symptoms=", ".join(
                f"{s.symptom} (severity {s.severity}/5) on {s.logged_at.astimezone(self._tz).strftime('%b %d')}"
                for s in symptoms
            ) or "No symptoms reported recently",
            activities=", ".join(
                f"{a.activity} at {_fmt_time(a.logged_at, self._tz)}" for a in activities
            ) or "No recent activities logged",
            routine=self._describe_routine(baseline),
            memories=build_context(hits),
        )

        answer = await self._complete(
            system=system_prompt,
            user_message=question,
            max_tokens=400,
            temperature=0.7,
        )
        return answer.strip()

    async def _retrieve(self, user_id: int, query: str) -> list:
        if self._memory is None:
            return []
        return await self._memory.retrieve(user_id, query, self._memory_top_k)

    @staticmethod
    def _describe_profile(profile: UserProfile | None, language: str) -> str:
        if profile is None:
            return f"Name: User, Language: {language}"
        return (
            f"Name: {profile.name or 'User'}, Age group: {profile.age_group or 'not specified'}, "
            f"Language: {language}"
        )

    @staticmethod
    def _describe_routine(baseline: RoutineBaseline | None) -> str:
        if baseline is None or not baseline.meal_windows:
            return "Not learned yet"
        windows = ", ".join(f"{meal} {w.start}-{w.end}" for meal, w in baseline.meal_windows.items())
        return f"Meals usually {windows}; medication adherence {baseline.adherence_rate}%"

    # ------------------------------------------------------------------
    # Replies and fallback
    # ------------------------------------------------------------------

    async def _reply(self, user_id: int, text: str, metadata: dict[str, Any]) -> None:
        await self._repo.append_turn(user_id, SYSTEM, text, metadata)

    async def _fallback(self, user_id: int) -> TurnReply:
        text = random.choice(FALLBACK_REPLIES)
        try:
            await self._repo.append_turn(user_id, SYSTEM, text, {"error": True})
        except RepositoryError as exc:
            logger.error("Could not record fallback reply for user %d: %s", user_id, exc)
        return TurnReply(text)

    # ------------------------------------------------------------------
    # Background Twin/Risk recompute
    # ------------------------------------------------------------------

    def _schedule_recompute(self, user_id: int) -> None:
        self._runner.submit(f"twin-risk-{user_id}", lambda: self.recompute(user_id))

    async def recompute(self, user_id: int) -> None:
        """Refresh the Twin state and record any resulting risk alert."""
        state = await self.get_twin_state(user_id)
        snapshot = await self._risk_snapshot(user_id, self._clock())
        assessment = await self._risk.evaluate_and_record(user_id, snapshot)
        logger.info(
            "Recompute for user %d: twin=%s (%d), risk=%s",
            user_id, state.state.value, state.score, assessment.level.value,
        )

    async def _today(self, user_id: int, now: datetime) -> twin.TodayEvents:
        start, end = local_day_bounds(now, self._tz)
        doses, meals, symptoms, activities = await asyncio.gather(
            self._repo.get_doses(user_id, start, end),
            self._repo.get_meals(user_id, start, end),
            self._repo.get_symptoms(user_id, start, end),
            self._repo.get_activities(user_id, start, end),
        )
        return twin.TodayEvents(doses=doses, meals=meals, symptoms=symptoms, activities=activities)

    async def _risk_snapshot(self, user_id: int, now: datetime) -> RiskSnapshot:
        _, end = local_day_bounds(now, self._tz)
        today, recent_symptoms, baseline, profile = await asyncio.gather(
            self._today(user_id, now),
            self._repo.get_symptoms(user_id, now - timedelta(days=7), end),
            self._repo.get_baseline(user_id),
            self._repo.get_profile(user_id),
        )

        weather = None
        location = (profile.location if profile and profile.location else self._default_location)
        if self._weather is not None and location:
            weather = await self._weather.current(location)

        return RiskSnapshot(
            now=now,
            baseline=baseline,
            doses=today.doses,
            meals=today.meals,
            symptoms=today.symptoms,
            recent_symptoms=recent_symptoms,
            weather=weather,
            missed_dose_grace=self._missed_grace,
        )

    # ------------------------------------------------------------------
    # Read models and maintenance operations
    # ------------------------------------------------------------------

    async def get_twin_state(self, user_id: int) -> twin.TwinState:
        now = self._clock()
        baseline, today = await asyncio.gather(
            self._repo.get_baseline(user_id),
            self._today(user_id, now),
        )
        return twin.evaluate(baseline, today, now, self._tz)

    async def rebuild_baseline(self, user_id: int) -> RoutineBaseline:
        now = self._clock()
        since = now - self._lookback
        meals, doses, activities = await asyncio.gather(
            self._repo.get_meals(user_id, since, now),
            self._repo.get_doses(user_id, since, now),
            self._repo.get_activities(user_id, since, now),
        )
        rebuilt = baseline_model.rebuild_baseline(user_id, meals, doses, activities, now, self._tz)
        await self._repo.upsert_baseline(rebuilt)
        return rebuilt

    async def get_active_risk_alerts(self, user_id: int) -> list[RiskAlert]:
        return await self._repo.get_active_risk_alerts(user_id)

    async def dismiss_risk_alert(self, user_id: int, alert_id: int) -> bool:
        return await self._repo.dismiss_risk_alert(user_id, alert_id)

    async def clear_conversation(self, user_id: int) -> None:
        await self._repo.clear_turns(user_id)


# ---------------------------------------------------------------------------
# Default wiring
# ---------------------------------------------------------------------------


def build_controller(
    repository: HealthRepository | None = None,
    notifier: NotificationPort | None = None,
    runner: BackgroundRunner | None = None,
) -> CompanionController:
    """Wire a controller from settings with the production adapters."""
    from zoneinfo import ZoneInfo

    from companion.config import settings
    from companion.core.alerts import AlertDispatcher
    from companion.core.background import BackgroundRunner
    from companion.core.embedder import embed
    from companion.core.event_logger import EventLogger
    from companion.core.llm import complete
    from companion.core.memory import MemoryStore
    from companion.core.resolver import AmbiguityResolver
    from companion.core.risk_guard import RiskEngine
    from companion.core.topic_gate import TopicGate

    if repository is None:
        from companion.data.db import HealthDB

        repository = HealthDB()

    tz = ZoneInfo(settings.TIMEZONE)
    runner = runner or BackgroundRunner()
    memory = MemoryStore(repository, embed) if settings.OPENAI_API_KEY else None

    weather = None
    if settings.OPENWEATHER_API_KEY:
        from companion.integrations.weather import OpenWeatherMap

        weather = OpenWeatherMap(settings.OPENWEATHER_API_KEY)

    alerts = None
    if notifier is not None:
        alerts = AlertDispatcher(repository, notifier, settings.CAREGIVER_CHAT_ID)

    return CompanionController(
        repository,
        complete,
        parser=SemanticParser(complete),
        resolver=AmbiguityResolver(repository, complete),
        topic_gate=TopicGate(complete),
        events=EventLogger(repository, memory, runner, tz),
        risk=RiskEngine(repository, complete, alerts),
        runner=runner,
        memory=memory,
        weather=weather,
        tz=tz,
        default_language=settings.DEFAULT_LANGUAGE,
        default_location=settings.DEFAULT_LOCATION,
        context_turns=settings.CONVERSATION_CONTEXT_TURNS,
        memory_top_k=settings.MEMORY_TOP_K,
        lookback_days=settings.BASELINE_LOOKBACK_DAYS,
        missed_dose_grace_minutes=settings.MISSED_DOSE_GRACE_MINUTES,
        pending_follow_up_minutes=settings.PENDING_FOLLOW_UP_MINUTES,
    )
