"""
CareCompanion — Topic gate.

Decides whether a message belongs in a health conversation. A literal
allow-list (greetings, food words, translate/repeat requests) short-circuits
the common cases; everything else gets a yes/no LLM classification.

The gate fails open: if classification fails, the message is treated as
health-related so a genuine concern is never silently ignored.
"""

from __future__ import annotations

import logging
import random
import re

from companion.core.llm import CompleteFn, LLMError

logger = logging.getLogger(__name__)

_GREETINGS = (
    "hi", "hello", "hey", "good morning", "good afternoon", "good evening",
    "how are you", "what's up", "how's it going", "how do you do",
    "greetings", "howdy", "namaste",
)

_FOOD_WORDS = (
    "eat", "ate", "food", "meal", "breakfast", "lunch", "dinner", "snack",
    "drink", "water", "diet", "hungry",
)

_LANGUAGE_PHRASES = ("translate", "say that in", "in my language", "repeat")

_ALLOW_RE = re.compile(
    r"\b(?:" + "|".join(re.escape(w) for w in _GREETINGS + _FOOD_WORDS + _LANGUAGE_PHRASES) + r")\b",
    re.IGNORECASE,
)

POLITE_DECLINES = (
    "I'm here to help with your health and wellness. Let's talk about your medications, meals, or how you're feeling today!",
    "I focus on health topics to give you the best support. How about we discuss your routine, symptoms, or nutrition?",
    "That's outside my area of expertise. I'm best at helping with your health, medications, and daily wellness. What can I help you with today?",
    "I'm your health companion, so I focus on wellness topics. Would you like to talk about your meals, medications, or how you're feeling?",
    "Let's keep our conversation focused on your health and wellbeing. Is there anything about your routine, symptoms, or medications I can help with?",
)

_CLASSIFIER_PROMPT = """\
You are a health topic classifier for a companion app used by older adults.
Decide whether the user's message is related to health, wellness, medical
topics, or daily living. The message may be in any language.

Health-related: medications, symptoms, pain, meals, food and nutrition (any
"can I eat X" question), hydration, exercise, mobility, sleep, mood, doctor
visits, daily routines, caregiving, greetings and friendly check-ins.

Not health-related: politics, news, sports scores, entertainment, general
knowledge, technology help, financial advice, travel planning (unless tied
to health).

Examples:
- "Good morning!" - yes
- "Can I eat pizza now?" - yes
- "Who won the election?" - no
- "What's the capital of France?" - no

Respond with ONLY "yes" or "no".
"""


def is_allow_listed(text: str) -> bool:
    return bool(_ALLOW_RE.search(text))


def polite_decline() -> str:
    return random.choice(POLITE_DECLINES)


class TopicGate:
    """Health-topic classifier in front of the parser."""

    def __init__(self, complete: CompleteFn) -> None:
        self._complete = complete

    async def is_health_related(self, text: str) -> bool:
        """Return True when *text* should be handled. Never raises."""
        if is_allow_listed(text):
            logger.debug("Topic gate allow-list hit for '%s'", text[:80])
            return True

        try:
            answer = await self._complete(
                system=_CLASSIFIER_PROMPT,
                user_message=text,
                max_tokens=10,
                temperature=0.1,
            )
        except LLMError as exc:
            logger.warning("Topic classification failed, allowing message: %s", exc)
            return True

        related = "yes" in answer.strip().lower()
        logger.info("Health topic check for '%s': %s", text[:80], "YES" if related else "NO")
        return related
