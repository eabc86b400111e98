"""
CareCompanion — LLM Provider Abstraction.

Single public function `complete()` that routes to the configured provider.
Provider is selected at startup via the LLM_PROVIDER env var.
Supports: gemini (default), anthropic, openai, cohere.

Every call is bounded by LLM_TIMEOUT_SECONDS. Provider errors and timeouts
are re-raised as LLMError so callers only need one except clause.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Protocol

logger = logging.getLogger(__name__)

# Type alias for provider implementations
_ProviderFn = Callable[[str, str, str, str, int, float, bool], Awaitable[str]]


class LLMError(Exception):
    """Raised when a completion call fails, times out, or returns nothing."""


class CompleteFn(Protocol):
    """Signature of the completion boundary injected into core components."""

    async def __call__(
        self,
        system: str,
        user_message: str,
        max_tokens: int = 256,
        temperature: float = 0.7,
        json_mode: bool = False,
    ) -> str: ...


# ---------------------------------------------------------------------------
# Provider implementations
# ---------------------------------------------------------------------------


async def _complete_gemini(
    api_key: str, model: str, system: str, user_message: str,
    max_tokens: int, temperature: float, json_mode: bool,
) -> str:
    import google.generativeai as genai

    genai.configure(api_key=api_key)
    gm = genai.GenerativeModel(
        model_name=model,
        system_instruction=system,
    )
    config = genai.types.GenerationConfig(
        max_output_tokens=max_tokens,
        temperature=temperature,
        response_mime_type="application/json" if json_mode else "text/plain",
    )
    response = await gm.generate_content_async(user_message, generation_config=config)
    return response.text


async def _complete_anthropic(
    api_key: str, model: str, system: str, user_message: str,
    max_tokens: int, temperature: float, json_mode: bool,
) -> str:
    import anthropic

    # No native JSON mode: the prompts already demand a bare JSON object
    client = anthropic.AsyncAnthropic(api_key=api_key)
    response = await client.messages.create(
        model=model,
        max_tokens=max_tokens,
        temperature=temperature,
        system=system,
        messages=[{"role": "user", "content": user_message}],
    )
    return response.content[0].text


async def _complete_openai(
    api_key: str, model: str, system: str, user_message: str,
    max_tokens: int, temperature: float, json_mode: bool,
) -> str:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=api_key)
    kwargs: dict = {}
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}
    response = await client.chat.completions.create(
        model=model,
        max_tokens=max_tokens,
        temperature=temperature,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": user_message},
        ],
        **kwargs,
    )
    return response.choices[0].message.content


async def _complete_cohere(
    api_key: str, model: str, system: str, user_message: str,
    max_tokens: int, temperature: float, json_mode: bool,
) -> str:
    import cohere

    client = cohere.AsyncClientV2(api_key=api_key)
    kwargs: dict = {}
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}
    response = await client.chat(
        model=model,
        max_tokens=max_tokens,
        temperature=temperature,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": user_message},
        ],
        **kwargs,
    )
    return response.message.content[0].text


# ---------------------------------------------------------------------------
# Provider selection (runs once at first call)
# ---------------------------------------------------------------------------

_PROVIDERS: dict[str, tuple[_ProviderFn, str]] = {
    "gemini":    (_complete_gemini,    "gemini-2.0-flash"),
    "anthropic": (_complete_anthropic, "claude-haiku-4-5-20251001"),
    "openai":    (_complete_openai,    "gpt-4o-mini"),
    "cohere":    (_complete_cohere,    "command-a-03-2025"),
}


def _select_provider() -> tuple[_ProviderFn, str, str]:
    """Read env vars and return (provider_fn, model, api_key)."""
    from companion.config import settings

    provider_name = settings.LLM_PROVIDER.lower()
    if provider_name not in _PROVIDERS:
        raise ValueError(
            f"Unknown LLM_PROVIDER={provider_name!r}. "
            f"Supported: {', '.join(_PROVIDERS)}"
        )

    fn, default_model = _PROVIDERS[provider_name]
    model = settings.LLM_MODEL or default_model
    api_key = settings.LLM_API_KEY

    logger.info("LLM provider: %s, model: %s", provider_name, model)
    return fn, model, api_key


# Lazy singleton — populated on first call to complete()
_provider_fn: _ProviderFn | None = None
_model: str = ""
_api_key: str = ""


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def complete(
    system: str,
    user_message: str,
    max_tokens: int = 256,
    temperature: float = 0.7,
    json_mode: bool = False,
) -> str:
    """Send a prompt to the configured LLM provider and return the response text.

    Raises LLMError on API errors, timeouts and empty responses — callers
    should handle it.
    """
    global _provider_fn, _model, _api_key
    from companion.config import settings

    if _provider_fn is None:
        _provider_fn, _model, _api_key = _select_provider()

    try:
        text = await asyncio.wait_for(
            _provider_fn(
                _api_key, _model, system, user_message,
                max_tokens, temperature, json_mode,
            ),
            timeout=settings.LLM_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError as exc:
        logger.error("LLM call timed out after %.1fs", settings.LLM_TIMEOUT_SECONDS)
        raise LLMError("completion timed out") from exc
    except Exception as exc:
        logger.error("LLM call failed: %s", exc)
        raise LLMError(str(exc)) from exc

    if not text:
        raise LLMError("empty completion")
    return text
