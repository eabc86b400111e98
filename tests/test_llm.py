"""Tests for companion.core.llm — provider routing and error mapping."""

import asyncio

import pytest
from unittest.mock import AsyncMock, patch

from companion.core import llm
from companion.core.llm import LLMError, complete


@pytest.fixture(autouse=True)
def _reset_provider():
    """Each test selects the provider from scratch."""
    llm._provider_fn = None
    yield
    llm._provider_fn = None


class TestProviderSelection:
    def test_unknown_provider(self):
        from companion.config import settings

        with patch.object(settings, "LLM_PROVIDER", "watson"):
            with pytest.raises(ValueError, match="Unknown LLM_PROVIDER"):
                llm._select_provider()

    def test_default_model(self):
        from companion.config import settings

        with patch.object(settings, "LLM_PROVIDER", "OpenAI"), patch.object(settings, "LLM_MODEL", ""):
            fn, model, _ = llm._select_provider()
        assert fn is llm._complete_openai
        assert model == "gpt-4o-mini"


class TestComplete:
    @pytest.mark.asyncio
    async def test_returns_provider_text(self):
        provider = AsyncMock(return_value='{"type": "question"}')
        with patch.object(llm, "_select_provider", return_value=(provider, "m", "k")):
            text = await complete("system", "hi", json_mode=True)
        assert text == '{"type": "question"}'
        assert provider.call_args.args == ("k", "m", "system", "hi", 256, 0.7, True)

    @pytest.mark.asyncio
    async def test_timeout_becomes_llm_error(self):
        from companion.config import settings

        async def slow(*args):
            await asyncio.sleep(1)
            return "late"

        with patch.object(llm, "_select_provider", return_value=(slow, "m", "k")), \
             patch.object(settings, "LLM_TIMEOUT_SECONDS", 0.01):
            with pytest.raises(LLMError, match="timed out"):
                await complete("system", "hi")

    @pytest.mark.asyncio
    async def test_provider_error_wrapped(self):
        provider = AsyncMock(side_effect=RuntimeError("quota exceeded"))
        with patch.object(llm, "_select_provider", return_value=(provider, "m", "k")):
            with pytest.raises(LLMError, match="quota exceeded"):
                await complete("system", "hi")

    @pytest.mark.asyncio
    async def test_empty_completion(self):
        provider = AsyncMock(return_value="")
        with patch.object(llm, "_select_provider", return_value=(provider, "m", "k")):
            with pytest.raises(LLMError, match="empty"):
                await complete("system", "hi")
