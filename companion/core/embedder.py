"""
CareCompanion — Text embeddings.

Embeds memory passages and queries for retrieval using the OpenAI
embeddings endpoint (EMBEDDING_MODEL).
"""

from __future__ import annotations

import logging
from typing import Protocol

from openai import AsyncOpenAI

from companion.config import settings

logger = logging.getLogger(__name__)


class EmbeddingError(Exception):
    """Raised when an embedding call fails or returns no vector."""


class EmbedFn(Protocol):
    async def __call__(self, text: str) -> list[float]: ...


_client: AsyncOpenAI | None = None


def _get_client() -> AsyncOpenAI:
    global _client
    if _client is None:
        _client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
    return _client


async def embed(text: str) -> list[float]:
    """Return the embedding vector for *text*.

    Raises EmbeddingError on API errors and empty input.
    """
    if not text.strip():
        raise EmbeddingError("cannot embed empty text")
    if not settings.OPENAI_API_KEY:
        raise EmbeddingError("OPENAI_API_KEY is not configured")

    try:
        response = await _get_client().embeddings.create(
            model=settings.EMBEDDING_MODEL,
            input=text[:8000],
        )
    except Exception as exc:
        logger.error("Embedding call failed: %s", exc)
        raise EmbeddingError(str(exc)) from exc

    if not response.data:
        raise EmbeddingError("empty embedding response")
    return list(response.data[0].embedding)
