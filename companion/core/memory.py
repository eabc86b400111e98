"""
CareCompanion — Memory retrieval.

Stores embedded memory passages (symptom reports, meals, conversations) and
retrieves the top-K most similar ones to ground question answering.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from companion.core.embedder import EmbeddingError
from companion.ports.health_repository import RepositoryError

if TYPE_CHECKING:
    from companion.core.embedder import EmbedFn
    from companion.data.models import VectorMemory
    from companion.ports.health_repository import HealthRepository

logger = logging.getLogger(__name__)

NO_CONTEXT = "No relevant context found."


@dataclass
class MemoryHit:
    content: str
    memory_type: str
    similarity: float
    metadata: dict[str, Any] = field(default_factory=dict)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity of two vectors; 0.0 for empty or mismatched input."""
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def rank_memories(
    query_embedding: list[float], memories: list[VectorMemory], top_k: int,
) -> list[MemoryHit]:
    hits = [
        MemoryHit(
            content=m.content,
            memory_type=m.memory_type,
            similarity=cosine_similarity(query_embedding, m.embedding),
            metadata=m.metadata,
        )
        for m in memories
    ]
    hits.sort(key=lambda h: h.similarity, reverse=True)
    return hits[:top_k]


def build_context(hits: list[MemoryHit]) -> str:
    """Format retrieved passages as numbered lines for the LLM prompt."""
    if not hits:
        return NO_CONTEXT
    return "\n\n".join(f"[{i}] {h.memory_type}: {h.content}" for i, h in enumerate(hits, 1))


class MemoryStore:
    """Embeds, stores and retrieves per-user memory passages."""

    def __init__(self, repository: HealthRepository, embed: EmbedFn) -> None:
        self._repo = repository
        self._embed = embed

    async def retrieve(
        self,
        user_id: int,
        query: str,
        top_k: int = 5,
        memory_types: list[str] | None = None,
    ) -> list[MemoryHit]:
        """Return the *top_k* most similar memories. Degrades to []."""
        try:
            memories = await self._repo.get_memories(user_id, memory_types)
            if not memories:
                return []
            query_embedding = await self._embed(query)
        except (EmbeddingError, RepositoryError) as exc:
            logger.warning("Memory retrieval failed for user %d: %s", user_id, exc)
            return []

        hits = rank_memories(query_embedding, memories, top_k)
        logger.debug("Retrieved %d/%d memories for user %d", len(hits), len(memories), user_id)
        return hits

    async def remember(
        self,
        user_id: int,
        memory_type: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> VectorMemory:
        """Embed *content* and store it. Raises on failure."""
        embedding = await self._embed(content)
        memory = await self._repo.add_memory(user_id, memory_type, content, embedding, metadata)
        logger.info("Stored %s memory for user %d", memory_type, user_id)
        return memory
