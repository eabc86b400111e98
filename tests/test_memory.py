"""Tests for companion.core.memory and companion.core.embedder."""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from companion.core import embedder
from companion.core.embedder import EmbeddingError
from companion.core.memory import (
    NO_CONTEXT,
    MemoryHit,
    MemoryStore,
    build_context,
    cosine_similarity,
    rank_memories,
)
from companion.data.models import VectorMemory
from companion.ports.health_repository import RepositoryError

from tests.conftest import USER_ID


def _memory(content, embedding, memory_type="symptom"):
    return VectorMemory(id=0, user_id=USER_ID, memory_type=memory_type,
                        content=content, embedding=embedding)


class TestCosineSimilarity:
    def test_identical_vectors(self):
        assert cosine_similarity([1.0, 2.0], [1.0, 2.0]) == pytest.approx(1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    @pytest.mark.parametrize("a, b", [([], []), ([1.0], [1.0, 2.0]), ([0.0, 0.0], [1.0, 1.0])])
    def test_degenerate_input(self, a, b):
        assert cosine_similarity(a, b) == 0.0


class TestRanking:
    def test_top_k_most_similar_first(self):
        memories = [
            _memory("far", [0.0, 1.0]),
            _memory("close", [1.0, 0.1]),
            _memory("exact", [1.0, 0.0]),
        ]
        hits = rank_memories([1.0, 0.0], memories, top_k=2)
        assert [h.content for h in hits] == ["exact", "close"]

    def test_build_context_numbered(self):
        hits = [MemoryHit("Headache after lunch", "symptom", 0.9),
                MemoryHit("Had idli", "meal", 0.5)]
        assert build_context(hits) == "[1] symptom: Headache after lunch\n\n[2] meal: Had idli"

    def test_build_context_empty(self):
        assert build_context([]) == NO_CONTEXT


class TestMemoryStore:
    @pytest.mark.asyncio
    async def test_retrieve_without_memories_skips_embedding(self):
        repo = MagicMock()
        repo.get_memories = AsyncMock(return_value=[])
        embed = AsyncMock()
        assert await MemoryStore(repo, embed).retrieve(USER_ID, "headache?") == []
        embed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retrieve_ranks(self):
        repo = MagicMock()
        repo.get_memories = AsyncMock(return_value=[_memory("a", [0.0, 1.0]), _memory("b", [1.0, 0.0])])
        embed = AsyncMock(return_value=[1.0, 0.0])
        hits = await MemoryStore(repo, embed).retrieve(USER_ID, "headache?", top_k=1)
        assert [h.content for h in hits] == ["b"]

    @pytest.mark.asyncio
    async def test_retrieve_degrades_on_embedding_error(self):
        repo = MagicMock()
        repo.get_memories = AsyncMock(return_value=[_memory("a", [1.0])])
        embed = AsyncMock(side_effect=EmbeddingError("no key"))
        assert await MemoryStore(repo, embed).retrieve(USER_ID, "q") == []

    @pytest.mark.asyncio
    async def test_retrieve_degrades_on_storage_error(self):
        repo = MagicMock()
        repo.get_memories = AsyncMock(side_effect=RepositoryError("locked"))
        assert await MemoryStore(repo, AsyncMock()).retrieve(USER_ID, "q") == []

    @pytest.mark.asyncio
    async def test_remember_stores_embedding(self, health_db):
        embed = AsyncMock(return_value=[0.5, 0.5])
        store = MemoryStore(health_db, embed)
        await store.remember(USER_ID, "meal", "Ate upma", {"meal_type": "breakfast"})
        [memory] = await health_db.get_memories(USER_ID)
        assert memory.embedding == [0.5, 0.5]
        assert memory.metadata == {"meal_type": "breakfast"}

    @pytest.mark.asyncio
    async def test_remember_propagates_failure(self, health_db):
        store = MemoryStore(health_db, AsyncMock(side_effect=EmbeddingError("down")))
        with pytest.raises(EmbeddingError):
            await store.remember(USER_ID, "meal", "Ate upma")


class TestEmbed:
    @pytest.mark.asyncio
    async def test_empty_text_rejected(self):
        with pytest.raises(EmbeddingError):
            await embedder.embed("   ")

    @pytest.mark.asyncio
    async def test_missing_key_rejected(self):
        with patch.object(embedder.settings, "OPENAI_API_KEY", ""):
            with pytest.raises(EmbeddingError):
                await embedder.embed("headache")

    @pytest.mark.asyncio
    async def test_returns_vector(self):
        client = MagicMock()
        client.embeddings.create = AsyncMock(
            return_value=MagicMock(data=[MagicMock(embedding=[0.1, 0.2, 0.3])])
        )
        with patch.object(embedder.settings, "OPENAI_API_KEY", "sk-test"), \
             patch.object(embedder, "_get_client", return_value=client):
            assert await embedder.embed("headache") == [0.1, 0.2, 0.3]

    @pytest.mark.asyncio
    async def test_api_error_wrapped(self):
        client = MagicMock()
        client.embeddings.create = AsyncMock(side_effect=RuntimeError("rate limited"))
        with patch.object(embedder.settings, "OPENAI_API_KEY", "sk-test"), \
             patch.object(embedder, "_get_client", return_value=client):
            with pytest.raises(EmbeddingError):
                await embedder.embed("headache")
