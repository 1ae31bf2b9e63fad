"""Tests for EmbeddingService helpers and provider dispatch"""

import pytest
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock


class TestCosineSimilarity:
    def test_identical(self):
        from unimem.common.embedding_service import EmbeddingService

        assert EmbeddingService.cosine_similarity([1.0, 2.0], [1.0, 2.0]) == pytest.approx(1.0)

    def test_opposite_clamped_to_zero(self):
        from unimem.common.embedding_service import EmbeddingService

        assert EmbeddingService.cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == 0.0

    def test_zero_vector(self):
        from unimem.common.embedding_service import EmbeddingService

        assert EmbeddingService.cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0

    def test_dimension_mismatch(self):
        from unimem.common.embedding_service import EmbeddingService

        with pytest.raises(ValueError):
            EmbeddingService.cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0])

    def test_batch(self):
        from unimem.common.embedding_service import EmbeddingService

        scores = EmbeddingService.batch_cosine_similarity([1.0, 0.0], [[1.0, 0.0], [0.0, 1.0], [0.0, 0.0]])

        assert scores == pytest.approx([1.0, 0.0, 0.0])
        assert EmbeddingService.batch_cosine_similarity([1.0, 0.0], []) == []

    def test_average(self):
        from unimem.common.embedding_service import EmbeddingService

        assert EmbeddingService.average_embeddings([[1.0, 0.0], [0.0, 1.0]]) == [0.5, 0.5]
        with pytest.raises(ValueError):
            EmbeddingService.average_embeddings([])


def _openai_service(batch_size=100):
    from unimem.common.embedding_service import EmbeddingService

    # unsupported mode leaves the client unset; tests install a mock
    service = EmbeddingService(mode="none", model="text-embedding-3-small", batch_size=batch_size)
    service._mode = "openai"
    client = MagicMock()
    client.embeddings.create = AsyncMock(side_effect=lambda model, input, **kw: SimpleNamespace(
        data=[SimpleNamespace(embedding=[float(len(t)), 1.0]) for t in input],
        usage=SimpleNamespace(total_tokens=len(input) * 3),
    ))
    service._client = client
    return service, client


class TestEmbed:
    def test_unsupported_mode_unavailable(self):
        from unimem.common.embedding_service import EmbeddingService

        service = EmbeddingService(mode="none")
        assert service.is_available is False

    def test_openai_without_key_unavailable(self):
        from unimem.common.embedding_service import EmbeddingService

        service = EmbeddingService(mode="openai", model="text-embedding-3-small")
        assert service.is_available is False

    @pytest.mark.asyncio
    async def test_embed_without_client(self):
        from unimem.common.embedding_service import EmbeddingService

        with pytest.raises(RuntimeError):
            await EmbeddingService(mode="none").embed("hello")

    @pytest.mark.asyncio
    async def test_embed_empty_text(self):
        service, _ = _openai_service()

        with pytest.raises(ValueError):
            await service.embed("")

    @pytest.mark.asyncio
    async def test_embed_single(self):
        service, client = _openai_service()

        assert await service.embed("hello") == [5.0, 1.0]
        client.embeddings.create.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_embed_batch_splits_calls(self):
        service, client = _openai_service(batch_size=2)

        result = await service.embed_batch(["a", "bb", "ccc"])

        assert result.vectors == [[1.0, 1.0], [2.0, 1.0], [3.0, 1.0]]
        assert result.total_tokens == 9
        assert result.model == "text-embedding-3-small"
        assert client.embeddings.create.await_count == 2

    @pytest.mark.asyncio
    async def test_embed_batch_empty(self):
        service, client = _openai_service()

        result = await service.embed_batch([])

        assert result.vectors == []
        client.embeddings.create.assert_not_awaited()
