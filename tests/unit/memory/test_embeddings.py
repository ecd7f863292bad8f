"""
Unit tests for supermemory/memory/embeddings.py

Remote and local models are mocked; no network or model downloads.
"""

from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from supermemory.errors import EmbeddingError, ValidationError
from tests.fixtures import FakeEmbeddingService


class TestValidateVector:
    """Tests for embedding validation."""

    def test_valid(self):
        from supermemory.memory.embeddings import validate_vector

        assert validate_vector([0.1, 0.2], 2, "test") == [0.1, 0.2]

    def test_wrong_dimension(self):
        from supermemory.memory.embeddings import validate_vector

        with pytest.raises(ValidationError, match="3-dimensional"):
            validate_vector([0.1, 0.2, 0.3], 2, "test")

    def test_non_finite(self):
        from supermemory.memory.embeddings import validate_vector

        with pytest.raises(EmbeddingError):
            validate_vector([0.1, float("nan")], 2, "test")

    def test_all_zeros(self):
        from supermemory.memory.embeddings import validate_vector

        with pytest.raises(EmbeddingError, match="all zeros"):
            validate_vector([0.0, 0.0], 2, "test")


class TestOpenAIEmbeddingService:
    """Tests for OpenAI-compatible remote embeddings."""

    def test_default_dimensions(self):
        """Test model default dimensions."""
        from supermemory.memory.embeddings import OpenAIEmbeddingService

        assert OpenAIEmbeddingService(api_key="k").dimension == 1536
        assert OpenAIEmbeddingService(api_key="k", model="text-embedding-3-large").dimension == 3072

    def test_dimensions_capped_at_model_default(self):
        """Test that oversize dimension requests fall back to the model default."""
        from supermemory.memory.embeddings import OpenAIEmbeddingService

        service = OpenAIEmbeddingService(api_key="k", dimensions=5000)

        assert service.dimension == 1536

    @pytest.mark.asyncio
    async def test_embed_passes_dimensions(self, mock_openai_embeddings):
        """Test that reduced dimensions are requested from the API."""
        from supermemory.memory.embeddings import OpenAIEmbeddingService

        service = OpenAIEmbeddingService(api_key="k", dimensions=256)
        vector = await service.embed("hello")

        assert len(vector) == 256
        client = mock_openai_embeddings.return_value
        kwargs = client.embeddings.create.call_args.kwargs
        assert kwargs["dimensions"] == 256
        assert kwargs["input"] == "hello"
        mock_openai_embeddings.assert_called_once_with(api_key="k")

    @pytest.mark.asyncio
    async def test_embed_batch_sorted_by_index(self, mock_openai_embeddings):
        """Test that batch results are returned in input order."""
        from supermemory.memory.embeddings import OpenAIEmbeddingService

        service = OpenAIEmbeddingService(api_key="k", dimensions=4)
        vectors = await service.embed_batch(["a", "b", "c"])

        assert [v[0] for v in vectors] == pytest.approx([0.1, 0.2, 0.3])

    @pytest.mark.asyncio
    async def test_embed_batch_empty(self, mock_openai_embeddings):
        """Test that an empty batch makes no API call."""
        from supermemory.memory.embeddings import OpenAIEmbeddingService

        service = OpenAIEmbeddingService(api_key="k")

        assert await service.embed_batch([]) == []
        mock_openai_embeddings.return_value.embeddings.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_openrouter_base_url(self, mock_openai_embeddings):
        """Test that OpenRouter uses its base URL and vendor-prefixed model."""
        from supermemory.memory.embeddings import OPENROUTER_BASE_URL, create_embedding_service

        service = create_embedding_service("openrouter", api_key="or-key", dimensions=8)
        await service.embed("hello")

        assert service.name == "openrouter"
        assert service.model == "openai/text-embedding-3-small"
        mock_openai_embeddings.assert_called_once_with(api_key="or-key", base_url=OPENROUTER_BASE_URL)

    @pytest.mark.asyncio
    async def test_wrong_dimension_response(self, mock_openai_embeddings):
        """Test that a response with the wrong length is rejected."""
        from supermemory.memory.embeddings import OpenAIEmbeddingService

        client = mock_openai_embeddings.return_value
        client.embeddings.create.side_effect = None
        client.embeddings.create.return_value = MagicMock(data=[MagicMock(index=0, embedding=[0.5] * 10)])

        service = OpenAIEmbeddingService(api_key="k", dimensions=8)

        with pytest.raises(ValidationError):
            await service.embed("hello")


class TestLocalEmbeddingService:
    """Tests for sentence-transformers embeddings."""

    @pytest.mark.asyncio
    async def test_embed_loads_model_once(self):
        """Test lazy model load and normalized encoding."""
        from supermemory.memory.embeddings import LocalEmbeddingService

        with patch("sentence_transformers.SentenceTransformer") as mock_st:
            model = MagicMock()
            model.get_sentence_embedding_dimension.return_value = 3
            model.encode.side_effect = lambda payload, **kwargs: (
                np.array([[0.6, 0.8, 0.0]] * len(payload))
                if isinstance(payload, list)
                else np.array([0.6, 0.8, 0.0])
            )
            mock_st.return_value = model

            service = LocalEmbeddingService(model_name="tiny-model", dimension=3)
            single = await service.embed("hello")
            batch = await service.embed_batch(["a", "b"])

        assert single == pytest.approx([0.6, 0.8, 0.0])
        assert len(batch) == 2
        mock_st.assert_called_once_with("tiny-model")
        assert model.encode.call_args.kwargs["normalize_embeddings"] is True

    @pytest.mark.asyncio
    async def test_model_dimension_mismatch(self):
        """Test that a model with another dimension is rejected on load."""
        from supermemory.memory.embeddings import LocalEmbeddingService

        with patch("sentence_transformers.SentenceTransformer") as mock_st:
            mock_st.return_value.get_sentence_embedding_dimension.return_value = 768

            service = LocalEmbeddingService(dimension=384)

            with pytest.raises(ValidationError, match="768"):
                await service.embed("hello")


class TestFallbackEmbeddingService:
    """Tests for primary/secondary embedding fallback."""

    def test_dimension_disagreement_rejected(self):
        from supermemory.memory.embeddings import FallbackEmbeddingService

        with pytest.raises(ValidationError):
            FallbackEmbeddingService(FakeEmbeddingService(64), FakeEmbeddingService(32))

    @pytest.mark.asyncio
    async def test_falls_back_on_failure(self):
        """Test that the secondary answers when the primary fails."""
        from supermemory.memory.embeddings import FallbackEmbeddingService

        primary = FakeEmbeddingService(fail=ConnectionError("model offline"))
        secondary = FakeEmbeddingService()
        service = FallbackEmbeddingService(primary, secondary)

        vector = await service.embed("hello world")

        assert vector == secondary.vector_for("hello world")
        assert primary.calls == ["hello world"]
        assert secondary.calls == ["hello world"]
        assert service.active is secondary

    @pytest.mark.asyncio
    async def test_fallback_sticks_after_primary_recovers(self):
        """Test that the same text keeps the same vector once the secondary is chosen."""
        from supermemory.memory.embeddings import FallbackEmbeddingService

        class OtherModel(FakeEmbeddingService):
            def vector_for(self, text):
                return list(reversed(super().vector_for(text)))

        primary = FakeEmbeddingService(fail=ConnectionError("model offline"))
        secondary = OtherModel()
        service = FallbackEmbeddingService(primary, secondary)

        first = await service.embed("I live in Lisbon")
        primary.fail = None
        second = await service.embed("I live in Lisbon")
        batch = await service.embed_batch(["I live in Lisbon"])

        assert first == second == batch[0]
        assert first != primary.vector_for("I live in Lisbon")
        assert primary.calls == ["I live in Lisbon"]

    @pytest.mark.asyncio
    async def test_primary_failure_after_choice_not_rerouted(self):
        """Test that a chosen primary's later failure raises instead of switching."""
        from supermemory.memory.embeddings import FallbackEmbeddingService

        primary = FakeEmbeddingService()
        secondary = FakeEmbeddingService()
        service = FallbackEmbeddingService(primary, secondary)

        await service.embed("first")
        primary.fail = ConnectionError("model offline")

        with pytest.raises(EmbeddingError, match="model offline"):
            await service.embed("second")
        assert secondary.calls == []
        assert service.active is primary

    @pytest.mark.asyncio
    async def test_both_fail(self):
        """Test that both failures surface as one EmbeddingError."""
        from supermemory.memory.embeddings import FallbackEmbeddingService

        service = FallbackEmbeddingService(
            FakeEmbeddingService(fail=ConnectionError("primary down")),
            FakeEmbeddingService(fail=ConnectionError("secondary down")),
        )

        with pytest.raises(EmbeddingError, match="primary down"):
            await service.embed("hello")


class TestEmbeddingContract:
    """Tests for properties every embedder must hold."""

    @pytest.mark.asyncio
    async def test_idempotent(self, fake_embedder):
        """Test that embedding the same text twice gives the same vector."""
        first = await fake_embedder.embed("I love hiking")
        second = await fake_embedder.embed("I love hiking")

        assert first == second
        assert len(first) == fake_embedder.dimension

    @pytest.mark.asyncio
    async def test_batch_matches_single(self, fake_embedder):
        """Test that batch results equal per-item results in order."""
        texts = ["My name is Shivansh", "I love hiking", "The cat sat on the mat"]

        batch = await fake_embedder.embed_batch(texts)
        singles = [await fake_embedder.embed(t) for t in texts]

        assert batch == singles


class TestCreateEmbeddingService:
    """Tests for the embedding factory."""

    def test_local(self):
        from supermemory.memory.embeddings import LocalEmbeddingService, create_embedding_service

        service = create_embedding_service("local")

        assert isinstance(service, LocalEmbeddingService)
        assert service.dimension == 384

    def test_remote_requires_key(self):
        from supermemory.memory.embeddings import create_embedding_service

        with pytest.raises(ValueError, match="API key"):
            create_embedding_service("openai")

    def test_local_with_fallback(self):
        from supermemory.memory.embeddings import FallbackEmbeddingService, create_embedding_service

        service = create_embedding_service("local+openai", api_key="k")

        assert isinstance(service, FallbackEmbeddingService)
        assert service.dimension == 384
        assert service.secondary.dimension == 384

    def test_unknown(self):
        from supermemory.memory.embeddings import create_embedding_service

        with pytest.raises(ValueError, match="Unknown embedding provider"):
            create_embedding_service("word2vec")
