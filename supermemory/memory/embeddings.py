"""
Embedding Service for generating vector representations.

Uses a local sentence-transformers model by default (all-MiniLM-L6-v2,
384 dimensions), with OpenAI-compatible remote embeddings (OpenAI or
OpenRouter) as an alternative or as a transparent fallback.
"""

import asyncio
import logging
import math
from abc import ABC, abstractmethod
from typing import Literal

from ..errors import EmbeddingError, ValidationError
from .retry import with_retries

logger = logging.getLogger("supermemory.memory.embeddings")

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


def validate_vector(values: list[float], dimension: int, backend: str) -> list[float]:
    """Reject malformed embeddings instead of passing them downstream."""
    if len(values) != dimension:
        raise ValidationError(
            f"{backend} returned a {len(values)}-dimensional embedding, expected {dimension}"
        )
    if not all(math.isfinite(v) for v in values):
        raise EmbeddingError(backend, "embed", "embedding contains non-finite values")
    if not any(values):
        raise EmbeddingError(backend, "embed", "embedding is all zeros")
    return values


class EmbeddingService(ABC):
    """Abstract interface for embedding generation."""

    name: str = "abstract"

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Return the dimension of embeddings produced."""
        pass

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Generate embedding for a single text."""
        pass

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for multiple texts, same results as embed() per item."""
        pass


class OpenAIEmbeddingService(EmbeddingService):
    """
    OpenAI embedding service using text-embedding-3 models.

    Supports native dimension reduction via the dimensions parameter, and
    any OpenAI-compatible endpoint through ``base_url`` (e.g. OpenRouter,
    which expects vendor-prefixed model names like
    ``openai/text-embedding-3-small``).

    Models:
    - text-embedding-3-small: default 1536 dimensions
    - text-embedding-3-large: default 3072 dimensions (can be reduced)
    """

    name = "openai"

    # Default dimensions for each model
    MODEL_DEFAULT_DIMENSIONS = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
    }

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        dimensions: int | None = None,
        base_url: str | None = None,
        timeout: float = 30.0,
        max_retries: int = 3,
    ):
        """
        Initialize OpenAI embedding service.

        Args:
            api_key: OpenAI (or OpenRouter) API key
            model: Embedding model name
            dimensions: Override output dimensions. If None, uses model's default.
            base_url: Alternative OpenAI-compatible endpoint
            timeout: Per-attempt timeout in seconds
            max_retries: Attempts for transient failures
        """
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self.max_retries = max_retries
        self._client = None
        if base_url:
            self.name = "openrouter" if "openrouter" in base_url else "openai-compatible"

        # Determine dimensions
        default_dim = self.MODEL_DEFAULT_DIMENSIONS.get(model.split("/")[-1], 1536)
        if dimensions is not None:
            if dimensions > default_dim:
                logger.warning(
                    f"Requested dimensions ({dimensions}) exceeds model default ({default_dim}). "
                    f"Using {default_dim}."
                )
                self._dimension = default_dim
                self._requested_dimensions = None
            else:
                self._dimension = dimensions
                self._requested_dimensions = dimensions
        else:
            self._dimension = default_dim
            self._requested_dimensions = None

        logger.info(
            f"OpenAIEmbeddingService initialized: model={model}, dimensions={self._dimension}"
        )

    @property
    def dimension(self) -> int:
        return self._dimension

    def _get_client(self):
        if self._client is None:
            from openai import AsyncOpenAI
            kwargs = {"api_key": self.api_key}
            if self.base_url:
                kwargs["base_url"] = self.base_url
            self._client = AsyncOpenAI(**kwargs)
        return self._client

    async def _create(self, payload: str | list[str]):
        client = self._get_client()

        kwargs = {
            "model": self.model,
            "input": payload,
        }
        if self._requested_dimensions is not None:
            kwargs["dimensions"] = self._requested_dimensions

        return await with_retries(
            self.name,
            "embed",
            lambda: client.embeddings.create(**kwargs),
            max_attempts=self.max_retries,
            timeout=self.timeout,
        )

    async def embed(self, text: str) -> list[float]:
        """Generate embedding for a single text."""
        response = await self._create(text)
        if not response.data:
            raise EmbeddingError(self.name, "embed", "response contained no embeddings")
        return validate_vector(list(response.data[0].embedding), self._dimension, self.name)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for multiple texts efficiently."""
        if not texts:
            return []

        response = await self._create(list(texts))
        if len(response.data) != len(texts):
            raise EmbeddingError(
                self.name, "embed_batch",
                f"expected {len(texts)} embeddings, got {len(response.data)}",
            )

        # Sort by index to maintain order
        sorted_data = sorted(response.data, key=lambda x: x.index)
        return [
            validate_vector(list(item.embedding), self._dimension, self.name)
            for item in sorted_data
        ]


class LocalEmbeddingService(EmbeddingService):
    """
    Local embedding service using sentence-transformers.

    Uses all-MiniLM-L6-v2 by default (384 dimensions, fast, good quality).
    Embeddings are L2-normalized. The model loads lazily on first use and
    encoding runs in a worker thread so the event loop is never blocked.
    """

    name = "local"

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", dimension: int = 384):
        self.model_name = model_name
        self._model = None
        self._dimension = dimension
        self._load_lock = asyncio.Lock()
        logger.info(f"LocalEmbeddingService initialized with model: {model_name}")

    @property
    def dimension(self) -> int:
        return self._dimension

    def _load_model(self):
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError as e:
            raise EmbeddingError(
                self.name, "load",
                "sentence-transformers not installed. Install with: pip install sentence-transformers",
            ) from e
        model = SentenceTransformer(self.model_name)
        loaded_dim = model.get_sentence_embedding_dimension()
        if loaded_dim != self._dimension:
            raise ValidationError(
                f"Model {self.model_name} produces {loaded_dim}-dimensional embeddings, "
                f"configured dimension is {self._dimension}"
            )
        logger.info(f"Loaded local embedding model: {self.model_name}")
        return model

    async def _get_model(self):
        if self._model is None:
            async with self._load_lock:
                if self._model is None:
                    self._model = await asyncio.to_thread(self._load_model)
        return self._model

    async def _encode(self, payload: str | list[str]):
        model = await self._get_model()
        try:
            return await asyncio.to_thread(
                model.encode, payload, convert_to_numpy=True, normalize_embeddings=True
            )
        except Exception as e:
            raise EmbeddingError(self.name, "embed", str(e)) from e

    async def embed(self, text: str) -> list[float]:
        """Generate embedding for a single text."""
        embedding = await self._encode(text)
        return validate_vector(embedding.tolist(), self._dimension, self.name)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for multiple texts."""
        if not texts:
            return []

        embeddings = await self._encode(list(texts))
        return [validate_vector(e, self._dimension, self.name) for e in embeddings.tolist()]


class FallbackEmbeddingService(EmbeddingService):
    """
    Use the primary embedder, or the secondary if the primary is unusable.

    The choice is made on the first successful call and then kept for the
    lifetime of the service: vectors from two different models are not
    comparable, so a store must never mix them. Once chosen, a failure of
    the active embedder is raised rather than routed to the other one.

    Both must produce the same dimension so either can back the store.
    """

    def __init__(self, primary: EmbeddingService, secondary: EmbeddingService):
        if primary.dimension != secondary.dimension:
            raise ValidationError(
                f"Fallback embedders disagree on dimension: "
                f"{primary.name}={primary.dimension}, {secondary.name}={secondary.dimension}"
            )
        self.primary = primary
        self.secondary = secondary
        self.name = f"{primary.name}+{secondary.name}"
        self._active: EmbeddingService | None = None
        self._choose_lock = asyncio.Lock()

    @property
    def dimension(self) -> int:
        return self.primary.dimension

    @property
    def active(self) -> EmbeddingService | None:
        """The embedder in use, or None before the first successful call."""
        return self._active

    async def _choose(self, method: str, payload):
        """First call: try the primary, then the secondary, and pin the winner."""
        async with self._choose_lock:
            if self._active is not None:
                return await self._run_active(method, payload)
            try:
                result = await getattr(self.primary, method)(payload)
                self._active = self.primary
                return result
            except ValidationError:
                raise
            except Exception as primary_error:
                logger.warning(
                    f"Embedding backend {self.primary.name} failed ({primary_error}); "
                    f"falling back to {self.secondary.name}"
                )
                try:
                    result = await getattr(self.secondary, method)(payload)
                except ValidationError:
                    raise
                except Exception as secondary_error:
                    raise EmbeddingError(
                        self.name, method,
                        f"{self.primary.name}: {primary_error}; {self.secondary.name}: {secondary_error}",
                    ) from secondary_error
                self._active = self.secondary
                logger.info(f"Using {self.secondary.name} embeddings for this session")
                return result

    async def _run_active(self, method: str, payload):
        active = self._active
        try:
            return await getattr(active, method)(payload)
        except (ValidationError, EmbeddingError):
            raise
        except Exception as e:
            raise EmbeddingError(self.name, method, f"{active.name}: {e}") from e

    async def _run(self, method: str, payload):
        if self._active is None:
            return await self._choose(method, payload)
        return await self._run_active(method, payload)

    async def embed(self, text: str) -> list[float]:
        return await self._run("embed", text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        return await self._run("embed_batch", texts)


def create_embedding_service(
    provider: Literal["local", "openai", "openrouter", "local+openai"] = "local",
    api_key: str = "",
    model: str = "",
    dimensions: int | None = None,
    timeout: float = 30.0,
    max_retries: int = 3,
) -> EmbeddingService:
    """
    Factory function to create the appropriate embedding service.

    Args:
        provider: "local", "openai", "openrouter", or "local+openai" (local
                  model with remote fallback; requires matching dimensions)
        api_key: API key for remote providers
        model: Model name (optional, uses defaults)
        dimensions: Override output dimensions for remote embeddings
        timeout: Per-attempt timeout for remote calls
        max_retries: Attempts for transient remote failures

    Returns:
        Configured EmbeddingService instance
    """
    if provider == "local":
        return LocalEmbeddingService(
            model_name=model or "all-MiniLM-L6-v2",
            dimension=dimensions or 384,
        )
    elif provider in ("openai", "openrouter"):
        if not api_key:
            raise ValueError(f"API key required for {provider} embedding provider")
        default_model = "text-embedding-3-small"
        if provider == "openrouter":
            default_model = f"openai/{default_model}"
        return OpenAIEmbeddingService(
            api_key=api_key,
            model=model or default_model,
            dimensions=dimensions,
            base_url=OPENROUTER_BASE_URL if provider == "openrouter" else None,
            timeout=timeout,
            max_retries=max_retries,
        )
    elif provider == "local+openai":
        if not api_key:
            raise ValueError("OpenAI API key required for the remote fallback embedder")
        local = LocalEmbeddingService(dimension=dimensions or 384)
        remote = OpenAIEmbeddingService(
            api_key=api_key,
            model=model or "text-embedding-3-small",
            dimensions=local.dimension,
            timeout=timeout,
            max_retries=max_retries,
        )
        return FallbackEmbeddingService(local, remote)
    else:
        raise ValueError(f"Unknown embedding provider: {provider}")
