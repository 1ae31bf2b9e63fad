"""
Embedding Service

Text embedding provider for query and chunk vectors.
Uses fastembed for on-device embedding generation by default,
or the OpenAI embeddings API when mode="openai".
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np

logger = logging.getLogger("unimem.common.embedding_service")


@dataclass
class BatchEmbeddingResult:
    """Vectors for a batch of texts plus token usage (for cost estimation)"""
    vectors: List[List[float]] = field(default_factory=list)
    total_tokens: int = 0
    model: str = ""


class EmbeddingService:
    """
    Embedding provider for Unimem.

    Construct one per process and pass it to the components that need it.

    Modes:
    - femb: fastembed, runs locally, no external API calls
    - openai: OpenAI embeddings API (text-embedding-3-small by default)
    """

    def __init__(
        self,
        mode: str = "femb",
        model: str = "sentence-transformers/all-MiniLM-L6-v2",
        api_key: Optional[str] = None,
        dimensions: int = 0,
        batch_size: int = 100,
    ):
        """
        Initialize embedding service.

        Args:
            mode: Embedding mode (femb, openai)
            model: Model name
            api_key: OpenAI API key (openai mode only)
            dimensions: Output dimensions (openai mode, 0 = model default)
            batch_size: Max texts per provider call
        """
        self._mode = mode
        self._model = model
        self._dimensions = dimensions
        self._batch_size = max(1, batch_size)
        self._client = None
        self._init_client(api_key)

    def _init_client(self, api_key: Optional[str]) -> None:
        """Initialize the underlying provider client"""
        try:
            if self._mode == "femb":
                from fastembed import TextEmbedding

                self._client = TextEmbedding(model_name=self._model)
            elif self._mode == "openai":
                if not api_key:
                    logger.info("OpenAI API key not provided, embedding service unavailable")
                    return
                from openai import AsyncOpenAI

                self._client = AsyncOpenAI(api_key=api_key)
            else:
                logger.warning("Unsupported embedding mode: %s", self._mode)
                return
            logger.info("Initialized with mode=%s, model=%s", self._mode, self._model)
        except ImportError as e:
            logger.warning("Embedding provider for mode=%s not installed: %s", self._mode, e)
            self._client = None
        except Exception as e:
            logger.warning("Failed to initialize embedding provider: %s", e)
            self._client = None

    @property
    def is_available(self) -> bool:
        """Check if embedding service is available"""
        return self._client is not None

    @property
    def model(self) -> str:
        return self._model

    async def embed(self, text: str) -> List[float]:
        """
        Generate embedding for a single text.

        Args:
            text: String to embed

        Returns:
            Embedding vector
        """
        if not text:
            raise ValueError("Cannot embed empty text")

        result = await self.embed_batch([text])
        return result.vectors[0]

    async def embed_batch(self, texts: List[str]) -> BatchEmbeddingResult:
        """
        Generate embeddings for a list of texts in provider-sized batches.

        Args:
            texts: List of strings to embed

        Returns:
            BatchEmbeddingResult with one vector per input text
        """
        if not self._client:
            raise RuntimeError("Embedding provider not initialized")

        result = BatchEmbeddingResult(model=self._model)
        if not texts:
            return result

        for start in range(0, len(texts), self._batch_size):
            batch = texts[start:start + self._batch_size]
            if self._mode == "openai":
                vectors, tokens = await self._embed_openai(batch)
            else:
                vectors, tokens = await self._embed_local(batch)
            result.vectors.extend(vectors)
            result.total_tokens += tokens

        return result

    async def _embed_local(self, batch: List[str]):
        embeddings = await asyncio.to_thread(lambda: list(self._client.embed(batch)))
        vectors = [np.asarray(e, dtype=float).tolist() for e in embeddings]
        # fastembed reports no usage; approximate with whitespace tokens
        tokens = sum(len(t.split()) for t in batch)
        return vectors, tokens

    async def _embed_openai(self, batch: List[str]):
        kwargs = {"model": self._model, "input": batch}
        if self._dimensions:
            kwargs["dimensions"] = self._dimensions
        response = await self._client.embeddings.create(**kwargs)
        vectors = [item.embedding for item in response.data]
        return vectors, response.usage.total_tokens

    @staticmethod
    def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
        """
        Compute cosine similarity between two vectors.

        Args:
            vec1: First embedding vector
            vec2: Second embedding vector

        Returns:
            Cosine similarity clamped to 0.0 - 1.0 (0.0 for zero vectors)
        """
        v1 = np.asarray(vec1, dtype=float)
        v2 = np.asarray(vec2, dtype=float)

        if v1.shape != v2.shape:
            raise ValueError(f"Vector dimension mismatch: {v1.shape} vs {v2.shape}")

        magnitude = float(np.linalg.norm(v1) * np.linalg.norm(v2))
        if magnitude == 0.0:
            return 0.0

        similarity = float(np.dot(v1, v2)) / magnitude

        # Clamp to valid range (numerical precision, opposite vectors)
        return max(0.0, min(1.0, similarity))

    @staticmethod
    def batch_cosine_similarity(
        query_vec: Sequence[float],
        vectors: Sequence[Sequence[float]],
    ) -> List[float]:
        """
        Compute cosine similarity between a query and multiple vectors.

        Args:
            query_vec: Query embedding vector
            vectors: Embedding vectors to compare against

        Returns:
            List of similarity scores (clamped to 0.0 - 1.0)
        """
        if len(vectors) == 0:
            return []

        query = np.asarray(query_vec, dtype=float)
        matrix = np.asarray(vectors, dtype=float)

        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        dots = matrix @ query
        similarities = np.divide(dots, norms, out=np.zeros_like(dots), where=norms != 0)

        return np.clip(similarities, 0.0, 1.0).tolist()

    @staticmethod
    def average_embeddings(vectors: Sequence[Sequence[float]]) -> List[float]:
        """
        Average chunk vectors into one object-level vector.

        Raises:
            ValueError: if there are no vectors to average
        """
        if len(vectors) == 0:
            raise ValueError("Cannot average zero embeddings")

        matrix = np.asarray(vectors, dtype=float)
        if matrix.ndim != 2:
            raise ValueError(f"Expected a list of vectors, got shape {matrix.shape}")
        return matrix.mean(axis=0).tolist()
