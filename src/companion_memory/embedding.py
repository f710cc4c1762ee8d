"""Embedding service for companion memories.

Provides vector embeddings for memory content using sentence-transformers.
The model is lazy-loaded on first use and encoding runs off the event loop.
Any async callable ``text -> list[float] | None`` can stand in for this
service; an empty or ``None`` result means "no embedding available".
"""

from __future__ import annotations

import asyncio
import struct
from typing import Awaitable, Callable

import numpy as np
from loguru import logger

from .config import EmbeddingConfig

EmbedFunction = Callable[[str], Awaitable["list[float] | None"]]


class EmbeddingService:
    """Embedding service using sentence-transformers.

    Features:
    - Lazy model loading (only when first embedding is requested)
    - Batch encoding for efficiency
    - Serialization helpers for SQLite BLOB storage
    """

    def __init__(self, config: EmbeddingConfig | None = None):
        """Initialize embedding service.

        Args:
            config: Embedding configuration
        """
        self._config = config or EmbeddingConfig()
        self._model = None
        self._dimension = self._config.dimension

    @property
    def dimension(self) -> int:
        return self._dimension

    def _ensure_model(self) -> None:
        """Lazy-load the sentence-transformers model."""
        if self._model is not None:
            return

        try:
            from sentence_transformers import SentenceTransformer
        except ImportError:
            raise ImportError(
                "sentence-transformers is required for EmbeddingService. "
                "Install with: pip install companion-memory[embeddings]"
            )

        logger.info(f"Loading embedding model: {self._config.model}")
        self._model = SentenceTransformer(
            self._config.model,
            trust_remote_code=self._config.trust_remote_code,
        )
        self._dimension = self._model.get_sentence_embedding_dimension()
        logger.info(f"Embedding model loaded: dim={self._dimension}")

    def encode(self, texts: list[str]) -> list[list[float]]:
        """Encode texts into normalized embedding vectors."""
        if not texts:
            return []

        self._ensure_model()

        embeddings: np.ndarray = self._model.encode(
            texts,
            batch_size=32,
            show_progress_bar=False,
            normalize_embeddings=True,
        )
        return embeddings.tolist()

    async def embed(self, text: str) -> list[float] | None:
        """Embed one text without blocking the event loop.

        Returns:
            The vector, or ``None`` when the text is blank or encoding failed.
        """
        if not text or not text.strip():
            return None
        try:
            results = await asyncio.to_thread(self.encode, [text])
        except Exception as e:
            logger.warning(f"Embedding failed: {e}")
            return None
        return results[0] if results else None

    @staticmethod
    def serialize_embedding(embedding: list[float]) -> bytes:
        """Pack an embedding as little-endian float32 bytes."""
        return struct.pack(f"<{len(embedding)}f", *embedding)

    @staticmethod
    def deserialize_embedding(blob: bytes) -> list[float]:
        """Unpack a float32 BLOB back into a list of floats."""
        count = len(blob) // 4  # float32 = 4 bytes
        return list(struct.unpack(f"<{count}f", blob))


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity of two vectors.

    Returns 0.0 for mismatched lengths or zero-norm vectors.
    """
    if not a or not b or len(a) != len(b):
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return float(np.dot(va, vb) / denom)


def cosine_distance(a: list[float], b: list[float]) -> float:
    """``1 - cosine_similarity``; 0 means identical direction."""
    return 1.0 - cosine_similarity(a, b)
