"""Text embeddings and vector similarity.

EmbeddingProvider wraps the OpenAI embeddings endpoint (or any
OpenAI-compatible one) and turns every client failure into an
EmbeddingError so callers can absorb it.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol

import numpy as np
from openai import APIConnectionError, APIStatusError, OpenAI, OpenAIError, RateLimitError

from dm_engine.core.config import MemorySettings, get_settings
from dm_engine.core.exceptions import EmbeddingError
from dm_engine.core.logging import get_logger


logger = get_logger(__name__)


class EmbeddingService(Protocol):
    """Anything that turns text into fixed-dimension vectors."""

    model: str
    dimension: int

    def embed_text(self, text: str) -> list[float]: ...

    def embed_texts(self, texts: Sequence[str]) -> list[list[float]]: ...


class EmbeddingProvider:
    """Generate text embeddings using the OpenAI API (or compatible).

    Texts are stripped and truncated to ``max_embed_length`` characters
    before they are sent.
    """

    def __init__(
        self,
        *,
        settings: MemorySettings | None = None,
        client: Any | None = None,
    ) -> None:
        """Initialize the embedding provider.

        Args:
            settings: Memory settings; defaults to the application settings.
            client: Pre-built OpenAI client, mainly for tests.
        """
        self._settings = settings or get_settings().memory
        self.model = self._settings.embedding_model
        self.dimension = self._settings.embedding_dimension
        self._client = client

        logger.info("EmbeddingProvider initialized", model=self.model, dimension=self.dimension)

    def _get_client(self) -> Any:
        """Get or create the OpenAI client."""
        if self._client is None:
            ai = get_settings().ai
            api_key = ai.openai_api_key.get_secret_value() if ai.openai_api_key else None
            self._client = OpenAI(
                api_key=api_key,
                base_url=ai.base_url,
                timeout=ai.timeout_seconds,
                max_retries=ai.max_retries,
            )
        return self._client

    def _prepare(self, text: str) -> str:
        cleaned = text.strip()
        if not cleaned:
            raise EmbeddingError("Cannot embed empty text", model_name=self.model)
        return cleaned[: self._settings.max_embed_length]

    def embed_text(self, text: str) -> list[float]:
        """Generate embedding for a single text.

        Raises:
            EmbeddingError: If embedding generation fails.
        """
        return self.embed_texts([text])[0]

    def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        """Generate embeddings for multiple texts, one vector per text.

        Args:
            texts: Texts to embed.

        Returns:
            Embedding vectors in input order.

        Raises:
            EmbeddingError: If embedding generation fails or a vector has
                the wrong dimension.
        """
        if not texts:
            return []

        clean_texts = [self._prepare(text) for text in texts]

        try:
            response = self._get_client().embeddings.create(model=self.model, input=clean_texts)
        except RateLimitError as exc:
            raise EmbeddingError(f"Embedding rate limit exceeded: {exc}", model_name=self.model) from exc
        except APIConnectionError as exc:
            raise EmbeddingError(f"Failed to connect for embeddings: {exc}", model_name=self.model) from exc
        except APIStatusError as exc:
            raise EmbeddingError(
                f"Embedding API error: {exc}",
                model_name=self.model,
                details={"status_code": exc.status_code},
            ) from exc
        except OpenAIError as exc:
            raise EmbeddingError(f"Embedding request failed: {exc}", model_name=self.model) from exc

        embeddings = [list(item.embedding) for item in sorted(response.data, key=lambda item: item.index)]
        if len(embeddings) != len(clean_texts):
            raise EmbeddingError(
                f"Expected {len(clean_texts)} embeddings, got {len(embeddings)}",
                model_name=self.model,
            )
        for vector in embeddings:
            if len(vector) != self.dimension:
                raise EmbeddingError(
                    f"Embedding has dimension {len(vector)}, expected {self.dimension}",
                    model_name=self.model,
                )

        logger.debug("Generated embeddings", count=len(embeddings), model=self.model)
        return embeddings


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors.

    Returns 0.0 when the lengths differ or either vector has zero norm.
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape or va.size == 0:
        return 0.0
    denominator = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denominator == 0.0:
        return 0.0
    return float(np.dot(va, vb) / denominator)


__all__ = [
    "EmbeddingService",
    "EmbeddingProvider",
    "cosine_similarity",
]
