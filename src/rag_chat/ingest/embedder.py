"""Embedding abstractions, normalization, and a deterministic baseline."""

from __future__ import annotations

from abc import ABC, abstractmethod
from hashlib import blake2b
from math import sqrt
from typing import cast

from langchain_core.embeddings import Embeddings

from rag_chat.config import EmbeddingConfig


class EmbeddingError(RuntimeError):
    pass


def normalize_embedding(values: list[float], mode: int) -> list[float]:
    """Scale a raw embedding.

    Modes: -1 none, 0 max-abs into the int16 range, 2 Euclidean, any other
    positive value the matching p-norm. A zero norm yields zeros.
    """

    if mode == -1:
        return list(values)
    if mode == 0:
        total = max((abs(value) for value in values), default=0.0) / 32760.0
    elif mode == 2:
        total = sqrt(sum(value * value for value in values))
    elif mode > 0:
        total = sum(abs(value) ** mode for value in values) ** (1.0 / mode)
    else:
        raise ValueError(f"Unsupported normalization mode: {mode}")

    scale = 1.0 / total if total > 0.0 else 0.0
    return [value * scale for value in values]


class Embedder(ABC):
    """Embedder interface used by the index builder and the retriever.

    Subclasses only provide `_embed_raw`. Prefixes, normalization and the
    fixed-dimension check live here so every backend behaves the same.
    """

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self.config = config or EmbeddingConfig()
        self._dimension: int | None = None

    @property
    def dimension(self) -> int | None:
        """Vector length, known after the first successful call."""
        return self._dimension

    @abstractmethod
    def _embed_raw(self, text: str) -> list[float]:
        """Return the backend's unnormalized vector for `text`."""

    def embed_query(self, text: str) -> list[float]:
        return self._encode(self.config.query_prefix + text)

    def embed_passage(self, text: str) -> list[float]:
        return self._encode(self.config.passage_prefix + text)

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed many passages; one failure fails the whole batch."""
        return [self.embed_passage(text) for text in texts]

    def _encode(self, text: str) -> list[float]:
        try:
            raw = self._embed_raw(text)
        except EmbeddingError:
            raise
        except Exception as exc:
            raise EmbeddingError(f"embedding backend failed: {exc}") from exc

        if not raw:
            raise EmbeddingError("embedding backend returned an empty vector")
        if self._dimension is None:
            self._dimension = len(raw)
        elif len(raw) != self._dimension:
            raise EmbeddingError(
                f"embedding dimension changed: expected {self._dimension}, got {len(raw)}"
            )
        return normalize_embedding([float(value) for value in raw], self.config.normalize)


class HashingEmbedder(Embedder):
    """Deterministic signed bag-of-words embedding without external model calls.

    Used for local runs and tests. Text without tokens maps to a zero vector.
    """

    def _embed_raw(self, text: str) -> list[float]:
        dimension = self.config.dimension
        vector = [0.0 for _ in range(dimension)]
        for token in text.lower().split():
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % dimension
            sign = -1.0 if digest[4] % 2 else 1.0
            vector[idx] += sign
        return vector


class LangChainEmbedder(Embedder):
    """Adapter over any `langchain_core.embeddings.Embeddings` provider.

    Prefixes are applied by this class, so the wrapped provider's
    `embed_query` is used for both query and passage mode.
    """

    def __init__(self, embeddings: Embeddings, config: EmbeddingConfig | None = None) -> None:
        if not isinstance(embeddings, Embeddings):
            raise TypeError("embeddings must implement langchain_core Embeddings")
        super().__init__(config)
        self._embeddings = embeddings

    def _embed_raw(self, text: str) -> list[float]:
        return cast(list[float], self._embeddings.embed_query(text))
