"""Embedding abstractions, batching and a deterministic baseline."""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from collections import Counter
from hashlib import blake2b
from math import log1p, sqrt
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings

logger = logging.getLogger(__name__)

_WORD = re.compile(r"\w+", flags=re.UNICODE)


class Embedder(ABC):
    """Embedder interface used by indexing and retrieval."""

    @abstractmethod
    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed many chunk contents."""

    @abstractmethod
    def embed_query(self, text: str) -> list[float]:
        """Embed one search query."""


def embed_in_batches(
    embedder: Embedder, texts: list[str], batch_size: int
) -> list[list[float]]:
    """Embed `texts` in batches of `batch_size`, preserving order."""
    vectors: list[list[float]] = []
    batch_count = (len(texts) + batch_size - 1) // batch_size
    for batch_number, start in enumerate(range(0, len(texts), batch_size), start=1):
        batch = texts[start : start + batch_size]
        vectors.extend(embedder.embed_documents(batch))
        logger.debug("Embedded batch %d/%d (%d texts)", batch_number, batch_count, len(batch))

    if len(vectors) != len(texts):
        raise ValueError(
            f"Embedder returned {len(vectors)} vectors for {len(texts)} texts"
        )
    return vectors


class HashingEmbedder(Embedder):
    """Feature-hashed bag of words, for tests and offline runs."""

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self._embed(text) for text in texts]

    def embed_query(self, text: str) -> list[float]:
        return self._embed(text)

    def _embed(self, text: str) -> list[float]:
        vector = [0.0] * self.dimension
        counts = Counter(word.lower() for word in _WORD.findall(text))
        for word, count in counts.items():
            digest = blake2b(word.encode("utf-8"), digest_size=8).digest()
            index = int.from_bytes(digest[:4], "little") % self.dimension
            sign = -1.0 if digest[4] & 1 else 1.0
            vector[index] += sign * (1.0 + log1p(count - 1))

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


class LangChainEmbedder(Embedder):
    """Adapter over a LangChain `Embeddings` model such as `OpenAIEmbeddings`."""

    def __init__(self, embeddings: Embeddings) -> None:
        self._embeddings = embeddings

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [list(vector) for vector in self._embeddings.embed_documents(texts)]

    def embed_query(self, text: str) -> list[float]:
        return list(self._embeddings.embed_query(text))
