"""Search index interface and an in-memory implementation."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from datetime import datetime
from math import sqrt
from threading import Lock
from typing import Any, Protocol

from site_chat.types import IndexedDocument, ScoredChunk

logger = logging.getLogger(__name__)

_WORD = re.compile(r"\w+", flags=re.UNICODE)
_KEYWORD_WEIGHT = 0.2


class SearchIndex(Protocol):
    """Minimal index contract for synchronization and retrieval.

    Records follow the index schema produced by
    `SourceDocumentChunk.to_index_record`.
    """

    def upload(self, records: list[dict[str, Any]]) -> None:
        """Insert or replace records by `id`."""

    def delete_urls(self, urls: Iterable[str]) -> int:
        """Delete every record of the given URLs, returning how many went."""

    def documents(self) -> list[IndexedDocument]:
        """One entry per indexed URL with its last-modified date."""

    def search(
        self, query_vector: list[float], *, query_text: str = "", k: int = 5
    ) -> list[ScoredChunk]:
        """Return the `k` best records for a query."""


class InMemorySearchIndex:
    """Deterministic index used for tests and local runs."""

    def __init__(self) -> None:
        self._records: dict[str, dict[str, Any]] = {}
        self._lock = Lock()

    def __len__(self) -> int:
        return len(self._records)

    def upload(self, records: list[dict[str, Any]]) -> None:
        with self._lock:
            for record in records:
                if "id" not in record:
                    raise ValueError("index records require an 'id'")
                self._records[record["id"]] = dict(record)
        logger.info("Uploaded %d documents to the index", len(records))

    def delete_urls(self, urls: Iterable[str]) -> int:
        targets = set(urls)
        with self._lock:
            doomed = [key for key, rec in self._records.items() if rec.get("url") in targets]
            for key in doomed:
                del self._records[key]
        if doomed:
            logger.info("Deleted %d documents from the index", len(doomed))
        return len(doomed)

    def documents(self) -> list[IndexedDocument]:
        latest: dict[str, datetime] = {}
        for record in list(self._records.values()):
            url = record.get("url")
            lastmod = record.get("lastmod")
            if not url or not lastmod:
                continue
            modified = datetime.fromisoformat(lastmod)
            if url not in latest or modified < latest[url]:
                latest[url] = modified
        return [IndexedDocument(url=url, last_modified=mod) for url, mod in latest.items()]

    def search(
        self, query_vector: list[float], *, query_text: str = "", k: int = 5
    ) -> list[ScoredChunk]:
        query_words = {word.lower() for word in _WORD.findall(query_text)}
        scored: list[tuple[float, float, dict[str, Any]]] = []
        for record in list(self._records.values()):
            score = _cosine_similarity(query_vector, record.get("vector") or [])
            if query_words:
                keywords = set(record.get("keywords_title") or []) | set(
                    record.get("keywords_content") or []
                )
                score += _KEYWORD_WEIGHT * len(query_words & keywords) / len(query_words)
            scored.append((score, float(record.get("priority", 0.0)), record))

        ranked = sorted(scored, key=lambda item: (item[0], item[1]), reverse=True)
        return [
            ScoredChunk(record=record, score=score, rank=rank)
            for rank, (score, _, record) in enumerate(ranked[:k], start=1)
        ]


def _cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)
