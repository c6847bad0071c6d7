"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from hashlib import sha1
from typing import Any


def as_utc(value: datetime) -> datetime:
    """Return `value` as an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(slots=True)
class CrawledWebpage:
    """Text content of one crawled page, as produced by the crawler."""

    url: str
    title: str
    content: str
    last_modified: datetime
    priority: Decimal = Decimal("0.5")
    path: str | None = None


@dataclass(slots=True)
class SitemapItem:
    """A page the website declares in its sitemap."""

    url: str
    last_modified: datetime
    priority: Decimal = Decimal("0.5")


@dataclass(frozen=True, slots=True)
class SourceDocumentChunk:
    """A bounded slice of a webpage, stored as one index document."""

    url: str
    title: str
    content: str
    chunk_index: int
    last_modified: datetime
    priority: Decimal
    path: str | None = None

    @property
    def id(self) -> str:
        return sha1(f"{self.url}#{self.chunk_index}".encode("utf-8")).hexdigest()

    def to_index_record(
        self,
        *,
        vector: list[float] | None = None,
        keywords_title: list[str] | None = None,
        keywords_content: list[str] | None = None,
        group_ids: list[str] | None = None,
    ) -> dict[str, Any]:
        """Serialize to the search index schema, leaving out empty fields."""

        record: dict[str, Any] = {
            "id": self.id,
            "url": self.url,
            "title": self.title,
            "content": self.content,
            "vector": vector,
            "keywords_title": keywords_title,
            "keywords_content": keywords_content,
            "group_ids": group_ids,
            "lastmod": self.last_modified.isoformat(),
            "chunk_id": self.chunk_index,
            "priority": float(self.priority),
        }
        return {key: value for key, value in record.items() if value is not None}


@dataclass(slots=True)
class IndexedDocument:
    """The subset of an index record needed to decide what is stale."""

    url: str
    last_modified: datetime


@dataclass(slots=True)
class ScoredChunk:
    """A search hit with score and rank."""

    record: dict[str, Any]
    score: float
    rank: int = 0
