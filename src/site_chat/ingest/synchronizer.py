"""Keeps the search index in step with the website's sitemap."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Protocol

from site_chat.config import IndexingConfig
from site_chat.ingest.pipeline import IngestPipeline
from site_chat.obs.logging import progress_label
from site_chat.retrieval.search_index import SearchIndex
from site_chat.types import CrawledWebpage, SitemapItem, as_utc

logger = logging.getLogger(__name__)


class Crawler(Protocol):
    """Fetches page text for sitemap items (headless browser in production)."""

    def crawl(self, items: list[SitemapItem]) -> list[CrawledWebpage]:
        """Crawl the given items; pages that fail to load may be omitted."""


@dataclass(slots=True)
class SynchronizationReport:
    deleted_documents: int = 0
    pages_to_update: int = 0
    chunks_uploaded: int = 0
    failed_batches: list[int] = field(default_factory=list)


class DataSynchronizer:
    """Deletes pages that left the sitemap and re-indexes stale ones.

    A page is stale when it has no documents in the index or the sitemap
    reports a newer modification date than the indexed one. Stale pages are
    processed in batches; a failing batch is logged and skipped so the
    remaining batches still run.
    """

    def __init__(
        self,
        crawler: Crawler,
        pipeline: IngestPipeline,
        index: SearchIndex,
        config: IndexingConfig | None = None,
    ) -> None:
        self._crawler = crawler
        self._pipeline = pipeline
        self._index = index
        self.config = config or IndexingConfig()

    def synchronize(self, sitemap_items: Iterable[SitemapItem]) -> SynchronizationReport:
        items = list(sitemap_items)
        report = SynchronizationReport()
        logger.info("Synchronizing index with %d sitemap items", len(items))

        indexed = {doc.url: as_utc(doc.last_modified) for doc in self._index.documents()}
        sitemap_urls = {item.url for item in items}
        removed = [url for url in indexed if url not in sitemap_urls]
        if removed:
            report.deleted_documents = self._index.delete_urls(removed)
            logger.info("Removed %d pages no longer in the sitemap", len(removed))

        stale = [
            item
            for item in items
            if item.url not in indexed or indexed[item.url] < as_utc(item.last_modified)
        ]
        report.pages_to_update = len(stale)
        logger.info("%d pages need updating", len(stale))

        batches = [
            stale[start : start + self.config.batch_size]
            for start in range(0, len(stale), self.config.batch_size)
        ]
        for number, batch in enumerate(batches, start=1):
            label = progress_label(number, len(batches))
            logger.info("%s Running batch of %d pages", label, len(batch))
            try:
                webpages = self._crawler.crawl(batch)
                chunks = self._pipeline.ingest(webpages)
            except Exception:
                logger.exception("%s Batch failed, first page %s", label, batch[0].url)
                report.failed_batches.append(number)
                continue
            report.chunks_uploaded += len(chunks)

        logger.info(
            "Synchronization finished: %d chunks uploaded, %d failed batches",
            report.chunks_uploaded,
            len(report.failed_batches),
        )
        return report
