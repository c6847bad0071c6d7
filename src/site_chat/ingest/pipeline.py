"""Indexing pipeline: chunk -> embed -> keywords -> replace in index."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from site_chat.config import IndexingConfig
from site_chat.exceptions import ChunkingError
from site_chat.ingest.chunker import WebpageChunker
from site_chat.ingest.embedder import Embedder, embed_in_batches
from site_chat.ingest.keywords import FrequencyKeywordExtractor, KeywordExtractor
from site_chat.retrieval.search_index import SearchIndex
from site_chat.types import CrawledWebpage, SourceDocumentChunk

logger = logging.getLogger(__name__)


class IngestPipeline:
    """Coordinates chunker/embedder/keyword/index stages.

    Documents already indexed for a webpage are replaced as a whole, so a
    page that shrinks does not leave stale trailing chunks behind.
    """

    def __init__(
        self,
        chunker: WebpageChunker,
        embedder: Embedder,
        index: SearchIndex,
        *,
        keyword_extractor: KeywordExtractor | None = None,
        config: IndexingConfig | None = None,
    ) -> None:
        self.config = config or IndexingConfig()
        self._chunker = chunker
        self._embedder = embedder
        self._index = index
        self._keywords = keyword_extractor or FrequencyKeywordExtractor(
            count=self.config.keyword_count
        )

    def ingest(
        self,
        webpages: Iterable[CrawledWebpage],
        *,
        on_error: Callable[[CrawledWebpage, ChunkingError], None] | None = None,
    ) -> list[SourceDocumentChunk]:
        """Index crawled webpages and return the chunks that were uploaded.

        Webpages that fail to chunk are skipped and passed to `on_error`.
        """

        chunks = self._chunker.chunk_all(webpages, on_error)
        if not chunks:
            logger.info("Nothing to index")
            return []

        vectors = embed_in_batches(
            self._embedder,
            [chunk.content for chunk in chunks],
            self.config.embedding_batch_size,
        )
        titles = sorted({chunk.title for chunk in chunks})
        title_keywords = dict(zip(titles, self._keywords.extract(titles), strict=True))
        content_keywords = self._keywords.extract([chunk.content for chunk in chunks])

        records = [
            chunk.to_index_record(
                vector=vector,
                keywords_title=title_keywords[chunk.title],
                keywords_content=keywords,
            )
            for chunk, vector, keywords in zip(chunks, vectors, content_keywords, strict=True)
        ]

        self._index.delete_urls({chunk.url for chunk in chunks})
        self._index.upload(records)
        logger.info("Indexed %d chunks", len(records))
        return chunks
