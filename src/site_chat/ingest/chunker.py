"""Recursive character chunking with overlap for crawled webpages."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from site_chat.config import ChunkingConfig
from site_chat.exceptions import ChunkingError, ChunkLimitUnreachableError
from site_chat.obs.logging import progress_label
from site_chat.types import CrawledWebpage, SourceDocumentChunk

logger = logging.getLogger(__name__)

_SENTENCE_TERMINATORS = frozenset(".!?")

# Coarsest first. Every pattern is zero-width so splitting keeps separators:
# headings stay at the start of their segment, everything else at the end.
_SEPARATORS: tuple[tuple[str, str], ...] = (
    ("heading", r"(?m)(?=^#)"),
    ("blank_line", r"(?<=\n\n)"),
    ("newline", r"(?<=\n)"),
    ("sentence", r"(?<=[.!?]\s)"),
    ("space", r"(?<= )"),
)


@dataclass(frozen=True, slots=True)
class SplitterLevel:
    """One rung of the separator ladder.

    `finer` is the level used when a segment produced here is still too large.
    The terminal level has no finer level: nothing can be split further.
    """

    name: str
    pattern: re.Pattern[str]
    finer: SplitterLevel | None = None

    def split(self, text: str) -> list[str]:
        return [part for part in self.pattern.split(text) if part]


def build_splitter_ladder() -> SplitterLevel:
    """Return the coarsest level of the default separator ladder."""
    *coarser, (finest_name, finest_pattern) = _SEPARATORS
    level = SplitterLevel(name=finest_name, pattern=re.compile(finest_pattern))
    for name, pattern in reversed(coarser):
        level = SplitterLevel(name=name, pattern=re.compile(pattern), finer=level)
    return level


class WebpageChunker:
    """Splits webpage text into bounded, overlapping chunks.

    The content is split along a ladder of separators, coarsest first
    (headings, blank lines, newlines, sentence ends, spaces). Segments are
    packed greedily into chunks of at most `chunk_size` characters. A segment
    that is too large on its own is re-split with the next finer separator
    and spliced back in place, so neighbouring small pieces can still share a
    chunk. If even the finest separator leaves a unit above the limit,
    `ChunkLimitUnreachableError` is raised and the webpage is abandoned.

    Chunks that end up shorter than the coalescing threshold are merged into
    a neighbour, then every chunk but the last receives the beginning of its
    successor as overlap, cut at a sentence end near `chunk_overlap`
    characters when one exists.
    """

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()
        self._ladder = build_splitter_ladder()

    def chunk(self, webpage: CrawledWebpage) -> list[SourceDocumentChunk]:
        """Chunk one webpage.

        Raises:
            ChunkLimitUnreachableError: the configured chunk size cannot be met.
        """

        try:
            pieces = self.split_content(webpage.content)
        except ChunkingError:
            logger.error("Failed chunking %s", webpage.url)
            raise

        pieces = [piece for piece in self._coalesce(pieces) if piece.strip()]
        contents = self._apply_overlap(pieces)

        chunks = [
            SourceDocumentChunk(
                url=webpage.url,
                title=webpage.title,
                path=webpage.path,
                content=content,
                chunk_index=index,
                last_modified=webpage.last_modified,
                priority=webpage.priority,
            )
            for index, content in enumerate(contents)
        ]
        logger.debug("Chunked %s into %d chunks", webpage.url, len(chunks))
        return chunks

    def chunk_all(
        self,
        webpages: Iterable[CrawledWebpage],
        on_error: Callable[[CrawledWebpage, ChunkingError], None] | None = None,
    ) -> list[SourceDocumentChunk]:
        """Chunk many webpages in parallel, keeping input order.

        A webpage that fails to chunk is logged, reported to `on_error` and
        skipped.
        """

        pages = list(webpages)
        total = len(pages)
        logger.info("Chunking %d crawled webpages", total)

        output: list[SourceDocumentChunk] = []
        with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
            futures = [pool.submit(self.chunk, page) for page in pages]
            for index, (page, future) in enumerate(zip(pages, futures, strict=True), start=1):
                try:
                    output.extend(future.result())
                except ChunkingError as exc:
                    logger.warning(
                        "%s Skipping %s: %s", progress_label(index, total), page.url, exc
                    )
                    if on_error is not None:
                        on_error(page, exc)

        logger.info("Chunked %d webpages into %d chunks", total, len(output))
        return output

    def split_content(self, content: str) -> list[str]:
        """Split filtered content into chunks before overlap and trimming.

        Joining the result gives back the filtered content exactly.
        """

        text = self._filter(content)
        if not text:
            return []

        limit = self.config.chunk_size
        stack: list[tuple[str, SplitterLevel]] = [
            (segment, self._ladder) for segment in reversed(self._ladder.split(text))
        ]
        chunks: list[str] = []
        current = ""

        while stack:
            segment, level = stack.pop()

            if len(segment) > limit:
                finer = level.finer
                if finer is None:
                    raise ChunkLimitUnreachableError(len(segment), limit)
                stack.extend((part, finer) for part in reversed(finer.split(segment)))
                continue

            if len(current) + len(segment) > limit:
                chunks.append(current)
                current = ""
            current += segment

        if current:
            chunks.append(current)
        return chunks

    def _filter(self, content: str) -> str:
        for excluded in self.config.excluded_content:
            if excluded:
                content = content.replace(excluded, "")
        while " \n" in content:
            content = content.replace(" \n", "\n")
        return content

    def _coalesce(self, chunks: list[str]) -> list[str]:
        # A merged chunk may exceed chunk_size by less than the threshold.
        threshold = self.config.coalesce_threshold
        merged = list(chunks)

        for i in range(len(merged) - 1, -1, -1):
            if len(merged) == 1:
                break
            if len(merged[i].strip()) >= threshold:
                continue
            if i > 0:
                merged[i - 1] += merged.pop(i)
            else:
                merged[0] += merged.pop(1)
        return merged

    def _apply_overlap(self, chunks: list[str]) -> list[str]:
        output: list[str] = []
        for i, chunk in enumerate(chunks):
            if i + 1 < len(chunks):
                overlap = self._overlap_text(chunks[i + 1])
                if overlap and chunk and not chunk[-1].isspace():
                    chunk += " "
                chunk += overlap
            output.append(chunk.strip())
        return output

    def _overlap_text(self, following: str) -> str:
        text = following.lstrip()
        target = self.config.chunk_overlap
        if target == 0:
            return ""
        if len(text) <= target:
            return text

        window = self.config.search_window
        low = max(1, target - window)
        high = min(len(text), target + window)
        ends = [
            end
            for end in range(low, high + 1)
            if text[end - 1] in _SENTENCE_TERMINATORS
            and (end == len(text) or text[end].isspace())
        ]
        if ends:
            best = min(ends, key=lambda end: (abs(end - target), end))
            return text[:best]
        return text[:target] + self.config.overlap_cut_marker
