import logging
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError

from site_chat.config import ChunkingConfig
from site_chat.exceptions import ChunkLimitUnreachableError
from site_chat.ingest.chunker import WebpageChunker, build_splitter_ladder
from site_chat.types import CrawledWebpage

_MODIFIED = datetime(2024, 3, 1, tzinfo=timezone.utc)


def _page(content: str, url: str = "https://example.org/page") -> CrawledWebpage:
    return CrawledWebpage(
        url=url,
        title="Example page",
        content=content,
        last_modified=_MODIFIED,
        priority=Decimal("0.8"),
        path="/page",
    )


def test_two_paragraphs_become_two_chunks_with_overlap() -> None:
    chunker = WebpageChunker(ChunkingConfig(chunk_size=50, chunk_overlap=10))

    chunks = chunker.chunk(_page("A" * 40 + "\n\n" + "B" * 40))

    assert len(chunks) == 2
    assert all(len(chunk.content) <= 60 for chunk in chunks)
    assert chunks[0].content == "A" * 40 + "\n\n" + "B" * 10 + "..."
    assert chunks[1].content == "B" * 40

    overlap = chunks[0].content.removesuffix("...").split("\n\n")[-1]
    assert chunks[1].content.startswith(overlap)


def test_overlap_ends_at_nearby_sentence_boundary() -> None:
    chunker = WebpageChunker(ChunkingConfig(chunk_size=60, chunk_overlap=20))
    second = "Short one. Then the second sentence goes on and on."

    chunks = chunker.chunk(_page("A" * 45 + ".\n\n" + second))

    assert [chunk.content for chunk in chunks] == [
        "A" * 45 + ".\n\nShort one.",
        second,
    ]


def test_split_content_respects_size_and_loses_nothing() -> None:
    chunker = WebpageChunker(ChunkingConfig(chunk_size=50, chunk_overlap=10))
    text = (
        "# Heading\n"
        + "word " * 40
        + "\n\nA sentence here. Another one follows! Does it end? Yes.\n"
        + "# Second heading\nTail paragraph here."
    )

    pieces = chunker.split_content(text)

    assert len(pieces) > 2
    assert all(len(piece) <= 50 for piece in pieces)
    assert "".join(pieces) == text.replace(" \n", "\n")


def test_headings_start_new_segments() -> None:
    chunker = WebpageChunker(ChunkingConfig(chunk_size=30, chunk_overlap=5))

    pieces = chunker.split_content("# One\nfirst body text\n# Two\nsecond body text")

    assert pieces == ["# One\nfirst body text\n", "# Two\nsecond body text"]


def test_unsplittable_unit_is_fatal() -> None:
    chunker = WebpageChunker(ChunkingConfig(chunk_size=50, chunk_overlap=5))

    with pytest.raises(ChunkLimitUnreachableError) as excinfo:
        chunker.chunk(_page("x" * 100))

    assert excinfo.value.length == 100
    assert excinfo.value.limit == 50


def test_chunk_all_skips_failing_page_and_keeps_order(caplog) -> None:
    chunker = WebpageChunker(ChunkingConfig(chunk_size=50, chunk_overlap=5, max_workers=3))
    pages = [
        _page("First page. " * 8, url="https://example.org/1"),
        _page("y" * 80, url="https://example.org/broken"),
        _page("Third page. " * 8, url="https://example.org/3"),
    ]

    failed: list[str] = []
    with caplog.at_level(logging.WARNING):
        chunks = chunker.chunk_all(pages, on_error=lambda page, exc: failed.append(page.url))

    urls = [chunk.url for chunk in chunks]
    assert "https://example.org/broken" not in urls
    assert urls == sorted(urls)
    assert urls[0] == "https://example.org/1"
    assert urls[-1] == "https://example.org/3"
    assert "https://example.org/broken" in caplog.text
    assert "[2/3]:" in caplog.text
    assert failed == ["https://example.org/broken"]


def test_small_trailing_chunk_is_merged_into_previous() -> None:
    chunker = WebpageChunker(ChunkingConfig(chunk_size=50, chunk_overlap=10))
    text = "A" * 30 + "\n\n" + "B" * 15 + "\n\n" + "C" * 5

    chunks = chunker.chunk(_page(text))

    assert [chunk.content for chunk in chunks] == [text]


def test_small_first_chunk_is_merged_into_next() -> None:
    chunker = WebpageChunker(ChunkingConfig(chunk_size=50, chunk_overlap=10))

    chunks = chunker.chunk(_page("Hi.\n\n" + "B" * 48))

    assert [chunk.content for chunk in chunks] == ["Hi.\n\n" + "B" * 48]


def test_coalescing_threshold_is_configurable() -> None:
    chunker = WebpageChunker(
        ChunkingConfig(chunk_size=50, chunk_overlap=10, min_chunk_size=0)
    )

    chunks = chunker.chunk(_page("Hi.\n\n" + "B" * 48))

    assert len(chunks) == 2
    assert chunks[0].content == "Hi.\n\n" + "B" * 10 + "..."


def test_excluded_content_and_trailing_spaces_are_removed() -> None:
    chunker = WebpageChunker(
        ChunkingConfig(chunk_size=200, chunk_overlap=10, excluded_content=["Open tooltip"])
    )

    chunks = chunker.chunk(_page("Opening hours Open tooltip are 8-17. \nWelcome!"))

    assert [chunk.content for chunk in chunks] == ["Opening hours  are 8-17.\nWelcome!"]


def test_chunks_carry_webpage_metadata_and_positions() -> None:
    chunker = WebpageChunker(ChunkingConfig(chunk_size=40, chunk_overlap=8))

    chunks = chunker.chunk(_page("Sentence number one. " * 10))

    assert len(chunks) > 1
    assert [chunk.chunk_index for chunk in chunks] == list(range(len(chunks)))
    assert {chunk.url for chunk in chunks} == {"https://example.org/page"}
    assert all(chunk.priority == Decimal("0.8") for chunk in chunks)
    assert all(chunk.path == "/page" for chunk in chunks)
    assert all(chunk.content == chunk.content.strip() for chunk in chunks)
    assert len({chunk.id for chunk in chunks}) == len(chunks)


def test_empty_content_produces_no_chunks() -> None:
    chunker = WebpageChunker(ChunkingConfig(chunk_size=40, chunk_overlap=8))

    assert chunker.chunk(_page("")) == []
    assert chunker.chunk(_page("   \n\n  ")) == []


def test_overlap_must_be_smaller_than_chunk_size() -> None:
    with pytest.raises(ValidationError):
        ChunkingConfig(chunk_size=100, chunk_overlap=100)


def test_splitter_ladder_ends_with_terminal_level() -> None:
    level = build_splitter_ladder()
    names = []
    while level is not None:
        names.append(level.name)
        level = level.finer

    assert names == ["heading", "blank_line", "newline", "sentence", "space"]
