import json
from collections.abc import Iterator
from datetime import datetime, timezone

import pytest

from site_chat.chat.backend import RetrievalChatBackend
from site_chat.chat.citations import ChatResponse, Citation
from site_chat.chat.messages import RequestMessage
from site_chat.chat.service import STREAM_FAILURE_MESSAGE, ChatService
from site_chat.chat.streaming import SSE_DONE
from site_chat.config import ChatConfig, ChunkingConfig
from site_chat.exceptions import ChatBackendError
from site_chat.ingest.chunker import WebpageChunker
from site_chat.ingest.embedder import HashingEmbedder
from site_chat.ingest.pipeline import IngestPipeline
from site_chat.obs.tracing import TraceStore
from site_chat.retrieval.search_index import InMemorySearchIndex
from site_chat.types import CrawledWebpage

_QUESTION = [RequestMessage(role="user", content="When is the library open?")]


def _indexed_backend() -> RetrievalChatBackend:
    index = InMemorySearchIndex()
    embedder = HashingEmbedder()
    pipeline = IngestPipeline(
        WebpageChunker(ChunkingConfig(chunk_size=120, chunk_overlap=20)), embedder, index
    )
    modified = datetime(2024, 5, 1, tzinfo=timezone.utc)
    pipeline.ingest(
        [
            CrawledWebpage(
                url="https://example.org/library",
                title="Library",
                content=(
                    "The library is open weekdays from 8 to 20. "
                    "The library is open on Saturdays from 10 to 16.\n\n"
                    "Group rooms in the library can be booked online. "
                    "The library is closed on public holidays."
                ),
                last_modified=modified,
            ),
            CrawledWebpage(
                url="https://example.org/gym",
                title="Gym",
                content="The gym is open every day. Membership is free for students.",
                last_modified=modified,
            ),
        ]
    )
    return RetrievalChatBackend(index=index, embedder=embedder, config=ChatConfig(document_count=4))


def _events(stream: Iterator[str]) -> list[str]:
    return list(stream)


def _payload(event: str) -> dict:
    return json.loads(event.removeprefix("data: "))


def test_answer_returns_decluttered_citations() -> None:
    trace_store = TraceStore()
    service = ChatService(backend=_indexed_backend(), trace_store=trace_store)

    response = service.answer(_QUESTION)

    assert response.content
    numbers = [c.citation_number for c in response.citations]
    assert numbers == list(range(1, len(numbers) + 1))
    assert len({c.url for c in response.citations}) == len(response.citations)
    for citation in response.citations:
        assert citation.text_marker in response.content
    assert trace_store.summary()["total_requests"] == 1


def test_stream_relays_fragments_then_final_aggregate() -> None:
    backend = _indexed_backend()
    service = ChatService(backend=backend)

    events = _events(service.stream_events(_QUESTION))

    assert events[-1] == SSE_DONE
    assert all(event.startswith("data: ") and event.endswith("\n\n") for event in events)
    final = _payload(events[-2])
    assert final.pop("final") is True
    assert final == service.answer(_QUESTION).to_dict()

    fragments = [_payload(event) for event in events[:-2]]
    assert "citations" in fragments[0]
    streamed_text = "".join(f.get("content", "") for f in fragments)
    raw = backend.complete([{"role": "user", "content": _QUESTION[0].content}])
    assert streamed_text == raw.content


class _BrokenBackend:
    def complete(self, messages: list[dict[str, str]]) -> ChatResponse:
        raise ChatBackendError("provider unavailable")

    def stream(self, messages: list[dict[str, str]]) -> Iterator[ChatResponse]:
        yield ChatResponse(
            citations=[Citation(document_number=1, title="T", url="https://example.org")]
        )
        yield ChatResponse(content="Partial [doc1]")
        raise ChatBackendError("connection reset")


def test_failed_stream_discards_partial_aggregate() -> None:
    trace_store = TraceStore()
    service = ChatService(backend=_BrokenBackend(), trace_store=trace_store)

    events = _events(service.stream_events(_QUESTION))

    assert len(events) == 3
    assert _payload(events[-1]) == {"error": STREAM_FAILURE_MESSAGE}
    assert SSE_DONE not in events
    assert not any('"final"' in event for event in events)
    assert trace_store.summary()["failed_requests"] == 1


def test_failed_completion_is_traced_and_raised() -> None:
    trace_store = TraceStore()
    service = ChatService(backend=_BrokenBackend(), trace_store=trace_store)

    with pytest.raises(ChatBackendError):
        service.answer(_QUESTION)

    assert trace_store.summary()["failed_requests"] == 1
