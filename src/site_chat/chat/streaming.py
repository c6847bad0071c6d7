"""Aggregation of streamed answer fragments and server-sent-event framing."""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator
from typing import Any

from site_chat.chat.citations import Citation, ChatResponse

SSE_DONE = "data: [DONE]\n\n"


def format_sse(payload: Any) -> str:
    """Frame one JSON payload as a server-sent event."""
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


class StreamingAggregator:
    """Compiles streamed fragments into one complete response.

    Text deltas are concatenated in arrival order. The provider sends the
    full citation list once, so the last non-null list wins. Citations are
    decluttered once, when `result()` is first called: clusters and
    duplicates only make sense over the whole text.
    """

    def __init__(self) -> None:
        self._parts: list[str] = []
        self._citations: list[Citation] | None = None
        self._fragment_count = 0
        self._result: ChatResponse | None = None

    @property
    def fragment_count(self) -> int:
        return self._fragment_count

    def observe(self, fragment: ChatResponse) -> None:
        if self._result is not None:
            raise RuntimeError("Cannot observe fragments after the result was built")
        self._fragment_count += 1
        if fragment.content is not None:
            self._parts.append(fragment.content)
        if fragment.citations is not None:
            self._citations = fragment.citations

    def result(self) -> ChatResponse:
        if self._result is None:
            content = "".join(self._parts) if self._parts else None
            response = ChatResponse(content=content, citations=self._citations)
            response.declutter()
            self._result = response
        return self._result


def relay(
    fragments: Iterable[ChatResponse], aggregator: StreamingAggregator
) -> Iterator[ChatResponse]:
    """Yield every fragment unchanged while feeding it to `aggregator`."""
    for fragment in fragments:
        yield fragment
        aggregator.observe(fragment)
