"""Chat request handling: completion, citation cleanup and streaming."""

from __future__ import annotations

import logging
from collections.abc import Iterator

from site_chat.chat.backend import ChatBackend
from site_chat.chat.citations import ChatResponse
from site_chat.chat.messages import RequestMessage, build_prompt_messages, last_question
from site_chat.chat.streaming import SSE_DONE, StreamingAggregator, format_sse, relay
from site_chat.config import ChatConfig
from site_chat.exceptions import ChatBackendError
from site_chat.obs.tracing import Timer, TraceStore

logger = logging.getLogger(__name__)

STREAM_FAILURE_MESSAGE = "The assistant failed to generate a response."


class ChatService:
    """Runs chat requests against a backend and traces every request."""

    def __init__(
        self,
        *,
        backend: ChatBackend,
        trace_store: TraceStore | None = None,
        config: ChatConfig | None = None,
    ) -> None:
        self.backend = backend
        self.trace_store = trace_store or TraceStore()
        self.config = config or ChatConfig()

    def answer(self, messages: list[RequestMessage]) -> ChatResponse:
        """Return a complete, decluttered response.

        Raises:
            ChatBackendError: the provider failed.
        """

        prompt = build_prompt_messages(self.config, messages)
        timer = Timer()
        try:
            with timer:
                response = self.backend.complete(prompt)
                response.declutter()
        except ChatBackendError as exc:
            logger.error("Chat completion failed: %s", exc)
            self._trace(messages, None, streamed=False, latency_ms=timer.elapsed_ms, failed=True)
            raise

        self._trace(messages, response, streamed=False, latency_ms=timer.elapsed_ms)
        return response

    def stream_events(self, messages: list[RequestMessage]) -> Iterator[str]:
        """Yield server-sent events for a streamed answer.

        Every fragment is relayed as it arrives, then `[DONE]` is preceded by
        one final event (`"final": true`) holding the decluttered aggregate.
        When the provider fails mid-stream the partial aggregate is dropped
        and a single error event ends the stream.
        """

        prompt = build_prompt_messages(self.config, messages)
        aggregator = StreamingAggregator()
        timer = Timer()
        try:
            with timer:
                for fragment in relay(self.backend.stream(prompt), aggregator):
                    if fragment.is_empty():
                        continue
                    yield format_sse(fragment.to_dict())
        except ChatBackendError as exc:
            logger.error(
                "Chat stream failed after %d fragments: %s", aggregator.fragment_count, exc
            )
            self._trace(messages, None, streamed=True, latency_ms=timer.elapsed_ms, failed=True)
            yield format_sse({"error": STREAM_FAILURE_MESSAGE})
            return

        complete = aggregator.result()
        self._trace(messages, complete, streamed=True, latency_ms=timer.elapsed_ms)
        yield format_sse({**complete.to_dict(), "final": True})
        yield SSE_DONE

    def _trace(
        self,
        messages: list[RequestMessage],
        response: ChatResponse | None,
        *,
        streamed: bool,
        latency_ms: float,
        failed: bool = False,
    ) -> None:
        self.trace_store.create_record(
            question=last_question(messages),
            answer=(response.content or "") if response else "",
            citation_count=len(response.citations or []) if response else 0,
            streamed=streamed,
            latency_ms=latency_ms,
            failed=failed,
        )
