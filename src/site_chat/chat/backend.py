"""Chat completion backends producing cited responses."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterator
from typing import Any, Protocol

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from site_chat.chat.citations import ChatResponse, document_marker
from site_chat.config import ChatConfig
from site_chat.exceptions import ChatBackendError
from site_chat.ingest.embedder import Embedder
from site_chat.retrieval.search_index import SearchIndex
from site_chat.types import ScoredChunk

logger = logging.getLogger(__name__)

_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")
_STREAM_PIECE = re.compile(r"\S+\s*|\s+")
_NO_ANSWER = "I could not find anything about that on the website."
_DOCUMENTS_INTRO = "Website documents. Cite the ones you use by their marker, e.g. [doc1]."
_NO_DOCUMENTS = "No website documents matched the question."
_MESSAGE_TYPES = {"system": SystemMessage, "user": HumanMessage, "assistant": AIMessage}


class ChatBackend(Protocol):
    """Grounded completion provider.

    `messages` are role/content mappings, system message first. Responses
    carry `[docN]` markers in their content and the provider's citations.
    """

    def complete(self, messages: list[dict[str, str]]) -> ChatResponse:
        """Return one complete response."""

    def stream(self, messages: list[dict[str, str]]) -> Iterator[ChatResponse]:
        """Yield response fragments in generation order."""


class DocumentRetriever:
    """Searches the index with the conversation's last user question."""

    def __init__(self, *, index: SearchIndex, embedder: Embedder, config: ChatConfig) -> None:
        self.index = index
        self.embedder = embedder
        self.config = config

    def retrieve(self, messages: list[dict[str, str]]) -> list[ScoredChunk]:
        question = next(
            (m["content"] for m in reversed(messages) if m.get("role") == "user"), ""
        )
        hits = self.index.search(
            self.embedder.embed_query(question),
            query_text=question,
            k=self.config.document_count,
        )
        logger.debug("Retrieved %d documents for %r", len(hits), question)
        return hits


def citation_context(hits: list[ScoredChunk]) -> dict[str, Any]:
    """Shape retrieved documents like a provider's citation context.

    The n-th hit becomes `[docN]`.
    """

    citations = [
        {"title": hit.record.get("title", ""), "url": hit.record.get("url", "")}
        for hit in hits
    ]
    return {"messages": [{"role": "tool", "content": json.dumps({"citations": citations})}]}


class LangChainChatBackend:
    """Backend over a LangChain chat model (e.g. `ChatOpenAI`).

    With an index the backend grounds every request itself: the documents
    found for the last user question are added to the prompt under their
    `[docN]` markers and returned as the citations, in the same order.
    Without one, citations are read from the message's `context` extension
    (in `additional_kwargs` or `response_metadata`), where "on your data"
    deployments put the documents they retrieved.
    """

    def __init__(
        self,
        llm: Any,
        *,
        index: SearchIndex | None = None,
        embedder: Embedder | None = None,
        config: ChatConfig | None = None,
    ) -> None:
        self.llm = llm
        self.retriever: DocumentRetriever | None = None
        if index is not None:
            if embedder is None:
                raise ValueError("An embedder is required to search the index")
            self.retriever = DocumentRetriever(
                index=index, embedder=embedder, config=config or ChatConfig()
            )

    def complete(self, messages: list[dict[str, str]]) -> ChatResponse:
        prompt, context = self._prepare(messages)
        try:
            message = self.llm.invoke(prompt)
        except Exception as exc:
            raise ChatBackendError(f"Chat completion failed: {exc}") from exc
        if context is None:
            return _response_from_langchain(message)
        return ChatResponse.from_provider_message(
            {"content": _message_text(message), "context": context}
        )

    def stream(self, messages: list[dict[str, str]]) -> Iterator[ChatResponse]:
        prompt, context = self._prepare(messages)
        if context is not None:
            yield ChatResponse.from_provider_message({"context": context})
        try:
            for chunk in self.llm.stream(prompt):
                if context is None:
                    yield _response_from_langchain(chunk)
                else:
                    yield ChatResponse(content=_message_text(chunk) or None)
        except ChatBackendError:
            raise
        except Exception as exc:
            raise ChatBackendError(f"Chat completion stream failed: {exc}") from exc

    def _prepare(
        self, messages: list[dict[str, str]]
    ) -> tuple[list[BaseMessage], dict[str, Any] | None]:
        prompt = [_MESSAGE_TYPES[m["role"]](content=m["content"]) for m in messages]
        if self.retriever is None:
            return prompt, None

        hits = self.retriever.retrieve(messages)
        # Documents go right after the system message, before the conversation.
        position = 1 if prompt and isinstance(prompt[0], SystemMessage) else 0
        prompt.insert(position, SystemMessage(content=_documents_prompt(hits)))
        return prompt, citation_context(hits)


def _documents_prompt(hits: list[ScoredChunk]) -> str:
    if not hits:
        return _NO_DOCUMENTS
    sections = [_DOCUMENTS_INTRO]
    for number, hit in enumerate(hits, start=1):
        record = hit.record
        sections.append(
            f"{document_marker(number)} {record.get('title', '')} ({record.get('url', '')})\n"
            f"{record.get('content', '')}"
        )
    return "\n\n".join(sections)


def _message_text(message: Any) -> str:
    content = getattr(message, "content", "")
    if isinstance(content, list):
        return "".join(
            str(part.get("text", "")) if isinstance(part, dict) else str(part)
            for part in content
        )
    return content or ""


def _response_from_langchain(message: Any) -> ChatResponse:
    additional = getattr(message, "additional_kwargs", None) or {}
    metadata = getattr(message, "response_metadata", None) or {}
    context = additional.get("context") or metadata.get("context")
    return ChatResponse.from_provider_message(
        {"content": _message_text(message), "context": context}
    )


class RetrievalChatBackend:
    """Answers from the search index without a language model.

    Mirrors a grounded provider: the answer quotes the best chunks, each
    tagged with a `[docN]` marker, and the retrieved documents come back as
    the citation payload. Used offline and in tests.
    """

    def __init__(
        self,
        *,
        index: SearchIndex,
        embedder: Embedder,
        config: ChatConfig | None = None,
        quoted_documents: int = 3,
    ) -> None:
        self.retriever = DocumentRetriever(
            index=index, embedder=embedder, config=config or ChatConfig()
        )
        self.quoted_documents = quoted_documents

    def complete(self, messages: list[dict[str, str]]) -> ChatResponse:
        return ChatResponse.from_provider_message(self._provider_message(messages))

    def stream(self, messages: list[dict[str, str]]) -> Iterator[ChatResponse]:
        message = self._provider_message(messages)
        # The provider sends the citation context first, then text deltas.
        yield ChatResponse.from_provider_message({"context": message["context"]})
        for piece in _STREAM_PIECE.findall(message["content"]):
            yield ChatResponse(content=piece)

    def _provider_message(self, messages: list[dict[str, str]]) -> dict[str, Any]:
        hits = self.retriever.retrieve(messages)
        lines = [
            f"{_first_sentence(hit.record.get('content', ''))} {document_marker(number)}"
            for number, hit in enumerate(hits[: self.quoted_documents], start=1)
        ]
        return {
            "role": "assistant",
            "content": "\n".join(lines) if lines else _NO_ANSWER,
            "context": citation_context(hits),
        }


def _first_sentence(text: str, limit: int = 200) -> str:
    sentence = _SENTENCE_END.split(text.strip(), maxsplit=1)[0].replace("\n", " ")
    if len(sentence) > limit:
        return sentence[:limit].rstrip() + "..."
    return sentence
