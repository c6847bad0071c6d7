"""FastAPI entrypoint for ingest/chat/metrics endpoints."""

from __future__ import annotations

import logging
import os
from dataclasses import asdict
from datetime import datetime
from decimal import Decimal
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from site_chat.chat.backend import ChatBackend, LangChainChatBackend, RetrievalChatBackend
from site_chat.chat.messages import RequestMessage
from site_chat.chat.service import ChatService
from site_chat.config import ChatConfig, load_settings
from site_chat.exceptions import ChatBackendError
from site_chat.ingest.chunker import WebpageChunker
from site_chat.ingest.embedder import HashingEmbedder
from site_chat.ingest.keywords import FrequencyKeywordExtractor
from site_chat.ingest.pipeline import IngestPipeline
from site_chat.obs.logging import configure_logging
from site_chat.obs.tracing import TraceStore
from site_chat.retrieval.search_index import InMemorySearchIndex
from site_chat.types import CrawledWebpage

logger = logging.getLogger(__name__)


def _create_llm(config: ChatConfig) -> Any:
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        return None

    from langchain_openai import ChatOpenAI

    return ChatOpenAI(
        model=os.getenv("OPENAI_MODEL", config.model),
        temperature=config.temperature,
        max_tokens=config.max_tokens,
    )


class WebpageIn(BaseModel):
    url: str = Field(min_length=1)
    title: str = ""
    content: str
    last_modified: datetime
    priority: Decimal = Field(default=Decimal("0.5"), ge=0, le=1)
    path: str | None = None

    def to_webpage(self) -> CrawledWebpage:
        return CrawledWebpage(
            url=self.url,
            title=self.title,
            content=self.content,
            last_modified=self.last_modified,
            priority=self.priority,
            path=self.path,
        )


class IngestRequest(BaseModel):
    webpages: list[WebpageIn] = Field(min_length=1)


configure_logging(os.getenv("SITE_CHAT_LOG_LEVEL", "INFO"))
_settings = load_settings()

app = FastAPI(title="Site Chat", version="0.1.0")

_embedder = HashingEmbedder()
_index = InMemorySearchIndex()
_chunker = WebpageChunker(_settings.chunking)
_ingest_pipeline = IngestPipeline(
    _chunker,
    _embedder,
    _index,
    keyword_extractor=FrequencyKeywordExtractor(count=_settings.indexing.keyword_count),
    config=_settings.indexing,
)

_trace_store = TraceStore()
_llm = _create_llm(_settings.chat)
_backend: ChatBackend = (
    LangChainChatBackend(_llm, index=_index, embedder=_embedder, config=_settings.chat)
    if _llm is not None
    else RetrievalChatBackend(index=_index, embedder=_embedder, config=_settings.chat)
)
_chat_service = ChatService(backend=_backend, trace_store=_trace_store, config=_settings.chat)


@app.exception_handler(RequestValidationError)
async def validation_failed(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report invalid requests as 400 with one message per failed rule."""
    errors = [error["msg"] for error in exc.errors()]
    logger.warning("Rejected %s request: %s", request.url.path, errors)
    return JSONResponse(status_code=400, content={"errors": errors})


@app.get("/health")
def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "llm_configured": _llm is not None,
        "backend": "langchain" if _llm is not None else "retrieval",
        "indexed_documents": len(_index),
    }


@app.post("/ingest")
def ingest(request: IngestRequest) -> dict[str, Any]:
    webpages = [page.to_webpage() for page in request.webpages]
    skipped: list[str] = []
    chunks = _ingest_pipeline.ingest(
        webpages, on_error=lambda page, exc: skipped.append(page.url)
    )
    if skipped:
        logger.warning("Ingest request skipped %d webpages", len(skipped))
    return {"chunks_created": len(chunks), "skipped_urls": skipped}


@app.post("/chat", response_model=None)
def chat(messages: list[RequestMessage], stream: bool = False) -> Any:
    if not messages:
        raise HTTPException(status_code=400, detail="At least one message is required")

    if stream:
        return StreamingResponse(
            _chat_service.stream_events(messages), media_type="text/event-stream"
        )

    try:
        response = _chat_service.answer(messages)
    except ChatBackendError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return response.to_dict()


@app.get("/metrics")
def metrics() -> dict[str, Any]:
    return _trace_store.summary()


@app.get("/traces")
def traces(limit: int = 20) -> dict[str, Any]:
    return {"items": [asdict(record) for record in _trace_store.list_recent(limit=limit)]}


@app.get("/traces/{trace_id}")
def trace_detail(trace_id: str) -> dict[str, Any]:
    try:
        record = _trace_store.get(trace_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return asdict(record)
