"""Request tracing for chat answers."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock


@dataclass(slots=True)
class ChatTrace:
    trace_id: str
    timestamp_utc: str
    question: str
    answer: str
    citation_count: int
    streamed: bool
    latency_ms: float
    failed: bool = False


class TraceStore:
    """In-memory trace storage for API-level observability."""

    def __init__(self, max_records: int = 1000) -> None:
        self._records: dict[str, ChatTrace] = {}
        self._max_records = max_records
        self._lock = Lock()

    def create_record(
        self,
        *,
        question: str,
        answer: str,
        citation_count: int,
        streamed: bool,
        latency_ms: float,
        failed: bool = False,
    ) -> ChatTrace:
        record = ChatTrace(
            trace_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            question=question,
            answer=answer,
            citation_count=citation_count,
            streamed=streamed,
            latency_ms=latency_ms,
            failed=failed,
        )
        with self._lock:
            self._records[record.trace_id] = record
            while len(self._records) > self._max_records:
                self._records.pop(next(iter(self._records)))
        return record

    def get(self, trace_id: str) -> ChatTrace:
        record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[ChatTrace]:
        return list(self._records.values())[-limit:]

    def summary(self) -> dict[str, float | int]:
        """Aggregate request metrics for the `/metrics` endpoint."""
        records = list(self._records.values())
        total = len(records)
        if total == 0:
            return {
                "total_requests": 0,
                "failed_requests": 0,
                "streamed_requests": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "avg_citations": 0.0,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        return {
            "total_requests": total,
            "failed_requests": sum(1 for record in records if record.failed),
            "streamed_requests": sum(1 for record in records if record.streamed),
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "avg_citations": sum(record.citation_count for record in records) / total,
        }


class Timer:
    """Simple context timer."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
