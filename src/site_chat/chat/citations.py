"""Chat responses and reconciliation of their `[docN]` citation markers."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

_MARKER = re.compile(r"\[doc(\d+)\]")
# A run of adjacent markers, e.g. "[doc1][doc2][doc1]".
_MARKER_CLUSTER = re.compile(r"(?:\[doc\d+\])+")

UNNUMBERED = -1


def document_marker(document_number: int) -> str:
    return f"[doc{document_number}]"


@dataclass(slots=True)
class Citation:
    """A document the provider grounded the answer on.

    `citation_number` is the display order in the answer; `UNNUMBERED`
    (-1) until the citation has been numbered.
    """

    document_number: int
    title: str
    url: str
    text_marker: str = ""
    citation_number: int = UNNUMBERED

    def __post_init__(self) -> None:
        if not self.text_marker:
            self.text_marker = document_marker(self.document_number)

    def to_dict(self) -> dict[str, Any]:
        return {
            "citationNumber": self.citation_number,
            "documentID": self.text_marker,
            "title": self.title,
            "url": self.url,
        }


@dataclass(slots=True)
class ChatResponse:
    """An assistant answer together with the citations it owns.

    The reconciliation methods mutate `content` and `citations` together.
    Run them through `declutter()`: they depend on each other's order.
    """

    content: str | None = None
    citations: list[Citation] | None = field(default=None)

    @classmethod
    def from_provider_message(cls, message: Mapping[str, Any] | None) -> "ChatResponse":
        """Build a response from a provider chat message (or stream delta).

        Citations come from `context.messages[0].content`, a JSON document
        shaped `{"citations": [{"title": ..., "url": ...}, ...]}`; their
        position gives the document number.
        """

        if not message:
            return cls()
        content = message.get("content") or None
        return cls(content=content, citations=parse_citations(message.get("context")))

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if self.content is not None:
            payload["content"] = self.content
        if self.citations is not None:
            payload["citations"] = [citation.to_dict() for citation in self.citations]
        return payload

    def is_empty(self) -> bool:
        return self.content is None and self.citations is None

    def declutter(self) -> None:
        """Clean up citations: the order of these steps matters."""
        self.remove_unused_citations()
        self.combine_duplicate_references()
        self.remove_duplicate_markers_in_text()
        self.renumber_by_first_occurrence()

    def remove_unused_citations(self) -> None:
        """Drop citations whose marker does not occur in the content."""
        if self.citations is None:
            return
        content = self.content or ""
        self.citations = [c for c in self.citations if c.text_marker in content]

    def combine_duplicate_references(self) -> None:
        """Merge citations that point to the same URL.

        The first citation for a URL is kept; markers of later duplicates are
        rewritten to its marker in the content.
        """

        if not self.citations or self.content is None:
            return

        kept: dict[str, Citation] = {}
        remaining: list[Citation] = []
        for citation in self.citations:
            first = kept.get(citation.url)
            if first is None:
                kept[citation.url] = citation
                remaining.append(citation)
                continue
            if first.text_marker != citation.text_marker:
                self.content = self.content.replace(citation.text_marker, first.text_marker)

        self.citations = remaining

    def remove_duplicate_markers_in_text(self) -> None:
        """Keep each marker once per cluster of adjacent markers."""
        if not self.content:
            return

        def _dedupe_cluster(match: re.Match[str]) -> str:
            seen: set[str] = set()
            kept: list[str] = []
            for marker in _MARKER.finditer(match.group(0)):
                if marker.group(0) not in seen:
                    seen.add(marker.group(0))
                    kept.append(marker.group(0))
            return "".join(kept)

        self.content = _MARKER_CLUSTER.sub(_dedupe_cluster, self.content)

    def renumber_by_first_occurrence(self) -> None:
        """Number citations by the order their markers first appear.

        Citations whose marker does not appear are removed; markers without a
        citation are ignored.
        """

        if self.citations is None:
            return

        by_marker = {citation.text_marker: citation for citation in self.citations}
        for citation in self.citations:
            citation.citation_number = UNNUMBERED

        number = 0
        seen: set[str] = set()
        for match in _MARKER.finditer(self.content or ""):
            marker = match.group(0)
            if marker in seen:
                continue
            seen.add(marker)
            citation = by_marker.get(marker)
            if citation is None:
                continue
            number += 1
            citation.citation_number = number

        self.citations = sorted(
            (c for c in self.citations if c.citation_number != UNNUMBERED),
            key=lambda c: c.citation_number,
        )


def parse_citations(context: Any) -> list[Citation] | None:
    """Extract citations from a provider message context.

    Returns None when the context carries no citation payload or it cannot
    be parsed; malformed entries are skipped.
    """

    if not isinstance(context, Mapping):
        return None
    messages = context.get("messages")
    if not isinstance(messages, list) or not messages:
        return None
    first = messages[0]
    raw = first.get("content") if isinstance(first, Mapping) else None
    if raw is None:
        return None

    try:
        payload = json.loads(raw) if isinstance(raw, str) else raw
    except json.JSONDecodeError:
        logger.debug("Ignoring unparseable citation payload")
        return None
    if not isinstance(payload, Mapping) or not isinstance(payload.get("citations"), list):
        logger.debug("Ignoring citation payload without a citations list")
        return None

    citations: list[Citation] = []
    for number, entry in enumerate(payload["citations"], start=1):
        if not isinstance(entry, Mapping):
            continue
        citations.append(
            Citation(
                document_number=number,
                title=str(entry.get("title") or ""),
                url=str(entry.get("url") or ""),
            )
        )
    return citations
