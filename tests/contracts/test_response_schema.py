from datetime import datetime, timezone
from decimal import Decimal

from site_chat.chat.citations import ChatResponse, Citation
from site_chat.types import SourceDocumentChunk

_INDEX_SCHEMA = {
    "id",
    "url",
    "title",
    "content",
    "vector",
    "keywords_title",
    "keywords_content",
    "group_ids",
    "lastmod",
    "chunk_id",
    "priority",
}


def test_citation_json_field_names() -> None:
    citation = Citation(document_number=2, title="Fees", url="https://example.org/fees")
    citation.citation_number = 1

    assert citation.to_dict() == {
        "citationNumber": 1,
        "documentID": "[doc2]",
        "title": "Fees",
        "url": "https://example.org/fees",
    }


def test_chat_response_omits_missing_fields() -> None:
    assert ChatResponse().to_dict() == {}
    assert ChatResponse(content="Hi").to_dict() == {"content": "Hi"}
    assert ChatResponse(citations=[]).to_dict() == {"citations": []}


def test_index_record_matches_search_schema() -> None:
    chunk = SourceDocumentChunk(
        url="https://example.org/a",
        title="A",
        content="Body",
        chunk_index=3,
        last_modified=datetime(2024, 2, 1, tzinfo=timezone.utc),
        priority=Decimal("0.5"),
    )

    full = chunk.to_index_record(
        vector=[0.1], keywords_title=["a"], keywords_content=["body"], group_ids=["staff"]
    )
    minimal = chunk.to_index_record()

    assert set(full) == _INDEX_SCHEMA
    assert set(minimal) <= _INDEX_SCHEMA
    assert minimal["chunk_id"] == 3
    assert minimal["lastmod"] == "2024-02-01T00:00:00+00:00"
    assert minimal["id"] == chunk.id
