import json

from site_chat.chat.citations import UNNUMBERED, ChatResponse, Citation, parse_citations


def _response(content: str | None, *urls: str) -> ChatResponse:
    return ChatResponse(
        content=content,
        citations=[
            Citation(document_number=number, title=f"Page {number}", url=url)
            for number, url in enumerate(urls, start=1)
        ],
    )


def _markers(response: ChatResponse) -> list[tuple[str, int]]:
    return [(c.text_marker, c.citation_number) for c in response.citations or []]


def test_citation_marker_defaults_to_document_number() -> None:
    citation = Citation(document_number=4, title="T", url="u")

    assert citation.text_marker == "[doc4]"
    assert citation.citation_number == UNNUMBERED


def test_renumbering_follows_first_occurrence() -> None:
    response = _response("Intro [doc3] middle [doc1] end [doc3].", "u1", "u2", "u3")

    response.renumber_by_first_occurrence()

    assert _markers(response) == [("[doc3]", 1), ("[doc1]", 2)]


def test_unused_citations_are_removed() -> None:
    response = _response("Only the second [doc2].", "u1", "u2", "u3")

    response.remove_unused_citations()

    assert [c.text_marker for c in response.citations] == ["[doc2]"]


def test_duplicate_urls_are_combined_into_first_citation() -> None:
    response = _response("A fact [doc1]. Another [doc2]. Third [doc3].", "u1", "u1", "u3")

    response.declutter()

    assert response.content == "A fact [doc1]. Another [doc1]. Third [doc3]."
    assert _markers(response) == [("[doc1]", 1), ("[doc3]", 2)]
    assert [c.url for c in response.citations] == ["u1", "u3"]


def test_combined_duplicates_collapse_inside_cluster() -> None:
    response = _response("Fact [doc1][doc2].", "same", "same")

    response.declutter()

    assert response.content == "Fact [doc1]."
    assert _markers(response) == [("[doc1]", 1)]


def test_cluster_dedup_keeps_first_of_each_marker() -> None:
    response = ChatResponse(content="[doc1][doc2][doc1]")

    response.remove_duplicate_markers_in_text()

    assert response.content == "[doc1][doc2]"


def test_cluster_dedup_is_local_to_each_cluster() -> None:
    response = ChatResponse(content="A [doc1][doc1] B [doc1]. C [doc2] [doc2]")

    response.remove_duplicate_markers_in_text()

    assert response.content == "A [doc1] B [doc1]. C [doc2] [doc2]"


def test_marker_without_citation_is_ignored() -> None:
    response = _response("Unknown [doc7] then known [doc1].", "u1")

    response.declutter()

    assert response.content == "Unknown [doc7] then known [doc1]."
    assert _markers(response) == [("[doc1]", 1)]


def test_declutter_is_a_fixed_point() -> None:
    response = _response(
        "One [doc4][doc2][doc4]. Two [doc1]. Three [doc3][doc2].",
        "u1",
        "u2",
        "u1",
        "u4",
        "u5",
    )

    response.declutter()
    first = response.to_dict()
    response.declutter()

    assert response.to_dict() == first
    numbers = [c.citation_number for c in response.citations]
    assert numbers == list(range(1, len(numbers) + 1))
    assert len({c.url for c in response.citations}) == len(response.citations)
    assert all(c.text_marker in response.content for c in response.citations)


def test_empty_inputs_do_not_fail() -> None:
    no_citations = ChatResponse(content="Plain [doc1] answer")
    no_citations.declutter()
    assert no_citations.content == "Plain [doc1] answer"
    assert no_citations.citations is None

    empty_content = _response("", "u1")
    empty_content.declutter()
    assert empty_content.citations == []

    nothing = ChatResponse()
    nothing.declutter()
    assert nothing.is_empty()


def test_from_provider_message_numbers_citations_by_position() -> None:
    payload = {"citations": [{"title": "Fees", "url": "u1"}, {"title": "Dates", "url": "u2"}]}
    message = {
        "role": "assistant",
        "content": "See [doc2].",
        "context": {"messages": [{"role": "tool", "content": json.dumps(payload)}]},
    }

    response = ChatResponse.from_provider_message(message)

    assert response.content == "See [doc2]."
    assert [(c.document_number, c.text_marker, c.title) for c in response.citations] == [
        (1, "[doc1]", "Fees"),
        (2, "[doc2]", "Dates"),
    ]


def test_malformed_citation_payloads_are_ignored() -> None:
    assert parse_citations(None) is None
    assert parse_citations({"messages": []}) is None
    assert parse_citations({"messages": [{"content": "not json"}]}) is None
    assert parse_citations({"messages": [{"content": '{"other": 1}'}]}) is None

    partial = parse_citations(
        {"messages": [{"content": '{"citations": ["bad", {"title": "T", "url": "u"}]}'}]}
    )
    assert [(c.document_number, c.url) for c in partial] == [(2, "u")]
