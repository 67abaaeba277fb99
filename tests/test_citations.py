from evidence_qa.common.citations import (
    MAX_CITATION_STRING_CHARS,
    format_citation,
    format_citations_compact,
    truncate_with_ellipsis,
)
from evidence_qa.engine.types import Citation


def test_truncate_with_ellipsis():
    assert truncate_with_ellipsis("short", 10) == "short"
    assert truncate_with_ellipsis("abcdefghij", 5) == "abcd…"


def test_format_citation():
    citation = Citation("c1", "Network.pdf", "External traffic\nrequires TLS 1.2.")
    assert format_citation(citation) == 'Network.pdf#c1:"External traffic requires TLS 1.2."'


def test_format_citation_truncates_snippet():
    citation = Citation("c1", "Network.pdf", "x" * 400)
    snippet = format_citation(citation).split(":", 1)[1].strip('"')
    assert len(snippet) == 150
    assert snippet.endswith("…")


def test_format_citations_compact_joins_with_pipe():
    citations = [Citation("c1", "A.pdf", "one"), Citation("c2", "B.pdf", "two")]
    assert format_citations_compact(citations) == 'A.pdf#c1:"one" | B.pdf#c2:"two"'


def test_format_citations_compact_is_capped():
    citations = [Citation(f"c{i}", "Policy.pdf", "y" * 400) for i in range(20)]
    result = format_citations_compact(citations)
    assert len(result) <= MAX_CITATION_STRING_CHARS


def test_format_citations_compact_empty():
    assert format_citations_compact([]) == ""
