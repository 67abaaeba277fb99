"""Human-readable citation strings for exports and the CLI."""

from __future__ import annotations

from typing import Sequence

from ..engine.types import Citation
from .text_normalization import normalize_whitespace

MAX_CITATION_STRING_CHARS = 1200
MAX_SNIPPET_CHARS = 150


def truncate_with_ellipsis(value: str, max_chars: int) -> str:
    if len(value) <= max_chars:
        return value
    return f"{value[: max(0, max_chars - 1)].rstrip()}…"


def format_citation(citation: Citation) -> str:
    """``doc#chunk:"snippet"`` with the snippet cut to 150 characters."""
    snippet = truncate_with_ellipsis(normalize_whitespace(citation.quoted_snippet), MAX_SNIPPET_CHARS)
    return f'{citation.doc_name}#{citation.chunk_id}:"{snippet}"'


def format_citations_compact(citations: Sequence[Citation]) -> str:
    """All citations joined with `` | ``, never longer than 1200 characters."""
    result = ""
    for citation in citations:
        segment = format_citation(citation)
        candidate = f"{result} | {segment}" if result else segment
        if len(candidate) > MAX_CITATION_STRING_CHARS:
            return truncate_with_ellipsis(result or segment, MAX_CITATION_STRING_CHARS)
        result = candidate
    return result
