from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Any, Sequence

from ..common.config_loader import RetrievalSettings
from ..common.text_normalization import normalize_for_match
from .constants import RETRIEVAL_STOPWORDS
from .types import NotFoundReason, ScoredChunk

_TOKEN_RE = re.compile(r"[a-z0-9./-]+")
# Tokens with these characters are matched as substrings, not whole words.
_PHRASE_CHARS = (" ", "/", ".", "-")


class Reranker:
    """Hybrid vector + lexical rerank over the top-K similarity hits."""

    def __init__(self, settings: RetrievalSettings | None = None):
        self.settings = settings or RetrievalSettings()

    @staticmethod
    def tokenize_for_lexical(text: str, min_token_length: int = 4) -> list[str]:
        """Distinctive question tokens: long enough, not filler, not pure digits."""
        tokens: list[str] = []
        for raw in _TOKEN_RE.findall(normalize_for_match(text)):
            token = raw.strip("./-")
            if len(token) < min_token_length:
                continue
            if token in RETRIEVAL_STOPWORDS or token.isdigit():
                continue
            if token not in tokens:
                tokens.append(token)
        return tokens

    @staticmethod
    def contains_token(normalized_text: str, token: str) -> bool:
        if not normalized_text or not token:
            return False
        if any(ch in token for ch in _PHRASE_CHARS):
            return token in normalized_text
        return re.search(rf"(?:^|[\s./-]){re.escape(token)}(?:$|[\s./-])", normalized_text) is not None

    @classmethod
    def lexical_overlap_count(cls, tokens: Sequence[str], chunk: ScoredChunk) -> int:
        haystack = normalize_for_match(f"{chunk.quoted_snippet}\n{chunk.full_content}")
        return sum(1 for token in tokens if cls.contains_token(haystack, token))

    def score_chunks(self, question_text: str, chunks: Sequence[ScoredChunk]) -> list[ScoredChunk]:
        """Attach lexical overlap and the combined final score to each chunk."""
        tokens = self.tokenize_for_lexical(question_text, self.settings.min_token_length)
        weights = self.settings.weights
        scored: list[ScoredChunk] = []
        for chunk in chunks:
            count = self.lexical_overlap_count(tokens, chunk) if tokens else 0
            lexical_score = count / len(tokens) if tokens else 0.0
            scored.append(
                replace(
                    chunk,
                    lexical_overlap_count=count,
                    lexical_score=lexical_score,
                    final_score=weights.vector * chunk.similarity + weights.lexical * lexical_score,
                )
            )
        return scored

    @staticmethod
    def sort_by_combined_score(chunks: Sequence[ScoredChunk]) -> list[ScoredChunk]:
        return sorted(
            chunks,
            key=lambda c: (-c.final_score, -c.similarity, -c.lexical_overlap_count, c.chunk_id),
        )

    def is_relevant(self, chunk: ScoredChunk) -> bool:
        return chunk.lexical_overlap_count > 0 or chunk.similarity >= self.settings.min_top_similarity

    def rerank(self, question_text: str, retrieved: Sequence[ScoredChunk]) -> "RerankResult":
        if not retrieved:
            return RerankResult(scored=[], reranked=[], not_found_reason=NotFoundReason.NO_RELEVANT_EVIDENCE)

        scored = self.score_chunks(question_text, retrieved)
        kept = [chunk for chunk in scored if self.is_relevant(chunk)]
        reranked = self.sort_by_combined_score(kept)[: self.settings.rerank_top_n]

        reason = None
        if not reranked:
            best_similarity = max(chunk.similarity for chunk in scored)
            reason = (
                NotFoundReason.RETRIEVAL_BELOW_THRESHOLD
                if best_similarity < self.settings.min_top_similarity
                else NotFoundReason.FILTERED_AS_IRRELEVANT
            )
        return RerankResult(scored=scored, reranked=reranked, not_found_reason=reason)


@dataclass
class RerankResult:
    """Result of the rerank step.

    ``scored`` holds every retrieved chunk with its scores (for the debug trace);
    ``reranked`` the surviving top-N; ``not_found_reason`` is set only when
    nothing survived.
    """
    scored: list[ScoredChunk] = field(default_factory=list)
    reranked: list[ScoredChunk] = field(default_factory=list)
    not_found_reason: NotFoundReason | None = None

    @property
    def best_similarity(self) -> float | None:
        if not self.scored:
            return None
        return max(chunk.similarity for chunk in self.scored)


def chunk_trace(chunk: ScoredChunk) -> dict[str, Any]:
    """Debug view of a scored chunk."""
    return {
        "chunk_id": chunk.chunk_id,
        "doc_name": chunk.doc_name,
        "similarity": round(chunk.similarity, 6),
        "lexical_overlap_count": chunk.lexical_overlap_count,
        "lexical_score": round(chunk.lexical_score, 6),
        "final_score": round(chunk.final_score, 6),
    }


def execute_rerank(
    question_text: str,
    retrieved: Sequence[ScoredChunk],
    settings: RetrievalSettings | None = None,
) -> RerankResult:
    return Reranker(settings).rerank(question_text, retrieved)
