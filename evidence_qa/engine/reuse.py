"""Approved-answer reuse matcher.

Looks for a previously approved answer to the same question before the
engine spends model calls on it. Tiers are tried in order and the first
reusable candidate wins:

1. exact       - same normalized question text or hash
2. near_exact  - bigram similarity of normalized question text >= 0.93
3. semantic    - question-embedding similarity >= 0.88 (top 12)

A candidate is reusable only if its answer is real text and every cited
chunk still resolves to a chunk the organization owns. Chunk lookups are
memoized per matcher instance (one organization, one batch).
"""

from __future__ import annotations

import logging
from typing import Iterable, Sequence

from ..common.config_loader import ReuseSettings, Settings, load_settings
from ..common.text_normalization import (
    build_question_text_metadata,
    normalize_whitespace,
    question_text_near_exact_similarity,
    sanitize_extracted_text,
)
from .constants import NOT_FOUND_TEXT
from .interfaces import ApprovedAnswerStore, ChunkStore, EmbeddingService
from .types import ApprovedAnswerCandidate, Citation, MatchType, ReusedApprovedAnswer

logger = logging.getLogger(__name__)


def _truncate_snippet(value: str, max_chars: int) -> str:
    normalized = normalize_whitespace(sanitize_extracted_text(value))
    if len(normalized) <= max_chars:
        return normalized
    return f"{normalized[: max_chars - 3]}..."


def is_reusable_answer_text(value: str) -> bool:
    normalized = sanitize_extracted_text(value or "").strip()
    return bool(normalized) and normalized != NOT_FOUND_TEXT


def _recency_key(candidate: ApprovedAnswerCandidate) -> tuple[float, str]:
    """Newest first, then id ascending."""
    return (-candidate.updated_at.timestamp(), candidate.approved_answer_id)


class CitationResolver:
    """Resolves cited chunk ids to citations for one organization.

    Misses are cached too, so a deleted chunk is looked up once per instance.
    """

    def __init__(self, org_id: str, chunk_store: ChunkStore, max_snippet_chars: int = 700):
        self.org_id = org_id
        self.chunk_store = chunk_store
        self.max_snippet_chars = max_snippet_chars
        self._cache: dict[str, Citation | None] = {}

    def resolve(self, chunk_ids: Iterable[str]) -> list[Citation] | None:
        """All citations in order, or None if the list is empty or any id is unresolved."""
        ids = list(dict.fromkeys(cid.strip() for cid in chunk_ids if cid and cid.strip()))
        if not ids:
            return None

        missing = [cid for cid in ids if cid not in self._cache]
        if missing:
            found = self.chunk_store.resolve_owned_chunks(self.org_id, missing)
            for cid in missing:
                chunk = found.get(cid)
                self._cache[cid] = (
                    Citation(
                        chunk_id=chunk.chunk_id,
                        doc_name=chunk.doc_name,
                        quoted_snippet=_truncate_snippet(chunk.full_content, self.max_snippet_chars),
                    )
                    if chunk is not None
                    else None
                )

        citations = [self._cache[cid] for cid in ids]
        if any(citation is None for citation in citations):
            return None
        return citations  # type: ignore[return-value]


class ApprovedAnswerReuseMatcher:
    def __init__(
        self,
        org_id: str,
        candidates: Sequence[ApprovedAnswerCandidate],
        answer_store: ApprovedAnswerStore,
        chunk_store: ChunkStore,
        embedding: EmbeddingService,
        settings: ReuseSettings | None = None,
    ):
        self.org_id = org_id
        self.candidates = list(candidates)
        self.answer_store = answer_store
        self.embedding = embedding
        self.settings = settings or ReuseSettings()
        self.citation_resolver = CitationResolver(org_id, chunk_store, self.settings.max_quoted_snippet_chars)
        self._by_id = {c.approved_answer_id: c for c in self.candidates}

    @classmethod
    def create(
        cls,
        org_id: str,
        answer_store: ApprovedAnswerStore,
        chunk_store: ChunkStore,
        embedding: EmbeddingService,
        settings: Settings | None = None,
    ) -> "ApprovedAnswerReuseMatcher":
        """Load the organization's approved answers once for the matcher's lifetime."""
        settings = settings or load_settings()
        candidates = answer_store.list_candidates(org_id)
        logger.debug("Loaded %d approved answers for reuse", len(candidates))
        return cls(org_id, candidates, answer_store, chunk_store, embedding, settings.reuse)

    # -- tiers --------------------------------------------------------------

    def exact_candidates(self, normalized: str, question_hash: str) -> list[ApprovedAnswerCandidate]:
        matches = [
            c for c in self.candidates
            if c.question_text_hash == question_hash or c.normalized_question_text == normalized
        ]
        return sorted(matches, key=_recency_key)

    def near_exact_candidates(self, normalized: str) -> list[ApprovedAnswerCandidate]:
        scored = [
            (question_text_near_exact_similarity(normalized, c.normalized_question_text), c)
            for c in self.candidates
        ]
        scored = [(sim, c) for sim, c in scored if sim >= self.settings.near_exact_min_similarity]
        scored.sort(key=lambda pair: (-pair[0], *_recency_key(pair[1])))
        return [c for _, c in scored]

    def semantic_candidates(self, question_text: str) -> list[ApprovedAnswerCandidate]:
        embedding = self.embedding.embed(question_text)
        rows = self.answer_store.semantic_candidates(
            self.org_id, embedding, self.settings.max_semantic_candidates
        )
        scored = [
            (similarity, self._by_id[answer_id])
            for answer_id, similarity in rows
            if similarity >= self.settings.semantic_min_similarity and answer_id in self._by_id
        ]
        scored.sort(key=lambda pair: (-pair[0], *_recency_key(pair[1])))
        return [c for _, c in scored]

    def _first_reusable(
        self,
        candidates: Sequence[ApprovedAnswerCandidate],
        match_type: MatchType,
    ) -> ReusedApprovedAnswer | None:
        for candidate in candidates:
            if not is_reusable_answer_text(candidate.answer_text):
                continue
            citations = self.citation_resolver.resolve(candidate.citation_chunk_ids)
            if not citations:
                logger.debug("Approved answer %s has unresolvable citations", candidate.approved_answer_id)
                continue
            return ReusedApprovedAnswer(
                approved_answer_id=candidate.approved_answer_id,
                answer_text=sanitize_extracted_text(candidate.answer_text).strip(),
                citations=citations,
                match_type=match_type,
            )
        return None

    def find_for_question(self, question_text: str) -> ReusedApprovedAnswer | None:
        if not self.candidates:
            return None

        metadata = build_question_text_metadata(question_text)
        normalized = metadata["normalized_question_text"]
        if not normalized:
            return None

        match = self._first_reusable(
            self.exact_candidates(normalized, metadata["question_text_hash"]), MatchType.EXACT
        )
        if match is None:
            match = self._first_reusable(self.near_exact_candidates(normalized), MatchType.NEAR_EXACT)
        if match is None:
            match = self._first_reusable(self.semantic_candidates(question_text), MatchType.SEMANTIC)

        if match is not None:
            logger.info(
                "Reusing approved answer %s (%s)", match.approved_answer_id, match.match_type.value
            )
        return match
