"""Evidence-grounded answer engine.

Single Responsibility: orchestrate one question end to end:

    embed -> retrieve top-K -> rerank -> sufficiency gate -> chosen chunks
          -> (partial sentinel | grounded generation) -> normalizer
          -> citation relevance -> coverage

Every abort path returns the NOT_FOUND sentinel with a reason. Upstream
failures (embedding, completion, store) propagate as UpstreamServiceError.
The engine holds no per-question state, so one instance can serve
concurrent questions.
"""

from __future__ import annotations

import logging
from typing import Any

from ..common.config_loader import Settings, load_settings
from ..common.text_normalization import normalize_whitespace
from .answer_format import is_not_specified_like
from .claim_check import apply_claim_check_guardrails
from .constants import MFA_FALLBACK_TEXT, NOT_SPECIFIED_TEXT
from .coverage import apply_coverage, citations_are_relevant
from .extractor import generate_evidence_sufficiency, select_chosen_chunks
from .generation import execute_grounded_generation
from .interfaces import ChunkStore, ClaimCheckGuardrail, CompletionService, EmbeddingService
from .normalizer import normalize_answer_output
from .ranking import Reranker, chunk_trace
from .types import (
    Citation,
    Confidence,
    EvidenceAnswer,
    EvidenceDebugInfo,
    NotFoundReason,
    Overall,
    ScoredChunk,
    not_found_answer,
)

logger = logging.getLogger(__name__)


def citation_from_chunk(chunk: ScoredChunk) -> Citation:
    return Citation(
        chunk_id=chunk.chunk_id,
        doc_name=chunk.doc_name,
        quoted_snippet=normalize_whitespace(chunk.quoted_snippet),
    )


def _citation_trace(citations: list[Citation]) -> list[dict[str, Any]]:
    return [{"chunk_id": c.chunk_id, "doc_name": c.doc_name} for c in citations]


class AnswerEngine:
    """Answers one questionnaire question from an organization's evidence."""

    def __init__(
        self,
        embedding: EmbeddingService,
        completion: CompletionService,
        chunk_store: ChunkStore,
        guardrail: ClaimCheckGuardrail | None = None,
        settings: Settings | None = None,
    ):
        self.embedding = embedding
        self.completion = completion
        self.chunk_store = chunk_store
        self.guardrail = guardrail or apply_claim_check_guardrails
        self.settings = settings or load_settings()
        self.reranker = Reranker(self.settings.retrieval)

    def answer_question(self, org_id: str, question_text: str, debug: bool = False) -> EvidenceAnswer:
        trace: dict[str, Any] = {"threshold": self.settings.retrieval.min_top_similarity}
        attach_trace = debug and self.settings.allow_debug_trace

        def finish(answer: EvidenceAnswer) -> EvidenceAnswer:
            if answer.not_found_reason is not None:
                logger.info("Question resolved to NOT_FOUND (%s)", answer.not_found_reason.value)
            if not attach_trace:
                return answer
            trace["final_citations"] = _citation_trace(answer.citations)
            trace["not_found_reason"] = answer.not_found_reason
            return EvidenceAnswer(
                answer=answer.answer,
                citations=answer.citations,
                confidence=answer.confidence,
                needs_review=answer.needs_review,
                not_found_reason=answer.not_found_reason,
                debug=EvidenceDebugInfo(**trace),
            )

        question = (question_text or "").strip()
        if not question:
            return finish(not_found_answer(NotFoundReason.NO_RELEVANT_EVIDENCE))

        # 1) Retrieve + rerank
        question_embedding = self.embedding.embed(question)
        retrieved = self.chunk_store.top_k(
            org_id, question_embedding, question, self.settings.retrieval.top_k
        )
        rerank = self.reranker.rerank(question, retrieved)
        trace["retrieved_top_k"] = [chunk_trace(c) for c in rerank.scored]
        trace["reranked_top_n"] = [chunk_trace(c) for c in rerank.reranked]
        if rerank.not_found_reason is not None:
            return finish(not_found_answer(rerank.not_found_reason))

        # 2) Sufficiency gate
        verdict = generate_evidence_sufficiency(
            self.completion, question, rerank.reranked, self.settings.extractor
        )
        trace["sufficiency"] = verdict.to_dict()
        if verdict.overall is Overall.NOT_FOUND:
            return finish(not_found_answer(NotFoundReason.NO_RELEVANT_EVIDENCE))

        chosen = select_chosen_chunks(
            rerank.reranked,
            verdict.supporting_chunk_ids,
            self.settings.retrieval.max_answer_chunks,
        )
        trace["chosen_chunks"] = [{"chunk_id": c.chunk_id, "doc_name": c.doc_name} for c in chosen]

        # 3) Draft
        if verdict.overall is Overall.PARTIAL:
            supporting = set(verdict.supporting_chunk_ids)
            citations = [citation_from_chunk(c) for c in chosen if c.chunk_id in supporting]
            if not citations:
                return finish(not_found_answer(NotFoundReason.FILTERED_AS_IRRELEVANT))
            normalized = normalize_answer_output(
                draft_answer=NOT_SPECIFIED_TEXT,
                citations=citations,
                model_confidence=Confidence.LOW,
                model_needs_review=True,
                had_format_violation=False,
                extractor_overall=verdict.overall,
                guardrail=self.guardrail,
                settings=self.settings.generation,
            )
        else:
            outcome = execute_grounded_generation(
                self.completion, question, chosen, self.settings.generation
            )
            trace["generation"] = outcome.debug
            if outcome.forced_not_found or outcome.draft is None:
                return finish(not_found_answer(NotFoundReason.NO_RELEVANT_EVIDENCE))
            if not outcome.citations:
                return finish(not_found_answer(NotFoundReason.FILTERED_AS_IRRELEVANT))
            normalized = normalize_answer_output(
                draft_answer=outcome.draft.answer,
                citations=outcome.citations,
                model_confidence=outcome.draft.confidence,
                model_needs_review=outcome.draft.needs_review,
                had_format_violation=outcome.had_format_violation,
                extractor_overall=verdict.overall,
                guardrail=self.guardrail,
                settings=self.settings.generation,
            )

        if normalized.is_not_found:
            return finish(not_found_answer(NotFoundReason.NO_RELEVANT_EVIDENCE))

        # 4) Post-normalization checks
        if not citations_are_relevant(question, normalized.citations):
            logger.info("Cited snippets share no distinctive keyword with the question")
            return finish(not_found_answer(NotFoundReason.FILTERED_AS_IRRELEVANT))

        answer, confidence, needs_review = normalized.answer, normalized.confidence, normalized.needs_review
        if is_not_specified_like(answer):
            if answer != MFA_FALLBACK_TEXT:
                answer = NOT_SPECIFIED_TEXT
        else:
            answer, confidence, needs_review, gaps = apply_coverage(
                question, answer, normalized.citations, confidence, needs_review
            )
            if gaps:
                logger.info("Answer does not cover: %s", ", ".join(gaps))
                trace["coverage_gaps"] = gaps

        return finish(
            EvidenceAnswer(
                answer=answer,
                citations=list(normalized.citations),
                confidence=confidence,
                needs_review=needs_review,
            )
        )
