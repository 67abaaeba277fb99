from __future__ import annotations

import logging
from typing import Iterable

from ..common.config_loader import Settings, load_settings
from ..engine.answer_engine import AnswerEngine
from ..engine.chunk_store import ChromaApprovedAnswerStore, ChromaChunkStore, get_persistent_client
from ..engine.llm_client import OpenAICompletionService, OpenAIEmbeddingService
from ..engine.reuse import ApprovedAnswerReuseMatcher
from ..engine.types import Confidence, EvidenceAnswer, ReusedApprovedAnswer

logger = logging.getLogger(__name__)


def build_engine(settings: Settings | None = None) -> AnswerEngine:
    """Answer engine wired to OpenAI and the configured Chroma store."""
    resolved_settings = settings or load_settings()
    return AnswerEngine(
        embedding=OpenAIEmbeddingService(resolved_settings),
        completion=OpenAICompletionService(resolved_settings),
        chunk_store=ChromaChunkStore.from_settings(resolved_settings),
        settings=resolved_settings,
    )


def build_reuse_matcher(org_id: str, settings: Settings | None = None) -> ApprovedAnswerReuseMatcher:
    resolved_settings = settings or load_settings()
    client = get_persistent_client(resolved_settings)
    return ApprovedAnswerReuseMatcher.create(
        org_id,
        answer_store=ChromaApprovedAnswerStore.from_settings(resolved_settings, client=client),
        chunk_store=ChromaChunkStore.from_settings(resolved_settings, client=client),
        embedding=OpenAIEmbeddingService(resolved_settings),
        settings=resolved_settings,
    )


def answer_question(
    *,
    org_id: str,
    question_text: str,
    debug: bool = False,
    engine: AnswerEngine | None = None,
    settings: Settings | None = None,
) -> EvidenceAnswer:
    engine = engine or build_engine(settings)
    return engine.answer_question(org_id, question_text, debug=debug)


def find_reusable_answer(
    *,
    org_id: str,
    question_text: str,
    matcher: ApprovedAnswerReuseMatcher | None = None,
    settings: Settings | None = None,
) -> ReusedApprovedAnswer | None:
    matcher = matcher or build_reuse_matcher(org_id, settings)
    return matcher.find_for_question(question_text)


def reused_to_evidence_answer(reused: ReusedApprovedAnswer) -> EvidenceAnswer:
    """A reused approved answer, shaped like an engine answer."""
    return EvidenceAnswer(
        answer=reused.answer_text,
        citations=list(reused.citations),
        confidence=Confidence.MED,
        needs_review=False,
        reused_from_approved_answer_id=reused.approved_answer_id,
        reused_match_type=reused.match_type,
    )


def answer_with_reuse(
    *,
    org_id: str,
    question_text: str,
    engine: AnswerEngine,
    matcher: ApprovedAnswerReuseMatcher | None,
    debug: bool = False,
) -> EvidenceAnswer:
    """Try approved-answer reuse first, then fall through to the engine."""
    if matcher is not None:
        reused = matcher.find_for_question(question_text)
        if reused is not None:
            return reused_to_evidence_answer(reused)
    return engine.answer_question(org_id, question_text, debug=debug)


def answer_questionnaire(
    *,
    org_id: str,
    questions: Iterable[str],
    engine: AnswerEngine | None = None,
    matcher: ApprovedAnswerReuseMatcher | None = None,
    reuse: bool = True,
    settings: Settings | None = None,
) -> list[EvidenceAnswer]:
    """Answer a batch of questions in order.

    One reuse matcher serves the whole batch, so approved answers and chunk
    lookups are loaded once. Each question is answered independently.
    """
    engine = engine or build_engine(settings)
    if reuse and matcher is None:
        matcher = build_reuse_matcher(org_id, settings)

    answers: list[EvidenceAnswer] = []
    for question_text in questions:
        answers.append(
            answer_with_reuse(
                org_id=org_id,
                question_text=question_text,
                engine=engine,
                matcher=matcher if reuse else None,
            )
        )
    reused_count = sum(1 for a in answers if a.reused_from_approved_answer_id)
    logger.info("Answered %d questions (%d reused)", len(answers), reused_count)
    return answers
