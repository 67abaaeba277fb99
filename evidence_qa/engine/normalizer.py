"""Answer normalizer: the final decision on a drafted answer.

Single Responsibility: apply the ordered answer rules to a draft and its
citations. Returns either a cited answer or the NOT_FOUND sentinel; never
raises on bad model output.

Rule order:
1. no citations -> NOT_FOUND
2. draft empty or "not found"-like -> NOT_FOUND
3. draft breaks the answer format -> NOT_FOUND
   MFA requirement rule on the draft
4. claim-check guardrail, with clobber prevention
5. guarded answer empty or "not found"-like -> NOT_FOUND
6. needs_review
7. confidence
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

from ..common.config_loader import GenerationSettings
from .answer_format import is_not_found_like, is_not_specified_like, validate_answer_format
from .claim_check import apply_claim_check_guardrails
from .constants import NOT_FOUND_TEXT
from .coverage import apply_mfa_requirement_rule
from .interfaces import ClaimCheckGuardrail
from .types import Citation, Confidence, Overall

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NormalizedAnswer:
    answer: str
    citations: list[Citation]
    confidence: Confidence
    needs_review: bool
    clobber_prevented: bool = False
    mfa_downgraded: bool = False
    unsupported_tokens: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_not_found(self) -> bool:
        return self.answer == NOT_FOUND_TEXT


NOT_FOUND_NORMALIZED = NormalizedAnswer(
    answer=NOT_FOUND_TEXT,
    citations=[],
    confidence=Confidence.LOW,
    needs_review=True,
)


def _is_affirmative(answer: str) -> bool:
    return bool(answer) and not is_not_found_like(answer) and not is_not_specified_like(answer)


def normalize_answer_output(
    *,
    draft_answer: str,
    citations: Sequence[Citation],
    model_confidence: Confidence,
    model_needs_review: bool,
    had_format_violation: bool,
    extractor_overall: Overall,
    guardrail: ClaimCheckGuardrail | None = None,
    settings: GenerationSettings | None = None,
) -> NormalizedAnswer:
    guardrail = guardrail or apply_claim_check_guardrails
    citations = list(citations)
    draft = (draft_answer or "").strip()

    if not citations:
        return NOT_FOUND_NORMALIZED
    if not draft or is_not_found_like(draft):
        return NOT_FOUND_NORMALIZED
    if not validate_answer_format(draft, settings):
        return NOT_FOUND_NORMALIZED

    snippets = [citation.quoted_snippet for citation in citations]
    answer, mfa_downgraded = apply_mfa_requirement_rule(draft, snippets)
    if mfa_downgraded:
        logger.info("Answer claimed MFA is required without supporting evidence; downgraded")

    guarded = guardrail(answer, snippets, model_confidence, model_needs_review or had_format_violation)
    guarded_answer = (guarded.answer or "").strip()
    unsupported = tuple(getattr(guarded, "unsupported_tokens", ()) or ())

    # Clobber prevention: keep a draft the extractor fully certified when the
    # guardrail turned it into a sentinel.
    rewrote_to_sentinel = guarded_answer != answer and not _is_affirmative(guarded_answer)
    clobber_prevented = (
        extractor_overall is Overall.FOUND
        and _is_affirmative(answer)
        and rewrote_to_sentinel
    )
    if clobber_prevented:
        logger.info("Guardrail rewrite overridden for extractor-certified draft (tokens=%s)", unsupported)
        guarded_answer = answer

    if not guarded_answer or is_not_found_like(guarded_answer):
        return NOT_FOUND_NORMALIZED
    if not validate_answer_format(guarded_answer, settings):
        return NOT_FOUND_NORMALIZED

    partial = is_not_specified_like(guarded_answer)
    needs_review = (
        guarded.needs_review
        or had_format_violation
        or partial
        or clobber_prevented
        or mfa_downgraded
    )

    confidence = guarded.confidence
    if clobber_prevented or partial:
        confidence = Confidence.LOW
    if needs_review:
        confidence = confidence.downgrade()

    return NormalizedAnswer(
        answer=guarded_answer,
        citations=citations,
        confidence=confidence,
        needs_review=needs_review,
        clobber_prevented=clobber_prevented,
        mfa_downgraded=mfa_downgraded,
        unsupported_tokens=unsupported,
    )
