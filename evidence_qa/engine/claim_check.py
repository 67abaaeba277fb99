"""Claim-check guardrail.

Flags answers that mention key tokens (versions, identifiers, acronyms, long
words) absent from the cited snippets, and rewrites them to the partial
sentinel. The answer engine consumes it through the ClaimCheckGuardrail
protocol, so a stricter checker can be dropped in.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Sequence

from ..common.text_normalization import normalize_whitespace, sanitize_extracted_text
from .answer_format import is_not_specified_like
from .constants import GUARDRAIL_STOPWORDS, NOT_SPECIFIED_TEXT, SYSTEM_TEMPLATE_TEXTS
from .types import Confidence

_KEY_TOKEN_PATTERNS = (
    re.compile(r"\b(?:tls|ssl)\s*\d+(?:\.\d+)?\b", re.IGNORECASE),
    re.compile(r"\b[a-zA-Z]+-\d+(?:\.\d+)?\b"),
    re.compile(r"\b[a-z]+[A-Z][a-zA-Z0-9]*\b"),
    re.compile(r"\b[A-Z]{2,}(?:-\d+)?\b"),
    re.compile(r"\b\d+(?:\.\d+)+\b"),
    re.compile(r"\b[a-zA-Z][a-zA-Z0-9-]{4,}\b"),
)
_TEMPLATE_RE = re.compile(
    "|".join(re.escape(text) for text in SYSTEM_TEMPLATE_TEXTS),
    re.IGNORECASE,
)


def _normalize_search_text(value: str) -> str:
    return normalize_whitespace(sanitize_extracted_text(value).lower())


@dataclass(frozen=True)
class ClaimCheckResult:
    answer: str
    confidence: Confidence
    needs_review: bool
    unsupported_tokens: tuple[str, ...] = field(default_factory=tuple)


def extract_key_tokens(value: str) -> list[str]:
    """Key tokens of an answer, ignoring system-authored template sentences."""
    text = _TEMPLATE_RE.sub(" ", value)
    tokens: list[str] = []
    for pattern in _KEY_TOKEN_PATTERNS:
        for match in pattern.finditer(text):
            token = _normalize_search_text(match.group(0))
            if token and token not in GUARDRAIL_STOPWORDS and token not in tokens:
                tokens.append(token)
    return tokens


def find_unsupported_key_tokens(answer: str, quoted_snippets: Sequence[str]) -> list[str]:
    haystack = _normalize_search_text(" ".join(quoted_snippets))
    return [token for token in extract_key_tokens(answer) if token not in haystack]


def apply_claim_check_guardrails(
    answer: str,
    quoted_snippets: Sequence[str],
    confidence: Confidence,
    needs_review: bool,
) -> ClaimCheckResult:
    answer = answer.strip()

    if is_not_specified_like(answer):
        return ClaimCheckResult(answer=answer, confidence=Confidence.LOW, needs_review=True)

    unsupported = find_unsupported_key_tokens(answer, quoted_snippets)
    if unsupported:
        return ClaimCheckResult(
            answer=NOT_SPECIFIED_TEXT,
            confidence=Confidence.LOW,
            needs_review=True,
            unsupported_tokens=tuple(unsupported),
        )

    if needs_review and confidence is Confidence.HIGH:
        return ClaimCheckResult(answer=answer, confidence=Confidence.MED, needs_review=True)
    return ClaimCheckResult(answer=answer, confidence=confidence, needs_review=needs_review)
