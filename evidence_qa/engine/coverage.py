"""Post-normalization evidence checks.

- Coverage: each rule pairs a question pattern (the question asks for X)
  with an evidence pattern (the cited evidence states X). Unmet asks are
  listed in the answer as not specified.
- MFA requirement: "MFA is required" needs requirement wording next to an
  MFA mention in the evidence, not just "MFA is enabled".
- Citation relevance: at least one distinctive question keyword must occur
  in the cited snippets.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Sequence

from ..common.text_normalization import normalize_for_match
from .constants import (
    COVERAGE_GAP_PREFIX,
    GENERIC_QUESTION_KEYWORDS,
    MFA_FALLBACK_TEXT,
    MFA_REQUIREMENT_WINDOW_CHARS,
    MFA_TERM_RE,
    REQUIRED_TERM_RE,
)
from .ranking import Reranker
from .types import Citation, Confidence


@dataclass(frozen=True)
class CoverageRule:
    key: str
    label: str
    question_pattern: re.Pattern[str]
    evidence_pattern: re.Pattern[str]


def _rx(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


COVERAGE_RULES: tuple[CoverageRule, ...] = (
    CoverageRule(
        key="algorithm",
        label="algorithm or cipher",
        question_pattern=_rx(
            r"\b(?:algorithms?|ciphers?|cipher suites?|encryption (?:standard|type|strength)"
            r"|key (?:length|size)|tls version|protocol version)\b"
        ),
        evidence_pattern=_rx(
            r"\b(?:aes|rsa|ecdsa|ecdhe|chacha20|3des|sha-?\d+)\b|\b(?:tls|ssl)\s*v?\d|\b\d{3,4}-bit\b"
        ),
    ),
    CoverageRule(
        key="scope",
        label="scope",
        question_pattern=_rx(
            r"\b(?:scope|in-scope|which (?:systems|services|environments|data|assets)"
            r"|apply to|applies to)\b"
        ),
        evidence_pattern=_rx(
            r"\b(?:all|every|each|scope|in-scope|includ(?:es|ing)|cover(?:s|ed|ing)?"
            r"|applies to|production|environments?)\b"
        ),
    ),
    CoverageRule(
        key="key_management",
        label="key management",
        question_pattern=_rx(
            r"\b(?:key management|key rotation|rotate (?:the )?keys|kms|hsm|key storage"
            r"|who manages (?:the )?(?:encryption )?keys)\b"
        ),
        evidence_pattern=_rx(
            r"\b(?:kms|hsm|key management|key vault|key custod\w*|rotat(?:e|ed|es|ion))\b"
        ),
    ),
    CoverageRule(
        key="frequency",
        label="frequency",
        question_pattern=_rx(
            r"\b(?:how often|how frequently|frequency|cadence|interval|periodically)\b"
        ),
        evidence_pattern=_rx(
            r"\b(?:hourly|daily|weekly|monthly|quarterly|annually|annual|yearly|semi-annually"
            r"|continuous(?:ly)?|real-time|at least once|once (?:a|per|every)"
            r"|every\s+(?:\d+\s+)?(?:hours?|days?|weeks?|months?|quarters?|years?))\b"
        ),
    ),
    CoverageRule(
        key="retention",
        label="retention period",
        question_pattern=_rx(
            r"\b(?:retention|retain(?:ed)?|how long|kept for|stored for|deleted after|purged?)\b"
        ),
        evidence_pattern=_rx(r"\b\d+\s*(?:days?|weeks?|months?|years?)\b|\bindefinite(?:ly)?\b"),
    ),
    CoverageRule(
        key="ownership",
        label="owner",
        question_pattern=_rx(
            r"\b(?:who is responsible|who are responsible|owners?|ownership|accountable"
            r"|which team|who owns|who manages|who approves)\b"
        ),
        evidence_pattern=_rx(
            r"\b(?:owners?|owned by|responsible|accountable|team|officer|ciso|cto|cio"
            r"|manager|department|committee)\b"
        ),
    ),
    CoverageRule(
        key="attestation",
        label="SOC 2 or SIG attestation",
        question_pattern=_rx(r"\bsoc\s*(?:2|ii)\b|\bsig(?:\s+(?:lite|core))?\b|\bshared assessments\b"),
        evidence_pattern=_rx(
            r"\bsoc\s*(?:2|ii)\b|\bsig(?:\s+(?:lite|core))?\b|\bshared assessments\b"
            r"|\btype\s*(?:2|ii)\b"
        ),
    ),
    CoverageRule(
        key="requiredness",
        label="whether it is required",
        question_pattern=_rx(r"\b(?:required|requires?|mandatory|must|enforced?|enforces)\b"),
        evidence_pattern=_rx(r"\b(?:required|requires?|mandatory|must|shall|enforced?|enforces)\b"),
    ),
)


# ---------------------------------------------------------------------------
# Coverage
# ---------------------------------------------------------------------------


def evaluate_coverage(
    question: str,
    evidence_texts: Sequence[str],
    rules: Sequence[CoverageRule] = COVERAGE_RULES,
) -> list[CoverageRule]:
    """Rules whose ask appears in the question but not in the evidence."""
    evidence = " ".join(evidence_texts)
    return [
        rule
        for rule in rules
        if rule.question_pattern.search(question) and not rule.evidence_pattern.search(evidence)
    ]


def append_coverage_gaps(answer: str, gaps: Sequence[CoverageRule]) -> str:
    if not gaps:
        return answer
    labels = ", ".join(rule.label for rule in gaps)
    return f"{answer.rstrip()} {COVERAGE_GAP_PREFIX} {labels}."


def apply_coverage(
    question: str,
    answer: str,
    citations: Sequence[Citation],
    confidence: Confidence,
    needs_review: bool,
) -> tuple[str, Confidence, bool, list[str]]:
    """Append unmet asks; any gap forces review and caps confidence at med."""
    gaps = evaluate_coverage(question, [c.quoted_snippet for c in citations])
    if not gaps:
        return answer, confidence, needs_review, []
    return (
        append_coverage_gaps(answer, gaps),
        confidence.cap(Confidence.MED),
        True,
        [rule.key for rule in gaps],
    )


# ---------------------------------------------------------------------------
# MFA requirement
# ---------------------------------------------------------------------------

_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?;])\s+")


def asserts_mfa_requirement(answer: str) -> bool:
    return any(
        MFA_TERM_RE.search(sentence) and REQUIRED_TERM_RE.search(sentence)
        for sentence in _SENTENCE_SPLIT_RE.split(answer)
    )


def evidence_states_mfa_requirement(
    evidence_texts: Sequence[str],
    window: int = MFA_REQUIREMENT_WINDOW_CHARS,
) -> bool:
    for text in evidence_texts:
        for match in MFA_TERM_RE.finditer(text):
            context = text[max(0, match.start() - window): match.end() + window]
            if REQUIRED_TERM_RE.search(context):
                return True
    return False


def apply_mfa_requirement_rule(answer: str, evidence_texts: Sequence[str]) -> tuple[str, bool]:
    """Return (answer, downgraded)."""
    if asserts_mfa_requirement(answer) and not evidence_states_mfa_requirement(evidence_texts):
        return MFA_FALLBACK_TEXT, True
    return answer, False


# ---------------------------------------------------------------------------
# Citation relevance
# ---------------------------------------------------------------------------


def strong_question_keywords(question: str) -> list[str]:
    return [
        token
        for token in Reranker.tokenize_for_lexical(question)
        if token not in GENERIC_QUESTION_KEYWORDS
    ]


def _keyword_present(haystack: str, keyword: str) -> bool:
    if Reranker.contains_token(haystack, keyword):
        return True
    # encrypted / encryption, tested / testing
    return len(keyword) > 5 and keyword[: len(keyword) - 3] in haystack


def citations_are_relevant(question: str, citations: Sequence[Citation]) -> bool:
    """False when the question has distinctive keywords and none is in the cited text."""
    keywords = strong_question_keywords(question)
    if not keywords:
        return True
    haystack = normalize_for_match(" ".join(c.quoted_snippet for c in citations))
    return any(_keyword_present(haystack, keyword) for keyword in keywords)
