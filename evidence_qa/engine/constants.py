"""Sentinel sentences and keyword lists for evidence answering.

The sentinel sentences are part of the external contract: callers compare
answers against them verbatim, so they must never be reworded.
"""

import re

# ---------------------------------------------------------------------------
# Sentinel answers
# ---------------------------------------------------------------------------
NOT_FOUND_TEXT = "Not found in provided documents."
NOT_SPECIFIED_TEXT = "Not specified in provided documents."

# Replaces an answer that claims MFA is required when evidence only shows it is enabled.
MFA_FALLBACK_TEXT = (
    "MFA is enabled, but whether it is required is not specified in provided documents."
)

# Prefix of the sentence listing asks the cited evidence does not cover.
COVERAGE_GAP_PREFIX = "Not specified in provided documents:"

# System-authored sentences; the claim-check guardrail never treats their words as claims.
SYSTEM_TEMPLATE_TEXTS = (NOT_FOUND_TEXT, NOT_SPECIFIED_TEXT, MFA_FALLBACK_TEXT)

# ---------------------------------------------------------------------------
# Retrieval tokenization
# ---------------------------------------------------------------------------

# Filler words of questionnaire phrasing; never counted as lexical overlap.
RETRIEVAL_STOPWORDS = frozenset({
    "about",
    "after",
    "also",
    "among",
    "and",
    "any",
    "are",
    "been",
    "between",
    "both",
    "can",
    "could",
    "describe",
    "details",
    "does",
    "from",
    "have",
    "into",
    "including",
    "information",
    "please",
    "provide",
    "question",
    "should",
    "that",
    "their",
    "them",
    "there",
    "these",
    "those",
    "what",
    "when",
    "where",
    "which",
    "with",
    "within",
    "your",
})

# Question words too common across questionnaires to prove a citation is on topic.
GENERIC_QUESTION_KEYWORDS = frozenset({
    "applicable",
    "available",
    "company",
    "control",
    "controls",
    "current",
    "currently",
    "document",
    "documented",
    "documents",
    "ensure",
    "explain",
    "follow",
    "implemented",
    "maintain",
    "maintained",
    "organization",
    "organisation",
    "performed",
    "place",
    "policies",
    "policy",
    "procedure",
    "procedures",
    "process",
    "processes",
    "require",
    "required",
    "requirement",
    "requirements",
    "security",
    "support",
    "supported",
    "system",
    "systems",
    "used",
    "using",
    "whether",
})

# ---------------------------------------------------------------------------
# Claim-check guardrail
# ---------------------------------------------------------------------------
GUARDRAIL_STOPWORDS = frozenset({
    "about",
    "across",
    "after",
    "against",
    "answer",
    "based",
    "before",
    "between",
    "could",
    "details",
    "documents",
    "evidence",
    "given",
    "have",
    "into",
    "like",
    "likely",
    "maybe",
    "might",
    "only",
    "please",
    "provide",
    "provided",
    "question",
    "regarding",
    "should",
    "since",
    "than",
    "that",
    "their",
    "there",
    "these",
    "those",
    "using",
    "what",
    "when",
    "which",
    "while",
    "with",
    "within",
    "would",
})

# ---------------------------------------------------------------------------
# MFA requirement rule
# ---------------------------------------------------------------------------
MFA_TERM_RE = re.compile(
    r"\b(?:mfa|2fa|multi[- ]?factor(?: authentication)?|two[- ]?factor(?: authentication)?)\b",
    re.IGNORECASE,
)
REQUIRED_TERM_RE = re.compile(
    r"\b(?:required|requires?|mandatory|must|enforced|enforces?|enforcing)\b",
    re.IGNORECASE,
)
# Characters on either side of an MFA mention searched for requirement wording.
MFA_REQUIREMENT_WINDOW_CHARS = 80

# ---------------------------------------------------------------------------
# Answer format
# ---------------------------------------------------------------------------
LIST_MARKER_RE = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s")
DANGLING_FRAGMENT_RE = re.compile(r"^\s*[,;:)\].]")
DOUBLE_DASH_RE = re.compile(r"--")
MARKDOWN_HEADING_RE = re.compile(r"(?:^|\n)\s*#{1,6}\s+")
CODE_FENCE_RE = re.compile(r"```")
SNIPPET_LEAK_RE = re.compile(r"(?:^|\n)\s*Snippet\s+\d+", re.IGNORECASE)
CHUNK_ID_LEAK_RE = re.compile(r"\bchunkId\s*:", re.IGNORECASE)
