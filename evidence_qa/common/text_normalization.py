"""Text normalization shared by retrieval, guardrails and answer reuse.

Every comparison between question text, snippets and answers goes through
``normalize_for_match`` so that punctuation, casing, unicode dashes and PDF
extraction artifacts never decide a match.
"""

from __future__ import annotations

import hashlib
import re
import unicodedata
from typing import Any

_DASH_CHARS_RE = re.compile("[\u2010\u2011\u2012\u2013\u2014\u2015\u2212]")
_REPLACEMENT_BETWEEN_DIGITS_RE = re.compile(r"(\d)\s*\ufffd\s*(\d)")
_NON_MATCH_CHARS_RE = re.compile(r"[^a-z0-9./\s-]+")
_NON_WORD_CHARS_RE = re.compile(r"[^a-z0-9]+")
_WHITESPACE_RE = re.compile(r"\s+")


def sanitize_extracted_text(value: str) -> str:
    """Repair common PDF/DOCX extraction artifacts.

    - drops byte order marks
    - turns non-breaking spaces into spaces
    - ``1�2`` (a dash lost in decoding) becomes ``1-2``
    - other replacement characters and unicode dashes become ``-``
    """
    text = value.replace("\ufeff", "").replace("\u00a0", " ")
    text = _REPLACEMENT_BETWEEN_DIGITS_RE.sub(r"\1-\2", text)
    text = text.replace("\ufffd", "-")
    return _DASH_CHARS_RE.sub("-", text)


def normalize_whitespace(value: str) -> str:
    return _WHITESPACE_RE.sub(" ", value).strip()


def normalize_for_match(value: Any) -> str:
    """Lowercase, punctuation-insensitive form used for token matching."""
    if value is None:
        return ""
    text = unicodedata.normalize("NFKC", sanitize_extracted_text(str(value)))
    text = _DASH_CHARS_RE.sub("-", text).lower()
    text = _NON_MATCH_CHARS_RE.sub(" ", text)
    return normalize_whitespace(text)


def normalize_template_text(value: str) -> str:
    """Alphanumeric words only; used to recognise sentinel sentences."""
    text = _NON_WORD_CHARS_RE.sub(" ", sanitize_extracted_text(value).lower())
    return normalize_whitespace(text)


# ---------------------------------------------------------------------------
# Question text identity (approved-answer reuse)
# ---------------------------------------------------------------------------


def normalize_question_text(value: str) -> str:
    return normalize_for_match(value)


def hash_normalized_question_text(normalized_question_text: str) -> str:
    return hashlib.md5(normalized_question_text.encode("utf-8")).hexdigest()


def build_question_text_metadata(question_text: str) -> dict[str, str]:
    """Normalized text and its hash, as stored next to an approved answer."""
    normalized = normalize_question_text(question_text)
    return {
        "normalized_question_text": normalized,
        "question_text_hash": hash_normalized_question_text(normalized),
    }


def _bigrams(value: str) -> set[str]:
    if len(value) < 2:
        return {value} if value else set()
    return {value[i:i + 2] for i in range(len(value) - 1)}


def question_text_near_exact_similarity(left: str, right: str) -> float:
    """Sørensen-Dice coefficient over character bigram sets.

    Symmetric and bounded to [0, 1]. Identical normalized texts score 1.0;
    an empty side scores 0.0.
    """
    normalized_left = normalize_question_text(left)
    normalized_right = normalize_question_text(right)
    if not normalized_left or not normalized_right:
        return 0.0
    if normalized_left == normalized_right:
        return 1.0

    left_bigrams = _bigrams(normalized_left)
    right_bigrams = _bigrams(normalized_right)
    overlap = len(left_bigrams & right_bigrams)
    return (2 * overlap) / (len(left_bigrams) + len(right_bigrams))
