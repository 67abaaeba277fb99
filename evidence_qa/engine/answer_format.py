"""Answer text checks: sentinel recognition and model format violations.

Single Responsibility: pure predicates over answer strings, shared by the
generator (retry decision) and the normalizer (final validation).
"""

from __future__ import annotations

from ..common.config_loader import GenerationSettings
from ..common.text_normalization import normalize_template_text
from .constants import (
    CHUNK_ID_LEAK_RE,
    CODE_FENCE_RE,
    DANGLING_FRAGMENT_RE,
    DOUBLE_DASH_RE,
    LIST_MARKER_RE,
    MARKDOWN_HEADING_RE,
    NOT_FOUND_TEXT,
    NOT_SPECIFIED_TEXT,
    SNIPPET_LEAK_RE,
)

_NORMALIZED_NOT_FOUND = normalize_template_text(NOT_FOUND_TEXT)
_NORMALIZED_NOT_SPECIFIED = normalize_template_text(NOT_SPECIFIED_TEXT)


def is_not_found_like(answer: str) -> bool:
    return _NORMALIZED_NOT_FOUND in normalize_template_text(answer or "")


def is_not_specified_like(answer: str) -> bool:
    return _NORMALIZED_NOT_SPECIFIED in normalize_template_text(answer or "")


def is_sentinel(answer: str) -> bool:
    return (answer or "").strip() in (NOT_FOUND_TEXT, NOT_SPECIFIED_TEXT)


def has_format_violation(answer: str, settings: GenerationSettings | None = None) -> bool:
    """True when the draft is not a plain prose answer.

    Empty text, list markers, fragments starting with dangling punctuation,
    ``--`` artifacts, markdown headings, code fences, echoed snippet labels and
    long multi-line dumps all count as violations.
    """
    settings = settings or GenerationSettings()
    trimmed = (answer or "").strip()
    if not trimmed:
        return True
    if LIST_MARKER_RE.match(trimmed) or DANGLING_FRAGMENT_RE.match(trimmed):
        return True
    if DOUBLE_DASH_RE.search(trimmed) or CODE_FENCE_RE.search(trimmed):
        return True
    if MARKDOWN_HEADING_RE.search(trimmed):
        return True
    if SNIPPET_LEAK_RE.search(trimmed) or CHUNK_ID_LEAK_RE.search(trimmed):
        return True
    return len(trimmed) > settings.max_answer_chars and trimmed.count("\n") > settings.max_answer_newlines


def validate_answer_format(answer: str, settings: GenerationSettings | None = None) -> bool:
    """Sentinels are always well-formed; everything else must pass the format checks."""
    if is_sentinel(answer):
        return True
    return not has_format_violation(answer, settings)
