"""Grounded answer generation with one format-enforcement retry.

The generator only ever sees the chosen chunks. The retry is an explicit
two-step attempt: a first call with the standard prompt and, only if that
draft breaks the answer format, a second call with the strict prompt. A
second violation ends in ``forced_not_found``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

from ..common.config_loader import GenerationSettings
from ..common.llm_helpers import parse_json_object
from ..common.text_normalization import normalize_for_match, normalize_whitespace
from .answer_format import has_format_violation, is_sentinel
from .interfaces import CompletionService
from .prompt_templates import (
    GROUNDED_ANSWER_STRICT_SYSTEM_PROMPT,
    GROUNDED_ANSWER_SYSTEM_PROMPT,
    build_snippet_user_prompt,
)
from .types import Citation, Confidence, ScoredChunk

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GroundedDraft:
    """Parsed model output, before any mapping to chunks."""
    answer: str
    cited: tuple[tuple[str, str], ...]  # (chunk_id, quoted_snippet)
    confidence: Confidence
    needs_review: bool


@dataclass
class GenerationOutcome:
    draft: GroundedDraft | None = None
    citations: list[Citation] = field(default_factory=list)
    attempts: int = 0
    had_format_violation: bool = False
    forced_not_found: bool = False
    debug: dict[str, Any] = field(default_factory=dict)


def parse_grounded_answer(content: str | None, max_citations: int = 5) -> GroundedDraft:
    """Defensive parse of the generator JSON.

    ``citations`` may be objects (``chunkId``/``quotedSnippet``) or, in older
    outputs, a bare ``citationChunkIds`` list. Missing confidence means low;
    missing needsReview means True. Unparseable content yields an empty answer.
    """
    parsed = parse_json_object(content)

    cited: list[tuple[str, str]] = []
    raw_citations = parsed.get("citations")
    if isinstance(raw_citations, list):
        for entry in raw_citations:
            if isinstance(entry, dict) and isinstance(entry.get("chunkId"), str):
                snippet = entry.get("quotedSnippet")
                cited.append((entry["chunkId"], snippet if isinstance(snippet, str) else ""))
    if not cited and isinstance(parsed.get("citationChunkIds"), list):
        cited = [(cid, "") for cid in parsed["citationChunkIds"] if isinstance(cid, str)]

    answer = parsed.get("answer")
    needs_review = parsed.get("needsReview")
    return GroundedDraft(
        answer=answer.strip() if isinstance(answer, str) else "",
        cited=tuple(cited[:max_citations]),
        confidence=Confidence.parse(parsed.get("confidence"), default=Confidence.LOW),
        needs_review=needs_review if isinstance(needs_review, bool) else True,
    )


def map_citations_to_chosen(
    cited: Sequence[tuple[str, str]],
    chosen: Sequence[ScoredChunk],
) -> list[Citation]:
    """Keep citations of chosen chunks only, one per chunk id.

    The model's quote is kept only when it really occurs in the chunk;
    otherwise the chunk's own snippet is used.
    """
    chosen_by_id = {chunk.chunk_id: chunk for chunk in chosen}
    citations: list[Citation] = []
    seen: set[str] = set()
    for chunk_id, quote in cited:
        chunk = chosen_by_id.get(chunk_id)
        if chunk is None or chunk_id in seen:
            continue
        seen.add(chunk_id)
        snippet = chunk.quoted_snippet
        normalized_quote = normalize_for_match(quote)
        if normalized_quote and normalized_quote in normalize_for_match(chunk.full_content or chunk.quoted_snippet):
            snippet = quote
        citations.append(
            Citation(chunk_id=chunk.chunk_id, doc_name=chunk.doc_name, quoted_snippet=normalize_whitespace(snippet))
        )
    return citations


def generate_grounded_answer(
    completion: CompletionService,
    question: str,
    chosen: Sequence[ScoredChunk],
    *,
    strict: bool = False,
    settings: GenerationSettings | None = None,
) -> GroundedDraft:
    settings = settings or GenerationSettings()
    system_prompt = GROUNDED_ANSWER_STRICT_SYSTEM_PROMPT if strict else GROUNDED_ANSWER_SYSTEM_PROMPT
    content = completion.complete_json(system_prompt, build_snippet_user_prompt(question, chosen))
    return parse_grounded_answer(content, settings.max_citations)


def execute_grounded_generation(
    completion: CompletionService,
    question: str,
    chosen: Sequence[ScoredChunk],
    settings: GenerationSettings | None = None,
) -> GenerationOutcome:
    """Draft an answer from the chosen chunks, retrying once on a format violation."""
    settings = settings or GenerationSettings()
    outcome = GenerationOutcome(debug={"chosen_chunk_ids": [chunk.chunk_id for chunk in chosen]})

    # Attempt 1: standard prompt
    draft = generate_grounded_answer(completion, question, chosen, settings=settings)
    outcome.attempts = 1
    first_violation = not is_sentinel(draft.answer) and has_format_violation(draft.answer, settings)
    outcome.debug["first_attempt_violation"] = first_violation

    if first_violation:
        # Attempt 2: strict format prompt
        logger.info("Grounded draft violated answer format; retrying with strict prompt")
        outcome.had_format_violation = True
        draft = generate_grounded_answer(completion, question, chosen, strict=True, settings=settings)
        outcome.attempts = 2
        if not is_sentinel(draft.answer) and has_format_violation(draft.answer, settings):
            logger.info("Strict retry also violated answer format; forcing NOT_FOUND")
            outcome.forced_not_found = True
            outcome.debug["second_attempt_violation"] = True
            return outcome

    outcome.draft = draft
    outcome.citations = map_citations_to_chosen(draft.cited, chosen)
    return outcome
