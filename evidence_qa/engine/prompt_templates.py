"""Prompt templates for the extractor and the grounded answer generator.

Single Responsibility: String templates and snippet rendering only. No model calls.
"""

from __future__ import annotations

from typing import Sequence

from .constants import NOT_FOUND_TEXT, NOT_SPECIFIED_TEXT
from .types import ScoredChunk

# ---------------------------------------------------------------------------
# Evidence sufficiency extractor
# ---------------------------------------------------------------------------

EXTRACTOR_SYSTEM_PROMPT = (
    "You are an evidence extractor for document question-answering. "
    "Use ONLY the provided snippets. Do not guess, infer, or use external knowledge. "
    "Output JSON only. No prose. No markdown. No code fences. "
    "Return exactly these keys at top level: requirements, extracted, overall. "
    "Schema requirement: requirements: string[]. "
    "Schema requirement: extracted: Array<{ requirement: string, value: string | null, "
    "supportingChunkIds: string[] }>. "
    'Schema requirement: overall: "FOUND" | "PARTIAL" | "NOT_FOUND". '
    "Do NOT use objects/maps for requirements or extracted. Use arrays only. "
    "For each extracted item with non-null value, supportingChunkIds must be non-empty "
    "and must be chosen ONLY from provided allowedChunkIds. "
    "If a requirement is not explicitly supported, set value to null and supportingChunkIds to []. "
    "Minimal valid example: "
    '{"requirements":["Requirement A"],"extracted":[{"requirement":"Requirement A",'
    '"value":"Observed value","supportingChunkIds":["chunk-1"]}],"overall":"FOUND"}.'
)

LEGACY_GATE_SYSTEM_PROMPT = (
    "You are an evidence sufficiency gate for document question-answering. "
    "Use ONLY the provided snippets. Do not guess, infer, or use external knowledge. "
    "Return strict JSON with keys: sufficient, missingPoints, supportingChunkIds. "
    "sufficient must be true only when the snippets explicitly contain enough information "
    "to answer the question. "
    "missingPoints must be an array of missing required details when sufficient is false. "
    "supportingChunkIds must only include chunkIds from the snippet list that directly "
    "support sufficiency."
)

# ---------------------------------------------------------------------------
# Grounded answer generator
# ---------------------------------------------------------------------------

GROUNDED_ANSWER_SYSTEM_PROMPT = (
    "You are a strict evidence-bounded document QA assistant. "
    "Use ONLY the provided snippets. Do not infer or add outside facts. "
    "If snippets do not explicitly support the answer, respond with exactly "
    f"'{NOT_FOUND_TEXT}'. "
    f"If some details are missing, use exactly '{NOT_SPECIFIED_TEXT}' for those details. "
    "Return strict JSON with keys: answer, citations, confidence, needsReview. "
    "citations must be an array of objects with chunkId and quotedSnippet. "
    'confidence must be one of "low", "med", "high". '
    "Only cite chunkIds that exist in the snippet list."
)

STRICT_FORMAT_RULES = (
    " FORMAT RULES (your previous answer broke them): "
    "answer must be one or two complete plain-prose sentences. "
    "No bullet points or numbered lists. No markdown headings. No code fences. "
    "No double dashes. Do not repeat snippet labels such as 'Snippet 1' or 'chunkId:'. "
    "Do not paste the snippets back."
)

GROUNDED_ANSWER_STRICT_SYSTEM_PROMPT = GROUNDED_ANSWER_SYSTEM_PROMPT + STRICT_FORMAT_RULES


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def format_snippets(snippets: Sequence[ScoredChunk]) -> str:
    return "\n\n".join(
        f"Snippet {index}\nchunkId: {chunk.chunk_id}\ndocName: {chunk.doc_name}\ntext: {chunk.quoted_snippet}"
        for index, chunk in enumerate(snippets, start=1)
    )


def allowed_chunk_ids_csv(snippets: Sequence[ScoredChunk]) -> str:
    ids = [chunk.chunk_id.strip() for chunk in snippets if chunk.chunk_id.strip()]
    return ",".join(dict.fromkeys(ids))


def build_extractor_user_prompt(question: str, snippets: Sequence[ScoredChunk]) -> str:
    return (
        f"Question:\n{question}\n\n"
        f"allowedChunkIds (CSV): {allowed_chunk_ids_csv(snippets)}\n\n"
        f"Snippets:\n{format_snippets(snippets)}"
    )


def build_snippet_user_prompt(question: str, snippets: Sequence[ScoredChunk]) -> str:
    return f"Question:\n{question}\n\nSnippets:\n{format_snippets(snippets)}"
