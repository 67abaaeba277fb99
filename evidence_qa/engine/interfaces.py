"""Collaborator protocols for the answer engine and the reuse matcher.

Single Responsibility: describe what the engine needs from the outside world
(embeddings, chat completions, chunk storage, approved answers, guardrail)
without binding it to OpenAI or Chroma. Production adapters live in
llm_client.py and chunk_store.py; tests pass fakes.
"""

from __future__ import annotations

from typing import Mapping, Protocol, Sequence

from .types import ApprovedAnswerCandidate, Chunk, Confidence, ScoredChunk


class EmbeddingService(Protocol):
    """Maps text to a fixed-length vector (1536 dimensions by default)."""

    def embed(self, text: str) -> list[float]: ...


class CompletionService(Protocol):
    """Runs one JSON-mode chat completion and returns the raw message content."""

    def complete_json(self, system_prompt: str, user_prompt: str) -> str: ...


class ChunkStore(Protocol):
    def top_k(
        self,
        org_id: str,
        embedding: Sequence[float],
        question_text: str,
        k: int,
    ) -> list[ScoredChunk]:
        """Similarity search restricted to the organization's embedded chunks."""
        ...

    def resolve_owned_chunks(self, org_id: str, chunk_ids: Sequence[str]) -> Mapping[str, Chunk]:
        """Return the subset of ``chunk_ids`` owned by the organization, keyed by id."""
        ...


class ApprovedAnswerStore(Protocol):
    def list_candidates(self, org_id: str) -> list[ApprovedAnswerCandidate]: ...

    def semantic_candidates(
        self,
        org_id: str,
        embedding: Sequence[float],
        k: int,
    ) -> list[tuple[str, float]]:
        """(approved_answer_id, similarity) pairs for the nearest stored questions."""
        ...


class GuardrailResult(Protocol):
    answer: str
    confidence: Confidence
    needs_review: bool


class ClaimCheckGuardrail(Protocol):
    def __call__(
        self,
        answer: str,
        quoted_snippets: Sequence[str],
        confidence: Confidence,
        needs_review: bool,
    ) -> GuardrailResult: ...
