"""Pytest configuration and shared fakes for tests.

The fakes implement the collaborator protocols in evidence_qa/engine/interfaces.py
so engine and reuse tests never touch OpenAI or Chroma.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Sequence

import pytest

from evidence_qa.common.config_loader import Settings, clear_config_cache
from evidence_qa.engine.types import ApprovedAnswerCandidate, Chunk, ScoredChunk


@pytest.fixture(autouse=True)
def fresh_config_cache():
    """Every test starts from an unloaded settings cache."""
    clear_config_cache()
    yield
    clear_config_cache()


# ─────────────────────────────────────────────────────────────────────────────
# Builders
# ─────────────────────────────────────────────────────────────────────────────


def make_chunk(
    chunk_id: str,
    text: str,
    *,
    similarity: float = 0.8,
    doc_name: str = "Security Policy.pdf",
) -> ScoredChunk:
    return ScoredChunk(
        chunk_id=chunk_id,
        doc_name=doc_name,
        quoted_snippet=text,
        full_content=text,
        similarity=similarity,
    )


def make_candidate(
    approved_answer_id: str,
    question_text: str,
    answer_text: str,
    citation_chunk_ids: Sequence[str],
    *,
    updated_at: datetime | None = None,
) -> ApprovedAnswerCandidate:
    from evidence_qa.common.text_normalization import build_question_text_metadata

    metadata = build_question_text_metadata(question_text)
    return ApprovedAnswerCandidate(
        approved_answer_id=approved_answer_id,
        answer_text=answer_text,
        citation_chunk_ids=tuple(citation_chunk_ids),
        normalized_question_text=metadata["normalized_question_text"],
        question_text_hash=metadata["question_text_hash"],
        updated_at=updated_at or datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


def extractor_payload(
    requirement: str,
    value: str | None,
    chunk_ids: Sequence[str],
    overall: str = "FOUND",
) -> str:
    return json.dumps({
        "requirements": [requirement],
        "extracted": [
            {"requirement": requirement, "value": value, "supportingChunkIds": list(chunk_ids)}
        ],
        "overall": overall,
    })


def generator_payload(
    answer: str,
    chunk_ids: Sequence[str],
    *,
    confidence: str = "high",
    needs_review: bool = False,
) -> str:
    return json.dumps({
        "answer": answer,
        "citations": [{"chunkId": cid, "quotedSnippet": ""} for cid in chunk_ids],
        "confidence": confidence,
        "needsReview": needs_review,
    })


# ─────────────────────────────────────────────────────────────────────────────
# Fakes
# ─────────────────────────────────────────────────────────────────────────────


class FakeCompletionService:
    """Returns queued responses in order and records every prompt pair."""

    def __init__(self, responses: Sequence[str] = ()):
        self.responses = list(responses)
        self.calls: list[tuple[str, str]] = []

    def complete_json(self, system_prompt: str, user_prompt: str) -> str:
        self.calls.append((system_prompt, user_prompt))
        if not self.responses:
            raise AssertionError("unexpected completion call")
        return self.responses.pop(0)


class FakeEmbeddingService:
    def __init__(self, vector: Sequence[float] = (0.1, 0.2, 0.3)):
        self.vector = list(vector)
        self.calls: list[str] = []

    def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        return list(self.vector)


class FakeChunkStore:
    """In-memory chunk store keyed by organization."""

    def __init__(self, chunks_by_org: dict[str, list[ScoredChunk]] | None = None):
        self.chunks_by_org = chunks_by_org or {}
        self.top_k_calls: list[tuple[str, int]] = []
        self.resolve_calls: list[tuple[str, list[str]]] = []

    def top_k(self, org_id: str, embedding: Sequence[float], question_text: str, k: int) -> list[ScoredChunk]:
        self.top_k_calls.append((org_id, k))
        chunks = sorted(self.chunks_by_org.get(org_id, []), key=lambda c: (-c.similarity, c.chunk_id))
        return chunks[:k]

    def resolve_owned_chunks(self, org_id: str, chunk_ids: Sequence[str]) -> dict[str, Chunk]:
        self.resolve_calls.append((org_id, list(chunk_ids)))
        owned = {c.chunk_id: c for c in self.chunks_by_org.get(org_id, [])}
        return {
            cid: Chunk(
                chunk_id=owned[cid].chunk_id,
                doc_name=owned[cid].doc_name,
                quoted_snippet=owned[cid].quoted_snippet,
                full_content=owned[cid].full_content,
            )
            for cid in chunk_ids
            if cid in owned
        }


class FakeApprovedAnswerStore:
    def __init__(
        self,
        candidates_by_org: dict[str, list[ApprovedAnswerCandidate]] | None = None,
        semantic_rows: list[tuple[str, float]] | None = None,
    ):
        self.candidates_by_org = candidates_by_org or {}
        self.semantic_rows = semantic_rows or []
        self.semantic_calls: list[tuple[str, int]] = []

    def list_candidates(self, org_id: str) -> list[ApprovedAnswerCandidate]:
        return list(self.candidates_by_org.get(org_id, []))

    def semantic_candidates(self, org_id: str, embedding: Sequence[float], k: int) -> list[tuple[str, float]]:
        self.semantic_calls.append((org_id, k))
        return list(self.semantic_rows)[:k]


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def embedding() -> FakeEmbeddingService:
    return FakeEmbeddingService()


def build_collection_result(**rows: Any) -> dict[str, Any]:
    """Chroma query results wrap each field in one outer list per query."""
    return {key: [value] for key, value in rows.items()}
