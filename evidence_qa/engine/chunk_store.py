"""Chroma-backed evidence and approved-answer stores.

Single Responsibility: translate Chroma collections into the ChunkStore and
ApprovedAnswerStore protocols. Both collections use cosine space, so a query
distance ``d`` maps to similarity ``1 - d``.

Chunk collection layout: document = chunk text, metadata =
``{organization_id, doc_name}``.
Approved-answer collection layout: embedding = question embedding,
document = question text, metadata = ``{organization_id, answer_text,
citation_chunk_ids (JSON list), normalized_question_text,
question_text_hash, updated_at (ISO 8601)}``.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence

import chromadb
from chromadb.errors import ChromaError

from ..common.config_loader import Settings, load_settings
from ..common.text_normalization import normalize_whitespace
from .types import ApprovedAnswerCandidate, Chunk, ScoredChunk, UpstreamServiceError

logger = logging.getLogger(__name__)

_ANCHOR_TOKEN_RE = re.compile(r"\b[a-zA-Z][a-zA-Z0-9-]{3,}\b")
_MAX_ANCHOR_TOKENS = 20
_COLLECTION_METADATA = {"hnsw:space": "cosine"}


def get_question_anchor_tokens(question_text: str) -> list[str]:
    tokens: list[str] = []
    for match in _ANCHOR_TOKEN_RE.findall(question_text or ""):
        token = match.lower()
        if token not in tokens:
            tokens.append(token)
    return tokens[:_MAX_ANCHOR_TOKENS]


def select_context_snippet(content: str, anchor_tokens: Sequence[str], snippet_chars: int) -> str:
    """Cut a snippet around the earliest anchor token.

    A third of the window is kept as leading context; without any anchor the
    snippet is the head of the chunk.
    """
    normalized = normalize_whitespace(content or "")
    if len(normalized) <= snippet_chars:
        return normalized

    lowered = normalized.lower()
    positions = [lowered.find(token) for token in anchor_tokens]
    positions = [p for p in positions if p >= 0]
    if not positions:
        return normalized[:snippet_chars].strip()

    start = max(0, min(positions) - snippet_chars // 3)
    end = min(len(normalized), start + snippet_chars)
    return normalized[start:end].strip()


def _first_row(results: Any, key: str) -> list[Any]:
    if not isinstance(results, Mapping):
        return []
    rows = results.get(key) or [[]]
    return list(rows[0] or [])


def get_persistent_client(settings: Settings | None = None) -> chromadb.ClientAPI:
    settings = settings or load_settings()
    return chromadb.PersistentClient(path=str(settings.chroma.path))


class ChromaChunkStore:
    """ChunkStore over a Chroma collection of evidence chunks."""

    def __init__(self, collection: Any, snippet_chars: int = 520):
        self.collection = collection
        self.snippet_chars = snippet_chars

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        client: chromadb.ClientAPI | None = None,
    ) -> "ChromaChunkStore":
        settings = settings or load_settings()
        client = client or get_persistent_client(settings)
        collection = client.get_or_create_collection(
            settings.chroma.chunks_collection,
            metadata=_COLLECTION_METADATA,
        )
        return cls(collection, snippet_chars=settings.retrieval.snippet_chars)

    def top_k(
        self,
        org_id: str,
        embedding: Sequence[float],
        question_text: str,
        k: int,
    ) -> list[ScoredChunk]:
        if k < 1:
            return []
        try:
            results = self.collection.query(
                query_embeddings=[list(embedding)],
                n_results=k,
                where={"organization_id": org_id},
                # Chroma always returns ids; 'ids' is not a valid `include` item.
                include=["documents", "metadatas", "distances"],
            )
        except ChromaError as exc:
            raise UpstreamServiceError("Chroma chunk query failed.") from exc

        ids = _first_row(results, "ids")
        documents = _first_row(results, "documents")
        metadatas = _first_row(results, "metadatas")
        distances = _first_row(results, "distances")
        anchor_tokens = get_question_anchor_tokens(question_text)

        chunks: list[ScoredChunk] = []
        for index, chunk_id in enumerate(ids):
            content = str(documents[index] or "") if index < len(documents) else ""
            metadata = (metadatas[index] if index < len(metadatas) else None) or {}
            distance = float(distances[index]) if index < len(distances) else 1.0
            chunks.append(
                ScoredChunk(
                    chunk_id=str(chunk_id),
                    doc_name=str(metadata.get("doc_name") or ""),
                    quoted_snippet=select_context_snippet(content, anchor_tokens, self.snippet_chars),
                    full_content=normalize_whitespace(content),
                    similarity=1.0 - distance,
                )
            )

        chunks.sort(key=lambda c: (-c.similarity, c.chunk_id))
        return chunks

    def resolve_owned_chunks(self, org_id: str, chunk_ids: Sequence[str]) -> dict[str, Chunk]:
        unique_ids = list(dict.fromkeys(cid for cid in chunk_ids if cid))
        if not unique_ids:
            return {}
        try:
            results = self.collection.get(
                ids=unique_ids,
                where={"organization_id": org_id},
                include=["documents", "metadatas"],
            )
        except ChromaError as exc:
            raise UpstreamServiceError("Chroma chunk lookup failed.") from exc

        ids = list(results.get("ids") or [])
        documents = list(results.get("documents") or [])
        metadatas = list(results.get("metadatas") or [])

        resolved: dict[str, Chunk] = {}
        for index, chunk_id in enumerate(ids):
            content = normalize_whitespace(str(documents[index] or "")) if index < len(documents) else ""
            metadata = (metadatas[index] if index < len(metadatas) else None) or {}
            resolved[str(chunk_id)] = Chunk(
                chunk_id=str(chunk_id),
                doc_name=str(metadata.get("doc_name") or ""),
                quoted_snippet=content,
                full_content=content,
            )
        return resolved


def _parse_updated_at(value: Any) -> datetime:
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_chunk_ids(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        value = json.loads(value) if value.strip() else []
    if not isinstance(value, list):
        raise ValueError("citation_chunk_ids must be a JSON list")
    return tuple(str(item) for item in value)


class ChromaApprovedAnswerStore:
    """ApprovedAnswerStore over a Chroma collection keyed by approved-answer id."""

    def __init__(self, collection: Any):
        self.collection = collection

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        client: chromadb.ClientAPI | None = None,
    ) -> "ChromaApprovedAnswerStore":
        settings = settings or load_settings()
        client = client or get_persistent_client(settings)
        collection = client.get_or_create_collection(
            settings.chroma.approved_answers_collection,
            metadata=_COLLECTION_METADATA,
        )
        return cls(collection)

    def list_candidates(self, org_id: str) -> list[ApprovedAnswerCandidate]:
        try:
            results = self.collection.get(
                where={"organization_id": org_id},
                include=["metadatas"],
            )
        except ChromaError as exc:
            raise UpstreamServiceError("Chroma approved-answer listing failed.") from exc

        ids = list(results.get("ids") or [])
        metadatas = list(results.get("metadatas") or [])

        candidates: list[ApprovedAnswerCandidate] = []
        for index, answer_id in enumerate(ids):
            metadata = (metadatas[index] if index < len(metadatas) else None) or {}
            try:
                candidates.append(
                    ApprovedAnswerCandidate(
                        approved_answer_id=str(answer_id),
                        answer_text=str(metadata.get("answer_text") or ""),
                        citation_chunk_ids=_parse_chunk_ids(metadata.get("citation_chunk_ids", "[]")),
                        normalized_question_text=str(metadata.get("normalized_question_text") or ""),
                        question_text_hash=str(metadata.get("question_text_hash") or ""),
                        updated_at=_parse_updated_at(metadata.get("updated_at", 0)),
                    )
                )
            except (ValueError, TypeError) as exc:
                logger.warning("Skipping approved answer %s with malformed metadata: %s", answer_id, exc)
        return candidates

    def semantic_candidates(
        self,
        org_id: str,
        embedding: Sequence[float],
        k: int,
    ) -> list[tuple[str, float]]:
        if k < 1:
            return []
        try:
            results = self.collection.query(
                query_embeddings=[list(embedding)],
                n_results=k,
                where={"organization_id": org_id},
                include=["distances"],
            )
        except ChromaError as exc:
            raise UpstreamServiceError("Chroma approved-answer query failed.") from exc

        ids = _first_row(results, "ids")
        distances = _first_row(results, "distances")
        return [
            (str(answer_id), 1.0 - float(distances[index]) if index < len(distances) else 0.0)
            for index, answer_id in enumerate(ids)
        ]
