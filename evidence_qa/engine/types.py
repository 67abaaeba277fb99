from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .constants import NOT_FOUND_TEXT


class Confidence(str, Enum):
    LOW = "low"
    MED = "med"
    HIGH = "high"

    @classmethod
    def parse(cls, value: Any, default: "Confidence" | None = None) -> "Confidence":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return default if default is not None else cls.LOW

    @property
    def rank(self) -> int:
        return _CONFIDENCE_ORDER.index(self)

    def downgrade(self) -> "Confidence":
        """One step down for answers that need review: high becomes med."""
        return Confidence.MED if self is Confidence.HIGH else self

    def cap(self, ceiling: "Confidence") -> "Confidence":
        return self if self.rank <= ceiling.rank else ceiling


_CONFIDENCE_ORDER = (Confidence.LOW, Confidence.MED, Confidence.HIGH)


class Overall(str, Enum):
    FOUND = "FOUND"
    PARTIAL = "PARTIAL"
    NOT_FOUND = "NOT_FOUND"


class MatchType(str, Enum):
    EXACT = "exact"
    NEAR_EXACT = "near_exact"
    SEMANTIC = "semantic"


class NotFoundReason(str, Enum):
    NO_RELEVANT_EVIDENCE = "NO_RELEVANT_EVIDENCE"
    RETRIEVAL_BELOW_THRESHOLD = "RETRIEVAL_BELOW_THRESHOLD"
    FILTERED_AS_IRRELEVANT = "FILTERED_AS_IRRELEVANT"


# ---------------------------------------------------------------------------
# Evidence
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Chunk:
    """A stored slice of an organization's evidence document."""
    chunk_id: str
    doc_name: str
    quoted_snippet: str
    full_content: str


@dataclass(frozen=True)
class ScoredChunk:
    chunk_id: str
    doc_name: str
    quoted_snippet: str
    full_content: str
    similarity: float
    lexical_overlap_count: int = 0
    lexical_score: float = 0.0
    final_score: float = 0.0

    @classmethod
    def from_chunk(cls, chunk: Chunk, similarity: float) -> "ScoredChunk":
        return cls(
            chunk_id=chunk.chunk_id,
            doc_name=chunk.doc_name,
            quoted_snippet=chunk.quoted_snippet,
            full_content=chunk.full_content,
            similarity=similarity,
        )


@dataclass(frozen=True)
class Citation:
    chunk_id: str
    doc_name: str
    quoted_snippet: str


# ---------------------------------------------------------------------------
# Sufficiency extraction
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ExtractedItem:
    requirement: str
    value: str | None
    supporting_chunk_ids: tuple[str, ...] = ()

    @property
    def is_valid(self) -> bool:
        return bool(self.value) and len(self.supporting_chunk_ids) > 0


@dataclass(frozen=True)
class SufficiencyVerdict:
    requirements: tuple[str, ...]
    extracted: tuple[ExtractedItem, ...]
    overall: Overall
    had_shape_repair: bool = False
    extractor_invalid: bool = False
    invalid_reason: str | None = None

    @property
    def valid_items(self) -> tuple[ExtractedItem, ...]:
        return tuple(item for item in self.extracted if item.is_valid)

    @property
    def supporting_chunk_ids(self) -> list[str]:
        """Support of valid items, in item order, deduplicated."""
        ids: list[str] = []
        for item in self.valid_items:
            for chunk_id in item.supporting_chunk_ids:
                if chunk_id not in ids:
                    ids.append(chunk_id)
        return ids

    def to_dict(self) -> dict[str, Any]:
        """Model-shaped payload; the repair function accepts it back unchanged."""
        payload: dict[str, Any] = {
            "requirements": list(self.requirements),
            "extracted": [
                {
                    "requirement": item.requirement,
                    "value": item.value,
                    "supportingChunkIds": list(item.supporting_chunk_ids),
                }
                for item in self.extracted
            ],
            "overall": self.overall.value,
            "hadShapeRepair": self.had_shape_repair,
            "extractorInvalid": self.extractor_invalid,
        }
        if self.invalid_reason:
            payload["invalidReason"] = self.invalid_reason
        return payload


# ---------------------------------------------------------------------------
# Answers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EvidenceDebugInfo:
    threshold: float
    retrieved_top_k: list[dict[str, Any]] = field(default_factory=list)
    reranked_top_n: list[dict[str, Any]] = field(default_factory=list)
    chosen_chunks: list[dict[str, Any]] = field(default_factory=list)
    sufficiency: dict[str, Any] | None = None
    final_citations: list[dict[str, Any]] = field(default_factory=list)
    not_found_reason: NotFoundReason | None = None
    generation: dict[str, Any] | None = None
    coverage_gaps: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class EvidenceAnswer:
    answer: str
    citations: list[Citation]
    confidence: Confidence
    needs_review: bool
    not_found_reason: NotFoundReason | None = None
    reused_from_approved_answer_id: str | None = None
    reused_match_type: MatchType | None = None
    debug: EvidenceDebugInfo | None = None

    @property
    def is_not_found(self) -> bool:
        return self.answer == NOT_FOUND_TEXT and not self.citations

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["confidence"] = self.confidence.value
        if self.not_found_reason is not None:
            data["not_found_reason"] = self.not_found_reason.value
        if self.reused_match_type is not None:
            data["reused_match_type"] = self.reused_match_type.value
        if self.debug is not None and self.debug.not_found_reason is not None:
            data["debug"]["not_found_reason"] = self.debug.not_found_reason.value
        return data


def not_found_answer(
    reason: NotFoundReason | None = None,
    debug: EvidenceDebugInfo | None = None,
) -> EvidenceAnswer:
    """The canonical NOT_FOUND sentinel."""
    return EvidenceAnswer(
        answer=NOT_FOUND_TEXT,
        citations=[],
        confidence=Confidence.LOW,
        needs_review=True,
        not_found_reason=reason,
        debug=debug,
    )


# ---------------------------------------------------------------------------
# Approved-answer reuse
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ApprovedAnswerCandidate:
    approved_answer_id: str
    answer_text: str
    citation_chunk_ids: tuple[str, ...]
    normalized_question_text: str
    question_text_hash: str
    updated_at: datetime


@dataclass(frozen=True)
class ReusedApprovedAnswer:
    approved_answer_id: str
    answer_text: str
    citations: list[Citation]
    match_type: MatchType


class EvidenceEngineError(RuntimeError):
    """Raised when the evidence engine cannot complete a request."""


class UpstreamServiceError(EvidenceEngineError):
    """An embedding, completion or vector store call failed."""
