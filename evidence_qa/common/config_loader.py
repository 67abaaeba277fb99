"""
Unified configuration loader for the evidence QA engine.

This module is the single source of truth for all configuration:
- Settings dataclasses (Settings and its per-section blocks)
- Loading settings from config/settings.yaml with env var overrides
- Pydantic schema validation for production-ready error reporting

All code should import configuration from this module, not from settings.yaml directly.
"""

from __future__ import annotations

import functools
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError, field_validator

logger = logging.getLogger(__name__)

_CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"
_REPO_ROOT = Path(__file__).resolve().parents[2]

_TRUTHY_ENV_VALUES = {"1", "true", "yes", "on"}

GATE_MODE_EXTRACTOR = "extractor"
GATE_MODE_LEGACY = "legacy"


# ─────────────────────────────────────────────────────────────────────────────
# Core Settings Dataclasses
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class OpenAISettings:
    chat_model: str = "gpt-4.1-mini"
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536
    temperature: float = 0.0
    timeout_secs: float = 60.0
    max_retries: int = 0


@dataclass(frozen=True)
class RerankWeights:
    """Weights for the hybrid rerank.

    final_score = vector*similarity + lexical*lexical_score
    Both weights should sum to 1.0
    """
    vector: float = 0.7
    lexical: float = 0.3


@dataclass(frozen=True)
class RetrievalSettings:
    top_k: int = 12
    rerank_top_n: int = 5
    max_answer_chunks: int = 3
    min_top_similarity: float = 0.2
    min_token_length: int = 4
    snippet_chars: int = 520
    weights: RerankWeights = field(default_factory=RerankWeights)


@dataclass(frozen=True)
class ExtractorSettings:
    gate_mode: str = GATE_MODE_EXTRACTOR
    max_requirements: int = 12
    max_extracted: int = 16
    max_supporting_chunk_ids: int = 5


@dataclass(frozen=True)
class GenerationSettings:
    max_citations: int = 5
    max_answer_chars: int = 1800
    max_answer_newlines: int = 12


@dataclass(frozen=True)
class ReuseSettings:
    near_exact_min_similarity: float = 0.93
    semantic_min_similarity: float = 0.88
    max_semantic_candidates: int = 12
    max_quoted_snippet_chars: int = 700


@dataclass(frozen=True)
class ChromaSettings:
    path: Path = Path("data/vector_store")
    chunks_collection: str = "evidence_chunks"
    approved_answers_collection: str = "approved_answers"


@dataclass(frozen=True)
class Settings:
    """Application settings loaded from config/settings.yaml.

    This is a frozen dataclass to ensure immutability after loading.
    The defaults reproduce the shipped settings file, so ``Settings()`` is a
    valid configuration on its own (handy in tests).
    """
    openai: OpenAISettings = field(default_factory=OpenAISettings)
    retrieval: RetrievalSettings = field(default_factory=RetrievalSettings)
    extractor: ExtractorSettings = field(default_factory=ExtractorSettings)
    generation: GenerationSettings = field(default_factory=GenerationSettings)
    reuse: ReuseSettings = field(default_factory=ReuseSettings)
    chroma: ChromaSettings = field(default_factory=ChromaSettings)
    allow_debug_trace: bool = False


# ─────────────────────────────────────────────────────────────────────────────
# Pydantic Schema for settings.yaml
# ─────────────────────────────────────────────────────────────────────────────


class _SectionSchema(BaseModel):
    model_config = {"extra": "allow"}


class OpenAISectionSchema(_SectionSchema):
    chat_model: str = OpenAISettings.chat_model
    embedding_model: str = OpenAISettings.embedding_model
    embedding_dimensions: int = OpenAISettings.embedding_dimensions
    temperature: float = OpenAISettings.temperature
    timeout_secs: float = OpenAISettings.timeout_secs
    max_retries: int = OpenAISettings.max_retries


class WeightsSchema(_SectionSchema):
    vector: float = RerankWeights.vector
    lexical: float = RerankWeights.lexical


class RetrievalSectionSchema(_SectionSchema):
    top_k: int = RetrievalSettings.top_k
    rerank_top_n: int = RetrievalSettings.rerank_top_n
    max_answer_chunks: int = RetrievalSettings.max_answer_chunks
    min_top_similarity: float = RetrievalSettings.min_top_similarity
    min_token_length: int = RetrievalSettings.min_token_length
    snippet_chars: int = RetrievalSettings.snippet_chars
    weights: WeightsSchema = WeightsSchema()


class ExtractorSectionSchema(_SectionSchema):
    gate_mode: str = GATE_MODE_EXTRACTOR
    max_requirements: int = ExtractorSettings.max_requirements
    max_extracted: int = ExtractorSettings.max_extracted
    max_supporting_chunk_ids: int = ExtractorSettings.max_supporting_chunk_ids

    @field_validator("gate_mode", mode="before")
    @classmethod
    def check_gate_mode(cls, v: Any) -> str:
        value = str(v or "").strip().lower()
        if value not in {GATE_MODE_EXTRACTOR, GATE_MODE_LEGACY}:
            raise ValueError(f"gate_mode must be 'extractor' or 'legacy' (got {v!r})")
        return value


class GenerationSectionSchema(_SectionSchema):
    max_citations: int = GenerationSettings.max_citations
    max_answer_chars: int = GenerationSettings.max_answer_chars
    max_answer_newlines: int = GenerationSettings.max_answer_newlines


class ReuseSectionSchema(_SectionSchema):
    near_exact_min_similarity: float = ReuseSettings.near_exact_min_similarity
    semantic_min_similarity: float = ReuseSettings.semantic_min_similarity
    max_semantic_candidates: int = ReuseSettings.max_semantic_candidates
    max_quoted_snippet_chars: int = ReuseSettings.max_quoted_snippet_chars


class ChromaSectionSchema(_SectionSchema):
    path: str = "data/vector_store"
    chunks_collection: str = ChromaSettings.chunks_collection
    approved_answers_collection: str = ChromaSettings.approved_answers_collection


class DebugSectionSchema(_SectionSchema):
    allow_trace: bool = False


class SettingsFileSchema(_SectionSchema):
    """Schema for config/settings.yaml. Unknown keys are tolerated."""

    openai: OpenAISectionSchema = OpenAISectionSchema()
    retrieval: RetrievalSectionSchema = RetrievalSectionSchema()
    extractor: ExtractorSectionSchema = ExtractorSectionSchema()
    generation: GenerationSectionSchema = GenerationSectionSchema()
    reuse: ReuseSectionSchema = ReuseSectionSchema()
    chroma: ChromaSectionSchema = ChromaSectionSchema()
    debug: DebugSectionSchema = DebugSectionSchema()

    @field_validator(
        "openai", "retrieval", "extractor", "generation", "reuse", "chroma", "debug",
        mode="before",
    )
    @classmethod
    def none_as_empty(cls, v: Any) -> Any:
        return {} if v is None else v


def validate_settings_file(raw: dict[str, Any]) -> SettingsFileSchema:
    """Validate the raw YAML mapping.

    Raises:
        ValueError: With the pydantic error report when the file is malformed.
    """
    try:
        return SettingsFileSchema.model_validate(raw)
    except ValidationError as exc:
        logger.error("Invalid config/settings.yaml: %s", exc)
        raise ValueError(f"Invalid config/settings.yaml: {exc}") from exc


# ─────────────────────────────────────────────────────────────────────────────
# Loading
# ─────────────────────────────────────────────────────────────────────────────


def _validate_settings(settings: Settings) -> None:
    """Validate cross-field settings values."""
    r = settings.retrieval
    if r.top_k < 1:
        raise ValueError(f"retrieval.top_k must be >= 1 (got {r.top_k})")
    if r.rerank_top_n < 1:
        raise ValueError(f"retrieval.rerank_top_n must be >= 1 (got {r.rerank_top_n})")
    if r.max_answer_chunks < 1:
        raise ValueError(f"retrieval.max_answer_chunks must be >= 1 (got {r.max_answer_chunks})")
    if not (-1.0 <= r.min_top_similarity <= 1.0):
        raise ValueError(
            f"retrieval.min_top_similarity must be within [-1, 1] (got {r.min_top_similarity})"
        )

    weight_sum = r.weights.vector + r.weights.lexical
    if not (0.95 <= weight_sum <= 1.05):
        raise ValueError(
            f"retrieval.weights must sum to ~1.0 (got {weight_sum:.2f}: "
            f"vector={r.weights.vector}, lexical={r.weights.lexical})"
        )

    for name in ("near_exact_min_similarity", "semantic_min_similarity"):
        value = getattr(settings.reuse, name)
        if not (0.0 <= value <= 1.0):
            raise ValueError(f"reuse.{name} must be within [0, 1] (got {value})")

    if settings.openai.embedding_dimensions < 1:
        raise ValueError(
            f"openai.embedding_dimensions must be >= 1 (got {settings.openai.embedding_dimensions})"
        )


def _load_settings_yaml() -> dict[str, Any]:
    """Load raw settings from config/settings.yaml."""
    settings_path = _CONFIG_DIR / "settings.yaml"
    if not settings_path.exists():
        return {}
    with open(settings_path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _env_int(key: str, default: int) -> int:
    val = os.getenv(key)
    return int(val) if val and val.strip() else default


def _env_float(key: str, default: float) -> float:
    val = os.getenv(key)
    if val is None or val.strip() == "":
        return default
    return float(val)


def _env_bool(key: str, default: bool) -> bool:
    val = os.getenv(key)
    if val is None or val.strip() == "":
        return default
    return val.strip().lower() in _TRUTHY_ENV_VALUES


def _resolve_gate_mode(configured: str) -> str:
    """EXTRACTOR_GATE=false switches to the legacy sufficiency gate."""
    raw = os.getenv("EXTRACTOR_GATE")
    if raw is None or raw.strip() == "":
        return configured
    return GATE_MODE_EXTRACTOR if raw.strip().lower() in _TRUTHY_ENV_VALUES else GATE_MODE_LEGACY


@functools.lru_cache(maxsize=1)
def load_settings() -> Settings:
    """Load and validate application settings from config/settings.yaml.

    Environment variables override YAML values:
    - OPENAI_CHAT_MODEL, OPENAI_EMBEDDING_MODEL
    - EVIDENCE_QA_OPENAI_TIMEOUT_SECS, EVIDENCE_QA_OPENAI_MAX_RETRIES
    - EVIDENCE_QA_TOP_K, EVIDENCE_QA_RERANK_TOP_N, EVIDENCE_QA_MAX_ANSWER_CHUNKS
    - EVIDENCE_QA_MIN_TOP_SIMILARITY
    - EXTRACTOR_GATE
    - EVIDENCE_QA_CHROMA_PATH
    - EVIDENCE_QA_DEBUG_TRACE

    Returns:
        Settings: Validated, frozen settings object
    """
    load_dotenv()

    schema = validate_settings_file(_load_settings_yaml())

    openai_cfg = schema.openai
    openai_settings = OpenAISettings(
        chat_model=os.getenv("OPENAI_CHAT_MODEL") or openai_cfg.chat_model,
        embedding_model=os.getenv("OPENAI_EMBEDDING_MODEL") or openai_cfg.embedding_model,
        embedding_dimensions=openai_cfg.embedding_dimensions,
        temperature=openai_cfg.temperature,
        timeout_secs=_env_float("EVIDENCE_QA_OPENAI_TIMEOUT_SECS", openai_cfg.timeout_secs),
        max_retries=_env_int("EVIDENCE_QA_OPENAI_MAX_RETRIES", openai_cfg.max_retries),
    )

    retrieval_cfg = schema.retrieval
    retrieval = RetrievalSettings(
        top_k=_env_int("EVIDENCE_QA_TOP_K", retrieval_cfg.top_k),
        rerank_top_n=_env_int("EVIDENCE_QA_RERANK_TOP_N", retrieval_cfg.rerank_top_n),
        max_answer_chunks=_env_int("EVIDENCE_QA_MAX_ANSWER_CHUNKS", retrieval_cfg.max_answer_chunks),
        min_top_similarity=_env_float(
            "EVIDENCE_QA_MIN_TOP_SIMILARITY", retrieval_cfg.min_top_similarity
        ),
        min_token_length=retrieval_cfg.min_token_length,
        snippet_chars=retrieval_cfg.snippet_chars,
        weights=RerankWeights(
            vector=retrieval_cfg.weights.vector,
            lexical=retrieval_cfg.weights.lexical,
        ),
    )

    extractor_cfg = schema.extractor
    extractor = ExtractorSettings(
        gate_mode=_resolve_gate_mode(extractor_cfg.gate_mode),
        max_requirements=extractor_cfg.max_requirements,
        max_extracted=extractor_cfg.max_extracted,
        max_supporting_chunk_ids=extractor_cfg.max_supporting_chunk_ids,
    )

    generation = GenerationSettings(
        max_citations=schema.generation.max_citations,
        max_answer_chars=schema.generation.max_answer_chars,
        max_answer_newlines=schema.generation.max_answer_newlines,
    )

    reuse = ReuseSettings(
        near_exact_min_similarity=schema.reuse.near_exact_min_similarity,
        semantic_min_similarity=schema.reuse.semantic_min_similarity,
        max_semantic_candidates=schema.reuse.max_semantic_candidates,
        max_quoted_snippet_chars=schema.reuse.max_quoted_snippet_chars,
    )

    chroma_path = Path(os.getenv("EVIDENCE_QA_CHROMA_PATH") or schema.chroma.path)
    if not chroma_path.is_absolute():
        chroma_path = _REPO_ROOT / chroma_path
    chroma = ChromaSettings(
        path=chroma_path,
        chunks_collection=schema.chroma.chunks_collection,
        approved_answers_collection=schema.chroma.approved_answers_collection,
    )

    settings = Settings(
        openai=openai_settings,
        retrieval=retrieval,
        extractor=extractor,
        generation=generation,
        reuse=reuse,
        chroma=chroma,
        allow_debug_trace=_env_bool("EVIDENCE_QA_DEBUG_TRACE", schema.debug.allow_trace),
    )

    _validate_settings(settings)
    return settings


def clear_config_cache() -> None:
    """Clear all cached configurations (useful for testing)."""
    load_settings.cache_clear()
