"""Tests for evidence_qa/common/config_loader.py - configuration loader.

Covers:
- Settings dataclass defaults
- YAML loading and schema validation with Pydantic
- Environment variable overrides
- Cross-field validation
"""

from pathlib import Path

import pytest
import yaml

import evidence_qa.common.config_loader as config_loader
from evidence_qa.common.config_loader import (
    GATE_MODE_EXTRACTOR,
    GATE_MODE_LEGACY,
    RerankWeights,
    RetrievalSettings,
    ReuseSettings,
    Settings,
    _validate_settings,
    clear_config_cache,
    load_settings,
    validate_settings_file,
)

_OVERRIDE_ENV_VARS = (
    "OPENAI_CHAT_MODEL",
    "OPENAI_EMBEDDING_MODEL",
    "EVIDENCE_QA_OPENAI_TIMEOUT_SECS",
    "EVIDENCE_QA_OPENAI_MAX_RETRIES",
    "EVIDENCE_QA_TOP_K",
    "EVIDENCE_QA_RERANK_TOP_N",
    "EVIDENCE_QA_MAX_ANSWER_CHUNKS",
    "EVIDENCE_QA_MIN_TOP_SIMILARITY",
    "EVIDENCE_QA_CHROMA_PATH",
    "EVIDENCE_QA_DEBUG_TRACE",
    "EXTRACTOR_GATE",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in _OVERRIDE_ENV_VARS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(config_loader, "load_dotenv", lambda *a, **k: False)


@pytest.fixture
def config_dir(tmp_path, monkeypatch):
    """Point the loader at a temporary config directory."""
    monkeypatch.setattr(config_loader, "_CONFIG_DIR", tmp_path)
    return tmp_path


def _write_settings(config_dir: Path, data: dict) -> None:
    (config_dir / "settings.yaml").write_text(yaml.safe_dump(data), encoding="utf-8")


# ─────────────────────────────────────────────────────────────────────────────
# Defaults
# ─────────────────────────────────────────────────────────────────────────────


class TestDefaults:
    def test_settings_defaults_are_valid(self):
        """Settings() is a complete configuration on its own."""
        settings = Settings()
        _validate_settings(settings)
        assert settings.retrieval.top_k == 12
        assert settings.retrieval.rerank_top_n == 5
        assert settings.retrieval.max_answer_chunks == 3
        assert settings.retrieval.min_top_similarity == 0.2
        assert settings.retrieval.weights == RerankWeights(vector=0.7, lexical=0.3)
        assert settings.reuse.near_exact_min_similarity == 0.93
        assert settings.reuse.semantic_min_similarity == 0.88
        assert settings.openai.embedding_dimensions == 1536
        assert settings.allow_debug_trace is False

    def test_shipped_settings_file_matches_defaults(self):
        """config/settings.yaml loads to the same numbers as the dataclass defaults."""
        settings = load_settings()
        assert settings.retrieval == RetrievalSettings()
        assert settings.reuse == ReuseSettings()
        assert settings.extractor.gate_mode == GATE_MODE_EXTRACTOR
        assert settings.chroma.path.is_absolute()


# ─────────────────────────────────────────────────────────────────────────────
# YAML loading
# ─────────────────────────────────────────────────────────────────────────────


class TestYamlLoading:
    def test_missing_file_uses_defaults(self, config_dir):
        settings = load_settings()
        assert settings.retrieval.top_k == 12
        assert settings.openai.chat_model == "gpt-4.1-mini"

    def test_values_from_yaml(self, config_dir):
        _write_settings(config_dir, {
            "retrieval": {"top_k": 20, "weights": {"vector": 0.6, "lexical": 0.4}},
            "reuse": {"semantic_min_similarity": 0.9},
            "debug": {"allow_trace": True},
        })
        settings = load_settings()
        assert settings.retrieval.top_k == 20
        assert settings.retrieval.weights.lexical == 0.4
        assert settings.reuse.semantic_min_similarity == 0.9
        assert settings.allow_debug_trace is True

    def test_empty_section_is_tolerated(self, config_dir):
        (config_dir / "settings.yaml").write_text("retrieval:\nreuse:\n", encoding="utf-8")
        assert load_settings().retrieval.top_k == 12

    def test_settings_are_cached(self, config_dir):
        assert load_settings() is load_settings()
        first = load_settings()
        clear_config_cache()
        assert load_settings() is not first


class TestSchemaValidation:
    def test_invalid_gate_mode_rejected(self):
        with pytest.raises(ValueError, match="gate_mode"):
            validate_settings_file({"extractor": {"gate_mode": "sometimes"}})

    def test_wrong_type_rejected(self):
        with pytest.raises(ValueError, match="Invalid config/settings.yaml"):
            validate_settings_file({"retrieval": {"top_k": "many"}})

    def test_unknown_keys_tolerated(self):
        schema = validate_settings_file({"retrieval": {"top_k": 3, "experimental": True}, "extra": 1})
        assert schema.retrieval.top_k == 3

    def test_gate_mode_is_normalized(self):
        schema = validate_settings_file({"extractor": {"gate_mode": " Legacy "}})
        assert schema.extractor.gate_mode == GATE_MODE_LEGACY


# ─────────────────────────────────────────────────────────────────────────────
# Environment overrides
# ─────────────────────────────────────────────────────────────────────────────


class TestEnvOverrides:
    def test_numeric_overrides(self, config_dir, monkeypatch):
        monkeypatch.setenv("EVIDENCE_QA_TOP_K", "8")
        monkeypatch.setenv("EVIDENCE_QA_RERANK_TOP_N", "4")
        monkeypatch.setenv("EVIDENCE_QA_MAX_ANSWER_CHUNKS", "2")
        monkeypatch.setenv("EVIDENCE_QA_MIN_TOP_SIMILARITY", "0.35")
        monkeypatch.setenv("EVIDENCE_QA_OPENAI_TIMEOUT_SECS", "15")
        settings = load_settings()
        assert settings.retrieval.top_k == 8
        assert settings.retrieval.rerank_top_n == 4
        assert settings.retrieval.max_answer_chunks == 2
        assert settings.retrieval.min_top_similarity == 0.35
        assert settings.openai.timeout_secs == 15.0

    def test_model_overrides(self, config_dir, monkeypatch):
        monkeypatch.setenv("OPENAI_CHAT_MODEL", "gpt-4o")
        monkeypatch.setenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-large")
        settings = load_settings()
        assert settings.openai.chat_model == "gpt-4o"
        assert settings.openai.embedding_model == "text-embedding-3-large"

    def test_blank_env_value_is_ignored(self, config_dir, monkeypatch):
        monkeypatch.setenv("EVIDENCE_QA_TOP_K", "  ")
        assert load_settings().retrieval.top_k == 12

    @pytest.mark.parametrize("value,expected", [
        ("false", GATE_MODE_LEGACY),
        ("0", GATE_MODE_LEGACY),
        ("true", GATE_MODE_EXTRACTOR),
    ])
    def test_extractor_gate_switch(self, config_dir, monkeypatch, value, expected):
        monkeypatch.setenv("EXTRACTOR_GATE", value)
        assert load_settings().extractor.gate_mode == expected

    def test_debug_trace_switch(self, config_dir, monkeypatch):
        monkeypatch.setenv("EVIDENCE_QA_DEBUG_TRACE", "yes")
        assert load_settings().allow_debug_trace is True

    def test_relative_chroma_path_resolved_against_repo_root(self, config_dir, monkeypatch):
        monkeypatch.setenv("EVIDENCE_QA_CHROMA_PATH", "var/chroma")
        path = load_settings().chroma.path
        assert path.is_absolute()
        assert path.parts[-2:] == ("var", "chroma")

    def test_absolute_chroma_path_kept(self, config_dir, monkeypatch, tmp_path):
        target = tmp_path / "store"
        monkeypatch.setenv("EVIDENCE_QA_CHROMA_PATH", str(target))
        assert load_settings().chroma.path == target


# ─────────────────────────────────────────────────────────────────────────────
# Cross-field validation
# ─────────────────────────────────────────────────────────────────────────────


class TestValidateSettings:
    def test_top_k_must_be_positive(self):
        with pytest.raises(ValueError, match="top_k"):
            _validate_settings(Settings(retrieval=RetrievalSettings(top_k=0)))

    def test_weights_must_sum_to_one(self):
        with pytest.raises(ValueError, match="weights"):
            _validate_settings(
                Settings(retrieval=RetrievalSettings(weights=RerankWeights(vector=0.9, lexical=0.9)))
            )

    def test_similarity_threshold_range(self):
        with pytest.raises(ValueError, match="min_top_similarity"):
            _validate_settings(Settings(retrieval=RetrievalSettings(min_top_similarity=1.5)))

    def test_reuse_thresholds_range(self):
        with pytest.raises(ValueError, match="semantic_min_similarity"):
            _validate_settings(Settings(reuse=ReuseSettings(semantic_min_similarity=1.2)))

    def test_invalid_env_value_fails_load(self, config_dir, monkeypatch):
        monkeypatch.setenv("EVIDENCE_QA_MAX_ANSWER_CHUNKS", "0")
        with pytest.raises(ValueError, match="max_answer_chunks"):
            load_settings()
