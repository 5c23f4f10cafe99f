"""Tests for pipeline config loading and validation."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from docvision.core.config import (
    PipelineConfig,
    RetrySettings,
    SelectorSettings,
    ValidationSettings,
    load_config,
)
from docvision.core.errors import ConfigError
from docvision.documents.models import DocumentType, ModelTier

CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "pipeline.yaml"


@pytest.fixture(scope="module")
def config():
    return load_config(CONFIG_PATH)


# ── Loading ──────────────────────────────────────────────────────────


def test_load_shipped_config(config):
    assert config.models.economy == "qwen2.5vl:3b"
    assert config.models.premium == "qwen2.5vl:32b"
    assert config.retry.max_attempts == 4
    assert config.validation.review_threshold == 70
    assert config.cache.ttl_seconds == 7 * 24 * 3600


def test_shipped_config_matches_defaults_except_accuracy(config):
    defaults = PipelineConfig()
    assert config.retry == defaults.retry
    assert config.validation == defaults.validation
    assert config.rates == defaults.rates


def test_historical_accuracy_keys_are_document_types(config):
    acc = config.selector.historical_accuracy
    assert acc[DocumentType.ODOMETER] == pytest.approx(0.97)
    assert DocumentType.INSPECTION_CERTIFICATE in acc


def test_missing_file_raises_config_error(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "nope.yaml")


def test_bad_yaml_raises_config_error(tmp_path):
    p = tmp_path / "bad.yaml"
    p.write_text("retry: [unclosed\n")
    with pytest.raises(ConfigError, match="not valid YAML"):
        load_config(p)


def test_empty_file_gives_defaults(tmp_path):
    p = tmp_path / "empty.yaml"
    p.write_text("")
    assert load_config(p) == PipelineConfig()


def test_invalid_values_raise_config_error(tmp_path):
    p = tmp_path / "invalid.yaml"
    p.write_text("retry:\n  max_attempts: 0\n")
    with pytest.raises(ConfigError, match="Invalid pipeline config"):
        load_config(p)


# ── Cross-field Validation ───────────────────────────────────────────


def test_backoff_cap_below_base_rejected():
    with pytest.raises(ValidationError):
        RetrySettings(backoff_base_seconds=4.0, backoff_cap_seconds=1.0)


def test_confidence_bounds_must_be_ordered():
    with pytest.raises(ValidationError):
        ValidationSettings(min_confidence=80, review_threshold=70)


def test_accuracy_must_be_probability():
    with pytest.raises(ValidationError):
        SelectorSettings(historical_accuracy={"odometer": 1.5})


def test_every_tier_needs_a_rate():
    with pytest.raises(ValidationError, match="No rate configured"):
        PipelineConfig(models={"premium": "mystery-model"})


def test_rate_for_unknown_model_raises():
    with pytest.raises(ConfigError):
        PipelineConfig().rate_for("mystery-model")


def test_model_for_each_tier():
    models = PipelineConfig().models
    assert models.model_for(ModelTier.ECONOMY) == models.economy
    assert models.model_for(ModelTier.STANDARD) == models.standard
    assert models.model_for(ModelTier.PREMIUM) == models.premium


# ── Hashing ──────────────────────────────────────────────────────────


def test_config_hash_deterministic():
    assert PipelineConfig().config_hash() == PipelineConfig().config_hash()
    assert len(PipelineConfig().config_hash()) == 64


def test_config_hash_changes_with_content():
    a = PipelineConfig()
    b = PipelineConfig(retry=RetrySettings(max_attempts=3))
    assert a.config_hash() != b.config_hash()
