"""Pipeline config: YAML loader, Pydantic models, and config hashing."""

import hashlib
import json
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from docvision.core.errors import ConfigError
from docvision.documents.models import DocumentType, ModelTier


# ── Models & Rates ───────────────────────────────────────────────────


class ModelTiers(BaseModel):
    """Vision model identifier per tier."""

    economy: str = "qwen2.5vl:3b"
    standard: str = "qwen2.5vl:7b"
    premium: str = "qwen2.5vl:32b"

    def model_for(self, tier: ModelTier) -> str:
        return getattr(self, tier.value)


class ModelRate(BaseModel):
    """Price of one call: flat per-image fee plus per-1k-token rates (USD)."""

    per_image: float = Field(ge=0.0)
    input_per_1k: float = Field(ge=0.0)
    output_per_1k: float = Field(ge=0.0)


def _default_rates() -> dict[str, ModelRate]:
    return {
        "qwen2.5vl:3b": ModelRate(per_image=0.0002, input_per_1k=0.00015, output_per_1k=0.0006),
        "qwen2.5vl:7b": ModelRate(per_image=0.001, input_per_1k=0.0025, output_per_1k=0.01),
        "qwen2.5vl:32b": ModelRate(per_image=0.002, input_per_1k=0.005, output_per_1k=0.015),
    }


# ── Retry ────────────────────────────────────────────────────────────


class RetrySettings(BaseModel):
    """Attempt ceiling and backoff schedule for the resilient invoker."""

    max_attempts: int = Field(default=4, ge=1, le=10)
    backoff_base_seconds: float = Field(default=0.5, gt=0.0)
    backoff_cap_seconds: float = Field(default=8.0, gt=0.0)
    timeout_seconds: float = Field(default=30.0, gt=0.0)

    @model_validator(mode="after")
    def cap_not_below_base(self) -> "RetrySettings":
        if self.backoff_cap_seconds < self.backoff_base_seconds:
            raise ValueError(
                f"backoff_cap_seconds ({self.backoff_cap_seconds}) must be >= "
                f"backoff_base_seconds ({self.backoff_base_seconds})"
            )
        return self


# ── Validation ───────────────────────────────────────────────────────


class ValidationSettings(BaseModel):
    """Confidence rollup constants (0-100 scale)."""

    base_confidence: int = Field(default=95, ge=0, le=100)
    issue_penalty: int = Field(default=10, ge=0, le=100)
    min_confidence: int = Field(default=5, ge=0, le=100)
    max_confidence: int = Field(default=100, ge=0, le=100)
    review_threshold: int = Field(default=70, ge=0, le=100)

    @model_validator(mode="after")
    def ordered_bounds(self) -> "ValidationSettings":
        if not self.min_confidence <= self.review_threshold <= self.max_confidence:
            raise ValueError(
                "Expected min_confidence <= review_threshold <= max_confidence, got "
                f"{self.min_confidence} / {self.review_threshold} / {self.max_confidence}"
            )
        return self


# ── Cache ────────────────────────────────────────────────────────────


class CacheSettings(BaseModel):
    ttl_seconds: int = Field(default=7 * 24 * 3600, ge=1)
    max_entries: int = Field(default=10_000, ge=1)
    inflight_wait_seconds: float = Field(
        default=30.0, ge=0.0,
        description="How long a duplicate request waits for the first one to publish",
    )


# ── Selector ─────────────────────────────────────────────────────────


class SelectorSettings(BaseModel):
    min_accuracy: float = Field(default=0.9, ge=0.0, le=1.0)
    historical_accuracy: dict[DocumentType, float] = Field(default_factory=dict)

    @field_validator("historical_accuracy")
    @classmethod
    def accuracy_in_range(cls, v: dict[DocumentType, float]) -> dict[DocumentType, float]:
        for doc_type, acc in v.items():
            if not 0.0 <= acc <= 1.0:
                raise ValueError(f"Accuracy for {doc_type.value} must be in [0, 1], got {acc}")
        return v


# ── Pipeline Config (top-level) ──────────────────────────────────────


class PipelineConfig(BaseModel):
    """Externally supplied constants for the vision pipeline."""

    models: ModelTiers = Field(default_factory=ModelTiers)
    rates: dict[str, ModelRate] = Field(default_factory=_default_rates)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    validation: ValidationSettings = Field(default_factory=ValidationSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    selector: SelectorSettings = Field(default_factory=SelectorSettings)
    ollama_host: Optional[str] = None

    @model_validator(mode="after")
    def every_tier_has_rate(self) -> "PipelineConfig":
        for tier in ModelTier:
            model = self.models.model_for(tier)
            if model not in self.rates:
                raise ValueError(f"No rate configured for {tier.value} model '{model}'")
        return self

    def rate_for(self, model: str) -> ModelRate:
        try:
            return self.rates[model]
        except KeyError:
            raise ConfigError(f"No rate configured for model '{model}'") from None

    def config_hash(self) -> str:
        """SHA-256 of the full config (canonical JSON)."""
        return _canonical_hash(self.model_dump(mode="json"))


# ── Helpers ──────────────────────────────────────────────────────────


def _canonical_hash(data: dict) -> str:
    """Deterministic SHA-256 hash of a dict via sorted-key JSON."""
    blob = json.dumps(data, sort_keys=True, default=str).encode()
    return hashlib.sha256(blob).hexdigest()


def load_config(path: str | Path) -> PipelineConfig:
    """Load a YAML pipeline config from disk and return a validated model."""
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")
    try:
        with open(path) as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Config file {path} is not valid YAML: {exc}") from exc

    try:
        return PipelineConfig.model_validate(raw or {})
    except ValidationError as exc:
        raise ConfigError(f"Invalid pipeline config {path}: {exc}") from exc
