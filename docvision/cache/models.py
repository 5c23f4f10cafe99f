"""Fingerprint and cache-entry models."""

from datetime import datetime, timedelta, timezone

from pydantic import BaseModel, ConfigDict, Field

from docvision.cost.model import CostRecord
from docvision.documents.models import DocumentType, ExtractedRecord
from docvision.extraction.models import ValidationResult

KEY_PREFIX = "docvision"


class ImageFingerprint(BaseModel):
    """Deterministic identity of an image + document-type pair."""

    model_config = ConfigDict(frozen=True)

    digest: str = Field(min_length=64, max_length=64)
    document_type: DocumentType

    @property
    def key(self) -> str:
        return f"{KEY_PREFIX}:{self.document_type.value}:{self.digest}"


class CacheEntry(BaseModel):
    """Everything needed to answer a repeat request without invoking a model."""

    key: str
    record: ExtractedRecord
    validation: ValidationResult
    cost: CostRecord
    model: str
    stored_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    ttl_seconds: int = Field(ge=1)

    @property
    def expires_at(self) -> datetime:
        return self.stored_at + timedelta(seconds=self.ttl_seconds)

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at
