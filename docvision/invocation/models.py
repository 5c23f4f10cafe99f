"""Models for model selection and remote invocation."""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from docvision.documents.models import ModelTier


class VisionResponse(BaseModel):
    """What the vision client returns for one successful call."""

    text: str
    model: str
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None


class FallbackModel(BaseModel):
    model_config = ConfigDict(frozen=True)

    model: str
    tier: ModelTier


class ModelChoice(BaseModel):
    """Outcome of model selection. Fallbacks are used only after a failure."""

    model_config = ConfigDict(frozen=True)

    model: str
    tier: ModelTier
    fallbacks: list[FallbackModel] = Field(default_factory=list)
    justification: str

    def sequence(self) -> list[str]:
        """Primary model followed by fallbacks in priority order."""
        return [self.model, *(f.model for f in self.fallbacks)]


FailureKind = Literal["timeout", "rate_limited", "unavailable", "rejected", "unparseable", "error"]


class InvocationAttempt(BaseModel):
    """One try against the remote model."""

    model_config = ConfigDict(frozen=True)

    number: int = Field(ge=1)
    model: str
    duration_ms: int = Field(ge=0)
    succeeded: bool
    failure_kind: Optional[FailureKind] = None
    response_text: Optional[str] = None
    error: Optional[str] = None
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None


EventName = Literal["attempting", "succeeded", "transient_failure", "fallback", "backoff", "failed"]


class InvocationEvent(BaseModel):
    """A state-machine transition inside the resilient invoker."""

    model_config = ConfigDict(frozen=True)

    event: EventName
    attempt: int
    model: str
    delay_seconds: float = 0.0
    detail: str = ""
    at: datetime


class InvocationResult(BaseModel):
    """Successful invocation: the accepted response plus full attempt history."""

    text: str
    model: str
    attempts: list[InvocationAttempt]
    parsed: Optional[dict[str, Any]] = None

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    @property
    def final_attempt(self) -> InvocationAttempt:
        return self.attempts[-1]
