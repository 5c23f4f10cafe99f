"""Validation outcome models shared by the extraction steps."""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Severity = Literal["low", "medium", "high"]
Step = Literal["sanitize", "enrich"]


class ValidationIssue(BaseModel):
    """A single problem found while sanitizing or enriching a record."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    field: Optional[str] = None
    severity: Severity = "low"
    step: Step = "sanitize"


class ValidationResult(BaseModel):
    """Confidence rollup that always accompanies an extracted record."""

    model_config = ConfigDict(frozen=True)

    confidence: int = Field(ge=0, le=100)
    status: Literal["validated", "needs_review"]
    issues: list[ValidationIssue] = Field(default_factory=list)

    def codes(self) -> list[str]:
        return [issue.code for issue in self.issues]
