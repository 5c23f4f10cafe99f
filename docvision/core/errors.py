"""Exception hierarchy for the document vision pipeline."""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from docvision.invocation.models import InvocationAttempt


class DocVisionError(Exception):
    """Base exception for all pipeline errors."""

    retryable: bool = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class ConfigError(DocVisionError):
    """Raised when a pipeline config file cannot be loaded or validated."""


# ── Vision client failures (consumed by the invoker) ─────────────────


class InvocationError(DocVisionError):
    """A single call to the vision model failed."""

    kind = "error"


class TransientInvocationError(InvocationError):
    """Failure expected to clear up on retry."""

    retryable = True


class InvocationTimeout(TransientInvocationError):
    kind = "timeout"

    def __init__(self, message: str = "Vision model call timed out"):
        super().__init__(message)


class RateLimited(TransientInvocationError):
    kind = "rate_limited"

    def __init__(self, message: str = "Vision model rate limit hit"):
        super().__init__(message)


class ServiceUnavailable(TransientInvocationError):
    kind = "unavailable"

    def __init__(self, message: str = "Vision model service unavailable"):
        super().__init__(message)


class NonTransientInvocationError(InvocationError):
    """Failure that will not clear up on retry."""

    kind = "rejected"


class MalformedRequest(NonTransientInvocationError):
    def __init__(self, message: str = "Vision model rejected a malformed request"):
        super().__init__(message)


class ContentPolicyRejection(NonTransientInvocationError):
    def __init__(self, message: str = "Image rejected by content policy"):
        super().__init__(message)


# ── Extraction ───────────────────────────────────────────────────────


class StructuralParseError(DocVisionError):
    """Model response could not be decoded into a record."""

    kind = "unparseable"


# ── Terminal failures surfaced to callers ────────────────────────────


class PipelineFailure(DocVisionError):
    """Terminal outcome of a request. Carries every attempt made."""

    def __init__(self, message: str, attempts: Optional[list["InvocationAttempt"]] = None):
        super().__init__(message)
        self.attempts = list(attempts or [])

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)


class RetryExhausted(PipelineFailure):
    """Every attempt failed transiently. The caller may resubmit."""

    retryable = True


class RejectedInput(PipelineFailure):
    """The model refused the input (malformed or policy). Do not resubmit."""


class UnparseableResponse(PipelineFailure):
    """The final attempt returned text that could not be decoded."""


# ── Cache store ──────────────────────────────────────────────────────


class CacheStoreError(DocVisionError):
    """The cache store could not complete a read or write."""
