"""Cost estimation, reconciliation and running-total accounting."""

import logging
import math
import threading
from typing import Iterable, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field

from docvision.core.config import ModelRate, PipelineConfig
from docvision.core.errors import ConfigError
from docvision.documents.models import DocumentType
from docvision.documents.registry import get_profile
from docvision.invocation.models import InvocationAttempt, ModelChoice, VisionResponse

logger = logging.getLogger(__name__)

# Vision models bill an image as a base charge plus fixed-size tiles. Without
# decoding the image, byte size is the only proxy for how many tiles it spans.
IMAGE_BASE_TOKENS = 85
IMAGE_TILE_TOKENS = 170
BYTES_PER_TILE = 250_000
MAX_TILES = 6
DEFAULT_TILES = 4

CHARS_PER_TOKEN = 4


# ── Models ───────────────────────────────────────────────────────────


class CostEstimate(BaseModel):
    """Pre-invocation cost for the selected model."""

    model_config = ConfigDict(frozen=True)

    model: str
    input_tokens: int = Field(ge=0)
    output_tokens: int = Field(ge=0)
    cost: float = Field(ge=0.0)


class CostRecord(BaseModel):
    """Cost outcome attached to every processing result."""

    model_config = ConfigDict(frozen=True)

    estimated_cost: float = Field(ge=0.0)
    actual_cost: float = Field(ge=0.0)
    running_total: Optional[float] = None
    cache_hit: bool = False
    saved_cost: float = Field(default=0.0, ge=0.0)


# ── Cost Model ───────────────────────────────────────────────────────


def image_tokens(image_size: int | None) -> int:
    """Token proxy for an image of ``image_size`` bytes."""
    if image_size is None:
        tiles = DEFAULT_TILES
    else:
        tiles = min(MAX_TILES, max(1, math.ceil(image_size / BYTES_PER_TILE)))
    return IMAGE_BASE_TOKENS + IMAGE_TILE_TOKENS * tiles


def price(rate: ModelRate, input_tokens: int, output_tokens: int) -> float:
    cost = (
        rate.per_image
        + input_tokens / 1000 * rate.input_per_1k
        + output_tokens / 1000 * rate.output_per_1k
    )
    return round(cost, 6)


class CostModel:
    """Prices invocations from the configured per-model rate table."""

    def __init__(self, config: PipelineConfig | None = None):
        self.config = config or PipelineConfig()

    def estimate(
        self,
        document_type: DocumentType | str,
        choice: ModelChoice,
        image_size: int | None = None,
        prompt: str | None = None,
    ) -> CostEstimate:
        profile = get_profile(document_type)
        prompt = prompt if prompt is not None else profile.prompt()
        input_tokens = len(prompt) // CHARS_PER_TOKEN + image_tokens(image_size)
        output_tokens = profile.expected_output_tokens
        rate = self.config.rate_for(choice.model)
        return CostEstimate(
            model=choice.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost=price(rate, input_tokens, output_tokens),
        )

    def reconcile(
        self,
        estimate: CostEstimate,
        usage: VisionResponse | InvocationAttempt | None,
    ) -> float:
        """Actual cost of one call from its reported usage.

        Token counts the service did not report fall back to the estimate's,
        priced at the rate of the model that actually answered.
        """
        if usage is None:
            return estimate.cost
        if usage.input_tokens is None and usage.output_tokens is None and usage.model == estimate.model:
            return estimate.cost

        input_tokens = usage.input_tokens if usage.input_tokens is not None else estimate.input_tokens
        output_tokens = usage.output_tokens if usage.output_tokens is not None else estimate.output_tokens
        try:
            rate = self.config.rate_for(usage.model)
        except ConfigError:
            logger.warning("No rate for model %s, keeping estimate", usage.model)
            return estimate.cost
        return price(rate, input_tokens, output_tokens)

    def reconcile_attempts(
        self, estimate: CostEstimate, attempts: Iterable[InvocationAttempt]
    ) -> float:
        """Sum over every attempt the service answered, including rejected parses."""
        billed = [a for a in attempts if a.response_text is not None]
        return round(sum(self.reconcile(estimate, a) for a in billed), 6)


# ── Sinks ────────────────────────────────────────────────────────────


class CostSink(Protocol):
    """Receives actual costs. ``record`` returns the new running total."""

    def record(self, amount: float) -> float: ...

    @property
    def total(self) -> float: ...


class RunningTotalSink:
    """Process-scoped advisory total. Restarting the process resets it."""

    def __init__(self) -> None:
        self._total = 0.0
        self._count = 0
        self._lock = threading.Lock()

    def record(self, amount: float) -> float:
        with self._lock:
            self._total += amount
            self._count += 1
            return round(self._total, 6)

    @property
    def total(self) -> float:
        with self._lock:
            return round(self._total, 6)

    @property
    def count(self) -> int:
        with self._lock:
            return self._count


class NullSink:
    """Discards costs."""

    def record(self, amount: float) -> float:
        return 0.0

    @property
    def total(self) -> float:
        return 0.0
