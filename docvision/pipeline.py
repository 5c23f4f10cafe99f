"""Pipeline orchestrator: cache → select → estimate → invoke → validate → account → cache."""

import logging
import random
import time
from typing import Callable, Optional

from pydantic import BaseModel, Field

from docvision.cache.cache import FingerprintCache
from docvision.cache.fingerprint import compute_fingerprint
from docvision.cache.models import CacheEntry, ImageFingerprint
from docvision.core.config import PipelineConfig
from docvision.core.errors import PipelineFailure, RejectedInput
from docvision.core.store import CacheStore
from docvision.cost.model import CostModel, CostRecord, CostSink, RunningTotalSink
from docvision.documents.models import CostBudget, DocumentType, ExtractedRecord, ExtractionRequest
from docvision.documents.registry import get_profile
from docvision.extraction.models import ValidationResult
from docvision.extraction.parser import structural_parse
from docvision.extraction.validation import validate
from docvision.invocation.client import OllamaVisionClient, VisionClient
from docvision.invocation.invoker import Listener, ResilientInvoker
from docvision.invocation.models import InvocationAttempt
from docvision.invocation.selector import select_model

logger = logging.getLogger(__name__)


class ProcessingResult(BaseModel):
    """What a caller gets back for one image."""

    record: ExtractedRecord
    validation: ValidationResult
    cost: CostRecord
    attempt_count: int = Field(ge=0)
    model: str
    fingerprint: str
    justification: str = ""
    attempts: list[InvocationAttempt] = Field(default_factory=list)

    @property
    def cache_hit(self) -> bool:
        return self.cost.cache_hit


class VisionPipeline:
    """Turns vehicle-document photos into validated, costed records.

    Thread-safe: ``process`` may be called from a pool. Shared state is the
    cache store, the in-flight claim table and the cost sink.
    """

    def __init__(
        self,
        client: VisionClient | None = None,
        config: PipelineConfig | None = None,
        store: CacheStore | None = None,
        sink: CostSink | None = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
        listener: Listener | None = None,
    ):
        self.config = config or PipelineConfig()
        self.client = client or OllamaVisionClient(self.config.ollama_host)
        self.cache = FingerprintCache(store, self.config.cache)
        self.invoker = ResilientInvoker(
            self.client, self.config.retry, sleep=sleep, rng=rng, listener=listener
        )
        self.cost_model = CostModel(self.config)
        self.sink = sink if sink is not None else RunningTotalSink()

    # ── Public API ───────────────────────────────────────────────────

    def process_image(
        self,
        image_bytes: bytes,
        document_type: DocumentType | str,
        cost_budget: CostBudget | str = CostBudget.MEDIUM,
        hints: Optional[dict[str, str]] = None,
    ) -> ProcessingResult:
        if not image_bytes:
            raise RejectedInput("Image payload is empty")
        request = ExtractionRequest(
            image=image_bytes,
            document_type=document_type,
            cost_budget=cost_budget,
            hints=hints or {},
        )
        return self.process(request)

    def process(self, request: ExtractionRequest) -> ProcessingResult:
        """Process one request.

        Raises only PipelineFailure subclasses (RetryExhausted, RejectedInput,
        UnparseableResponse); field-level problems land in the validation result.
        """
        fingerprint = compute_fingerprint(request.image, request.document_type, request.hints)
        entry = self.cache.lookup(fingerprint)
        if entry is not None:
            return self._from_cache(fingerprint, entry)

        with self.cache.claim(fingerprint) as owner:
            if not owner:
                # Another request computed the same image while we waited
                entry = self.cache.lookup(fingerprint)
                if entry is not None:
                    return self._from_cache(fingerprint, entry)
            return self._compute(request, fingerprint)

    # ── Stages ───────────────────────────────────────────────────────

    def _compute(self, request: ExtractionRequest, fingerprint: ImageFingerprint) -> ProcessingResult:
        doc_type = request.document_type
        profile = get_profile(doc_type)
        choice = select_model(doc_type, request.cost_budget, self.config)
        prompt = profile.prompt(request.hints)
        estimate = self.cost_model.estimate(doc_type, choice, len(request.image), prompt)
        logger.info(
            "Processing %s (%s budget) with %s, est. $%.4f: %s",
            doc_type.value, request.cost_budget.value, choice.model, estimate.cost, choice.justification,
        )

        try:
            invocation = self.invoker.invoke(request.image, prompt, choice, accept=structural_parse)
        except PipelineFailure as exc:
            # Answered attempts were billed even though the request failed
            spent = self.cost_model.reconcile_attempts(estimate, exc.attempts)
            if spent:
                self._record_cost(spent)
            raise

        record, validation = validate(
            invocation.parsed or {},
            doc_type,
            raw_text=invocation.text,
            settings=self.config.validation,
            hints=request.hints,
        )

        actual = self.cost_model.reconcile_attempts(estimate, invocation.attempts)
        cost = CostRecord(
            estimated_cost=estimate.cost,
            actual_cost=actual,
            running_total=self._record_cost(actual),
        )

        entry = self.cache.new_entry(
            fingerprint, record=record, validation=validation, cost=cost, model=invocation.model
        )
        self.cache.store(fingerprint, entry)

        return ProcessingResult(
            record=record,
            validation=validation,
            cost=cost,
            attempt_count=invocation.attempt_count,
            model=invocation.model,
            fingerprint=fingerprint.key,
            justification=choice.justification,
            attempts=invocation.attempts,
        )

    def _from_cache(self, fingerprint: ImageFingerprint, entry: CacheEntry) -> ProcessingResult:
        logger.info("Cache hit for %s, saved $%.4f", fingerprint.key, entry.cost.actual_cost)
        cost = CostRecord(
            estimated_cost=0.0,
            actual_cost=0.0,
            running_total=self._running_total(),
            cache_hit=True,
            saved_cost=entry.cost.actual_cost,
        )
        return ProcessingResult(
            record=entry.record,
            validation=entry.validation,
            cost=cost,
            attempt_count=0,
            model=entry.model,
            fingerprint=fingerprint.key,
            justification="cached",
        )

    # ── Accounting ───────────────────────────────────────────────────

    def _record_cost(self, amount: float) -> Optional[float]:
        try:
            return self.sink.record(amount)
        except Exception as exc:
            logger.warning("Cost sink rejected $%.4f: %s", amount, exc)
            return None

    def _running_total(self) -> Optional[float]:
        try:
            return self.sink.total
        except Exception as exc:
            logger.warning("Cost sink total unavailable: %s", exc)
            return None
