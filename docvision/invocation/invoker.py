"""Resilient invoker: bounded retries with model fallback and jittered backoff.

States per request: attempting → done | attempting (fallback or backoff) |
failed. Every transition is logged and delivered to an optional listener as
an InvocationEvent.
"""

import logging
import random
import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from docvision.core.config import RetrySettings
from docvision.core.errors import (
    InvocationError,
    NonTransientInvocationError,
    RejectedInput,
    RetryExhausted,
    StructuralParseError,
    UnparseableResponse,
)
from docvision.invocation.client import VisionClient
from docvision.invocation.models import (
    InvocationAttempt,
    InvocationEvent,
    InvocationResult,
    ModelChoice,
)

logger = logging.getLogger(__name__)

Acceptor = Callable[[str], Optional[dict[str, Any]]]
Listener = Callable[[InvocationEvent], None]


class ResilientInvoker:
    def __init__(
        self,
        client: VisionClient,
        settings: RetrySettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
        listener: Listener | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.settings = settings or RetrySettings()
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._listener = listener
        self._clock = clock

    @property
    def max_attempts(self) -> int:
        return self.settings.max_attempts

    def backoff_delay(self, retry_index: int) -> float:
        """Doubling delay, capped; half fixed, half random."""
        delay = min(
            self.settings.backoff_cap_seconds,
            self.settings.backoff_base_seconds * 2 ** retry_index,
        )
        return delay / 2 + self._rng.uniform(0, delay / 2)

    # ── Invoke ───────────────────────────────────────────────────────

    def invoke(
        self,
        image: bytes,
        prompt: str,
        choice: ModelChoice,
        accept: Acceptor | None = None,
    ) -> InvocationResult:
        """Call the chosen model until a response is accepted or attempts run out.

        ``accept`` validates the response text (structural parse); raising
        StructuralParseError counts as a failed attempt. Transient failures
        move to the next unused fallback model immediately, then back off on
        the last model once fallbacks are spent.

        Raises:
            RejectedInput: the model refused the request; never retried.
            UnparseableResponse: the final attempt's response could not be parsed.
            RetryExhausted: every attempt failed transiently.
        """
        models = choice.sequence()
        next_model = 1
        current = models[0]
        retry_index = 0
        attempts: list[InvocationAttempt] = []

        for number in range(1, self.max_attempts + 1):
            self._emit("attempting", number, current)
            started = self._clock()
            try:
                response = self.client.invoke(image, prompt, current, self.settings.timeout_seconds)
            except NonTransientInvocationError as exc:
                attempts.append(self._failed(number, current, started, exc.kind, exc.message))
                self._emit("failed", number, current, detail=exc.message)
                logger.error("%s rejected the request: %s", current, exc.message)
                raise RejectedInput(f"{current} rejected the request: {exc.message}", attempts) from exc
            except InvocationError as exc:
                attempts.append(self._failed(number, current, started, exc.kind, exc.message))
                self._emit("transient_failure", number, current, detail=exc.message)
                logger.warning("Attempt %d/%d on %s failed: %s", number, self.max_attempts, current, exc.message)
            else:
                try:
                    parsed = accept(response.text) if accept else None
                except StructuralParseError as exc:
                    attempts.append(
                        self._failed(
                            number, current, started, exc.kind, exc.message,
                            response_text=response.text,
                            input_tokens=response.input_tokens,
                            output_tokens=response.output_tokens,
                        )
                    )
                    self._emit("transient_failure", number, current, detail=exc.message)
                    logger.warning(
                        "Attempt %d/%d on %s returned unparseable text: %s",
                        number, self.max_attempts, current, exc.message,
                    )
                else:
                    attempts.append(
                        InvocationAttempt(
                            number=number,
                            model=current,
                            duration_ms=self._elapsed_ms(started),
                            succeeded=True,
                            response_text=response.text,
                            input_tokens=response.input_tokens,
                            output_tokens=response.output_tokens,
                        )
                    )
                    self._emit("succeeded", number, current)
                    logger.info("Attempt %d on %s succeeded", number, current)
                    return InvocationResult(
                        text=response.text, model=current, attempts=attempts, parsed=parsed
                    )

            if number == self.max_attempts:
                break

            if next_model < len(models):
                previous, current = current, models[next_model]
                next_model += 1
                self._emit("fallback", number, current, detail=f"from {previous}")
                logger.info("Falling back from %s to %s", previous, current)
            else:
                delay = self.backoff_delay(retry_index)
                retry_index += 1
                self._emit("backoff", number, current, delay_seconds=delay)
                logger.info("Backing off %.2fs before retrying %s", delay, current)
                self._sleep(delay)

        last = attempts[-1]
        self._emit("failed", last.number, last.model, detail=last.error or "")
        if last.failure_kind == "unparseable":
            logger.error("Giving up after %d attempts: final response unparseable", len(attempts))
            raise UnparseableResponse(
                f"Final response from {last.model} could not be parsed: {last.error}", attempts
            )
        logger.error("Giving up after %d transient failures", len(attempts))
        raise RetryExhausted(
            f"All {len(attempts)} attempts failed; last error: {last.error}", attempts
        )

    # ── Helpers ──────────────────────────────────────────────────────

    def _elapsed_ms(self, started: float) -> int:
        return max(0, int((self._clock() - started) * 1000))

    def _failed(
        self,
        number: int,
        model: str,
        started: float,
        kind: str,
        error: str,
        **extra: Any,
    ) -> InvocationAttempt:
        return InvocationAttempt(
            number=number,
            model=model,
            duration_ms=self._elapsed_ms(started),
            succeeded=False,
            failure_kind=kind,
            error=error,
            **extra,
        )

    def _emit(self, event: str, attempt: int, model: str, delay_seconds: float = 0.0, detail: str = "") -> None:
        if self._listener is None:
            return
        payload = InvocationEvent(
            event=event,
            attempt=attempt,
            model=model,
            delay_seconds=delay_seconds,
            detail=detail,
            at=datetime.now(timezone.utc),
        )
        try:
            self._listener(payload)
        except Exception:
            logger.exception("Invocation listener raised on %s event", event)
