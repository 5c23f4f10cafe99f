"""Tests for cost estimation, reconciliation and sinks."""

import threading

import pytest

from docvision.core.config import PipelineConfig
from docvision.cost.model import (
    CostModel,
    NullSink,
    RunningTotalSink,
    image_tokens,
    price,
)
from docvision.documents.models import CostBudget, DocumentType
from docvision.invocation.models import InvocationAttempt, VisionResponse
from docvision.invocation.selector import select_model


@pytest.fixture(scope="module")
def config():
    return PipelineConfig()


@pytest.fixture(scope="module")
def cost_model(config):
    return CostModel(config)


def _attempt(number, model, response_text=None, succeeded=None, **kw):
    if succeeded is None:
        succeeded = response_text is not None
    return InvocationAttempt(
        number=number,
        model=model,
        duration_ms=10,
        succeeded=succeeded,
        response_text=response_text,
        **kw,
    )


# ── Estimate ─────────────────────────────────────────────────────────


def test_image_tokens_scale_with_size():
    assert image_tokens(None) == 85 + 170 * 4
    assert image_tokens(1) == 85 + 170
    assert image_tokens(10_000_000) == 85 + 170 * 6


def test_estimate_uses_selected_model_rate(cost_model, config):
    choice = select_model(DocumentType.ODOMETER, CostBudget.MEDIUM, config)
    est = cost_model.estimate(DocumentType.ODOMETER, choice, image_size=200_000)
    rate = config.rate_for(choice.model)
    assert est.model == choice.model
    assert est.output_tokens == 20
    assert est.cost == price(rate, est.input_tokens, est.output_tokens)


def test_premium_estimate_costs_more(cost_model, config):
    cheap = cost_model.estimate("odometer", select_model("odometer", "low", config))
    dear = cost_model.estimate("service_invoice", select_model("service_invoice", "low", config))
    assert dear.cost > cheap.cost


def test_estimate_counts_prompt_tokens(cost_model, config):
    choice = select_model("fuel_receipt", "medium", config)
    short = cost_model.estimate("fuel_receipt", choice, prompt="x")
    long = cost_model.estimate("fuel_receipt", choice, prompt="x" * 4000)
    assert long.input_tokens - short.input_tokens == 1000


# ── Reconcile ────────────────────────────────────────────────────────


def test_reconcile_without_usage_returns_estimate(cost_model, config):
    est = cost_model.estimate("odometer", select_model("odometer", "medium", config))
    assert cost_model.reconcile(est, None) == est.cost


def test_reconcile_without_token_counts_returns_estimate(cost_model, config):
    est = cost_model.estimate("odometer", select_model("odometer", "medium", config))
    usage = VisionResponse(text="1", model=est.model)
    assert cost_model.reconcile(est, usage) == est.cost


def test_reconcile_prices_reported_tokens(cost_model, config):
    est = cost_model.estimate("odometer", select_model("odometer", "medium", config))
    usage = VisionResponse(text="1", model=est.model, input_tokens=1000, output_tokens=1000)
    rate = config.rate_for(est.model)
    assert cost_model.reconcile(est, usage) == pytest.approx(
        rate.per_image + rate.input_per_1k + rate.output_per_1k
    )


def test_reconcile_uses_fallback_model_rate(cost_model, config):
    est = cost_model.estimate("odometer", select_model("odometer", "medium", config))
    premium = config.models.premium
    usage = VisionResponse(text="1", model=premium, input_tokens=500, output_tokens=20)
    assert cost_model.reconcile(est, usage) == price(config.rate_for(premium), 500, 20)


def test_reconcile_unknown_model_keeps_estimate(cost_model, config):
    est = cost_model.estimate("odometer", select_model("odometer", "medium", config))
    usage = VisionResponse(text="1", model="mystery", input_tokens=10, output_tokens=10)
    assert cost_model.reconcile(est, usage) == est.cost


def test_reconcile_attempts_bills_only_answered_calls(cost_model, config):
    est = cost_model.estimate("odometer", select_model("odometer", "medium", config))
    attempts = [
        _attempt(1, est.model, failure_kind="timeout", error="timed out"),
        _attempt(2, est.model, "garbage", succeeded=False, failure_kind="unparseable", input_tokens=100, output_tokens=5),
        _attempt(3, est.model, "123", input_tokens=100, output_tokens=5),
    ]
    one_call = price(config.rate_for(est.model), 100, 5)
    assert cost_model.reconcile_attempts(est, attempts) == pytest.approx(2 * one_call)


def test_reconcile_attempts_all_failed_is_free(cost_model, config):
    est = cost_model.estimate("odometer", select_model("odometer", "medium", config))
    attempts = [_attempt(1, est.model, failure_kind="timeout", error="timed out")]
    assert cost_model.reconcile_attempts(est, attempts) == 0.0


# ── Sinks ────────────────────────────────────────────────────────────


def test_running_total_sink_accumulates():
    sink = RunningTotalSink()
    assert sink.record(0.5) == 0.5
    assert sink.record(0.25) == 0.75
    assert sink.total == 0.75
    assert sink.count == 2


def test_running_total_sink_thread_safe():
    sink = RunningTotalSink()

    def spend():
        for _ in range(1000):
            sink.record(0.001)

    threads = [threading.Thread(target=spend) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert sink.count == 8000
    assert sink.total == pytest.approx(8.0)


def test_running_total_sink_reads_under_lock():
    sink = RunningTotalSink()
    done = threading.Event()
    seen = []

    def spend():
        for _ in range(2000):
            sink.record(0.001)

    def watch():
        while not done.is_set():
            seen.append(sink.count)

    watcher = threading.Thread(target=watch)
    watcher.start()
    writers = [threading.Thread(target=spend) for _ in range(4)]
    for t in writers:
        t.start()
    for t in writers:
        t.join()
    done.set()
    watcher.join()

    assert seen == sorted(seen)
    assert sink.count == 8000


def test_null_sink():
    sink = NullSink()
    assert sink.record(1.0) == 0.0
    assert sink.total == 0.0
