"""Model selection policy: document type + cost budget + accuracy history → ModelChoice."""

from typing import Any

from docvision.core.config import PipelineConfig
from docvision.documents.models import CostBudget, DocumentType, ModelTier
from docvision.documents.registry import get_profile
from docvision.invocation.models import FallbackModel, ModelChoice


def select_model(
    document_type: DocumentType | str,
    cost_budget: CostBudget | str,
    config: PipelineConfig | None = None,
    historical_accuracy: dict[DocumentType, float] | None = None,
) -> ModelChoice:
    """Pick the model tier for a request. Pure: no I/O, no state.

    - Critical types (multi-field structured documents) always get premium;
      a bad structured parse costs more to fix than the price difference.
    - A low budget downgrades non-critical types by one tier.
    - Otherwise, a non-critical type whose historical accuracy is below
      ``selector.min_accuracy`` is upgraded by one tier.
    """
    config = config or PipelineConfig()
    doc_type = DocumentType.coerce(document_type)
    budget = CostBudget.coerce(cost_budget)
    profile = get_profile(doc_type)
    accuracy_table = (
        historical_accuracy if historical_accuracy is not None
        else config.selector.historical_accuracy
    )

    tier = profile.default_tier
    reasons = [f"{doc_type.value} defaults to {tier.value}"]

    if profile.critical:
        tier = ModelTier.PREMIUM
        reasons.append(f"critical structured document, {budget.value} budget ignored")
    elif budget is CostBudget.LOW:
        lowered = tier.shifted(-1)
        if lowered is not tier:
            reasons.append(f"low budget: downgraded to {lowered.value}")
        else:
            reasons.append("low budget: already cheapest tier")
        tier = lowered
    else:
        accuracy = accuracy_table.get(doc_type)
        if accuracy is not None and accuracy < config.selector.min_accuracy:
            raised = tier.shifted(+1)
            if raised is not tier:
                reasons.append(
                    f"historical accuracy {accuracy:.0%} below "
                    f"{config.selector.min_accuracy:.0%}: upgraded to {raised.value}"
                )
            tier = raised

    model = config.models.model_for(tier)
    fallbacks = _fallbacks(tier, model, profile.critical, config)
    if fallbacks:
        reasons.append("fallbacks: " + ", ".join(f.model for f in fallbacks))

    return ModelChoice(
        model=model,
        tier=tier,
        fallbacks=fallbacks,
        justification="; ".join(reasons),
    )


# ── Helpers ──────────────────────────────────────────────────────────


def _fallbacks(
    tier: ModelTier, primary: str, critical: bool, config: PipelineConfig
) -> list[FallbackModel]:
    """Other tiers by proximity, upgrades before downgrades.

    Critical types never fall back below standard.
    """
    others = sorted(
        (t for t in ModelTier if t is not tier),
        key=lambda t: (abs(t.rank - tier.rank), t.rank < tier.rank),
    )
    if critical:
        others = [t for t in others if t.rank >= ModelTier.STANDARD.rank]

    seen = {primary}
    fallbacks: list[FallbackModel] = []
    for t in others:
        model = config.models.model_for(t)
        if model in seen:
            continue
        seen.add(model)
        fallbacks.append(FallbackModel(model=model, tier=t))
    return fallbacks


def describe(choice: ModelChoice) -> dict[str, Any]:
    """Flat dict for logging and CLI output."""
    return {
        "model": choice.model,
        "tier": choice.tier.value,
        "fallbacks": [f.model for f in choice.fallbacks],
        "justification": choice.justification,
    }
