"""Extraction & validation: structural parse, sanitize, enrich, confidence rollup."""

import logging
from typing import Any

from docvision.core.config import ValidationSettings
from docvision.documents.models import DocumentType, ExtractedRecord, GenericRecord
from docvision.documents.registry import DocumentProfile, get_profile
from docvision.extraction.models import ValidationIssue, ValidationResult
from docvision.extraction.parser import structural_parse

logger = logging.getLogger(__name__)


# ── Public API ───────────────────────────────────────────────────────


def parse(
    raw_response: str,
    document_type: DocumentType | str,
    settings: ValidationSettings | None = None,
    hints: dict[str, str] | None = None,
) -> tuple[ExtractedRecord, ValidationResult]:
    """Run every extraction step on a raw model response.

    Only the structural parse may raise (StructuralParseError); later steps
    degrade confidence instead of failing.
    """
    loose = structural_parse(raw_response)
    return validate(loose, document_type, raw_response, settings, hints)


def validate(
    loose: dict[str, Any],
    document_type: DocumentType | str,
    raw_text: str = "",
    settings: ValidationSettings | None = None,
    hints: dict[str, str] | None = None,
) -> tuple[ExtractedRecord, ValidationResult]:
    """Sanitize, enrich and roll up an already-decoded response."""
    settings = settings or ValidationSettings()
    profile = get_profile(document_type)

    if hints and profile.record_cls is not GenericRecord:
        # Hints only fill keys the model left out
        loose = {**hints, **loose}

    values, record, issues = _sanitize_step(profile, loose, raw_text)
    record, enrich_issues = _enrich_step(profile, values, record, issues, raw_text)
    issues.extend(enrich_issues)

    result = rollup(issues, settings)
    logger.info(
        "%s extraction: confidence %d, %s (%d issues)",
        profile.document_type.value, result.confidence, result.status, len(issues),
    )
    return record, result


def rollup(issues: list[ValidationIssue], settings: ValidationSettings) -> ValidationResult:
    """Base confidence minus a fixed penalty per issue, clamped to bounds.

    Review is required below the threshold or when sanitization found a
    high-severity problem.
    """
    confidence = settings.base_confidence - settings.issue_penalty * len(issues)
    confidence = max(settings.min_confidence, min(settings.max_confidence, confidence))

    severe = any(i.severity == "high" and i.step == "sanitize" for i in issues)
    status = "needs_review" if confidence < settings.review_threshold or severe else "validated"

    return ValidationResult(confidence=confidence, status=status, issues=list(issues))


# ── Steps ────────────────────────────────────────────────────────────


def _sanitize_step(
    profile: DocumentProfile, loose: dict[str, Any], raw_text: str
) -> tuple[dict[str, Any], Any, list[ValidationIssue]]:
    try:
        values, issues = profile.sanitize(loose)
        record = profile.record_cls(raw_text=raw_text, **values)
    except Exception as exc:
        logger.warning("Sanitization failed for %s: %s", profile.document_type.value, exc)
        issue = ValidationIssue(
            code="sanitization_failed",
            message=f"Field sanitization failed ({exc}); fields left empty",
            severity="medium",
            step="sanitize",
        )
        return {}, profile.empty_record(raw_text), [issue]
    return values, record, issues


def _enrich_step(
    profile: DocumentProfile,
    values: dict[str, Any],
    record: Any,
    issues: list[ValidationIssue],
    raw_text: str,
) -> tuple[Any, list[ValidationIssue]]:
    flagged = {i.field for i in issues if i.field}
    enriched = dict(values)
    try:
        extra = profile.enrich(enriched, flagged)
        return profile.record_cls(raw_text=raw_text, **enriched), extra
    except Exception as exc:
        logger.warning("Enrichment failed for %s: %s", profile.document_type.value, exc)
        issue = ValidationIssue(
            code="enrichment_failed",
            message=f"Could not derive secondary fields ({exc})",
            severity="medium",
            step="enrich",
        )
        return record, [issue]
