"""Dispatch table: one profile per document type.

Each profile bundles everything that varies by document type (prompt,
sanitizer, enricher, record class, default model tier, criticality) so the
orchestrator looks a type up once instead of branching on it repeatedly.
"""

from dataclasses import dataclass
from functools import partial
from typing import Any, Callable

from docvision.documents.models import (
    DocumentType,
    FuelReceiptRecord,
    GenericRecord,
    InspectionCertificateRecord,
    InsuranceCardRecord,
    ModelTier,
    OdometerRecord,
    RegistrationRecord,
    ServiceInvoiceRecord,
)
from docvision.documents.prompts import build_prompt
from docvision.extraction import enrich, sanitize
from docvision.extraction.models import ValidationIssue

Sanitizer = Callable[[dict[str, Any]], tuple[dict[str, Any], list[ValidationIssue]]]


@dataclass(frozen=True)
class DocumentProfile:
    document_type: DocumentType
    record_cls: type
    sanitize: Sanitizer
    enrich: enrich.Enricher
    default_tier: ModelTier
    critical: bool = False
    expected_output_tokens: int = 150

    def prompt(self, hints: dict[str, str] | None = None) -> str:
        return build_prompt(self.document_type, hints)

    def empty_record(self, raw_text: str = "") -> Any:
        return self.record_cls(raw_text=raw_text)


def sanitize_generic(loose: dict[str, Any]) -> tuple[dict[str, Any], list[ValidationIssue]]:
    """Unknown documents keep whatever non-empty keys the model returned."""
    kept = {str(k): v for k, v in loose.items() if v not in (None, "", [], {})}
    return {"fields": kept}, []


def _table(rules: tuple, checks: tuple) -> Sanitizer:
    return partial(sanitize.sanitize_fields, rules=rules, checks=checks)


# ── Profiles ─────────────────────────────────────────────────────────

PROFILES: dict[DocumentType, DocumentProfile] = {
    DocumentType.ODOMETER: DocumentProfile(
        document_type=DocumentType.ODOMETER,
        record_cls=OdometerRecord,
        sanitize=_table(sanitize.ODOMETER_FIELDS, sanitize.ODOMETER_CHECKS),
        enrich=enrich.enrich_nothing,
        default_tier=ModelTier.ECONOMY,
        expected_output_tokens=20,
    ),
    DocumentType.FUEL_RECEIPT: DocumentProfile(
        document_type=DocumentType.FUEL_RECEIPT,
        record_cls=FuelReceiptRecord,
        sanitize=_table(sanitize.FUEL_RECEIPT_FIELDS, sanitize.FUEL_RECEIPT_CHECKS),
        enrich=enrich.enrich_fuel_receipt,
        default_tier=ModelTier.STANDARD,
        expected_output_tokens=150,
    ),
    DocumentType.SERVICE_INVOICE: DocumentProfile(
        document_type=DocumentType.SERVICE_INVOICE,
        record_cls=ServiceInvoiceRecord,
        sanitize=_table(sanitize.SERVICE_INVOICE_FIELDS, sanitize.SERVICE_INVOICE_CHECKS),
        enrich=enrich.enrich_service_invoice,
        default_tier=ModelTier.PREMIUM,
        critical=True,
        expected_output_tokens=400,
    ),
    DocumentType.INSURANCE_CARD: DocumentProfile(
        document_type=DocumentType.INSURANCE_CARD,
        record_cls=InsuranceCardRecord,
        sanitize=_table(sanitize.INSURANCE_CARD_FIELDS, sanitize.INSURANCE_CARD_CHECKS),
        enrich=enrich.enrich_insurance_card,
        default_tier=ModelTier.PREMIUM,
        critical=True,
        expected_output_tokens=200,
    ),
    DocumentType.REGISTRATION: DocumentProfile(
        document_type=DocumentType.REGISTRATION,
        record_cls=RegistrationRecord,
        sanitize=_table(sanitize.REGISTRATION_FIELDS, sanitize.REGISTRATION_CHECKS),
        enrich=enrich.enrich_registration,
        default_tier=ModelTier.PREMIUM,
        critical=True,
        expected_output_tokens=200,
    ),
    DocumentType.INSPECTION_CERTIFICATE: DocumentProfile(
        document_type=DocumentType.INSPECTION_CERTIFICATE,
        record_cls=InspectionCertificateRecord,
        sanitize=_table(sanitize.INSPECTION_CERTIFICATE_FIELDS, sanitize.INSPECTION_CERTIFICATE_CHECKS),
        enrich=enrich.enrich_inspection_certificate,
        default_tier=ModelTier.STANDARD,
        expected_output_tokens=150,
    ),
    DocumentType.UNKNOWN: DocumentProfile(
        document_type=DocumentType.UNKNOWN,
        record_cls=GenericRecord,
        sanitize=sanitize_generic,
        enrich=enrich.enrich_nothing,
        default_tier=ModelTier.STANDARD,
        expected_output_tokens=250,
    ),
}


def get_profile(document_type: Any) -> DocumentProfile:
    """Profile for a document type; anything unrecognised gets the generic profile."""
    return PROFILES[DocumentType.coerce(document_type)]
