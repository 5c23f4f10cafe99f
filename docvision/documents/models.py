"""Request and extracted-record models for vehicle documents."""

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ── Enumerations ─────────────────────────────────────────────────────


class DocumentType(str, Enum):
    ODOMETER = "odometer"
    FUEL_RECEIPT = "fuel_receipt"
    SERVICE_INVOICE = "service_invoice"
    INSURANCE_CARD = "insurance_card"
    REGISTRATION = "registration"
    INSPECTION_CERTIFICATE = "inspection_certificate"
    UNKNOWN = "unknown"

    @classmethod
    def coerce(cls, value: Any) -> "DocumentType":
        """Map any value onto a DocumentType; unrecognised values become UNKNOWN."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return cls.UNKNOWN


class CostBudget(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def coerce(cls, value: Any) -> "CostBudget":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return cls.MEDIUM


class ModelTier(str, Enum):
    """Cost/capability class of the vision model, cheapest first."""

    ECONOMY = "economy"
    STANDARD = "standard"
    PREMIUM = "premium"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)

    def shifted(self, steps: int) -> "ModelTier":
        """Move up (positive) or down (negative) the tier ladder, clamped."""
        idx = min(max(self.rank + steps, 0), len(_TIER_ORDER) - 1)
        return _TIER_ORDER[idx]


_TIER_ORDER = [ModelTier.ECONOMY, ModelTier.STANDARD, ModelTier.PREMIUM]


# ── Request ──────────────────────────────────────────────────────────


class ExtractionRequest(BaseModel):
    """One user upload. Never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    image: bytes = Field(repr=False)
    document_type: DocumentType = DocumentType.UNKNOWN
    cost_budget: CostBudget = CostBudget.MEDIUM
    hints: dict[str, str] = Field(default_factory=dict)

    @field_validator("document_type", mode="before")
    @classmethod
    def coerce_document_type(cls, v: Any) -> DocumentType:
        return DocumentType.coerce(v)

    @field_validator("cost_budget", mode="before")
    @classmethod
    def coerce_cost_budget(cls, v: Any) -> CostBudget:
        return CostBudget.coerce(v)

    @field_validator("image")
    @classmethod
    def image_not_empty(cls, v: bytes) -> bytes:
        if not v:
            raise ValueError("Image payload is empty")
        return v


# ── Extracted Records ────────────────────────────────────────────────


class LineItem(BaseModel):
    description: str
    amount: Optional[float] = None
    category: Literal["labor", "parts", "fluids", "other"] = "other"


class _Record(BaseModel):
    """Fields shared by every record type."""

    raw_text: str = ""

    def summary(self) -> str:
        return self.raw_text[:80]


class OdometerRecord(_Record):
    document_type: Literal["odometer"] = "odometer"
    mileage: Optional[int] = None
    unit: Literal["mi", "km"] = "mi"
    original_value: Optional[int] = Field(
        default=None, description="Reading as shown, before any km→mi conversion"
    )

    def summary(self) -> str:
        if self.mileage is None:
            return "Odometer reading"
        return f"{self.mileage:,} miles"


class FuelReceiptRecord(_Record):
    document_type: Literal["fuel_receipt"] = "fuel_receipt"
    gallons: Optional[float] = None
    cost: Optional[float] = None
    price_per_gallon: Optional[float] = None
    station: Optional[str] = None
    fuel_type: Optional[str] = None
    date: Optional[str] = None
    odometer: Optional[int] = None

    def summary(self) -> str:
        parts: list[str] = []
        if self.cost is not None and self.gallons is not None:
            parts.append(f"${self.cost:.2f} • {self.gallons} gallons")
        elif self.cost is not None:
            parts.append(f"${self.cost:.2f} fuel")
        if self.station:
            parts.append(f"• {self.station}")
        if self.price_per_gallon is not None:
            parts.append(f"• ${self.price_per_gallon:.2f}/gal")
        return " ".join(parts) or "Fuel purchase"


class ServiceInvoiceRecord(_Record):
    document_type: Literal["service_invoice"] = "service_invoice"
    vendor: Optional[str] = None
    service_description: Optional[str] = None
    total: Optional[float] = None
    date: Optional[str] = None
    mileage: Optional[int] = None
    line_items: list[LineItem] = Field(default_factory=list)
    service_category: Optional[str] = None
    next_service_mileage: Optional[int] = None
    next_service_months: Optional[int] = None

    def summary(self) -> str:
        text = f"{self.mileage:,} mile service" if self.mileage else "Service"
        if self.service_description:
            text += f" • {self.service_description}"
        if self.vendor:
            text += f" at {self.vendor}"
        if self.total is not None:
            text += f" • ${self.total:.2f}"
        return text


class InsuranceCardRecord(_Record):
    document_type: Literal["insurance_card"] = "insurance_card"
    insurer: Optional[str] = None
    policy_number: Optional[str] = None
    effective_date: Optional[str] = None
    expiration_date: Optional[str] = None
    vin: Optional[str] = None
    named_insured: Optional[str] = None

    def summary(self) -> str:
        text = self.insurer or "Insurance card"
        if self.policy_number:
            text += f" • Policy {self.policy_number}"
        if self.expiration_date:
            text += f" • expires {self.expiration_date}"
        return text


class RegistrationRecord(_Record):
    document_type: Literal["registration"] = "registration"
    year: Optional[int] = None
    make: Optional[str] = None
    model: Optional[str] = None
    vin: Optional[str] = None
    plate: Optional[str] = None
    state: Optional[str] = None
    expiration_date: Optional[str] = None

    def summary(self) -> str:
        vehicle = " ".join(str(p) for p in (self.year, self.make, self.model) if p)
        text = vehicle or "Registration"
        if self.plate:
            text += f" • {self.plate}"
        if self.expiration_date:
            text += f" • expires {self.expiration_date}"
        return text


class InspectionCertificateRecord(_Record):
    document_type: Literal["inspection_certificate"] = "inspection_certificate"
    station: Optional[str] = None
    inspection_date: Optional[str] = None
    expiration_date: Optional[str] = None
    result: Optional[Literal["pass", "fail"]] = None
    mileage: Optional[int] = None

    def summary(self) -> str:
        text = "Inspection"
        if self.result:
            text += f" • {self.result.upper()}"
        if self.station:
            text += f" at {self.station}"
        return text


class GenericRecord(_Record):
    document_type: Literal["unknown"] = "unknown"
    fields: dict[str, Any] = Field(default_factory=dict)

    def summary(self) -> str:
        return ", ".join(f"{k}: {v}" for k, v in list(self.fields.items())[:3]) or "Document"


ExtractedRecord = Annotated[
    Union[
        OdometerRecord,
        FuelReceiptRecord,
        ServiceInvoiceRecord,
        InsuranceCardRecord,
        RegistrationRecord,
        InspectionCertificateRecord,
        GenericRecord,
    ],
    Field(discriminator="document_type"),
]
