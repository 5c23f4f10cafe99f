"""Domain enrichment: derive secondary fields from confident primary fields."""

import logging
from typing import Any, Callable, Optional

from docvision.documents.models import LineItem
from docvision.extraction.models import ValidationIssue

logger = logging.getLogger(__name__)

# values, fields flagged during sanitization → issues (values mutated in place)
Enricher = Callable[[dict[str, Any], set[str]], list[ValidationIssue]]


def _usable(values: dict[str, Any], flagged: set[str], *fields: str) -> bool:
    return all(values.get(f) is not None and f not in flagged for f in fields)


# ── Fuel ─────────────────────────────────────────────────────────────


def enrich_fuel_receipt(values: dict[str, Any], flagged: set[str]) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []

    if values.get("price_per_gallon") is None and _usable(values, flagged, "cost", "gallons"):
        if values["gallons"] > 0:
            values["price_per_gallon"] = round(values["cost"] / values["gallons"], 3)
            issues.append(
                ValidationIssue(
                    code="derived_field",
                    message=(
                        f"price_per_gallon not on receipt; derived as "
                        f"{values['price_per_gallon']} from cost and gallons"
                    ),
                    field="price_per_gallon",
                    severity="low",
                    step="enrich",
                )
            )
        return issues

    if _usable(values, flagged, "cost", "gallons", "price_per_gallon"):
        calculated = values["gallons"] * values["price_per_gallon"]
        tolerance = max(values["cost"] * 0.1, 1.0)
        if abs(calculated - values["cost"]) > tolerance:
            issues.append(
                ValidationIssue(
                    code="amount_mismatch",
                    message=(
                        f"{values['gallons']} gal × ${values['price_per_gallon']:.2f} = "
                        f"${calculated:.2f}, but receipt total is ${values['cost']:.2f}"
                    ),
                    field="cost",
                    severity="medium",
                    step="enrich",
                )
            )
    return issues


# ── Service ──────────────────────────────────────────────────────────

SERVICE_INTERVALS: dict[str, tuple[int, int]] = {
    # category: (miles, months)
    "oil_change": (5000, 6),
    "brake_service": (25000, 24),
    "tire_service": (7500, 6),
    "transmission_service": (30000, 36),
    "tune_up": (30000, 24),
    "inspection": (12000, 12),
    "general_service": (10000, 12),
}


def categorize_service(description: Optional[str]) -> str:
    """Bucket a free-text service description for maintenance tracking."""
    if not description:
        return "general_service"
    desc = description.lower()
    if "oil change" in desc or "oil service" in desc:
        return "oil_change"
    if "brake" in desc and any(k in desc for k in ("pad", "rotor", "service")):
        return "brake_service"
    if "tire" in desc and any(k in desc for k in ("rotation", "balance", "alignment")):
        return "tire_service"
    if "transmission" in desc and "service" in desc:
        return "transmission_service"
    if any(k in desc for k in ("inspection", "safety", "emissions")):
        return "inspection"
    if any(k in desc for k in ("tune", "spark plug", "maintenance")):
        return "tune_up"
    return "general_service"


def categorize_line_item(description: str) -> str:
    desc = description.lower()
    if any(k in desc for k in ("labor", "service", "diagnostic", "install", "repair", "replace")):
        return "labor"
    if any(k in desc for k in ("part", "filter", "belt", "brake", "battery", "spark")):
        return "parts"
    if any(k in desc for k in ("oil", "fluid", "coolant", "transmission")):
        return "fluids"
    return "other"


def enrich_service_invoice(values: dict[str, Any], flagged: set[str]) -> list[ValidationIssue]:
    category = categorize_service(values.get("service_description"))
    values["service_category"] = category

    items: list[LineItem] = values.get("line_items") or []
    values["line_items"] = [
        item.model_copy(update={"category": categorize_line_item(item.description)})
        if item.category == "other" else item
        for item in items
    ]

    if _usable(values, flagged, "mileage"):
        miles, months = SERVICE_INTERVALS[category]
        values["next_service_mileage"] = values["mileage"] + miles
        values["next_service_months"] = months
    return []


# ── Dates ────────────────────────────────────────────────────────────


def date_order_check(start_field: str, end_field: str) -> Enricher:
    """Flag an end date that precedes its start date (ISO strings compare)."""

    def enrich(values: dict[str, Any], flagged: set[str]) -> list[ValidationIssue]:
        if not _usable(values, flagged, start_field, end_field):
            return []
        if values[end_field] >= values[start_field]:
            return []
        return [
            ValidationIssue(
                code="date_order",
                message=f"{end_field} {values[end_field]} is before {start_field} {values[start_field]}",
                field=end_field,
                severity="medium",
                step="enrich",
            )
        ]

    return enrich


enrich_insurance_card = date_order_check("effective_date", "expiration_date")
enrich_inspection_certificate = date_order_check("inspection_date", "expiration_date")


# ── Registration ─────────────────────────────────────────────────────

_VIN_VALUES = {
    **{str(d): d for d in range(10)},
    "A": 1, "B": 2, "C": 3, "D": 4, "E": 5, "F": 6, "G": 7, "H": 8,
    "J": 1, "K": 2, "L": 3, "M": 4, "N": 5, "P": 7, "R": 9,
    "S": 2, "T": 3, "U": 4, "V": 5, "W": 6, "X": 7, "Y": 8, "Z": 9,
}
_VIN_WEIGHTS = (8, 7, 6, 5, 4, 3, 2, 10, 0, 9, 8, 7, 6, 5, 4, 3, 2)


def vin_check_digit(vin: str) -> str:
    """North-American check digit (position 9) for a 17-character VIN."""
    total = sum(_VIN_VALUES[ch] * w for ch, w in zip(vin, _VIN_WEIGHTS))
    remainder = total % 11
    return "X" if remainder == 10 else str(remainder)


def enrich_registration(values: dict[str, Any], flagged: set[str]) -> list[ValidationIssue]:
    if not _usable(values, flagged, "vin"):
        return []
    vin = values["vin"]
    expected = vin_check_digit(vin)
    if vin[8] == expected:
        return []
    return [
        ValidationIssue(
            code="vin_check_digit",
            message=f"VIN check digit is '{vin[8]}', expected '{expected}' (non-North-American VINs may differ)",
            field="vin",
            severity="low",
            step="enrich",
        )
    ]


def enrich_nothing(values: dict[str, Any], flagged: set[str]) -> list[ValidationIssue]:
    return []
