"""Field sanitization: coerce loose model output into typed, range-checked values."""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Optional

from docvision.documents.models import LineItem
from docvision.extraction.models import Severity, ValidationIssue

logger = logging.getLogger(__name__)

MAX_MILEAGE = 999_999
KM_PER_MILE = 1.609

Check = Callable[[dict[str, Any]], list[ValidationIssue]]


# ── Coercers ─────────────────────────────────────────────────────────
# Each coercer returns the normalized value or raises ValueError/TypeError.

_NUMBER_RE = re.compile(r"-?\d[\d,]*(?:\.\d+)?|-?\.\d+")
_CURRENCY_RE = re.compile(r"(?i)\b(usd|us\$|cad|eur)\b|[$€£]")


def to_float(value: Any) -> float:
    if isinstance(value, bool):
        raise TypeError(f"Expected a number, got boolean {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        raise TypeError(f"Expected a number, got {type(value).__name__}")
    match = _NUMBER_RE.search(_CURRENCY_RE.sub("", value))
    if not match:
        raise ValueError(f"No number found in {value!r}")
    return float(match.group(0).replace(",", ""))


def to_int(value: Any) -> int:
    return int(round(to_float(value)))


class AmbiguousValue(ValueError):
    """The text holds several conflicting readings for one field."""


_MILEAGE_NUM = r"(\d{1,3}(?:,\d{3})+|\d+)(?:\.\d+)?"
_LABELLED_MILEAGE_RE = re.compile(
    r"(?i)\b(?:odometer|odo|mileage|total\s+miles)\b[^\d\n]{0,20}?" + _MILEAGE_NUM
)
_SUFFIXED_MILEAGE_RE = re.compile(
    r"(?i)" + _MILEAGE_NUM + r"\s*(?:miles?|mi|kms?|kilomet(?:er|re)s?)\b"
)
_TRIP_RE = re.compile(r"(?i)\btrip\b[^\d\n]{0,12}?" + _MILEAGE_NUM)
_BARE_NUMBER_RE = re.compile(_MILEAGE_NUM)


def mileage_candidates(text: str) -> list[list[int]]:
    """Distinct readings found in free text, grouped by pattern strength.

    Group 0 holds labelled readings ("odometer 45,678"), group 1 readings
    with a distance unit ("45,678 miles"), group 2 any other number. Trip
    meter readings are never candidates.
    """
    trip_starts = {m.start(1) for m in _TRIP_RE.finditer(text)}
    groups: list[list[int]] = []
    for pattern in (_LABELLED_MILEAGE_RE, _SUFFIXED_MILEAGE_RE, _BARE_NUMBER_RE):
        found: list[int] = []
        for match in pattern.finditer(text):
            if match.start(1) in trip_starts:
                continue
            # Odometers drop tenths, so the integer part is the reading
            reading = int(match.group(1).replace(",", ""))
            if reading not in found:
                found.append(reading)
        groups.append(found)
    return groups


def to_mileage(value: Any) -> int:
    """Odometer reading from a number or from free text.

    Text is searched for labelled readings first, then unit-suffixed ones,
    then bare numbers; the strongest non-empty group must agree on a single
    value, otherwise AmbiguousValue is raised.
    """
    if not isinstance(value, str):
        return to_int(value)
    for found in mileage_candidates(value):
        if len(found) == 1:
            return found[0]
        if found:
            raise AmbiguousValue(
                f"Conflicting readings {', '.join(str(f) for f in found)} in {value!r}"
            )
    raise ValueError(f"No mileage reading in {value!r}")


def to_money(value: Any) -> float:
    return round(to_float(value), 2)


def to_text(value: Any) -> Optional[str]:
    if isinstance(value, (dict, list)):
        raise TypeError(f"Expected text, got {type(value).__name__}")
    text = " ".join(str(value).split())
    return text or None


_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%m/%d/%y", "%m-%d-%Y", "%b %d, %Y", "%B %d, %Y", "%d %b %Y")


def to_date(value: Any) -> str:
    """Normalize a date string to ISO ``YYYY-MM-DD``."""
    if isinstance(value, (date, datetime)):
        return value.strftime("%Y-%m-%d")
    text = to_text(value)
    if text is None:
        raise ValueError("Empty date")
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).strftime("%Y-%m-%d")
        except ValueError:
            continue
    raise ValueError(f"Unrecognised date format: {text!r}")


def to_identifier(value: Any) -> Optional[str]:
    """Uppercase, strip spaces and dashes (VINs, plates, policy numbers)."""
    text = to_text(value)
    if text is None:
        return None
    return re.sub(r"[\s-]", "", text).upper()


def to_unit(value: Any) -> str:
    text = (to_text(value) or "").lower()
    if text in ("km", "kms", "kilometer", "kilometers", "kilometre", "kilometres"):
        return "km"
    if text in ("mi", "mile", "miles", ""):
        return "mi"
    raise ValueError(f"Unknown distance unit: {value!r}")


def to_result(value: Any) -> str:
    text = (to_text(value) or "").lower()
    if text in ("pass", "passed", "p", "ok", "approved"):
        return "pass"
    if text in ("fail", "failed", "f", "rejected"):
        return "fail"
    raise ValueError(f"Unknown inspection result: {value!r}")


def to_line_items(value: Any) -> list[LineItem]:
    if not isinstance(value, list):
        raise TypeError(f"Expected a list of line items, got {type(value).__name__}")
    items: list[LineItem] = []
    for raw in value:
        if isinstance(raw, str) and raw.strip():
            items.append(LineItem(description=raw.strip()))
            continue
        if not isinstance(raw, dict) or not raw.get("description"):
            continue
        amount = raw.get("amount")
        items.append(
            LineItem(
                description=str(raw["description"]).strip(),
                amount=to_money(amount) if amount not in (None, "") else None,
            )
        )
    return items


# ── Field Rules ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class FieldRule:
    """Maps one record field to the response keys it may arrive under."""

    name: str
    coerce: Callable[[Any], Any]
    aliases: tuple[str, ...] = ()
    required: bool = False

    def keys(self) -> tuple[str, ...]:
        return (self.name, *self.aliases)


def sanitize_fields(
    loose: dict[str, Any],
    rules: tuple[FieldRule, ...],
    checks: tuple[Check, ...] = (),
) -> tuple[dict[str, Any], list[ValidationIssue]]:
    """Coerce each field independently, then run the range checks.

    A coercer that raises leaves the field at its default and records a
    ``field_defaulted`` issue (``ambiguous_value``, high, when the text held
    conflicting readings); the remaining fields are unaffected.
    """
    lowered = {str(k).lower(): v for k, v in loose.items()}
    values: dict[str, Any] = {}
    issues: list[ValidationIssue] = []

    for rule in rules:
        raw = next((lowered[k] for k in rule.keys() if _present(lowered.get(k))), None)
        if raw is None:
            if rule.required:
                issues.append(_missing(rule.name))
            continue
        try:
            coerced = rule.coerce(raw)
        except AmbiguousValue as exc:
            logger.warning("Ambiguous field %s: %s", rule.name, exc)
            issues.append(
                ValidationIssue(
                    code="ambiguous_value",
                    message=f"Could not pick '{rule.name}' ({exc}); left empty",
                    field=rule.name,
                    severity="high",
                )
            )
            continue
        except (ValueError, TypeError, ArithmeticError) as exc:
            logger.info("Defaulted field %s: %s", rule.name, exc)
            issues.append(
                ValidationIssue(
                    code="field_defaulted",
                    message=f"Could not read '{rule.name}' ({exc}); left empty",
                    field=rule.name,
                    severity="medium",
                )
            )
            continue
        if coerced is None:
            if rule.required:
                issues.append(_missing(rule.name))
            continue
        values[rule.name] = coerced

    for check in checks:
        issues.extend(check(values))

    return values, issues


def _present(value: Any) -> bool:
    return value is not None and value != "" and value != []


def _missing(field: str) -> ValidationIssue:
    return ValidationIssue(
        code="missing_required_field",
        message=f"Required field '{field}' was not found",
        field=field,
        severity="medium",
    )


# ── Range Checks ─────────────────────────────────────────────────────


def out_of_range(
    values: dict[str, Any],
    field: str,
    low: float,
    high: float,
    severity: Severity = "medium",
) -> list[ValidationIssue]:
    """Flag (but keep) a value outside [low, high]."""
    value = values.get(field)
    if value is None or low <= value <= high:
        return []
    return [
        ValidationIssue(
            code="value_out_of_range",
            message=f"{field} = {value} is outside the plausible range {low}–{high}",
            field=field,
            severity=severity,
        )
    ]


def range_check(field: str, low: float, high: float, severity: Severity = "medium") -> Check:
    def check(values: dict[str, Any]) -> list[ValidationIssue]:
        return out_of_range(values, field, low, high, severity)

    return check


def mileage_check(field: str) -> Check:
    return range_check(field, 0, MAX_MILEAGE, severity="high")


_VIN_RE = re.compile(r"^[A-HJ-NPR-Z0-9]{17}$")


def vin_check(field: str = "vin", severity: Severity = "high") -> Check:
    def check(values: dict[str, Any]) -> list[ValidationIssue]:
        vin = values.get(field)
        if vin is None or _VIN_RE.match(vin):
            return []
        return [
            ValidationIssue(
                code="invalid_vin",
                message=f"'{vin}' is not a 17-character VIN (letters I, O, Q are never used)",
                field=field,
                severity=severity,
            )
        ]

    return check


def length_check(field: str, low: int, high: int) -> Check:
    def check(values: dict[str, Any]) -> list[ValidationIssue]:
        value = values.get(field)
        if value is None or low <= len(value) <= high:
            return []
        return [
            ValidationIssue(
                code="unusual_format",
                message=f"{field} '{value}' has unusual length {len(value)} (expected {low}–{high})",
                field=field,
                severity="medium",
            )
        ]

    return check


def convert_km_odometer(values: dict[str, Any]) -> list[ValidationIssue]:
    """Store kilometre readings as miles, keeping the displayed value."""
    reading = values.get("mileage")
    if reading is None:
        return []
    values["original_value"] = reading
    if values.get("unit") == "km":
        values["mileage"] = int(round(reading / KM_PER_MILE))
        logger.info("Converted %d km to %d miles", reading, values["mileage"])
    return []


def year_check(values: dict[str, Any]) -> list[ValidationIssue]:
    return out_of_range(values, "year", 1900, date.today().year + 1)


# ── Per-Document Field Tables ────────────────────────────────────────

ODOMETER_FIELDS = (
    FieldRule("unit", to_unit, ("odometer_unit", "units")),
    FieldRule("mileage", to_mileage, ("odometer_miles", "odometer", "reading", "miles", "value"), required=True),
)
ODOMETER_CHECKS: tuple[Check, ...] = (convert_km_odometer, mileage_check("mileage"))

FUEL_RECEIPT_FIELDS = (
    FieldRule("gallons", to_float, ("volume", "fuel_gallons"), required=True),
    FieldRule("cost", to_money, ("total", "total_amount", "amount"), required=True),
    FieldRule("price_per_gallon", to_money, ("ppg", "unit_price")),
    FieldRule("station", to_text, ("station_name", "vendor_name", "merchant")),
    FieldRule("fuel_type", to_text, ("grade", "product")),
    FieldRule("date", to_date, ("transaction_date",)),
    FieldRule("odometer", to_mileage, ("odometer_reading", "mileage")),
)
FUEL_RECEIPT_CHECKS: tuple[Check, ...] = (
    range_check("gallons", 0.1, 50),
    range_check("price_per_gallon", 1, 10),
    range_check("cost", 1, 500),
    mileage_check("odometer"),
)

SERVICE_INVOICE_FIELDS = (
    FieldRule("vendor", to_text, ("vendor_name", "shop", "shop_name", "business_name"), required=True),
    FieldRule("total", to_money, ("total_amount", "amount", "cost"), required=True),
    FieldRule("service_description", to_text, ("description", "services", "work_performed")),
    FieldRule("date", to_date, ("service_date",)),
    FieldRule("mileage", to_mileage, ("odometer_reading", "odometer", "odometer_miles")),
    FieldRule("line_items", to_line_items, ("items",)),
)
SERVICE_INVOICE_CHECKS: tuple[Check, ...] = (
    range_check("total", 5, 15000),
    mileage_check("mileage"),
)

INSURANCE_CARD_FIELDS = (
    FieldRule("insurer", to_text, ("insurance_company", "company", "carrier"), required=True),
    FieldRule("policy_number", to_identifier, ("policy", "policy_no"), required=True),
    FieldRule("effective_date", to_date, ("effective", "start_date")),
    FieldRule("expiration_date", to_date, ("expires", "expiration", "end_date")),
    FieldRule("vin", to_identifier, ("vehicle_vin",)),
    FieldRule("named_insured", to_text, ("insured", "name")),
)
INSURANCE_CARD_CHECKS: tuple[Check, ...] = (
    length_check("policy_number", 5, 20),
    vin_check(severity="medium"),
)

REGISTRATION_FIELDS = (
    FieldRule("vin", to_identifier, ("vehicle_vin",), required=True),
    FieldRule("plate", to_identifier, ("license_plate", "plate_number")),
    FieldRule("year", to_int, ("model_year",)),
    FieldRule("make", to_text),
    FieldRule("model", to_text),
    FieldRule("state", to_identifier),
    FieldRule("expiration_date", to_date, ("expires", "expiration")),
)
REGISTRATION_CHECKS: tuple[Check, ...] = (vin_check(), year_check)

INSPECTION_CERTIFICATE_FIELDS = (
    FieldRule("result", to_result, ("status", "outcome"), required=True),
    FieldRule("station", to_text, ("station_name", "inspector", "facility")),
    FieldRule("inspection_date", to_date, ("date",)),
    FieldRule("expiration_date", to_date, ("expires", "valid_until")),
    FieldRule("mileage", to_mileage, ("odometer", "odometer_reading")),
)
INSPECTION_CERTIFICATE_CHECKS: tuple[Check, ...] = (mileage_check("mileage"),)
