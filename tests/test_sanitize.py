"""Tests for field coercers, field tables and range checks."""

import pytest

from docvision.extraction.sanitize import (
    FUEL_RECEIPT_CHECKS,
    FUEL_RECEIPT_FIELDS,
    INSURANCE_CARD_CHECKS,
    INSURANCE_CARD_FIELDS,
    ODOMETER_CHECKS,
    ODOMETER_FIELDS,
    REGISTRATION_CHECKS,
    REGISTRATION_FIELDS,
    SERVICE_INVOICE_CHECKS,
    SERVICE_INVOICE_FIELDS,
    AmbiguousValue,
    mileage_candidates,
    sanitize_fields,
    to_date,
    to_float,
    to_identifier,
    to_int,
    to_line_items,
    to_mileage,
    to_money,
    to_result,
    to_unit,
)


def _codes(issues):
    return [i.code for i in issues]


# ── Coercers ─────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "raw, expected",
    [
        (12.5, 12.5),
        (7, 7.0),
        ("$1,234.56", 1234.56),
        ("12.345 gal", 12.345),
        ("USD 45", 45.0),
        (".5", 0.5),
    ],
)
def test_to_float(raw, expected):
    assert to_float(raw) == pytest.approx(expected)


@pytest.mark.parametrize("raw", ["twelve", "", {"a": 1}, True])
def test_to_float_rejects(raw):
    with pytest.raises((ValueError, TypeError)):
        to_float(raw)


def test_to_int_rounds_and_strips_units():
    assert to_int("123,456 mi") == 123456
    assert to_int(99.6) == 100


def test_to_money_rounds_cents():
    assert to_money("$45.004") == 45.0


@pytest.mark.parametrize(
    "raw",
    ["2024-03-15", "03/15/2024", "3/15/24", "03-15-2024", "Mar 15, 2024", "March 15, 2024", "15 Mar 2024"],
)
def test_to_date_formats(raw):
    assert to_date(raw) == "2024-03-15"


def test_to_date_rejects_garbage():
    with pytest.raises(ValueError):
        to_date("sometime last spring")


def test_to_identifier_normalizes():
    assert to_identifier("1hgcm 826-33a004352") == "1HGCM82633A004352"


def test_to_unit():
    assert to_unit("Kilometers") == "km"
    assert to_unit("miles") == "mi"
    with pytest.raises(ValueError):
        to_unit("furlongs")


def test_to_result():
    assert to_result("PASSED") == "pass"
    assert to_result("Fail") == "fail"
    with pytest.raises(ValueError):
        to_result("pending")


def test_to_line_items_skips_unusable_entries():
    items = to_line_items(
        [
            {"description": "Oil filter", "amount": "$12.99"},
            "Shop supplies",
            {"amount": 5},
            42,
        ]
    )
    assert [i.description for i in items] == ["Oil filter", "Shop supplies"]
    assert items[0].amount == 12.99
    assert items[1].amount is None


def test_to_line_items_requires_list():
    with pytest.raises(TypeError):
        to_line_items("Oil filter")


# ── Odometer ─────────────────────────────────────────────────────────


def test_odometer_value_alias():
    values, issues = sanitize_fields({"value": "123,456"}, ODOMETER_FIELDS, ODOMETER_CHECKS)
    assert values["mileage"] == 123456
    assert values["original_value"] == 123456
    assert issues == []


def test_odometer_km_converted_to_miles():
    values, issues = sanitize_fields({"mileage": 16090, "unit": "km"}, ODOMETER_FIELDS, ODOMETER_CHECKS)
    assert values["mileage"] == 10000
    assert values["original_value"] == 16090
    assert values["unit"] == "km"
    assert issues == []


def test_odometer_impossible_mileage_flagged_high_and_kept():
    values, issues = sanitize_fields({"mileage": 5_000_000}, ODOMETER_FIELDS, ODOMETER_CHECKS)
    assert values["mileage"] == 5_000_000
    assert _codes(issues) == ["value_out_of_range"]
    assert issues[0].severity == "high"


def test_odometer_missing_reading():
    values, issues = sanitize_fields({"notes": "blurry"}, ODOMETER_FIELDS, ODOMETER_CHECKS)
    assert "mileage" not in values
    assert _codes(issues) == ["missing_required_field"]


def test_keys_are_case_insensitive():
    values, _ = sanitize_fields({"Mileage": "42"}, ODOMETER_FIELDS, ODOMETER_CHECKS)
    assert values["mileage"] == 42


# ── Fuel Receipt ─────────────────────────────────────────────────────


def test_fuel_coercer_failure_defaults_only_that_field():
    values, issues = sanitize_fields(
        {"gallons": "lots", "cost": "$45.00", "station": "Shell"},
        FUEL_RECEIPT_FIELDS,
        FUEL_RECEIPT_CHECKS,
    )
    assert "gallons" not in values
    assert values["cost"] == 45.0
    assert values["station"] == "Shell"
    assert _codes(issues) == ["field_defaulted"]
    assert issues[0].field == "gallons"
    assert issues[0].severity == "medium"


def test_fuel_ranges():
    values, issues = sanitize_fields(
        {"gallons": 80, "cost": 45, "price_per_gallon": 25},
        FUEL_RECEIPT_FIELDS,
        FUEL_RECEIPT_CHECKS,
    )
    flagged = {i.field for i in issues}
    assert flagged == {"gallons", "price_per_gallon"}
    assert values["gallons"] == 80.0


def test_fuel_missing_required_fields():
    _, issues = sanitize_fields({"station": "Costco"}, FUEL_RECEIPT_FIELDS, FUEL_RECEIPT_CHECKS)
    assert {i.field for i in issues if i.code == "missing_required_field"} == {"gallons", "cost"}


def test_blank_text_counts_as_missing():
    _, issues = sanitize_fields(
        {"vendor": "   ", "total": 50}, SERVICE_INVOICE_FIELDS, SERVICE_INVOICE_CHECKS
    )
    assert _codes(issues) == ["missing_required_field"]
    assert issues[0].field == "vendor"


# ── Service / Insurance / Registration ───────────────────────────────


def test_service_total_range():
    _, issues = sanitize_fields(
        {"vendor": "Shop", "total": "$25,000"}, SERVICE_INVOICE_FIELDS, SERVICE_INVOICE_CHECKS
    )
    assert _codes(issues) == ["value_out_of_range"]


def test_insurance_policy_length_and_vin():
    values, issues = sanitize_fields(
        {"insurer": "State Farm", "policy_number": "AB1", "vin": "1234"},
        INSURANCE_CARD_FIELDS,
        INSURANCE_CARD_CHECKS,
    )
    assert values["policy_number"] == "AB1"
    assert _codes(issues) == ["unusual_format", "invalid_vin"]
    assert issues[1].severity == "medium"


def test_registration_invalid_vin_is_high_severity():
    _, issues = sanitize_fields(
        {"vin": "1HGCM82633A00435O", "year": 2003}, REGISTRATION_FIELDS, REGISTRATION_CHECKS
    )
    assert _codes(issues) == ["invalid_vin"]
    assert issues[0].severity == "high"


def test_registration_year_range():
    _, issues = sanitize_fields(
        {"vin": "1M8GDM9AXKP042788", "year": 1850}, REGISTRATION_FIELDS, REGISTRATION_CHECKS
    )
    assert _codes(issues) == ["value_out_of_range"]
    assert issues[0].field == "year"


# ── Free-text Mileage ────────────────────────────────────────────────


def test_labelled_reading_beats_trip_meter():
    assert to_mileage("Trip A 123.4 mi, odometer 45,678 miles") == 45678


def test_mileage_candidate_groups():
    labelled, suffixed, bare = mileage_candidates("Trip B 88 mi, ODO: 45,678 and 45,678 miles")
    assert labelled == [45678]
    assert suffixed == [45678]
    assert 88 not in bare


def test_unit_suffix_used_without_label():
    assert to_mileage("Display shows 98,765 km") == 98765
    assert to_mileage("123,456 mi") == 123456


def test_plain_number_text():
    assert to_mileage("123456") == 123456
    assert to_mileage(99.6) == 100


def test_conflicting_labelled_readings_are_ambiguous():
    with pytest.raises(AmbiguousValue):
        to_mileage("Odometer 45,678 / odometer 47,000")


def test_text_without_reading_rejected():
    with pytest.raises(ValueError):
        to_mileage("photo too blurry to read")


def test_ambiguous_odometer_flagged_high_and_left_empty():
    values, issues = sanitize_fields(
        {"value": "mileage 45,678 then mileage 54,678"}, ODOMETER_FIELDS, ODOMETER_CHECKS
    )
    assert "mileage" not in values
    assert _codes(issues) == ["ambiguous_value"]
    assert issues[0].severity == "high"


def test_service_invoice_mileage_from_text():
    values, _ = sanitize_fields(
        {"vendor": "Jiffy Lube", "total": 89.99, "mileage": "Odometer in: 45,210"},
        SERVICE_INVOICE_FIELDS,
        SERVICE_INVOICE_CHECKS,
    )
    assert values["mileage"] == 45210
