"""Prompt templates per document type, asking only for clearly visible fields."""

from docvision.documents.models import DocumentType

_JSON_RULES = (
    "Respond ONLY with JSON. Only include fields you can clearly read; "
    "use null for anything unreadable. Do not guess."
)

PROMPTS: dict[DocumentType, str] = {
    DocumentType.ODOMETER: (
        "Read the odometer in this photo. Return only the number shown on the "
        "odometer (not the trip meter), without commas. If the display shows "
        'kilometres, return JSON instead: {"mileage": 12345, "unit": "km"}.'
    ),
    DocumentType.FUEL_RECEIPT: f"""Extract fuel receipt data. Return JSON:
{{
  "station": "station name",
  "cost": 0.00,
  "gallons": 0.000,
  "price_per_gallon": 0.000,
  "fuel_type": "Regular",
  "date": "YYYY-MM-DD",
  "odometer": null
}}
{_JSON_RULES}""",
    DocumentType.SERVICE_INVOICE: f"""Extract service invoice data. Return JSON:
{{
  "vendor": "shop name",
  "service_description": "oil change and tire rotation",
  "total": 0.00,
  "date": "YYYY-MM-DD",
  "mileage": 0,
  "line_items": [{{"description": "Synthetic oil 5qt", "amount": 0.00}}]
}}
{_JSON_RULES}""",
    DocumentType.INSURANCE_CARD: f"""Extract auto insurance card data. Return JSON:
{{
  "insurer": "insurance company name",
  "policy_number": "policy number",
  "effective_date": "YYYY-MM-DD",
  "expiration_date": "YYYY-MM-DD",
  "vin": "17-character VIN",
  "named_insured": "name"
}}
{_JSON_RULES}""",
    DocumentType.REGISTRATION: f"""Extract vehicle registration data. Return JSON:
{{
  "year": 2020,
  "make": "Honda",
  "model": "Civic",
  "vin": "17-character VIN",
  "plate": "license plate",
  "state": "CA",
  "expiration_date": "YYYY-MM-DD"
}}
{_JSON_RULES}""",
    DocumentType.INSPECTION_CERTIFICATE: f"""Extract vehicle inspection certificate data. Return JSON:
{{
  "result": "pass or fail",
  "station": "inspection station",
  "inspection_date": "YYYY-MM-DD",
  "expiration_date": "YYYY-MM-DD",
  "mileage": 0
}}
{_JSON_RULES}""",
    DocumentType.UNKNOWN: (
        "Extract the key information from this vehicle-related document. "
        "Return simple flat JSON with only clearly visible data, for example "
        '{"type": "...", "date": "YYYY-MM-DD", "amount": 0.00}.'
    ),
}


def build_prompt(document_type: DocumentType, hints: dict[str, str] | None = None) -> str:
    """Prompt for a document type, with any caller hints appended as context."""
    prompt = PROMPTS.get(document_type, PROMPTS[DocumentType.UNKNOWN])
    if not hints:
        return prompt
    context = "\n".join(f"- {key}: {value}" for key, value in sorted(hints.items()))
    return f"{prompt}\n\n## Context from the user\n{context}"
