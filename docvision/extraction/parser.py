"""Structural parse: turn raw model text into a loosely-typed record."""

import json
import logging
import re
from typing import Any

from docvision.core.errors import StructuralParseError

logger = logging.getLogger(__name__)

_THINK_RE = re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE)
_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?```$", re.DOTALL)
_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)
_MISSING = object()


# ── Cleanup ──────────────────────────────────────────────────────────


def strip_artifacts(content: str) -> str:
    """Remove reasoning blocks, code fences and surrounding whitespace."""
    text = _THINK_RE.sub("", content or "").strip()
    match = _FENCE_RE.match(text)
    if match:
        text = match.group(1).strip()
    return text


# ── Public API ───────────────────────────────────────────────────────


def structural_parse(content: str) -> dict[str, Any]:
    """Decode a model response into a dict.

    - JSON object → the object.
    - Bare JSON scalar or plain text → ``{"value": ...}``.
    - Text that embeds a JSON object → the embedded object.

    Raises StructuralParseError for empty text, JSON arrays, and
    JSON that is truncated or malformed.
    """
    text = strip_artifacts(content)
    if not text:
        raise StructuralParseError("Model response is empty")

    try:
        decoded = json.loads(text)
    except json.JSONDecodeError:
        decoded = _MISSING
    if decoded is not _MISSING:
        return _as_record(decoded)

    if text[0] in "{[":
        raise StructuralParseError(f"Malformed JSON in model response: {text[:60]!r}")

    match = _OBJECT_RE.search(text)
    if match:
        try:
            return _as_record(json.loads(match.group(0)))
        except json.JSONDecodeError as exc:
            raise StructuralParseError(f"Embedded JSON could not be decoded: {exc}") from exc

    return {"value": text}


# ── Helpers ──────────────────────────────────────────────────────────


def _as_record(decoded: Any) -> dict[str, Any]:
    if isinstance(decoded, dict):
        return decoded
    if decoded is None:
        raise StructuralParseError("Model response decoded to null")
    if isinstance(decoded, list):
        raise StructuralParseError("Expected a JSON object, got a JSON array")
    return {"value": decoded}
