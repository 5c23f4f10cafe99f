"""Image fingerprinting: SHA-256 over normalized pixels plus document type."""

import hashlib
import io
import json
import logging
from typing import Optional

from PIL import Image, ImageOps, UnidentifiedImageError

from docvision.cache.models import ImageFingerprint
from docvision.documents.models import DocumentType

logger = logging.getLogger(__name__)

# Larger images are hashed as raw bytes instead of decoded pixels.
MAX_NORMALIZED_PIXELS = 64_000_000


def normalized_bytes(image_bytes: bytes) -> bytes:
    """Canonical byte form of an image.

    Decodes with Pillow, applies the EXIF orientation and converts to RGB, so
    re-encoded copies and metadata-only edits of one photo normalize to the
    same bytes. Anything Pillow cannot decode, and anything above
    MAX_NORMALIZED_PIXELS, is returned as-is.
    """
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            width, height = img.size
            if width * height > MAX_NORMALIZED_PIXELS:
                logger.info("Hashing raw bytes, %dx%d image exceeds pixel cap", width, height)
                return image_bytes
            img = ImageOps.exif_transpose(img)
            rgb = img.convert("RGB")
            width, height = rgb.size
            return f"{width}x{height}:".encode() + rgb.tobytes()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        logger.debug("Hashing raw bytes, image not decodable: %s", exc)
        return image_bytes


def compute_fingerprint(
    image_bytes: bytes,
    document_type: DocumentType | str,
    hints: Optional[dict[str, str]] = None,
) -> ImageFingerprint:
    """Fingerprint identifying an image + document type (+ hints) for caching.

    Hints can fill record fields, so two requests for one image with
    different hints get different keys. No hints and empty hints match.
    """
    doc_type = DocumentType.coerce(document_type)
    h = hashlib.sha256()
    h.update(doc_type.value.encode())
    h.update(b"\x00")
    h.update(normalized_bytes(image_bytes))
    if hints:
        h.update(b"\x00")
        h.update(json.dumps(hints, sort_keys=True, default=str).encode())
    return ImageFingerprint(digest=h.hexdigest(), document_type=doc_type)
