"""Shared validation utilities (used by both the API and the client library)"""

import uuid
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, Optional, Union
from urllib.parse import urlparse

# Upload limits
DEFAULT_MAX_FILES = 5
DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024  # 10 MiB
DEFAULT_ACCEPTED_FILE_TYPES = [".pdf", ".doc", ".docx", ".jpg", ".jpeg", ".png", ".txt"]
CONTRACT_ACCEPTED_FILE_TYPES = [".pdf", ".doc", ".docx"]

UPLOAD_FILE_TYPES = {"proposal", "contract"}

OBJECTS_PREFIX = "/objects"

_CENTS = Decimal("0.01")


def validate_uuid(value: str) -> bool:
    """Validate UUID format"""
    try:
        uuid.UUID(value)
        return True
    except (ValueError, AttributeError):
        return False


def normalize_materials(raw: Union[str, Iterable[str], None]) -> list[str]:
    """
    Split a comma-separated materials entry into a clean list.

    Entries are trimmed and blanks dropped, so the result never holds empty
    strings and normalizing an already-normalized list is a no-op.

    >>> normalize_materials(" Pipes,  , fittings ,sealant,")
    ['Pipes', 'fittings', 'sealant']
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        parts = raw.split(",")
    else:
        parts = list(raw)
    return [part.strip() for part in parts if part and part.strip()]


def normalize_cost(value: Union[str, int, float, Decimal, None]) -> str:
    """
    Validate an estimated cost and return it as a fixed two-decimal string.

    Raises:
        ValueError: If the value is missing, not numeric, or negative
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValueError("Estimated cost is required")

    if isinstance(value, bool):
        raise ValueError("Estimated cost must be a number")

    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as e:
        raise ValueError("Estimated cost must be a number") from e

    if not amount.is_finite():
        raise ValueError("Estimated cost must be a number")
    if amount < 0:
        raise ValueError("Estimated cost cannot be negative")

    return str(amount.quantize(_CENTS, rounding=ROUND_HALF_UP))


def object_path_from_url(url: str) -> str:
    """
    Derive the serving path for an uploaded object from its storage URL.

    The last two segments of the URL path are joined under ``/objects/``;
    the API's object-serving route resolves paths of exactly that shape.
    """
    path = urlparse(url).path
    segments = [segment for segment in path.split("/") if segment]
    return f"{OBJECTS_PREFIX}/" + "/".join(segments[-2:])


def normalize_object_path(value: Optional[str]) -> str:
    """
    Normalize a stored file reference to ``/objects/<a>/<b>``.

    Accepts either an already-normalized object path or a full storage URL.

    Raises:
        ValueError: If the value cannot be mapped to an object path
    """
    if not value or not value.strip():
        raise ValueError("File path is required")

    value = value.strip()
    if value.startswith("http://") or value.startswith("https://"):
        value = object_path_from_url(value)

    segments = [segment for segment in value.split("/") if segment]
    if len(segments) != 3 or f"/{segments[0]}" != OBJECTS_PREFIX or ".." in segments:
        raise ValueError(f"Invalid object path: {value}")

    return "/" + "/".join(segments)


def file_extension(filename: str) -> str:
    """Return the lower-cased extension (with dot) of a filename"""
    if "." not in filename:
        return ""
    return "." + filename.rsplit(".", 1)[1].lower()


def has_allowed_extension(filename: str, accepted: Iterable[str]) -> bool:
    """Check a filename against an extension allow-list like ['.pdf', '.png']"""
    allowed = {ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in accepted}
    return file_extension(filename) in allowed
