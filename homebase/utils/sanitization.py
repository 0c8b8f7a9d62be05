import html
import re
from typing import Optional

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")


def sanitize_string(value: Optional[str]) -> Optional[str]:
    """
    Sanitize a string by escaping HTML special characters to prevent XSS.
    Returns None if input is None.

    Already-escaped text comes back unchanged, so a value read from the API
    can be saved again as is.
    """
    if value is None:
        return None
    if not isinstance(value, str):
        return value
    return html.escape(html.unescape(_CONTROL_CHARS.sub("", value)), quote=True)


def sanitize_list(values: Optional[list]) -> Optional[list]:
    """Sanitize every string in a list, leaving other items untouched"""
    if values is None:
        return None
    return [sanitize_string(item) if isinstance(item, str) else item for item in values]
