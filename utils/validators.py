"""Input validation utilities."""

import re
from typing import Optional
from urllib.parse import urlsplit

from config.constants import AUTHOR_NAME_SUFFIXES, CONTENT_HASH_LENGTH, MAX_LEDGER_AMOUNT

_HEX_RE = re.compile(r"^[0-9a-f]+$")
_PHONE_RE = re.compile(r"^1[3-9]\d{9}$")
_URL_RE = re.compile(r"^https?://\S+$", re.IGNORECASE)


def validate_amount(value, min_val: int = 1, max_val: int = MAX_LEDGER_AMOUNT) -> Optional[int]:
    """
    Validate a ledger amount in points.

    Args:
        value: Candidate amount (int or numeric string)
        min_val: Minimum allowed value
        max_val: Maximum allowed value

    Returns:
        The amount as int, or None if invalid
    """
    if isinstance(value, bool):
        return None
    try:
        if isinstance(value, str):
            value = value.strip()
            if not value.lstrip("-").isdigit():
                return None
        amount = int(value)
        if isinstance(value, float) and value != amount:
            return None
    except (TypeError, ValueError):
        return None

    if amount < min_val or amount > max_val:
        return None
    return amount


def normalize_content_hash(text: str) -> Optional[str]:
    """
    Validate an md5 content hash.

    Returns:
        Lowercase hex digest or None if invalid
    """
    if not isinstance(text, str):
        return None
    digest = text.strip().lower()
    if len(digest) != CONTENT_HASH_LENGTH or not _HEX_RE.match(digest):
        return None
    return digest


def validate_url(text: str) -> bool:
    """Check that text looks like an http(s) URL."""
    return bool(text) and bool(_URL_RE.match(text.strip()))


def validate_phone(text: str) -> bool:
    """Validate a mainland mobile number."""
    return bool(text) and bool(_PHONE_RE.match(text.strip()))


def normalize_note_url(url: str) -> str:
    """
    Reduce a note URL to scheme, host and path.

    Share links carry tracking query strings; two links to the same note
    normalize to the same string.
    """
    text = (url or "").strip()
    parts = urlsplit(text)
    if not parts.scheme or not parts.netloc:
        return text
    return f"{parts.scheme.lower()}://{parts.netloc.lower()}{parts.path}"


def clean_author_name(name: str) -> str:
    """Strip the follow/author badge the note page appends to a nickname."""
    cleaned = (name or "").strip()
    for suffix in AUTHOR_NAME_SUFFIXES:
        if cleaned.endswith(suffix):
            cleaned = cleaned[: -len(suffix)].rstrip()
            break
    return cleaned
