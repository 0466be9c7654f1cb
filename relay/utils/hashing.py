"""
Hashing Utility

One-way normalization and hashing of personal identifiers. The Conversions
API matches these against hashes computed by the browser pixel, so the
normalization (trim, lowercase) must stay identical on both sides.
"""

import hashlib
from typing import Any, Optional


def normalize_identifier(value: Any) -> Optional[str]:
    """Trim and lowercase a value; None when nothing is left"""
    if value is None:
        return None
    normalized = str(value).strip().lower()
    return normalized or None


def hash_identifier(value: Any) -> Optional[str]:
    """
    SHA-256 hex digest of a normalized identifier.

    Args:
        value: Raw identifier (e.g. an email address). Non-string values
            are coerced with str().

    Returns:
        Lowercase hex digest, or None for absent/empty input
    """
    normalized = normalize_identifier(value)
    if normalized is None:
        return None
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()
