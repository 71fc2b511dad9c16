"""Email normalization, hashing and write sanitation helpers."""

import hashlib
from typing import Any


def normalize_email(email: str) -> str:
    """Normalize an email address to lowercase, trimmed."""
    return email.strip().lower()


def hash_email(email: str) -> str:
    """SHA-256 hex digest of the normalized email.

    Used to bucket pending entitlements and waitlist leads without storing
    the lookup key in clear text.
    """
    return hashlib.sha256(normalize_email(email).encode('utf-8')).hexdigest()


def sanitize(values: dict[str, Any]) -> dict[str, Any]:
    """Drop unset optional fields before a write.

    Unset means ``None``. Applied uniformly to every payload the fulfillment
    and claim paths hand to the ORM, so nullable columns keep their model
    defaults instead of receiving explicit NULLs from partial processor data.
    """
    return {key: value for key, value in values.items() if value is not None}
