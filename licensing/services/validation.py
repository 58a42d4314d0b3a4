"""
Input Validators - Syntactic checks and privacy-safe email masking.
"""

import re

EMAIL_PATTERN = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+")
UUID_PATTERN = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE
)


def is_valid_email(email: str) -> bool:
    """Shape check only (``local@domain.tld``); says nothing about deliverability."""
    return EMAIL_PATTERN.fullmatch(email) is not None


def is_valid_uuid(value: str) -> bool:
    """Canonical 8-4-4-4-12 hex form, either case."""
    return UUID_PATTERN.fullmatch(value) is not None


def normalize_email(email: str) -> str:
    """Lower-case and trim an email for storage and comparison."""
    return email.strip().lower()


def mask_email(email: str) -> str:
    """
    Hide the local part of an email, keeping the domain.

    "kasutaja@gmail.com" -> "k***a@gmail.com"
    "a@domain.com" -> "a***@domain.com"
    """
    parts = email.split("@")
    local = parts[0]
    domain = parts[1] if len(parts) > 1 else ""
    if not local or not domain:
        return email

    if len(local) <= 1:
        return f"{local}***@{domain}"
    return f"{local[0]}***{local[-1]}@{domain}"
