"""Deterministic anonymization rules and custom-attribute classification."""

from __future__ import annotations

import re
from typing import Any

REDACTED_VALUE = "[redacted]"
REDACTED_NAME = "Redacted Customer"

PII_ATTRIBUTE_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"name",
        r"email",
        r"phone",
        r"address",
        r"birthday",
        r"birth_date",
        r"ssn",
        r"social",
        r"passport",
        r"license",
    )
)

SYSTEM_ATTRIBUTE_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p)
    for p in (
        r"^system_",
        r"^internal_",
        r"^app_",
        r"^created_by$",
        r"^updated_by$",
        r"^source$",
        r"^channel$",
    )
)

# Kept verbatim during limited redaction (financial record retention)
PRESERVED_ATTRIBUTE_PATTERN = re.compile(r"order|transaction|payment|invoice|tax", re.IGNORECASE)

ANONYMIZED_EMAIL_RE = re.compile(r"redacted-customer-\d+@redacted\.local")
ANONYMIZED_PHONE_RE = re.compile(r"\+\d{1,3}555\d{7,}|REDACTED-\d{8,}")

_INTERNATIONAL_PREFIX_RE = re.compile(r"\+(\d{1,3})")
_BARE_PREFIX_RE = re.compile(r"(\d{1,3})")


def is_pii_attribute(key: str) -> bool:
    return any(p.search(key) for p in PII_ATTRIBUTE_PATTERNS)


def is_system_attribute(key: str) -> bool:
    return any(p.search(key) for p in SYSTEM_ATTRIBUTE_PATTERNS)


def is_preserved_attribute(key: str) -> bool:
    return PRESERVED_ATTRIBUTE_PATTERN.search(key) is not None


def anonymized_email(contact_id: int) -> str:
    return f"redacted-customer-{contact_id}@redacted.local"


def anonymized_phone(contact_id: int, original: str | None) -> str:
    """Synthetic, per-contact phone number that keeps the country code shape.

    ``+44 20...`` keeps ``+44``; a bare number longer than seven characters
    keeps its leading 1-3 digits as the code; anything else falls back to
    ``REDACTED-{id:08}``.
    """
    phone = (original or "").strip()
    match = _INTERNATIONAL_PREFIX_RE.match(phone)
    if match:
        return f"+{match.group(1)}555{contact_id:07d}"
    match = _BARE_PREFIX_RE.match(phone)
    if match and len(phone) > 7:
        return f"+{match.group(1)}555{contact_id:07d}"
    return f"REDACTED-{contact_id:08d}"


def redact_custom_attributes(attributes: dict[str, Any] | None) -> dict[str, Any]:
    """PII and unclassified keys are redacted; system keys are kept."""
    redacted: dict[str, Any] = {}
    for key, value in (attributes or {}).items():
        if is_pii_attribute(key):
            redacted[key] = REDACTED_VALUE
        elif is_system_attribute(key):
            redacted[key] = value
        else:
            redacted[key] = REDACTED_VALUE
    return redacted


def limited_redact_custom_attributes(
    attributes: dict[str, Any] | None,
) -> tuple[dict[str, Any], list[str]]:
    """Redact everything except financial-record and system keys.

    Returns the new attribute map and the list of preserved financial keys.
    """
    redacted: dict[str, Any] = {}
    preserved: list[str] = []
    for key, value in (attributes or {}).items():
        if is_preserved_attribute(key):
            redacted[key] = value
            preserved.append(key)
        elif is_system_attribute(key) and not is_pii_attribute(key):
            redacted[key] = value
        else:
            redacted[key] = REDACTED_VALUE
    return redacted, preserved


def mask_value(value: Any) -> str | None:
    if value is None or str(value) == "":
        return None
    text = str(value)
    return f"{text[0]}***"


def mask_email(email: str | None) -> str | None:
    if not email:
        return None
    local, sep, domain = email.partition("@")
    if not sep:
        return mask_value(email)
    return f"{local[:1]}***@{domain}"


def mask_phone(phone: str | None) -> str | None:
    if not phone:
        return None
    return f"***{phone[-4:]}"
