"""PII redaction for contacts and whole shops."""

from .engine import (
    DEFERRED,
    LIMITED,
    REDACTED,
    SKIPPED,
    RedactionEngine,
    RedactionIntegrityError,
    RedactionResult,
    ShopRedactionSummary,
)

__all__ = [
    "DEFERRED",
    "LIMITED",
    "REDACTED",
    "SKIPPED",
    "RedactionEngine",
    "RedactionIntegrityError",
    "RedactionResult",
    "ShopRedactionSummary",
]
