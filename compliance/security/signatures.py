"""Shopify webhook HMAC signature verification."""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import re

from ..config import settings

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-shopify-hmac-sha256"

_BASE64_RE = re.compile(r"[A-Za-z0-9+/]*={0,2}")


def compute_signature(secret: str, raw_body: bytes) -> str:
    """Return the base64 HMAC-SHA256 of ``raw_body`` keyed with ``secret``."""
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def is_well_formed_base64(value: str) -> bool:
    return len(value) % 4 == 0 and _BASE64_RE.fullmatch(value) is not None


def verify_shopify_hmac(
    secret: str | None,
    raw_body: bytes,
    signature_header: str | None,
    *,
    log: logging.Logger | None = None,
) -> bool:
    """Verify a webhook signature over the exact raw request body.

    Fails closed on a missing or malformed header, a missing secret, or any
    error while hashing. The comparison is constant-time.
    """
    log = log or logger

    provided = (signature_header or "").strip()
    if not provided:
        log.warning("Shopify webhook rejected: missing HMAC header")
        return False

    if not is_well_formed_base64(provided):
        log.error(
            "Shopify webhook rejected: HMAC header is not valid base64 (length=%d)",
            len(provided),
        )
        return False

    if not secret:
        log.error("Shopify webhook rejected: client secret is not configured")
        return False

    try:
        expected = compute_signature(secret, raw_body)
        matched = hmac.compare_digest(expected.encode("ascii"), provided.encode("ascii"))
    except Exception as exc:
        log.error("Shopify webhook verification error: %s", type(exc).__name__)
        return False

    if not matched:
        log.warning(
            "Shopify webhook HMAC mismatch expected_length=%d received_length=%d body_size=%d",
            len(expected),
            len(provided),
            len(raw_body),
        )
    return matched


class SignatureVerifier:
    """Verifies inbound webhooks against the configured client secret."""

    def __init__(self, secret: str | None = None, *, log: logging.Logger | None = None) -> None:
        self._secret = settings.shopify_client_secret if secret is None else secret
        self._log = log or logger

    def verify(self, raw_body: bytes, signature_header: str | None) -> bool:
        return verify_shopify_hmac(self._secret, raw_body, signature_header, log=self._log)
