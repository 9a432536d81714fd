"""Inbound webhook authentication and validation."""

from .payload import PayloadValidator, WebhookRejected
from .signatures import SIGNATURE_HEADER, SignatureVerifier, compute_signature, verify_shopify_hmac

__all__ = [
    "PayloadValidator",
    "WebhookRejected",
    "SIGNATURE_HEADER",
    "SignatureVerifier",
    "compute_signature",
    "verify_shopify_hmac",
]
