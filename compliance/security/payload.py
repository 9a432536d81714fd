"""Structural checks for inbound compliance webhook requests."""

from __future__ import annotations

import json
import logging
from typing import Any

from ..config import settings
from ..shopify.topics import CUSTOMERS_DATA_REQUEST, CUSTOMERS_REDACT, SHOP_REDACT

logger = logging.getLogger(__name__)


class WebhookRejected(Exception):
    """Raised when an inbound webhook must be refused with ``status_code``."""

    def __init__(self, status_code: int, reason: str):
        self.status_code = status_code
        self.reason = reason
        super().__init__(reason)


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (dict, list)):
        return bool(value)
    return True


def _is_json_media_type(content_type: str | None) -> bool:
    if not content_type:
        return False
    media_type, *params = [part.strip().lower() for part in content_type.split(";")]
    if media_type != "application/json":
        return False
    return all(param.startswith("charset=") for param in params if param)


class PayloadValidator:
    """Content-type, size and required-field checks.

    Every check raises :class:`WebhookRejected` before anything is enqueued.
    """

    def __init__(
        self,
        max_payload_bytes: int | None = None,
        *,
        log: logging.Logger | None = None,
    ) -> None:
        self.max_payload_bytes = (
            settings.webhook_max_payload_bytes if max_payload_bytes is None else max_payload_bytes
        )
        self._log = log or logger

    def check_envelope(self, content_type: str | None, declared_length: str | None) -> None:
        """Header-only checks, run before the body is read."""
        if not _is_json_media_type(content_type):
            self._log.warning("Webhook rejected: unsupported content type")
            raise WebhookRejected(415, "unsupported_media_type")

        if declared_length:
            try:
                length = int(declared_length)
            except ValueError:
                self._log.warning("Webhook rejected: malformed Content-Length")
                raise WebhookRejected(400, "bad_content_length") from None
            if length > self.max_payload_bytes:
                self._log.warning(
                    "Webhook rejected: declared size %d exceeds %d", length, self.max_payload_bytes
                )
                raise WebhookRejected(413, "payload_too_large")

    def check_body_size(self, raw_body: bytes) -> None:
        if len(raw_body) > self.max_payload_bytes:
            self._log.warning(
                "Webhook rejected: body size %d exceeds %d", len(raw_body), self.max_payload_bytes
            )
            raise WebhookRejected(413, "payload_too_large")

    def parse(self, topic: str, raw_body: bytes) -> dict[str, Any]:
        """Decode the JSON body and check the topic's required keys."""
        try:
            payload = json.loads(raw_body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            self._log.warning("Webhook rejected: body is not valid JSON topic=%s", topic)
            raise WebhookRejected(400, "invalid_json") from None

        if not isinstance(payload, dict):
            self._log.warning("Webhook rejected: top-level JSON is not an object topic=%s", topic)
            raise WebhookRejected(400, "invalid_payload")

        missing = self.missing_fields(topic, payload)
        if missing:
            self._log.warning(
                "Webhook rejected: missing required fields topic=%s fields=%s",
                topic,
                ",".join(missing),
            )
            raise WebhookRejected(400, "missing_required_fields")
        return payload

    @staticmethod
    def missing_fields(topic: str, payload: dict[str, Any]) -> list[str]:
        missing: list[str] = []
        if not _present(payload.get("shop_domain")) or not isinstance(payload.get("shop_domain"), str):
            missing.append("shop_domain")

        if topic in (CUSTOMERS_DATA_REQUEST, CUSTOMERS_REDACT):
            customer = payload.get("customer")
            if not isinstance(customer, dict) or not customer:
                missing.append("customer")
            elif topic == CUSTOMERS_DATA_REQUEST and not (
                _present(customer.get("id")) or _present(customer.get("email"))
            ):
                missing.append("customer.id|customer.email")
        elif topic == SHOP_REDACT:
            if not _present(payload.get("shop_id")):
                missing.append("shop_id")
        else:
            raise ValueError(f"Unknown compliance topic: {topic}")
        return missing

    def validate(
        self,
        topic: str,
        content_type: str | None,
        declared_length: str | None,
        raw_body: bytes,
    ) -> dict[str, Any]:
        """Run every structural check in order and return the parsed payload."""
        self.check_envelope(content_type, declared_length)
        self.check_body_size(raw_body)
        return self.parse(topic, raw_body)
