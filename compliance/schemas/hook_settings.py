"""Typed view over IntegrationHook.settings."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ValidationError

from ..models.integration_hook import IntegrationHook

logger = logging.getLogger(__name__)

SUBSCRIPTION_FAILURE_KEYS = (
    "webhook_subscription_failure_reason",
    "webhook_subscription_failed_at",
    "failed_topics_count",
    "webhook_subscription_retry_queued_at",
    "webhook_subscription_permanently_failed_at",
    "webhook_subscription_final_retry_count",
    "webhook_subscription_final_error",
    "requires_manual_intervention",
)
SHOP_REDACTION_KEYS = ("redacted_at", "redaction_reason", "original_status")


class HookSettings(BaseModel):
    """Known compliance-tracking keys; unknown keys are kept as extras."""

    # Installation
    scope: str | None = None
    shop_domain: str | None = None
    installation_date: str | None = None
    oauth_completed_at: str | None = None
    api_version: str | None = None

    # Subscription state
    compliance_webhooks_pending: bool | None = None
    compliance_webhooks_subscribed: bool | None = None
    compliance_webhooks_subscribed_at: str | None = None
    subscribed_topics_count: int | None = None
    webhook_subscriptions: dict[str, dict[str, Any]] | None = None
    webhook_subscription_success: bool | None = None
    webhook_subscription_failed_at: str | None = None
    webhook_subscription_failure_reason: str | None = None
    failed_topics_count: int | None = None
    webhook_subscription_retry_queued_at: str | None = None
    webhook_subscription_retry_count: int | None = None
    webhook_subscription_retry_succeeded_at: str | None = None
    webhook_subscription_permanently_failed_at: str | None = None
    webhook_subscription_final_retry_count: int | None = None
    webhook_subscription_final_error: str | None = None
    requires_manual_intervention: bool | None = None

    # Shop redaction
    redacted_at: str | None = None
    redaction_reason: str | None = None
    original_status: str | None = None

    model_config = {"extra": "allow"}

    @classmethod
    def from_hook(cls, hook: IntegrationHook) -> HookSettings:
        """Parse the stored map; values of the wrong type are ignored and logged."""
        data = dict(hook.settings or {})
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            invalid = sorted({str(error["loc"][0]) for error in exc.errors() if error["loc"]})
            logger.warning("Hook %s has invalid settings values for %s", hook.id, invalid)
            return cls.model_validate({k: v for k, v in data.items() if k not in invalid})

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


def cleared(*groups: tuple[str, ...]) -> dict[str, None]:
    """Changes that remove every key in ``groups``."""
    return {key: None for group in groups for key in group}


def update_hook_settings(hook: IntegrationHook, **changes: Any) -> HookSettings:
    """Merge ``changes`` into the hook's settings.

    Keys passed as ``None`` are removed; every other stored key, known or
    not, is carried over untouched. Only the changed values are validated,
    so a bad legacy value never blocks an update. The JSON column is
    reassigned so the change is flushed.
    """
    assigned = {key: value for key, value in changes.items() if value is not None}
    validated = HookSettings.model_validate(assigned).model_dump()

    merged = dict(hook.settings or {})
    for key in changes:
        if key in assigned:
            merged[key] = validated[key]
        else:
            merged.pop(key, None)
    hook.settings = merged
    return HookSettings.from_hook(hook)
