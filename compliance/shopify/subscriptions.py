"""Subscribe a shop to the mandatory compliance webhook topics."""

from __future__ import annotations

import asyncio
import logging
import random
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import httpx

from ..config import ComplianceSettings, settings as default_settings
from ..models.integration_hook import SHOPIFY_APP_ID, IntegrationHook
from ..schemas.hook_settings import HookSettings, update_hook_settings
from .client import ShopifyAdminClient, ShopifyError
from .topics import MANDATORY_TOPICS, TOPIC_ENUMS, TOPIC_PATHS

logger = logging.getLogger(__name__)

RETRYABLE_ERROR_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"timeout",
        r"rate limit",
        r"temporarily unavailable",
        r"internal server error",
        r"service unavailable",
    )
)


def is_retryable_error(message: str | None) -> bool:
    if not message:
        return False
    return any(p.search(message) for p in RETRYABLE_ERROR_PATTERNS)


class SubscriptionConfigError(ValueError):
    """The hook (or app configuration) cannot be used to subscribe."""


@dataclass
class TopicResult:
    topic: str
    success: bool
    subscription_id: str | None = None
    callback_url: str | None = None
    error: str | None = None
    attempts: int = 1

    def as_dict(self) -> dict[str, Any]:
        return {
            "topic": self.topic,
            "success": self.success,
            "subscription_id": self.subscription_id,
            "callback_url": self.callback_url,
            "error": self.error,
            "attempts": self.attempts,
        }


@dataclass
class SubscriptionResult:
    """Aggregate outcome; successful only when every mandatory topic succeeded."""

    results: dict[str, TopicResult] = field(default_factory=dict)
    error: str | None = None

    @property
    def success(self) -> bool:
        return (
            self.error is None
            and all(topic in self.results for topic in MANDATORY_TOPICS)
            and all(r.success for r in self.results.values())
        )

    @property
    def subscribed_topics(self) -> int:
        return sum(1 for r in self.results.values() if r.success)

    @property
    def total_topics(self) -> int:
        return len(MANDATORY_TOPICS)

    @property
    def failure_reason(self) -> str | None:
        if self.success:
            return None
        if self.error:
            return self.error
        failed = [f"{r.topic}: {r.error}" for r in self.results.values() if not r.success]
        return "; ".join(failed) or "Unknown subscription failure"

    def as_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "results": {topic: r.as_dict() for topic, r in self.results.items()},
            "subscribed_topics": self.subscribed_topics,
            "total_topics": self.total_topics,
            "error": self.failure_reason,
        }

    @classmethod
    def failed(cls, error: str) -> SubscriptionResult:
        return cls(error=error)


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _default_client_factory(hook: IntegrationHook, config: ComplianceSettings) -> ShopifyAdminClient:
    return ShopifyAdminClient(
        hook.reference_id or "",
        hook.access_token or "",
        api_version=config.shopify_api_version,
        timeout=config.shopify_request_timeout_seconds,
    )


class WebhookSubscriptionService:
    """Creates the three compliance subscriptions for one integration hook.

    Each topic is retried independently with jittered exponential backoff,
    and only for errors that look transient.
    """

    def __init__(
        self,
        hook: IntegrationHook,
        *,
        config: ComplianceSettings | None = None,
        log: logging.Logger | None = None,
        client_factory: Callable[[IntegrationHook, ComplianceSettings], ShopifyAdminClient] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.hook = hook
        self.config = config or default_settings
        self._log = log or logger
        self._client_factory = client_factory or _default_client_factory
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._validate()

    def _validate(self) -> None:
        if self.hook.app_id != SHOPIFY_APP_ID:
            raise SubscriptionConfigError(f"Hook {self.hook.id} is not a Shopify integration")
        if not self.hook.access_token:
            raise SubscriptionConfigError(f"Hook {self.hook.id} has no access token")
        if not self.hook.reference_id:
            raise SubscriptionConfigError(f"Hook {self.hook.id} has no shop domain")
        if not self.hook.is_enabled:
            raise SubscriptionConfigError(f"Hook {self.hook.id} is not enabled")
        if not self.config.webhook_host.strip():
            raise SubscriptionConfigError("Webhook host is not configured")

    def callback_url(self, topic: str) -> str:
        host = self.config.webhook_host.strip().rstrip("/")
        return f"{self.config.webhook_protocol_resolved}://{host}/webhooks/{TOPIC_PATHS[topic]}"

    def retry_delay(self, attempt: int) -> float:
        return round(2**attempt * self._rng.uniform(0.5, 1.5), 2)

    async def subscribe_all(self) -> SubscriptionResult:
        """Subscribe to every mandatory topic and record successes on the hook.

        The hook's settings are updated in memory; the caller commits.
        """
        result = SubscriptionResult()
        try:
            async with self._client_factory(self.hook, self.config) as client:
                for topic in MANDATORY_TOPICS:
                    result.results[topic] = await self._subscribe_with_retry(client, topic)
        except Exception as exc:
            self._log.exception("Webhook subscription run failed for hook %s", self.hook.id)
            result.error = str(exc) or type(exc).__name__

        self._record_subscriptions(result)
        self._log.info(
            "Webhook subscription for %s: %d/%d topics subscribed",
            self.hook.reference_id,
            result.subscribed_topics,
            result.total_topics,
        )
        return result

    async def _subscribe_with_retry(self, client: ShopifyAdminClient, topic: str) -> TopicResult:
        max_attempts = max(1, self.config.subscription_topic_max_attempts)
        attempt = 1
        while True:
            result = await self._subscribe_topic(client, topic)
            result.attempts = attempt
            if result.success:
                return result
            if attempt >= max_attempts or not is_retryable_error(result.error):
                self._log.warning(
                    "Subscription to %s failed after %d attempt(s): %s",
                    topic,
                    attempt,
                    result.error,
                )
                return result

            delay = self.retry_delay(attempt)
            self._log.info(
                "Retrying %s subscription in %.2fs (attempt %d/%d): %s",
                topic,
                delay,
                attempt,
                max_attempts,
                result.error,
            )
            await self._sleep(delay)
            attempt += 1

    async def _subscribe_topic(self, client: ShopifyAdminClient, topic: str) -> TopicResult:
        callback_url = self.callback_url(topic)
        try:
            payload = await client.create_webhook_subscription(TOPIC_ENUMS[topic], callback_url)
        except ShopifyError as exc:
            return TopicResult(topic, False, callback_url=callback_url, error=exc.message)
        except httpx.HTTPError as exc:
            return TopicResult(
                topic, False, callback_url=callback_url, error=str(exc) or type(exc).__name__
            )

        user_errors = payload.get("userErrors") or []
        if user_errors:
            messages = ", ".join(str(e.get("message", e)) for e in user_errors)
            return TopicResult(
                topic, False, callback_url=callback_url, error=f"Subscription errors: {messages}"
            )

        subscription = payload.get("webhookSubscription") or {}
        if not subscription.get("id"):
            return TopicResult(
                topic, False, callback_url=callback_url, error="No subscription returned"
            )
        return TopicResult(
            topic, True, subscription_id=subscription["id"], callback_url=callback_url
        )

    def _record_subscriptions(self, result: SubscriptionResult) -> None:
        succeeded = {t: r for t, r in result.results.items() if r.success}
        if not succeeded:
            return
        subscriptions = dict(HookSettings.from_hook(self.hook).webhook_subscriptions or {})
        now = _utcnow_iso()
        for topic, topic_result in succeeded.items():
            subscriptions[topic] = {
                "subscription_id": topic_result.subscription_id,
                "callback_url": topic_result.callback_url,
                "created_at": now,
                "api_version": self.config.shopify_api_version,
            }
        update_hook_settings(self.hook, webhook_subscriptions=subscriptions)
