"""Bounded, self-rescheduling retries of compliance topic subscription."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import ComplianceSettings, settings as default_settings
from ..jobs.policies import JOB_SUBSCRIPTION_RETRY, HookNotFound
from ..models.integration_hook import SHOPIFY_APP_ID, IntegrationHook
from ..models.job import ComplianceJob
from ..schemas.hook_settings import (
    SUBSCRIPTION_FAILURE_KEYS,
    HookSettings,
    cleared,
    update_hook_settings,
)
from ..services.job_svc import enqueue_job
from .subscriptions import SubscriptionConfigError, SubscriptionResult, WebhookSubscriptionService

logger = logging.getLogger(__name__)

SUBSCRIBED = "subscribed"
RETRY_SCHEDULED = "retry_scheduled"
PERMANENTLY_FAILED = "permanently_failed"
SKIPPED = "skipped"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def retry_delay_minutes(retry_count: int, initial_minutes: int = 5) -> int:
    """Delay before running attempt ``retry_count``: 5, 15, 45, ... minutes."""
    return initial_minutes * 3 ** (max(1, retry_count) - 1)


@dataclass(frozen=True)
class HealthReport:
    total: int
    successful: int
    pending: int
    failed: int
    redacted: int

    @property
    def success_rate(self) -> float:
        if self.total == 0:
            return 0.0
        return round(self.successful / self.total * 100, 2)

    def as_dict(self) -> dict[str, Any]:
        return {
            "total_hooks": self.total,
            "successful_subscriptions": self.successful,
            "pending_subscriptions": self.pending,
            "failed_subscriptions": self.failed,
            "redacted_hooks": self.redacted,
            "success_rate": self.success_rate,
        }


class SubscriptionRetryCoordinator:
    """Drives one subscription attempt and decides what happens next.

    All retry state travels in the job payload (``retry_count``,
    ``max_retries``, ``previous_failure``), never in process memory.
    """

    def __init__(
        self,
        db: AsyncSession,
        *,
        config: ComplianceSettings | None = None,
        log: logging.Logger | None = None,
        clock: Callable[[], datetime] = _utcnow,
        service_factory: Callable[..., WebhookSubscriptionService] = WebhookSubscriptionService,
    ) -> None:
        self.db = db
        self.config = config or default_settings
        self._log = log or logger
        self._clock = clock
        self._service_factory = service_factory

    async def run(
        self,
        hook_id: int,
        previous_failure: dict[str, Any] | None = None,
        retry_count: int = 1,
        max_retries: int | None = None,
    ) -> str:
        max_retries = max_retries or self.config.subscription_max_retries
        hook = await self.db.get(IntegrationHook, hook_id)
        if hook is None:
            raise HookNotFound(f"Integration hook {hook_id} not found")

        if not hook.is_enabled:
            self._log.info("Hook %s is %s; skipping subscription retry", hook_id, hook.status)
            return SKIPPED

        self._log.info(
            "Subscription retry %d/%d for hook %s (%s); previous error: %s",
            retry_count,
            max_retries,
            hook_id,
            hook.reference_id,
            (previous_failure or {}).get("error"),
        )

        try:
            service = self._service_factory(hook, config=self.config, log=self._log)
        except SubscriptionConfigError as exc:
            await self.mark_permanently_failed(hook, SubscriptionResult.failed(str(exc)), retry_count)
            return PERMANENTLY_FAILED

        result = await service.subscribe_all()
        if result.success:
            await self.mark_subscribed(hook, result, retry_count)
            return SUBSCRIBED

        if retry_count < max_retries:
            await self.schedule_retry(hook, result, retry_count + 1, max_retries)
            return RETRY_SCHEDULED

        await self.mark_permanently_failed(hook, result, retry_count)
        return PERMANENTLY_FAILED

    async def schedule_retry(
        self,
        hook: IntegrationHook,
        failure: SubscriptionResult,
        retry_count: int,
        max_retries: int,
    ) -> ComplianceJob:
        """Record the pending state and enqueue attempt ``retry_count``."""
        now = self._clock()
        delay = retry_delay_minutes(retry_count, self.config.subscription_initial_retry_delay_minutes)
        update_hook_settings(
            hook,
            compliance_webhooks_pending=True,
            webhook_subscription_failure_reason=failure.failure_reason,
            webhook_subscription_retry_queued_at=now.isoformat(),
            webhook_subscription_retry_count=retry_count - 1,
        )
        job = await enqueue_job(
            self.db,
            JOB_SUBSCRIPTION_RETRY,
            {
                "hook_id": hook.id,
                "previous_failure": failure.as_dict(),
                "retry_count": retry_count,
                "max_retries": max_retries,
            },
            delay=timedelta(minutes=delay),
            account_id=hook.account_id,
        )
        self._log.warning(
            "Scheduled subscription retry %d/%d for hook %s in %d minutes: %s",
            retry_count,
            max_retries,
            hook.id,
            delay,
            failure.failure_reason,
        )
        return job

    async def mark_subscribed(
        self, hook: IntegrationHook, result: SubscriptionResult, retry_count: int
    ) -> None:
        now = self._clock().isoformat()
        update_hook_settings(
            hook,
            compliance_webhooks_pending=False,
            compliance_webhooks_subscribed=True,
            compliance_webhooks_subscribed_at=now,
            webhook_subscription_success=True,
            webhook_subscription_retry_succeeded_at=now,
            webhook_subscription_retry_count=retry_count,
            subscribed_topics_count=result.subscribed_topics,
            **cleared(SUBSCRIPTION_FAILURE_KEYS),
        )
        await self.db.commit()
        self._log.info("Hook %s subscribed on retry %d", hook.id, retry_count)

    async def mark_permanently_failed(
        self, hook: IntegrationHook, result: SubscriptionResult, retry_count: int
    ) -> None:
        error = result.failure_reason
        update_hook_settings(
            hook,
            compliance_webhooks_pending=False,
            compliance_webhooks_subscribed=False,
            webhook_subscription_permanently_failed_at=self._clock().isoformat(),
            webhook_subscription_final_retry_count=retry_count,
            webhook_subscription_final_error=error,
            requires_manual_intervention=True,
            webhook_subscription_retry_queued_at=None,
        )
        await self.db.commit()
        self._log.critical(
            "COMPLIANCE WEBHOOK SUBSCRIPTION PERMANENTLY FAILED - MANUAL INTERVENTION REQUIRED "
            "hook=%s account=%s shop=%s retries=%d error=%s",
            hook.id,
            hook.account_id,
            hook.reference_id,
            retry_count,
            error,
        )


async def health_report(db: AsyncSession) -> HealthReport:
    """Subscription health across every Shopify hook."""
    hooks = (
        await db.execute(select(IntegrationHook).where(IntegrationHook.app_id == SHOPIFY_APP_ID))
    ).scalars().all()

    successful = pending = failed = redacted = 0
    for hook in hooks:
        state = HookSettings.from_hook(hook)
        if state.compliance_webhooks_subscribed:
            successful += 1
        if state.compliance_webhooks_pending:
            pending += 1
        if state.requires_manual_intervention:
            failed += 1
        if state.redacted_at:
            redacted += 1
    return HealthReport(
        total=len(hooks),
        successful=successful,
        pending=pending,
        failed=failed,
        redacted=redacted,
    )
