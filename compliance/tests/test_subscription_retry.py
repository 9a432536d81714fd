"""Tests for scheduled subscription retries and the health report."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from compliance.config import settings
from compliance.jobs.handlers import handle_subscription_retry
from compliance.jobs.policies import JOB_SUBSCRIPTION_RETRY, HookNotFound, PayloadDecodeError
from compliance.models.account import Account
from compliance.models.integration_hook import IntegrationHook
from compliance.models.job import ComplianceJob
from compliance.services.job_svc import list_jobs
from compliance.shopify.retry import (
    PERMANENTLY_FAILED,
    RETRY_SCHEDULED,
    SKIPPED,
    SUBSCRIBED,
    SubscriptionRetryCoordinator,
    health_report,
    retry_delay_minutes,
)
from compliance.shopify.subscriptions import SubscriptionConfigError, SubscriptionResult, TopicResult
from compliance.shopify.topics import MANDATORY_TOPICS

RATE_LIMITED = "HTTP 429: rate limit exceeded"


def _succeeded() -> SubscriptionResult:
    return SubscriptionResult(
        results={
            topic: TopicResult(topic, True, subscription_id=f"gid://shopify/WebhookSubscription/{i}")
            for i, topic in enumerate(MANDATORY_TOPICS, start=1)
        }
    )


def _rate_limited() -> SubscriptionResult:
    return SubscriptionResult(
        results={topic: TopicResult(topic, False, error=RATE_LIMITED) for topic in MANDATORY_TOPICS}
    )


class _FakeService:
    """Stands in for WebhookSubscriptionService with a fixed outcome."""

    calls = 0

    def __init__(self, outcome: SubscriptionResult):
        self.outcome = outcome

    def __call__(self, hook, *, config=None, log=None):
        type(self).calls += 1
        return self

    async def subscribe_all(self) -> SubscriptionResult:
        return self.outcome


def _coordinator(db: AsyncSession, outcome: SubscriptionResult) -> SubscriptionRetryCoordinator:
    return SubscriptionRetryCoordinator(db, service_factory=_FakeService(outcome))


def _minutes_until_available(job: ComplianceJob) -> float:
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return (job.available_at.replace(tzinfo=None) - now).total_seconds() / 60


@pytest.mark.parametrize("retry_count,minutes", [(1, 5), (2, 15), (3, 45), (4, 135)])
def test_retry_delay_grows_geometrically(retry_count, minutes):
    assert retry_delay_minutes(retry_count) == minutes


@pytest.mark.asyncio
async def test_successful_retry_marks_hook_subscribed(
    db: AsyncSession, shop_hook: IntegrationHook
):
    shop_hook.settings = {
        **shop_hook.settings,
        "compliance_webhooks_pending": True,
        "webhook_subscription_failure_reason": RATE_LIMITED,
        "requires_manual_intervention": True,
        "webhook_subscription_permanently_failed_at": "2026-10-17T09:00:00+00:00",
        "webhook_subscription_final_error": RATE_LIMITED,
        "webhook_subscription_final_retry_count": 3,
    }
    await db.commit()

    outcome = await _coordinator(db, _succeeded()).run(
        shop_hook.id, {"error": RATE_LIMITED}, retry_count=2, max_retries=3
    )

    assert outcome == SUBSCRIBED
    await db.refresh(shop_hook)
    state = shop_hook.settings
    assert state["compliance_webhooks_pending"] is False
    assert state["compliance_webhooks_subscribed"] is True
    assert state["webhook_subscription_success"] is True
    assert state["webhook_subscription_retry_count"] == 2
    assert state["subscribed_topics_count"] == 3
    assert "webhook_subscription_retry_succeeded_at" in state
    assert "webhook_subscription_failure_reason" not in state
    assert "requires_manual_intervention" not in state
    assert "webhook_subscription_permanently_failed_at" not in state
    assert "webhook_subscription_final_error" not in state
    assert "webhook_subscription_final_retry_count" not in state
    assert state["shop_domain"] == "test-shop.myshopify.com"
    assert await list_jobs(db) == []


@pytest.mark.asyncio
async def test_failed_retry_schedules_next_attempt(db: AsyncSession, shop_hook: IntegrationHook):
    outcome = await _coordinator(db, _rate_limited()).run(shop_hook.id, None, retry_count=1, max_retries=3)

    assert outcome == RETRY_SCHEDULED
    (job,) = await list_jobs(db, job_type=JOB_SUBSCRIPTION_RETRY)
    assert job.payload["hook_id"] == shop_hook.id
    assert job.payload["retry_count"] == 2
    assert job.payload["max_retries"] == 3
    assert job.payload["previous_failure"]["success"] is False
    assert RATE_LIMITED in job.payload["previous_failure"]["error"]
    assert job.account_id == shop_hook.account_id
    assert 14.5 < _minutes_until_available(job) <= 15.0

    await db.refresh(shop_hook)
    assert shop_hook.settings["compliance_webhooks_pending"] is True
    assert shop_hook.settings["webhook_subscription_retry_count"] == 1


@pytest.mark.asyncio
async def test_rate_limited_chain_ends_in_manual_intervention(
    db: AsyncSession, shop_hook: IntegrationHook, caplog: pytest.LogCaptureFixture
):
    coordinator = _coordinator(db, _rate_limited())
    hook_id = shop_hook.id

    delays = []
    payload = {"hook_id": hook_id, "previous_failure": None, "retry_count": 1, "max_retries": 3}
    outcomes = []
    for _ in range(3):
        outcomes.append(
            await coordinator.run(
                payload["hook_id"],
                payload["previous_failure"],
                retry_count=payload["retry_count"],
                max_retries=payload["max_retries"],
            )
        )
        jobs = await list_jobs(db, job_type=JOB_SUBSCRIPTION_RETRY)
        if len(jobs) > len(delays):
            delays.append(round(_minutes_until_available(jobs[-1])))
            payload = jobs[-1].payload

    assert outcomes == [RETRY_SCHEDULED, RETRY_SCHEDULED, PERMANENTLY_FAILED]
    assert delays == [15, 45]

    await db.refresh(shop_hook)
    state = shop_hook.settings
    assert state["requires_manual_intervention"] is True
    assert state["webhook_subscription_final_retry_count"] == 3
    assert RATE_LIMITED in state["webhook_subscription_final_error"]
    assert state["compliance_webhooks_pending"] is False
    assert "webhook_subscription_permanently_failed_at" in state

    critical = [r for r in caplog.records if r.levelno == logging.CRITICAL]
    assert len(critical) == 1
    assert "MANUAL INTERVENTION REQUIRED" in critical[0].getMessage()


@pytest.mark.asyncio
async def test_max_retries_defaults_to_settings(
    db: AsyncSession, shop_hook: IntegrationHook, monkeypatch: pytest.MonkeyPatch
):
    monkeypatch.setattr(settings, "subscription_max_retries", 1)
    outcome = await _coordinator(db, _rate_limited()).run(shop_hook.id, None, retry_count=1)
    assert outcome == PERMANENTLY_FAILED


@pytest.mark.asyncio
async def test_unknown_hook_raises(db: AsyncSession):
    with pytest.raises(HookNotFound):
        await _coordinator(db, _succeeded()).run(424242, None)


@pytest.mark.asyncio
async def test_disabled_hook_is_skipped(db: AsyncSession, shop_hook: IntegrationHook):
    shop_hook.status = "disabled"
    await db.commit()
    _FakeService.calls = 0

    outcome = await _coordinator(db, _succeeded()).run(shop_hook.id, None)

    assert outcome == SKIPPED
    assert _FakeService.calls == 0
    assert await list_jobs(db) == []


@pytest.mark.asyncio
async def test_configuration_error_fails_permanently(db: AsyncSession, shop_hook: IntegrationHook):
    def broken_factory(hook, *, config=None, log=None):
        raise SubscriptionConfigError("Webhook host is not configured")

    coordinator = SubscriptionRetryCoordinator(db, service_factory=broken_factory)
    outcome = await coordinator.run(shop_hook.id, None, retry_count=1, max_retries=3)

    assert outcome == PERMANENTLY_FAILED
    await db.refresh(shop_hook)
    assert shop_hook.settings["webhook_subscription_final_error"] == "Webhook host is not configured"
    assert await list_jobs(db) == []


class TestRetryJobHandler:
    @pytest.mark.asyncio
    async def test_missing_hook_id(self, db: AsyncSession):
        with pytest.raises(PayloadDecodeError):
            await handle_subscription_retry(db, {"retry_count": 1})

    @pytest.mark.asyncio
    async def test_malformed_previous_failure(self, db: AsyncSession, shop_hook: IntegrationHook):
        with pytest.raises(PayloadDecodeError):
            await handle_subscription_retry(
                db, {"hook_id": shop_hook.id, "previous_failure": "boom"}
            )

    @pytest.mark.asyncio
    async def test_deleted_hook(self, db: AsyncSession):
        with pytest.raises(HookNotFound):
            await handle_subscription_retry(db, {"hook_id": 999, "retry_count": 2})


class TestHealthReport:
    @pytest.mark.asyncio
    async def test_empty(self, db: AsyncSession):
        report = await health_report(db)
        assert report.total == 0
        assert report.success_rate == 0.0

    @pytest.mark.asyncio
    async def test_counts_each_state(self, db: AsyncSession, account: Account):
        states = [
            {"compliance_webhooks_subscribed": True},
            {"compliance_webhooks_subscribed": True},
            {"compliance_webhooks_pending": True},
            {"requires_manual_intervention": True, "compliance_webhooks_subscribed": False},
            {"redacted_at": "2026-10-01T00:00:00+00:00"},
        ]
        db.add_all(
            [
                IntegrationHook(
                    account_id=account.id,
                    app_id="shopify",
                    reference_id=f"shop-{i}.myshopify.com",
                    settings=state,
                )
                for i, state in enumerate(states)
            ]
        )
        db.add(IntegrationHook(account_id=account.id, app_id="slack", settings={}))
        await db.commit()

        report = await health_report(db)

        assert report.as_dict() == {
            "total_hooks": 5,
            "successful_subscriptions": 2,
            "pending_subscriptions": 1,
            "failed_subscriptions": 1,
            "redacted_hooks": 1,
            "success_rate": 40.0,
        }
