"""Tests for the durable job queue and per-type policies."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from compliance.jobs.policies import (
    JOB_CUSTOMERS_DATA_REQUEST,
    JOB_CUSTOMERS_REDACT,
    JOB_SHOP_REDACT,
    JOB_SUBSCRIPTION_RETRY,
    HookNotFound,
    PayloadDecodeError,
    exponential_backoff,
    polynomial_backoff,
    policy_for,
)
from compliance.services.job_svc import (
    claim_next_job,
    count_jobs_by_status,
    enqueue_job,
    get_job,
    mark_job_completed,
    mark_job_failed,
)


class TestPolicies:
    @pytest.mark.parametrize(
        "job_type,max_attempts",
        [
            (JOB_CUSTOMERS_DATA_REQUEST, 3),
            (JOB_CUSTOMERS_REDACT, 3),
            (JOB_SHOP_REDACT, 3),
            (JOB_SUBSCRIPTION_RETRY, 5),
        ],
    )
    def test_attempt_ceilings(self, job_type, max_attempts):
        assert policy_for(job_type).max_attempts == max_attempts

    def test_shop_redact_uses_polynomial_backoff(self):
        assert policy_for(JOB_SHOP_REDACT).backoff is polynomial_backoff
        assert policy_for(JOB_CUSTOMERS_REDACT).backoff is exponential_backoff

    def test_backoff_values(self):
        assert [exponential_backoff(n) for n in (1, 2, 3)] == [6.0, 12.0, 24.0]
        assert [polynomial_backoff(n) for n in (1, 2, 3)] == [3.0, 18.0, 83.0]
        assert exponential_backoff(30) == 3600.0

    def test_payload_errors_never_retried(self):
        for job_type in (JOB_CUSTOMERS_DATA_REQUEST, JOB_CUSTOMERS_REDACT, JOB_SHOP_REDACT):
            assert not policy_for(job_type).is_retryable(PayloadDecodeError("bad"))
            assert policy_for(job_type).is_retryable(RuntimeError("flaky"))

    def test_missing_hook_discards_subscription_retry(self):
        assert not policy_for(JOB_SUBSCRIPTION_RETRY).is_retryable(HookNotFound("gone"))

    def test_unknown_job_type(self):
        with pytest.raises(KeyError):
            policy_for("orders_create")


@pytest.mark.asyncio
async def test_enqueue_and_claim(db: AsyncSession):
    job = await enqueue_job(db, JOB_CUSTOMERS_REDACT, {"shop_domain": "a.myshopify.com"})
    assert job.status == "pending"
    assert job.max_attempts == 3
    assert job.attempts == 0

    claimed = await claim_next_job(db)
    assert claimed.id == job.id
    assert claimed.status == "running"
    assert claimed.attempts == 1
    assert claimed.started_at is not None

    assert await claim_next_job(db) is None


@pytest.mark.asyncio
async def test_delayed_job_not_claimed_early(db: AsyncSession):
    await enqueue_job(db, JOB_SUBSCRIPTION_RETRY, {"hook_id": 1}, delay=timedelta(minutes=5))
    assert await claim_next_job(db) is None


@pytest.mark.asyncio
async def test_jobs_claimed_oldest_first(db: AsyncSession):
    first = await enqueue_job(db, JOB_SHOP_REDACT, {"shop_domain": "a"})
    await enqueue_job(db, JOB_SHOP_REDACT, {"shop_domain": "b"})
    claimed = await claim_next_job(db)
    assert claimed.id == first.id


@pytest.mark.asyncio
async def test_completed(db: AsyncSession):
    await enqueue_job(db, JOB_CUSTOMERS_REDACT, {})
    job = await claim_next_job(db)
    await mark_job_completed(db, job)
    assert (await get_job(db, job.id)).status == "completed"
    assert await count_jobs_by_status(db) == {"completed": 1}


@pytest.mark.asyncio
async def test_transient_failure_retries_then_fails(db: AsyncSession):
    await enqueue_job(db, JOB_CUSTOMERS_REDACT, {})

    for attempt in range(1, 4):
        job = await claim_next_job(db)
        assert job is not None
        assert job.attempts == attempt
        await mark_job_failed(db, job, RuntimeError("database busy"))
        if attempt < 3:
            assert job.status == "retrying"
            assert job.error_message == "RuntimeError: database busy"
            job.available_at = job.finished_at
            await db.commit()

    assert job.status == "failed"
    assert await claim_next_job(db) is None


@pytest.mark.asyncio
async def test_retry_is_delayed_by_backoff(db: AsyncSession):
    await enqueue_job(db, JOB_CUSTOMERS_REDACT, {})
    job = await claim_next_job(db)
    await mark_job_failed(db, job, RuntimeError("busy"))

    assert job.status == "retrying"
    assert job.available_at - job.finished_at == timedelta(seconds=6)
    assert await claim_next_job(db) is None


@pytest.mark.asyncio
async def test_decode_error_discards(db: AsyncSession):
    await enqueue_job(db, JOB_CUSTOMERS_DATA_REQUEST, {})
    job = await claim_next_job(db)
    await mark_job_failed(db, job, PayloadDecodeError("payload is missing shop_domain"))
    assert job.status == "discarded"
    assert await count_jobs_by_status(db) == {"discarded": 1}
