"""Tests for the compliance job worker."""

from __future__ import annotations

import asyncio
import functools

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from compliance.config import settings
from compliance.jobs import handlers
from compliance.jobs.handlers import HANDLERS
from compliance.jobs.policies import (
    JOB_CUSTOMERS_DATA_REQUEST,
    JOB_CUSTOMERS_REDACT,
    JOB_SHOP_REDACT,
    PayloadDecodeError,
)
from compliance.models.account import Account
from compliance.models.contact import Contact
from compliance.models.conversation import Conversation
from compliance.models.integration_hook import IntegrationHook
from compliance.models.job import ComplianceJob
from compliance.redaction.anonymize import REDACTED_NAME
from compliance.services.job_svc import enqueue_job
from compliance.services.mailer_svc import DataRequestDelivery
from compliance.worker import ComplianceJobWorker

SHOP_DOMAIN = "test-shop.myshopify.com"


@pytest.mark.asyncio
async def test_successful_job_completed(db: AsyncSession, session_factory):
    seen = []

    async def handler(session, payload):
        seen.append(payload)

    job = await enqueue_job(db, JOB_CUSTOMERS_REDACT, {"shop_domain": SHOP_DOMAIN})
    worker = ComplianceJobWorker(session_factory, {JOB_CUSTOMERS_REDACT: handler})

    assert await worker.run_once() is True
    assert seen == [{"shop_domain": SHOP_DOMAIN}]
    job = await _reload(db, job.id)
    assert job.status == "completed"
    assert job.finished_at is not None
    assert await worker.run_once() is False


@pytest.mark.asyncio
async def test_failing_job_scheduled_for_retry(db: AsyncSession, session_factory):
    async def handler(session, payload):
        raise RuntimeError("boom")

    job = await enqueue_job(db, JOB_CUSTOMERS_REDACT, {})
    worker = ComplianceJobWorker(session_factory, {JOB_CUSTOMERS_REDACT: handler})

    await worker.run_once()

    job = await _reload(db, job.id)
    assert job.status == "retrying"
    assert job.attempts == 1
    assert job.error_message == "RuntimeError: boom"


@pytest.mark.asyncio
async def test_payload_error_discards(db: AsyncSession, session_factory):
    job = await enqueue_job(db, JOB_SHOP_REDACT, {"shop_id": 1})
    worker = ComplianceJobWorker(session_factory)

    await worker.run_once()

    job = await _reload(db, job.id)
    assert job.status == "discarded"
    assert "PayloadDecodeError" in job.error_message


@pytest.mark.asyncio
async def test_timeout_counts_as_failure(
    db: AsyncSession, session_factory, monkeypatch: pytest.MonkeyPatch
):
    monkeypatch.setattr(settings, "customer_redact_timeout_seconds", 0.05)

    async def slow(session, payload):
        await asyncio.sleep(5)

    job = await enqueue_job(db, JOB_CUSTOMERS_REDACT, {})
    worker = ComplianceJobWorker(session_factory, {JOB_CUSTOMERS_REDACT: slow})

    await worker.run_once()

    job = await _reload(db, job.id)
    assert job.status == "retrying"
    assert "TimeoutError" in job.error_message


@pytest.mark.asyncio
async def test_handler_rollback_does_not_leak(
    db: AsyncSession, session_factory, account: Account
):
    async def half_done(session, payload):
        session.add(Contact(account_id=payload["account_id"], name="Half Written"))
        await session.flush()
        raise RuntimeError("crashed mid-transaction")

    job = await enqueue_job(db, JOB_CUSTOMERS_REDACT, {"account_id": account.id})
    worker = ComplianceJobWorker(session_factory, {JOB_CUSTOMERS_REDACT: half_done})

    await worker.run_once()

    assert (await _reload(db, job.id)).status == "retrying"
    assert (await db.execute(Contact.__table__.select())).all() == []


@pytest.mark.asyncio
async def test_job_without_handler_discarded(db: AsyncSession, session_factory):
    job = await enqueue_job(db, JOB_CUSTOMERS_REDACT, {})
    worker = ComplianceJobWorker(session_factory, {})

    await worker.run_once()

    job = await _reload(db, job.id)
    assert job.status == "discarded"
    assert job.error_message == "no handler for job type customers_redact"


@pytest.mark.asyncio
async def test_run_until_idle(db: AsyncSession, session_factory):
    calls = []

    async def handler(session, payload):
        calls.append(payload["n"])

    for n in range(3):
        await enqueue_job(db, JOB_CUSTOMERS_REDACT, {"n": n})
    worker = ComplianceJobWorker(session_factory, {JOB_CUSTOMERS_REDACT: handler})

    assert await worker.run_until_idle() == 3
    assert calls == [0, 1, 2]


@pytest.mark.asyncio
async def test_customer_redact_end_to_end(
    db: AsyncSession, session_factory, account: Account, shop_hook: IntegrationHook
):
    contact = Contact(
        account_id=account.id,
        name="John Smith",
        email="john@example.com",
        phone_number="+1 555 625 1199",
        custom_attributes={"shopify_customer_id": "191167"},
    )
    db.add(contact)
    await db.commit()
    await db.refresh(contact)

    await enqueue_job(
        db,
        JOB_CUSTOMERS_REDACT,
        {"shop_domain": "test-shop", "customer": {"id": 191167, "email": "john@example.com"}},
    )
    await ComplianceJobWorker(session_factory).run_until_idle()

    await db.refresh(contact)
    assert contact.name == REDACTED_NAME
    assert contact.redacted_at is not None
    assert contact.custom_attributes["original_shopify_customer_id"] == "191167"
    (job,) = await _all_jobs(db)
    assert job.status == "completed"


@pytest.mark.asyncio
async def test_customer_redact_for_unknown_customer_completes(
    db: AsyncSession, session_factory, account: Account, shop_hook: IntegrationHook
):
    await enqueue_job(
        db, JOB_CUSTOMERS_REDACT, {"shop_domain": SHOP_DOMAIN, "customer": {"id": 1}}
    )
    await ComplianceJobWorker(session_factory).run_until_idle()
    (job,) = await _all_jobs(db)
    assert job.status == "completed"


@pytest.mark.asyncio
async def test_data_request_end_to_end(
    db: AsyncSession,
    session_factory,
    account: Account,
    shop_hook: IntegrationHook,
    monkeypatch: pytest.MonkeyPatch,
):
    sent = []

    async def fake_send(to_email, subject, body):
        sent.append((to_email, subject, body))

    monkeypatch.setattr(
        handlers, "DataRequestDelivery", functools.partial(DataRequestDelivery, send=fake_send)
    )
    db.add(Contact(account_id=account.id, name="John Smith", email="john@example.com"))
    await db.commit()

    await enqueue_job(
        db,
        JOB_CUSTOMERS_DATA_REQUEST,
        {
            "shop_domain": SHOP_DOMAIN,
            "customer": {"id": 191167, "email": "JOHN@example.com"},
            "data_request": {"id": 9999},
        },
    )
    await ComplianceJobWorker(session_factory).run_until_idle()

    ((to_email, subject, body),) = sent
    assert to_email == "owner@test-shop.com"
    assert "Request #9999" in subject
    assert "John Smith" in body

    audits = (
        await db.execute(
            Conversation.__table__.select().where(Conversation.inbox_name == "Shopify Compliance Audit")
        )
    ).all()
    assert len(audits) == 1
    (job,) = await _all_jobs(db)
    assert job.status == "completed"


@pytest.mark.asyncio
async def test_data_request_for_unknown_shop_is_soft_miss(db: AsyncSession, session_factory):
    await enqueue_job(
        db,
        JOB_CUSTOMERS_DATA_REQUEST,
        {"shop_domain": "gone.myshopify.com", "customer": {"id": 1}},
    )
    await ComplianceJobWorker(session_factory).run_until_idle()
    (job,) = await _all_jobs(db)
    assert job.status == "completed"


def test_every_job_type_has_a_handler():
    assert set(HANDLERS) == {
        JOB_CUSTOMERS_DATA_REQUEST,
        JOB_CUSTOMERS_REDACT,
        JOB_SHOP_REDACT,
        "subscription_retry",
    }


@pytest.mark.asyncio
async def test_handlers_reject_missing_customer(db: AsyncSession):
    with pytest.raises(PayloadDecodeError):
        await handlers.handle_customers_redact(db, {"shop_domain": SHOP_DOMAIN})


async def _reload(db: AsyncSession, job_id: int) -> ComplianceJob:
    stmt = (
        select(ComplianceJob)
        .where(ComplianceJob.id == job_id)
        .execution_options(populate_existing=True)
    )
    return (await db.execute(stmt)).scalar_one()


async def _all_jobs(db: AsyncSession) -> list[ComplianceJob]:
    stmt = select(ComplianceJob).order_by(ComplianceJob.id).execution_options(populate_existing=True)
    return list((await db.execute(stmt)).scalars().all())
