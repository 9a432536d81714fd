"""Durable job queue service for compliance background work."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..jobs.policies import JobPolicy, policy_for
from ..models.job import ComplianceJob

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def enqueue_job(
    db: AsyncSession,
    job_type: str,
    payload: dict[str, Any],
    *,
    delay: timedelta | None = None,
    account_id: int | None = None,
) -> ComplianceJob:
    """Create and persist a job; it becomes runnable after ``delay``."""
    policy = policy_for(job_type)
    now = _utcnow()
    job = ComplianceJob(
        job_type=job_type,
        account_id=account_id,
        status="pending",
        payload=payload,
        available_at=now + delay if delay else now,
        attempts=0,
        max_attempts=policy.max_attempts,
    )
    db.add(job)
    await db.commit()
    await db.refresh(job)
    logger.info("Enqueued %s job %s available_at=%s", job_type, job.id, job.available_at)
    return job


async def get_job(db: AsyncSession, job_id: int) -> ComplianceJob | None:
    result = await db.execute(select(ComplianceJob).where(ComplianceJob.id == job_id))
    return result.scalar_one_or_none()


async def list_jobs(
    db: AsyncSession, *, job_type: str | None = None, status: str | None = None
) -> list[ComplianceJob]:
    stmt = select(ComplianceJob).order_by(ComplianceJob.id.asc())
    if job_type:
        stmt = stmt.where(ComplianceJob.job_type == job_type)
    if status:
        stmt = stmt.where(ComplianceJob.status == status)
    return list((await db.execute(stmt)).scalars().all())


async def count_jobs_by_status(db: AsyncSession) -> dict[str, int]:
    stmt = select(ComplianceJob.status, func.count()).group_by(ComplianceJob.status)
    return {status: count for status, count in (await db.execute(stmt)).all()}


async def claim_next_job(db: AsyncSession) -> ComplianceJob | None:
    """Claim the next runnable job.

    Best-effort claim suitable for a single worker process.
    """
    now = _utcnow()
    stmt = (
        select(ComplianceJob)
        .where(
            and_(
                ComplianceJob.status.in_(("pending", "retrying")),
                ComplianceJob.available_at <= now,
            )
        )
        .order_by(ComplianceJob.available_at.asc(), ComplianceJob.id.asc())
        .limit(1)
    )
    job = (await db.execute(stmt)).scalar_one_or_none()
    if not job:
        return None

    job.status = "running"
    job.started_at = now
    job.error_message = None
    job.attempts += 1
    await db.commit()
    await db.refresh(job)
    return job


async def mark_job_completed(db: AsyncSession, job: ComplianceJob) -> None:
    job.status = "completed"
    job.finished_at = _utcnow()
    await db.commit()


async def mark_job_failed(
    db: AsyncSession,
    job: ComplianceJob,
    exc: BaseException,
    policy: JobPolicy | None = None,
) -> None:
    """Retry with the policy's backoff, discard, or fail permanently."""
    policy = policy or policy_for(job.job_type)
    now = _utcnow()
    job.error_message = f"{type(exc).__name__}: {exc}"
    job.finished_at = now

    if not policy.is_retryable(exc):
        job.status = "discarded"
        logger.error("Discarding %s job %s: %s", job.job_type, job.id, job.error_message)
    elif job.attempts < job.max_attempts:
        job.status = "retrying"
        job.available_at = now + timedelta(seconds=policy.backoff(job.attempts))
    else:
        job.status = "failed"
        logger.error(
            "%s job %s failed after %d attempts: %s",
            job.job_type,
            job.id,
            job.attempts,
            job.error_message,
        )

    await db.commit()


async def discard_job(db: AsyncSession, job: ComplianceJob, reason: str) -> None:
    job.status = "discarded"
    job.error_message = reason
    job.finished_at = _utcnow()
    await db.commit()
    logger.error("Discarding %s job %s: %s", job.job_type, job.id, reason)
