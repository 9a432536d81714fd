"""Health, readiness and subscription health checks."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..services.job_svc import count_jobs_by_status
from ..shopify.retry import health_report

router = APIRouter()


@router.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)):
    await db.execute(text("SELECT 1"))
    return {"status": "healthy", "service": "compliance"}


@router.get("/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)):
    await db.execute(text("SELECT 1"))
    return {"status": "ready", "service": "compliance"}


@router.get("/health/subscriptions")
async def subscription_health(db: AsyncSession = Depends(get_db)):
    report = await health_report(db)
    return {**report.as_dict(), "jobs": await count_jobs_by_status(db)}
