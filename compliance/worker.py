"""Background worker for processing queued compliance jobs."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .config import settings
from .database import async_session_factory
from .jobs.handlers import HANDLERS, JobHandler
from .jobs.policies import policy_for
from .models.job import ComplianceJob
from .services.job_svc import (
    claim_next_job,
    discard_job,
    get_job,
    mark_job_completed,
    mark_job_failed,
)

logger = logging.getLogger(__name__)


class ComplianceJobWorker:
    """Polls and executes queued compliance jobs."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        handlers: dict[str, JobHandler] | None = None,
    ) -> None:
        self._session_factory = session_factory or async_session_factory
        self._handlers = handlers if handlers is not None else HANDLERS
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    def start(self) -> None:
        if self._task is not None or not settings.job_worker_enabled:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop(), name="compliance-job-worker")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop_event.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None

    async def run_once(self) -> bool:
        """Claim and run one job; returns False when nothing was runnable."""
        async with self._session_factory() as db:
            job = await claim_next_job(db)
            if not job:
                return False
            await self._execute(db, job)
            return True

    async def run_until_idle(self, max_jobs: int = 100) -> int:
        processed = 0
        while processed < max_jobs and await self.run_once():
            processed += 1
        return processed

    async def _execute(self, db: AsyncSession, job: ComplianceJob) -> None:
        job_id = job.id
        job_type = job.job_type
        handler = self._handlers.get(job_type)
        if handler is None:
            await discard_job(db, job, f"no handler for job type {job_type}")
            return

        policy = policy_for(job_type)
        try:
            await asyncio.wait_for(handler(db, dict(job.payload or {})), timeout=policy.timeout_seconds)
        except asyncio.TimeoutError as exc:
            logger.error(
                "%s job %s timed out after %ss", job_type, job_id, policy.timeout_seconds
            )
            await self._fail(db, job_id, exc)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("%s job %s failed", job_type, job_id)
            await self._fail(db, job_id, exc)
        else:
            job = await get_job(db, job_id)
            await mark_job_completed(db, job)

    async def _fail(self, db: AsyncSession, job_id: int, exc: BaseException) -> None:
        await db.rollback()
        job = await get_job(db, job_id)
        await mark_job_failed(db, job, exc)

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            processed = False
            try:
                processed = await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:  # pragma: no cover
                logger.exception("Compliance job worker loop failed")

            if not processed:
                await asyncio.sleep(settings.job_poll_interval_seconds)


job_worker = ComplianceJobWorker()
