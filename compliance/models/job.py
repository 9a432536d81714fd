"""Durable queue model for compliance background jobs."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, JSON, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, IntegerIdMixin, TimestampMixin


class ComplianceJob(Base, IntegerIdMixin, TimestampMixin):
    """Queue item representing a requested compliance job run."""

    __tablename__ = "compliance_job"

    job_type: Mapped[str] = mapped_column(String(50), index=True)
    account_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("account.id", ondelete="SET NULL"), default=None, nullable=True
    )
    status: Mapped[str] = mapped_column(
        String(20), default="pending"
    )  # pending/running/completed/failed/retrying/discarded
    payload: Mapped[dict | None] = mapped_column(JSON, default=None)
    available_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None, nullable=True
    )
    finished_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None, nullable=True
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3)
    error_message: Mapped[str | None] = mapped_column(Text, default=None)

    def __repr__(self) -> str:
        return f"<ComplianceJob {self.job_type} {self.status} attempts={self.attempts}>"
