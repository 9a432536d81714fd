"""Contact model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, JSON, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, IntegerIdMixin, TenantMixin, TimestampMixin


class Contact(IntegerIdMixin, TimestampMixin, TenantMixin, Base):
    __tablename__ = "contact"
    __table_args__ = (
        Index("ix_contact_account_email", "account_id", "email"),
    )

    name: Mapped[str | None] = mapped_column(String(255), default=None)
    email: Mapped[str | None] = mapped_column(String(255), default=None)
    phone_number: Mapped[str | None] = mapped_column(String(50), default=None)
    avatar_url: Mapped[str | None] = mapped_column(String(500), default=None)
    country_code: Mapped[str | None] = mapped_column(String(10), default=None)
    city: Mapped[str | None] = mapped_column(String(100), default=None)
    additional_emails: Mapped[list | None] = mapped_column(JSON, default=list)
    custom_attributes: Mapped[dict | None] = mapped_column(JSON, default=dict)
    redacted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None, index=True
    )

    conversations: Mapped[list["Conversation"]] = relationship(  # noqa: F821
        back_populates="contact"
    )

    @property
    def is_redacted(self) -> bool:
        return self.redacted_at is not None

    def __repr__(self) -> str:
        return f"<Contact {self.id} redacted={self.is_redacted}>"
