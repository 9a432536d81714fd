"""Integration hook model - a tenant's connection to an external platform."""

from __future__ import annotations

from sqlalchemy import Index, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, IntegerIdMixin, TenantMixin, TimestampMixin

SHOPIFY_APP_ID = "shopify"


class IntegrationHook(IntegerIdMixin, TimestampMixin, TenantMixin, Base):
    __tablename__ = "integration_hook"
    __table_args__ = (
        Index("ix_integration_hook_app_reference", "app_id", "reference_id"),
    )

    app_id: Mapped[str] = mapped_column(String(50))
    reference_id: Mapped[str | None] = mapped_column(String(255), default=None)
    access_token: Mapped[str | None] = mapped_column(Text, default=None)
    status: Mapped[str] = mapped_column(String(20), default="enabled")  # enabled, disabled
    settings: Mapped[dict | None] = mapped_column(JSON, default=dict)

    account: Mapped["Account"] = relationship(back_populates="integration_hooks")  # noqa: F821

    @property
    def is_enabled(self) -> bool:
        return self.status == "enabled"

    def __repr__(self) -> str:
        return f"<IntegrationHook {self.id} {self.app_id}:{self.reference_id} {self.status}>"
