"""Account (tenant root) and account user models."""

from __future__ import annotations

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, IntegerIdMixin, TenantMixin, TimestampMixin


class Account(IntegerIdMixin, TimestampMixin, Base):
    __tablename__ = "account"

    name: Mapped[str] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(20), default="active")  # active, suspended

    users: Mapped[list["AccountUser"]] = relationship(
        back_populates="account", cascade="all, delete-orphan"
    )
    integration_hooks: Mapped[list["IntegrationHook"]] = relationship(  # noqa: F821
        back_populates="account", cascade="all, delete-orphan"
    )

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def __repr__(self) -> str:
        return f"<Account {self.id} {self.name!r} {self.status}>"


class AccountUser(IntegerIdMixin, TimestampMixin, TenantMixin, Base):
    __tablename__ = "account_user"

    name: Mapped[str] = mapped_column(String(255))
    email: Mapped[str] = mapped_column(String(255))
    role: Mapped[str] = mapped_column(String(20), default="agent")  # administrator, agent

    account: Mapped[Account] = relationship(back_populates="users")
