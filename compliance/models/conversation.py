"""Conversation and Message models."""

from __future__ import annotations

from sqlalchemy import Boolean, ForeignKey, Index, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, IntegerIdMixin, TenantMixin, TimestampMixin


class Conversation(IntegerIdMixin, TimestampMixin, TenantMixin, Base):
    __tablename__ = "conversation"
    __table_args__ = (
        Index("ix_conversation_account_contact", "account_id", "contact_id"),
    )

    contact_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("contact.id", ondelete="SET NULL"), default=None, index=True
    )
    status: Mapped[str] = mapped_column(String(20), default="open")  # open, pending, resolved, snoozed
    channel: Mapped[str] = mapped_column(String(50), default="web_widget")
    inbox_name: Mapped[str | None] = mapped_column(String(255), default=None)
    assignee_name: Mapped[str | None] = mapped_column(String(255), default=None)
    team_name: Mapped[str | None] = mapped_column(String(255), default=None)
    priority: Mapped[str | None] = mapped_column(String(20), default=None)
    labels: Mapped[list | None] = mapped_column(JSON, default=list)
    additional_attributes: Mapped[dict | None] = mapped_column(JSON, default=dict)

    contact: Mapped["Contact | None"] = relationship(back_populates="conversations")  # noqa: F821
    messages: Mapped[list["Message"]] = relationship(
        back_populates="conversation", cascade="all, delete-orphan",
        order_by="Message.created_at.asc()",
    )


class Message(IntegerIdMixin, TimestampMixin, TenantMixin, Base):
    __tablename__ = "message"
    __table_args__ = (
        Index("ix_message_conversation", "conversation_id", "created_at"),
    )

    conversation_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("conversation.id", ondelete="CASCADE")
    )
    content: Mapped[str | None] = mapped_column(Text, default=None)
    message_type: Mapped[str] = mapped_column(String(20), default="incoming")  # incoming, outgoing, activity
    private: Mapped[bool] = mapped_column(Boolean, default=False)
    sender_type: Mapped[str | None] = mapped_column(String(20), default=None)  # contact, user, system
    sender_name: Mapped[str | None] = mapped_column(String(255), default=None)
    content_type: Mapped[str] = mapped_column(String(30), default="text")
    content_attributes: Mapped[dict | None] = mapped_column(JSON, default=dict)
    attachments: Mapped[list | None] = mapped_column(JSON, default=list)

    conversation: Mapped[Conversation] = relationship(back_populates="messages")
