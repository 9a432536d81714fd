"""Legal and business safeguards evaluated before a contact is redacted."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.contact import Contact
from ..models.conversation import Conversation, Message

TRANSACTION_KEYWORDS = ("order", "payment", "transaction", "invoice")
DISPUTE_KEYWORDS = ("dispute", "chargeback", "refund", "complaint")
COMPLIANCE_FLAGS = (
    "regulatory_hold",
    "audit_retention_required",
    "tax_record_retention",
    "anti_money_laundering_flag",
)
LEGAL_HOLD_FLAG = "legal_hold_active"


def _flag_set(attributes: dict[str, Any], key: str) -> bool:
    return str(attributes.get(key, "")).strip().lower() == "true"


def _content_matches(keywords: tuple[str, ...]):
    content = func.lower(Message.content)
    return or_(*(content.like(f"%{word}%") for word in keywords))


@dataclass(frozen=True)
class SafeguardReport:
    recent_transactions: bool = False
    legal_hold: bool = False
    active_disputes: bool = False
    compliance_flags: bool = False

    @property
    def requires_extended_audit(self) -> bool:
        return self.active_disputes or self.compliance_flags

    @property
    def reasons(self) -> list[str]:
        names = ("recent_transactions", "legal_hold", "active_disputes", "compliance_flags")
        return [name for name in names if getattr(self, name)]

    def as_dict(self) -> dict[str, bool]:
        return {
            "recent_transactions": self.recent_transactions,
            "legal_hold": self.legal_hold,
            "active_disputes": self.active_disputes,
            "compliance_flags": self.compliance_flags,
        }


async def has_recent_transactions(
    db: AsyncSession, contact: Contact, *, since: datetime
) -> bool:
    stmt = (
        select(Message.id)
        .join(Conversation, Message.conversation_id == Conversation.id)
        .where(
            Conversation.contact_id == contact.id,
            Conversation.account_id == contact.account_id,
            Conversation.created_at >= since,
            _content_matches(TRANSACTION_KEYWORDS),
        )
        .limit(1)
    )
    return (await db.execute(stmt)).first() is not None


async def has_active_disputes(db: AsyncSession, contact: Contact) -> bool:
    stmt = (
        select(Message.id)
        .join(Conversation, Message.conversation_id == Conversation.id)
        .where(
            Conversation.contact_id == contact.id,
            Conversation.account_id == contact.account_id,
            Conversation.status.in_(("open", "pending")),
            _content_matches(DISPUTE_KEYWORDS),
        )
        .limit(1)
    )
    return (await db.execute(stmt)).first() is not None


async def evaluate_safeguards(
    db: AsyncSession,
    contact: Contact,
    *,
    now: datetime,
    retention_days: int,
) -> SafeguardReport:
    attributes = contact.custom_attributes or {}
    return SafeguardReport(
        recent_transactions=await has_recent_transactions(
            db, contact, since=now - timedelta(days=retention_days)
        ),
        legal_hold=_flag_set(attributes, LEGAL_HOLD_FLAG),
        active_disputes=await has_active_disputes(db, contact),
        compliance_flags=any(_flag_set(attributes, flag) for flag in COMPLIANCE_FLAGS),
    )
