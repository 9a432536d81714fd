"""Collect a customer's stored data for a Shopify data request."""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import String, cast, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.account import Account
from ..models.contact import Contact
from ..models.conversation import Conversation, Message

logger = logging.getLogger(__name__)

MESSAGES_PER_CONVERSATION = 50
NOTE_CONVERSATIONS = 10
NOTES_PER_CONVERSATION = 5
TIMELINE_LIMIT = 50
TOP_TOPICS = 5

SENSITIVE_KEY_FRAGMENTS = ("password", "token", "secret", "key", "auth")

_EMAIL_RE = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
_CARD_RE = re.compile(r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b")
_SSN_RE = re.compile(r"\b\d{3}-\d{2}-\d{4}\b")
_TOPIC_WORD_RE = re.compile(r"\b[a-z]{4,}\b")


def sanitize_message_content(content: str | None) -> str:
    """Mask emails, card numbers and SSNs in exported message text."""
    if not content or not content.strip():
        return "[Private/System Message]"
    sanitized = _EMAIL_RE.sub("[email]", content)
    sanitized = _CARD_RE.sub("[card number]", sanitized)
    return _SSN_RE.sub("[SSN]", sanitized)


def sanitize_custom_attributes(attributes: dict[str, Any] | None) -> dict[str, Any]:
    """Drop keys that look like credentials."""
    return {
        key: value
        for key, value in (attributes or {}).items()
        if not any(fragment in key.lower() for fragment in SENSITIVE_KEY_FRAGMENTS)
    }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


async def find_customer_contact(
    db: AsyncSession, account: Account, customer: dict[str, Any]
) -> Contact | None:
    """Match by stored Shopify customer id, then by case-insensitive email."""
    customer_id = customer.get("id")
    if customer_id not in (None, ""):
        stmt = (
            select(Contact)
            .where(
                Contact.account_id == account.id,
                cast(Contact.custom_attributes["shopify_customer_id"].as_string(), String)
                == str(customer_id),
            )
            .order_by(Contact.id.asc())
            .limit(1)
        )
        contact = (await db.execute(stmt)).scalar_one_or_none()
        if contact is not None:
            return contact

    email = (customer.get("email") or "").strip()
    if email:
        stmt = (
            select(Contact)
            .where(
                Contact.account_id == account.id,
                func.lower(Contact.email) == email.lower(),
            )
            .order_by(Contact.id.asc())
            .limit(1)
        )
        return (await db.execute(stmt)).scalar_one_or_none()
    return None


@dataclass
class DataExport:
    """Result of a data request; ``found`` distinguishes the two email variants."""

    found: bool
    data_request_id: Any
    shopify_customer_id: Any = None
    customer_email: str | None = None
    contact_id: int | None = None
    profile: dict[str, Any] = field(default_factory=dict)
    conversations: list[dict[str, Any]] = field(default_factory=list)
    interaction_history: dict[str, Any] = field(default_factory=dict)
    data_points_count: int = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "found": self.found,
            "profile": self.profile,
            "conversations": self.conversations,
            "interaction_history": self.interaction_history,
            "metadata": {
                "contact_id": self.contact_id,
                "shopify_customer_id": self.shopify_customer_id,
                "customer_email": self.customer_email,
                "data_request_id": self.data_request_id,
                "data_points_count": self.data_points_count,
            },
        }


class DataExportCollector:
    """Builds bounded exports of one contact's data within an account."""

    def __init__(self, db: AsyncSession, *, log: logging.Logger | None = None) -> None:
        self.db = db
        self._log = log or logger

    async def find_contact(self, account: Account, customer: dict[str, Any]) -> Contact | None:
        return await find_customer_contact(self.db, account, customer)

    async def collect(
        self,
        account: Account,
        customer: dict[str, Any],
        data_request_id: Any = None,
    ) -> DataExport:
        contact = await self.find_contact(account, customer)
        if contact is None:
            self._log.info(
                "Data request %s: no contact found in account %s", data_request_id, account.id
            )
            return DataExport(
                found=False,
                data_request_id=data_request_id,
                shopify_customer_id=customer.get("id"),
                customer_email=customer.get("email"),
            )

        conversations = await self._conversations(contact)
        messages_by_conversation = {
            conv.id: await self._recent_messages(conv.id) for conv in conversations
        }
        message_counts = await self._message_counts([c.id for c in conversations])

        profile = self._profile(contact, conversations)
        exported_conversations = [
            self._conversation_entry(
                conv, messages_by_conversation[conv.id], message_counts.get(conv.id, 0)
            )
            for conv in conversations
        ]
        history = {
            "notes": await self._notes(conversations),
            "summary": self._summary(conversations, messages_by_conversation),
            "timeline": self._timeline(conversations),
        }

        export = DataExport(
            found=True,
            data_request_id=data_request_id,
            shopify_customer_id=customer.get("id"),
            customer_email=customer.get("email"),
            contact_id=contact.id,
            profile=profile,
            conversations=exported_conversations,
            interaction_history=history,
            data_points_count=(
                len(profile["custom_attributes"])
                + sum(message_counts.values())
                + len(profile["additional_emails"])
            ),
        )
        self._log.info(
            "Data request %s: exported contact %s with %d conversations",
            data_request_id,
            contact.id,
            len(conversations),
        )
        return export

    async def _conversations(self, contact: Contact) -> list[Conversation]:
        stmt = (
            select(Conversation)
            .where(
                Conversation.contact_id == contact.id,
                Conversation.account_id == contact.account_id,
            )
            .order_by(Conversation.created_at.asc(), Conversation.id.asc())
        )
        return list((await self.db.execute(stmt)).scalars().all())

    async def _recent_messages(self, conversation_id: int) -> list[Message]:
        stmt = (
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(MESSAGES_PER_CONVERSATION)
        )
        messages = list((await self.db.execute(stmt)).scalars().all())
        messages.reverse()
        return messages

    async def _message_counts(self, conversation_ids: list[int]) -> dict[int, int]:
        if not conversation_ids:
            return {}
        stmt = (
            select(Message.conversation_id, func.count(Message.id))
            .where(Message.conversation_id.in_(conversation_ids))
            .group_by(Message.conversation_id)
        )
        return {conv_id: count for conv_id, count in (await self.db.execute(stmt)).all()}

    def _profile(self, contact: Contact, conversations: list[Conversation]) -> dict[str, Any]:
        attributes = contact.custom_attributes or {}
        channels = Counter(c.channel for c in conversations if c.channel)
        created = [c.created_at for c in conversations if c.created_at]
        return {
            "basic_info": {
                "id": contact.id,
                "name": contact.name,
                "email": contact.email,
                "phone_number": contact.phone_number,
                "avatar_url": contact.avatar_url,
                "created_at": _iso(contact.created_at),
                "updated_at": _iso(contact.updated_at),
            },
            "custom_attributes": sanitize_custom_attributes(attributes),
            "additional_emails": list(contact.additional_emails or []),
            "location_data": {
                "country_code": contact.country_code,
                "city": contact.city,
                "timezone": attributes.get("timezone"),
            },
            "engagement_metrics": {
                "total_conversations": len(conversations),
                "resolved_conversations": sum(1 for c in conversations if c.status == "resolved"),
                "pending_conversations": sum(
                    1 for c in conversations if c.status in ("open", "pending")
                ),
                "first_contact_date": _iso(min(created)) if created else None,
                "last_contact_date": _iso(max(created)) if created else None,
                "preferred_channel": channels.most_common(1)[0][0] if channels else None,
            },
        }

    @staticmethod
    def _conversation_entry(
        conversation: Conversation, messages: list[Message], message_count: int
    ) -> dict[str, Any]:
        return {
            "id": conversation.id,
            "status": conversation.status,
            "created_at": _iso(conversation.created_at),
            "updated_at": _iso(conversation.updated_at),
            "channel": conversation.channel,
            "inbox": conversation.inbox_name,
            "assigned_agent": conversation.assignee_name or "Unassigned",
            "team": conversation.team_name,
            "priority": conversation.priority,
            "labels": list(conversation.labels or []),
            "message_count": message_count,
            "messages": [
                {
                    "id": m.id,
                    "content": sanitize_message_content(m.content),
                    "message_type": m.message_type,
                    "created_at": _iso(m.created_at),
                    "sender_type": m.sender_type,
                    "sender_name": m.sender_name or "System",
                    "private": m.private,
                    "attachments": list(m.attachments or []),
                }
                for m in messages
            ],
        }

    async def _notes(self, conversations: list[Conversation]) -> list[dict[str, Any]]:
        notes: list[dict[str, Any]] = []
        for conversation in conversations[:NOTE_CONVERSATIONS]:
            stmt = (
                select(Message)
                .where(Message.conversation_id == conversation.id, Message.private.is_(True))
                .order_by(Message.created_at.desc(), Message.id.desc())
                .limit(NOTES_PER_CONVERSATION)
            )
            for note in (await self.db.execute(stmt)).scalars().all():
                notes.append(
                    {
                        "conversation_id": conversation.id,
                        "content": sanitize_message_content(note.content),
                        "created_at": _iso(note.created_at),
                        "author": note.sender_name or "System",
                    }
                )
        return notes

    @staticmethod
    def _summary(
        conversations: list[Conversation], messages: dict[int, list[Message]]
    ) -> dict[str, Any]:
        total = len(conversations)
        resolved = sum(1 for c in conversations if c.status == "resolved")
        words: Counter[str] = Counter()
        for conv_messages in messages.values():
            for message in conv_messages:
                if message.content:
                    words.update(_TOPIC_WORD_RE.findall(message.content.lower()))
        return {
            "total_conversations": total,
            "by_status": dict(Counter(c.status for c in conversations)),
            "by_channel": dict(Counter(c.channel for c in conversations)),
            "resolution_rate": round(resolved / total * 100, 2) if total else 0,
            "common_topics": [word for word, _ in words.most_common(TOP_TOPICS)],
        }

    @staticmethod
    def _timeline(conversations: list[Conversation]) -> list[dict[str, Any]]:
        events: list[dict[str, Any]] = []
        for conv in conversations:
            if conv.created_at:
                events.append(
                    {
                        "type": "conversation_started",
                        "conversation_id": conv.id,
                        "timestamp": conv.created_at,
                        "channel": conv.channel,
                    }
                )
            if conv.status == "resolved" and conv.updated_at:
                event: dict[str, Any] = {
                    "type": "conversation_resolved",
                    "conversation_id": conv.id,
                    "timestamp": conv.updated_at,
                }
                if conv.created_at:
                    event["resolution_time_seconds"] = int(
                        (conv.updated_at - conv.created_at).total_seconds()
                    )
                events.append(event)
        events.sort(key=lambda e: e["timestamp"])
        for event in events:
            event["timestamp"] = event["timestamp"].isoformat()
        return events[-TIMELINE_LIMIT:]
