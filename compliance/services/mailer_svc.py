"""Data request delivery - store owner email plus audit conversation."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from jinja2 import Environment, FileSystemLoader
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..models.account import Account, AccountUser
from ..models.contact import Contact
from ..models.conversation import Conversation, Message
from ..redaction.anonymize import mask_email
from .data_export_svc import DataExport

logger = logging.getLogger(__name__)

SYSTEM_CONTACT_EMAIL = "shopify-compliance@system.local"
SYSTEM_CONTACT_NAME = "Shopify Compliance System"
AUDIT_INBOX_NAME = "Shopify Compliance Audit"

_templates = Environment(
    loader=FileSystemLoader(str(settings.templates_dir)),
    autoescape=False,
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
)


class MessagingNotConfigured(Exception):
    pass


class DataRequestDeliveryError(Exception):
    """The data request response could not be handed to the store owner."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def data_request_subject(data_request_id: Any) -> str:
    return f"Customer Data Request Response - Request #{data_request_id}"


def render_data_request_email(
    export: DataExport,
    *,
    shop_domain: str,
    customer_email: str | None,
    processed_at: datetime,
) -> str:
    """Plain-text body; found and not-found requests use different wording."""
    context: dict[str, Any] = {
        "data_request_id": export.data_request_id,
        "shop_domain": shop_domain,
        "customer_email": customer_email or "(not provided)",
        "processed_at": processed_at.strftime("%B %d, %Y at %I:%M %p %Z"),
    }
    if not export.found:
        return _templates.get_template("email/data_request_not_found.txt").render(**context)

    context.update(
        basic_info=export.profile["basic_info"],
        metrics=export.profile["engagement_metrics"],
        custom_attributes=export.profile["custom_attributes"],
        conversations=export.conversations,
    )
    return _templates.get_template("email/data_request_found.txt").render(**context)


async def send_email(to_email: str, subject: str, text_body: str) -> str | None:
    """Send a plain-text email via SendGrid; returns the provider message id."""
    if not settings.sendgrid_configured:
        raise MessagingNotConfigured(
            "SendGrid is not configured. Set COMPLIANCE_SENDGRID_API_KEY."
        )

    import sendgrid
    from sendgrid.helpers.mail import Content, Email, Mail, To

    sg = sendgrid.SendGridAPIClient(api_key=settings.sendgrid_api_key)
    mail = Mail(
        from_email=Email(settings.compliance_email_from, settings.sendgrid_from_name),
        to_emails=To(to_email),
        subject=subject,
        plain_text_content=Content("text/plain", text_body),
    )
    response = sg.client.mail.send.post(request_body=mail.get())
    if hasattr(response, "headers"):
        return response.headers.get("X-Message-Id")
    return None


async def store_owner_email(db: AsyncSession, account: Account) -> str:
    stmt = (
        select(AccountUser)
        .where(AccountUser.account_id == account.id, AccountUser.role == "administrator")
        .order_by(AccountUser.id.asc())
        .limit(1)
    )
    admin = (await db.execute(stmt)).scalar_one_or_none()
    if admin is None or not admin.email:
        logger.error("No administrator found for account %s (%s)", account.id, account.name)
        raise DataRequestDeliveryError(f"No administrator email found for account {account.id}")
    return admin.email


async def find_or_create_system_contact(db: AsyncSession, account: Account) -> Contact:
    stmt = select(Contact).where(
        Contact.account_id == account.id, Contact.email == SYSTEM_CONTACT_EMAIL
    )
    contact = (await db.execute(stmt)).scalar_one_or_none()
    if contact is None:
        contact = Contact(
            account_id=account.id,
            name=SYSTEM_CONTACT_NAME,
            email=SYSTEM_CONTACT_EMAIL,
            custom_attributes={
                "contact_type": "system",
                "created_by": "shopify_compliance_webhook",
            },
        )
        db.add(contact)
        await db.flush()
    return contact


async def create_audit_conversation(
    db: AsyncSession,
    account: Account,
    export: DataExport,
    *,
    customer_email: str | None,
    processed_at: datetime,
) -> Conversation:
    """Resolved conversation under the system contact recording the fulfilment."""
    system_contact = await find_or_create_system_contact(db, account)
    masked_email = mask_email(customer_email)
    conversation = Conversation(
        account_id=account.id,
        contact_id=system_contact.id,
        status="resolved",
        channel="api",
        inbox_name=AUDIT_INBOX_NAME,
        additional_attributes={
            "type": "shopify_data_request_audit",
            "shopify_customer_id": export.shopify_customer_id,
            "data_request_id": export.data_request_id,
            "original_contact_id": export.contact_id,
            "processed_at": processed_at.isoformat(),
            "delivery_method": "email_to_store_owner",
            "customer_email": masked_email,
        },
    )
    db.add(conversation)
    await db.flush()

    db.add(
        Message(
            account_id=account.id,
            conversation_id=conversation.id,
            content=(
                "Data request processing completed.\n"
                f"Request ID: {export.data_request_id}\n"
                f"Shopify Customer ID: {export.shopify_customer_id}\n"
                f"Customer Email: {masked_email}\n"
                f"Processing Date: {processed_at.isoformat()}\n"
                f"Data Found: {'Yes' if export.found else 'No'}\n"
                "Data summary sent to the store owner, who forwards it to the customer."
            ),
            message_type="outgoing",
            private=False,
            sender_type="system",
            content_attributes={
                "audit_type": "data_request_completion",
                "data_request_id": export.data_request_id,
                "delivery_method": "email_to_store_owner",
            },
        )
    )
    await db.commit()
    await db.refresh(conversation)
    return conversation


class DataRequestDelivery:
    """Emails the export to the account administrator and records an audit trail.

    There is no fallback channel: any failure is logged for manual follow-up
    and re-raised.
    """

    def __init__(
        self,
        db: AsyncSession,
        *,
        send: Callable[[str, str, str], Awaitable[Any]] = send_email,
        log: logging.Logger | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.db = db
        self._send = send
        self._log = log or logger
        self._clock = clock

    async def deliver(
        self,
        account: Account,
        export: DataExport,
        *,
        shop_domain: str,
        customer_email: str | None,
    ) -> Conversation:
        processed_at = self._clock()
        try:
            recipient = await store_owner_email(self.db, account)
            body = render_data_request_email(
                export,
                shop_domain=shop_domain,
                customer_email=customer_email,
                processed_at=processed_at,
            )
            await self._send(recipient, data_request_subject(export.data_request_id), body)
            self._log.info(
                "Data request %s emailed to %s (found=%s)",
                export.data_request_id,
                mask_email(recipient),
                export.found,
            )
            return await create_audit_conversation(
                self.db,
                account,
                export,
                customer_email=customer_email,
                processed_at=processed_at,
            )
        except Exception as exc:
            self._log.critical(
                "DATA REQUEST EMAIL DELIVERY FAILED - REQUIRES MANUAL FOLLOW-UP "
                "data_request_id=%s shop_domain=%s customer_email=%s error=%s",
                export.data_request_id,
                shop_domain,
                mask_email(customer_email),
                exc,
            )
            raise
