"""Contact and shop-wide PII redaction."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import ComplianceSettings, settings as default_settings
from ..models.account import Account
from ..models.contact import Contact
from ..models.conversation import Conversation, Message
from ..models.integration_hook import SHOPIFY_APP_ID, IntegrationHook
from ..schemas.hook_settings import HookSettings, update_hook_settings
from ..services.account_resolver import normalize_shop_domain
from .anonymize import (
    ANONYMIZED_EMAIL_RE,
    ANONYMIZED_PHONE_RE,
    REDACTED_NAME,
    REDACTED_VALUE,
    anonymized_email,
    anonymized_phone,
    is_pii_attribute,
    limited_redact_custom_attributes,
    redact_custom_attributes,
)
from .audit import SHOP_LEGAL_BASIS, build_audit_record, log_audit_record, snapshot_masked
from .safeguards import evaluate_safeguards

logger = logging.getLogger(__name__)

CUSTOMER_REDACTION_REASON = "shopify_customer_redact_webhook"
SHOP_REDACTION_REASON = "shopify_shop_redact_webhook"
LIMITED_REDACTION_REASON = "active_transactions_within_retention_period"

# Never selected for shop-wide redaction
SYSTEM_CONTACT_EMAILS = ("shopify-compliance@system.local", "system@system.local")
SYSTEM_CONTACT_NAMES = ("Shopify Compliance System", "System Contact")

CUSTOMER_REDACTION_NOTICE = (
    "Customer data has been redacted for privacy compliance. Historical conversation "
    "data is preserved but customer personal information has been anonymized."
)
SHOP_REDACTION_NOTICE = (
    "Shop data has been redacted due to app uninstallation. Historical conversation "
    "data is preserved but all customer personal information has been anonymized for "
    "privacy compliance."
)

SKIPPED = "skipped"
DEFERRED = "deferred"
LIMITED = "limited"
REDACTED = "redacted"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RedactionIntegrityError(Exception):
    """Post-redaction verification found a contact that is not fully anonymized."""

    def __init__(self, contact_id: int, failed_checks: list[str]):
        self.contact_id = contact_id
        self.failed_checks = failed_checks
        super().__init__(
            f"Redaction integrity check failed for contact {contact_id}: {', '.join(failed_checks)}"
        )


@dataclass(frozen=True)
class RedactionResult:
    contact_id: int
    status: str
    reasons: tuple[str, ...] = ()


@dataclass
class ShopRedactionSummary:
    shop_domain: str
    account_id: int
    total: int = 0
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    batches: int = 0
    skipped_reason: str | None = None
    failures: list[dict[str, Any]] = field(default_factory=list)

    @property
    def success_rate(self) -> float:
        if self.total == 0:
            return 100.0
        return round(self.processed / self.total * 100, 2)

    @property
    def requires_investigation(self) -> bool:
        return self.failed > self.total * 0.1

    def as_dict(self) -> dict[str, Any]:
        return {
            "shop_domain": self.shop_domain,
            "account_id": self.account_id,
            "total": self.total,
            "processed": self.processed,
            "failed": self.failed,
            "skipped": self.skipped,
            "batches": self.batches,
            "success_rate": self.success_rate,
            "skipped_reason": self.skipped_reason,
        }


class RedactionEngine:
    """Anonymizes contacts while keeping their conversation history intact.

    Each contact is redacted inside its own commit; a contact whose
    ``redacted_at`` is already set is never touched again.
    """

    def __init__(
        self,
        db: AsyncSession,
        *,
        config: ComplianceSettings | None = None,
        log: logging.Logger | None = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.db = db
        self.config = config or default_settings
        self._log = log or logger
        self._clock = clock
        self._sleep = sleep

    # -- single contact -----------------------------------------------------

    async def redact_customer(
        self,
        contact: Contact,
        *,
        shop_domain: str | None = None,
        shopify_customer_id: str | None = None,
    ) -> RedactionResult:
        if contact.redacted_at is not None:
            self._log.info("Contact %s already redacted at %s; skipping", contact.id, contact.redacted_at)
            return RedactionResult(contact.id, SKIPPED)

        now = self._clock()
        report = await evaluate_safeguards(
            self.db,
            contact,
            now=now,
            retention_days=self.config.transaction_retention_days,
        )
        reasons = tuple(report.reasons)

        if report.legal_hold:
            await self._defer(contact, now, reason="legal_hold")
            return RedactionResult(contact.id, DEFERRED, reasons)

        if report.recent_transactions:
            await self._limited_redaction(
                contact,
                now,
                shop_domain=shop_domain,
                shopify_customer_id=shopify_customer_id,
                protection_reasons=list(reasons),
                extended=report.requires_extended_audit,
            )
            return RedactionResult(contact.id, LIMITED, reasons)

        metadata: dict[str, Any] = {
            "redaction_performed_at": now.isoformat(),
            "redaction_reason": CUSTOMER_REDACTION_REASON,
        }
        if shopify_customer_id is not None:
            metadata["original_shopify_customer_id"] = str(shopify_customer_id)

        await self._full_redaction(
            contact,
            now,
            metadata=metadata,
            shop_wide=False,
            shop_domain=shop_domain,
            shopify_customer_id=shopify_customer_id,
            protection_reasons=list(reasons),
            extended=report.requires_extended_audit,
        )
        await self.verify_integrity(contact.id)
        return RedactionResult(contact.id, REDACTED, reasons)

    async def _defer(self, contact: Contact, now: datetime, *, reason: str) -> None:
        contact.custom_attributes = {
            **(contact.custom_attributes or {}),
            "redaction_deferred": True,
            "redaction_deferred_reason": reason,
            "redaction_deferred_at": now.isoformat(),
            "redaction_requested_at": now.isoformat(),
        }
        await self.db.commit()
        self._log.warning("Redaction deferred for contact %s: %s", contact.id, reason)

    async def _limited_redaction(
        self,
        contact: Contact,
        now: datetime,
        *,
        shop_domain: str | None,
        shopify_customer_id: str | None,
        protection_reasons: list[str],
        extended: bool,
    ) -> None:
        before = snapshot_masked(contact)
        attributes, preserved = limited_redact_custom_attributes(contact.custom_attributes)
        attributes.update(
            {
                "redaction_performed_at": now.isoformat(),
                "redaction_type": "limited_redaction",
                "redaction_reason": LIMITED_REDACTION_REASON,
                "preserved_attributes": preserved,
            }
        )
        if shopify_customer_id is not None:
            attributes["original_shopify_customer_id"] = str(shopify_customer_id)

        try:
            self._anonymize_identity(contact, now)
            contact.custom_attributes = attributes
            conversations, messages = await self._preserve_conversations(contact, now, shop_wide=False)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        record = build_audit_record(
            contact,
            before=before,
            redaction_type="limited_redaction",
            performed_at=now,
            conversations_count=conversations,
            messages_count=messages,
            shop_domain=shop_domain,
            shopify_customer_id=shopify_customer_id,
            protection_reasons=protection_reasons,
        )
        log_audit_record(record, extended=extended, log=self._log)

    async def _full_redaction(
        self,
        contact: Contact,
        now: datetime,
        *,
        metadata: dict[str, Any],
        shop_wide: bool,
        shop_domain: str | None = None,
        shopify_customer_id: str | None = None,
        protection_reasons: list[str] | None = None,
        extended: bool = False,
    ) -> None:
        before = snapshot_masked(contact)
        try:
            self._anonymize_identity(contact, now)
            contact.custom_attributes = {
                **redact_custom_attributes(contact.custom_attributes),
                **metadata,
            }
            conversations, messages = await self._preserve_conversations(
                contact, now, shop_wide=shop_wide
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        record = build_audit_record(
            contact,
            before=before,
            redaction_type="shop_wide" if shop_wide else "full_redaction",
            performed_at=now,
            conversations_count=conversations,
            messages_count=messages,
            shop_domain=shop_domain,
            shopify_customer_id=shopify_customer_id,
            protection_reasons=protection_reasons,
        )
        log_audit_record(record, extended=extended, log=self._log)

    @staticmethod
    def _anonymize_identity(contact: Contact, now: datetime) -> None:
        original_phone = contact.phone_number
        contact.name = REDACTED_NAME
        contact.email = anonymized_email(contact.id)
        contact.phone_number = anonymized_phone(contact.id, original_phone)
        contact.additional_emails = []
        contact.redacted_at = now

    async def _preserve_conversations(
        self, contact: Contact, now: datetime, *, shop_wide: bool
    ) -> tuple[int, int]:
        """Mark each conversation and append one private activity message.

        Returns (conversation count, pre-existing message count).
        """
        stmt = select(Conversation).where(
            Conversation.contact_id == contact.id,
            Conversation.account_id == contact.account_id,
        )
        conversations = list((await self.db.execute(stmt)).scalars().all())
        if not conversations:
            return 0, 0

        message_count = (
            await self.db.execute(
                select(func.count(Message.id)).where(
                    Message.conversation_id.in_([c.id for c in conversations])
                )
            )
        ).scalar() or 0

        timestamp = now.isoformat()
        content_attributes: dict[str, Any] = {
            "system_message_type": "shop_privacy_redaction" if shop_wide else "privacy_redaction",
            "redaction_timestamp": timestamp,
        }
        if shop_wide:
            content_attributes["redaction_scope"] = "shop_wide"

        for conversation in conversations:
            conversation.additional_attributes = {
                **(conversation.additional_attributes or {}),
                "contact_redacted_at": timestamp,
                "original_contact_info": {
                    "was_redacted": True,
                    "redaction_reason": (
                        "shop_wide_privacy_compliance" if shop_wide else "privacy_compliance"
                    ),
                    "redaction_timestamp": timestamp,
                },
            }
            self.db.add(
                Message(
                    account_id=conversation.account_id,
                    conversation_id=conversation.id,
                    content=SHOP_REDACTION_NOTICE if shop_wide else CUSTOMER_REDACTION_NOTICE,
                    message_type="activity",
                    private=True,
                    sender_type="system",
                    content_attributes=dict(content_attributes),
                )
            )
        return len(conversations), message_count

    async def verify_integrity(self, contact_id: int) -> dict[str, bool]:
        """Re-read the contact and its conversations; raise on any failed check."""
        stmt = (
            select(Contact)
            .where(Contact.id == contact_id)
            .execution_options(populate_existing=True)
        )
        contact = (await self.db.execute(stmt)).scalar_one()
        attributes = contact.custom_attributes or {}

        conversations = list(
            (
                await self.db.execute(
                    select(Conversation)
                    .where(Conversation.contact_id == contact.id)
                    .execution_options(populate_existing=True)
                )
            ).scalars().all()
        )
        conversation_count = (
            await self.db.execute(
                select(func.count(Conversation.id)).where(Conversation.contact_id == contact.id)
            )
        ).scalar()
        account = await self.db.get(Account, contact.account_id)

        checks = {
            "contact_anonymized": (
                contact.name == REDACTED_NAME
                and bool(contact.email and ANONYMIZED_EMAIL_RE.fullmatch(contact.email))
                and bool(contact.phone_number and ANONYMIZED_PHONE_RE.fullmatch(contact.phone_number))
                and not contact.additional_emails
            ),
            "redacted_at_set": contact.redacted_at is not None,
            "pii_attributes_redacted": all(
                value == REDACTED_VALUE
                for key, value in attributes.items()
                if is_pii_attribute(key)
            ),
            "conversations_preserved": all(
                "contact_redacted_at" in (c.additional_attributes or {}) for c in conversations
            ),
            "references_maintained": (
                account is not None and conversation_count == len(conversations)
            ),
            "audit_trail_complete": "redaction_performed_at" in attributes,
        }
        failed = [name for name, ok in checks.items() if not ok]
        if failed:
            self._log.error("Redaction integrity failure contact=%s checks=%s", contact_id, failed)
            raise RedactionIntegrityError(contact_id, failed)
        return checks

    # -- shop-wide ----------------------------------------------------------

    async def redact_shop(
        self,
        account: Account,
        shop_domain: str,
        *,
        shop_id: Any = None,
    ) -> ShopRedactionSummary:
        account_id = account.id
        summary = ShopRedactionSummary(shop_domain=shop_domain, account_id=account_id)

        hook = await self._find_shop_hook(account_id, shop_domain)
        if hook is None:
            self._log.error(
                "Shop redaction skipped: no Shopify hook for account=%s shop=%s",
                account_id,
                shop_domain,
            )
            summary.skipped_reason = "hook_not_found"
            return summary

        hook_id = hook.id
        if HookSettings.from_hook(hook).redacted_at:
            self._log.info(
                "Shop %s already redacted (hook %s); nothing to do", shop_domain, hook_id
            )
            summary.skipped_reason = "already_redacted"
            return summary

        now = self._clock()
        metadata = {
            "redaction_performed_at": now.isoformat(),
            "redaction_reason": SHOP_REDACTION_REASON,
            "shop_domain": shop_domain,
            "redaction_type": "shop_wide",
        }

        summary.total = (
            await self.db.execute(
                select(func.count()).select_from(self._candidates(account_id).subquery())
            )
        ).scalar() or 0
        batch_size = max(1, self.config.redaction_batch_size)
        self._log.info(
            "Starting shop redaction shop=%s account=%s contacts=%d batch_size=%d",
            shop_domain,
            account_id,
            summary.total,
            batch_size,
        )

        seen = 0
        last_id = 0
        while True:
            id_stmt = (
                self._candidates(account_id)
                .with_only_columns(Contact.id)
                .where(Contact.id > last_id)
                .order_by(Contact.id.asc())
                .limit(batch_size)
            )
            contact_ids = list((await self.db.execute(id_stmt)).scalars().all())
            if not contact_ids:
                break

            summary.batches += 1
            for contact_id in contact_ids:
                await self._redact_shop_contact(contact_id, now, metadata, summary)
            seen += len(contact_ids)
            last_id = contact_ids[-1]

            if seen < summary.total:
                await self._sleep(self.config.redaction_batch_pause_seconds)

        hook = await self._reload_hook(hook_id)
        original_status = hook.status
        hook.status = "disabled"
        update_hook_settings(
            hook,
            redacted_at=self._clock().isoformat(),
            redaction_reason=SHOP_REDACTION_REASON,
            original_status=original_status,
        )
        await self.db.commit()

        self._log_shop_summary(summary, shop_id=shop_id)
        return summary

    def _candidates(self, account_id: int):
        return select(Contact).where(
            Contact.account_id == account_id,
            Contact.redacted_at.is_(None),
            or_(Contact.email.is_(None), Contact.email.notin_(SYSTEM_CONTACT_EMAILS)),
            or_(Contact.name.is_(None), Contact.name.notin_(SYSTEM_CONTACT_NAMES)),
        )

    async def _redact_shop_contact(
        self,
        contact_id: int,
        now: datetime,
        metadata: dict[str, Any],
        summary: ShopRedactionSummary,
    ) -> None:
        try:
            stmt = (
                select(Contact)
                .where(Contact.id == contact_id)
                .execution_options(populate_existing=True)
            )
            contact = (await self.db.execute(stmt)).scalar_one_or_none()
            if contact is None or contact.redacted_at is not None:
                summary.skipped += 1
                return
            await self._full_redaction(
                contact,
                now,
                metadata=metadata,
                shop_wide=True,
                shop_domain=summary.shop_domain,
            )
            await self.verify_integrity(contact_id)
            summary.processed += 1
        except Exception as exc:
            self._log.exception("Shop redaction failed for contact %s", contact_id)
            await self.db.rollback()
            summary.failed += 1
            summary.failures.append({"contact_id": contact_id, "error": str(exc)})

    async def _find_shop_hook(self, account_id: int, shop_domain: str) -> IntegrationHook | None:
        candidates = sorted({shop_domain, normalize_shop_domain(shop_domain)})
        stmt = (
            select(IntegrationHook)
            .where(
                IntegrationHook.account_id == account_id,
                IntegrationHook.app_id == SHOPIFY_APP_ID,
                IntegrationHook.reference_id.in_(candidates),
            )
            .order_by(IntegrationHook.id.asc())
            .limit(1)
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def _reload_hook(self, hook_id: int) -> IntegrationHook:
        stmt = (
            select(IntegrationHook)
            .where(IntegrationHook.id == hook_id)
            .execution_options(populate_existing=True)
        )
        return (await self.db.execute(stmt)).scalar_one()

    def _log_shop_summary(self, summary: ShopRedactionSummary, *, shop_id: Any = None) -> None:
        self._log.info("Shop redaction complete %s", summary.as_dict())
        if summary.requires_investigation:
            self._log.error(
                "Shop redaction failure rate above 10%% shop=%s failed=%d total=%d; requires investigation",
                summary.shop_domain,
                summary.failed,
                summary.total,
            )
        report = {
            "shop_domain": summary.shop_domain,
            "shop_id": shop_id,
            "account_id": summary.account_id,
            "data_retention_summary": {
                "contacts_redacted": summary.processed,
                "contacts_failed": summary.failed,
                "conversation_history_preserved": True,
                "integration_disabled": True,
            },
            "compliance_attestation": {
                "legal_basis": SHOP_LEGAL_BASIS,
                "all_contacts_redacted": summary.failed == 0,
                "completed_at": self._clock().isoformat(),
            },
        }
        self._log.info("Shop redaction compliance report %s", report)
