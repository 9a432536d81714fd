"""Redaction audit records (masked, log-only)."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from ..models.contact import Contact
from .anonymize import mask_email, mask_phone, mask_value

logger = logging.getLogger(__name__)

CUSTOMER_LEGAL_BASIS = "gdpr_article_17_right_to_erasure"
SHOP_LEGAL_BASIS = "shopify_app_uninstallation_gdpr_compliance"


@dataclass
class RedactionAuditRecord:
    contact_id: int
    account_id: int
    redaction_type: str
    performed_at: str
    shop_domain: str | None = None
    shopify_customer_id: str | None = None
    before: dict[str, Any] = field(default_factory=dict)
    after: dict[str, Any] = field(default_factory=dict)
    redacted_fields: list[str] = field(default_factory=list)
    preserved_data: dict[str, int] = field(default_factory=dict)
    protection_reasons: list[str] = field(default_factory=list)
    compliance_info: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def snapshot_masked(contact: Contact) -> dict[str, Any]:
    """Masked copy of the identifying fields, safe to log."""
    return {
        "name": mask_value(contact.name),
        "email": mask_email(contact.email),
        "phone_number": mask_phone(contact.phone_number),
        "custom_attribute_keys": sorted((contact.custom_attributes or {}).keys()),
        "additional_emails_count": len(contact.additional_emails or []),
    }


def build_audit_record(
    contact: Contact,
    *,
    before: dict[str, Any],
    redaction_type: str,
    performed_at: datetime,
    conversations_count: int,
    messages_count: int,
    shop_domain: str | None = None,
    shopify_customer_id: str | None = None,
    protection_reasons: list[str] | None = None,
) -> RedactionAuditRecord:
    shop_wide = redaction_type == "shop_wide"
    return RedactionAuditRecord(
        contact_id=contact.id,
        account_id=contact.account_id,
        redaction_type=redaction_type,
        performed_at=performed_at.isoformat(),
        shop_domain=shop_domain,
        shopify_customer_id=shopify_customer_id,
        before=before,
        after=snapshot_masked(contact),
        redacted_fields=["name", "email", "phone_number", "custom_attributes", "additional_emails"],
        preserved_data={
            "conversations": conversations_count,
            "messages": messages_count,
        },
        protection_reasons=list(protection_reasons or []),
        compliance_info={
            "legal_basis": SHOP_LEGAL_BASIS if shop_wide else CUSTOMER_LEGAL_BASIS,
            "data_minimization": True,
            "conversation_history_preserved": True,
            "reversible": False,
        },
    )


def log_audit_record(
    record: RedactionAuditRecord,
    *,
    extended: bool = False,
    log: logging.Logger | None = None,
) -> None:
    log = log or logger
    if extended:
        log.warning(
            "Extended redaction audit contact=%s reasons=%s record=%s",
            record.contact_id,
            ",".join(record.protection_reasons),
            record.as_dict(),
        )
    else:
        log.info("Redaction audit contact=%s record=%s", record.contact_id, record.as_dict())
