"""Compliance models - re-exports all models and Base.metadata."""

from .base import Base, IntegerIdMixin, TimestampMixin, TenantMixin
from .account import Account, AccountUser
from .integration_hook import IntegrationHook, SHOPIFY_APP_ID
from .contact import Contact
from .conversation import Conversation, Message
from .job import ComplianceJob

__all__ = [
    "Base",
    "IntegerIdMixin",
    "TimestampMixin",
    "TenantMixin",
    "Account",
    "AccountUser",
    "IntegrationHook",
    "SHOPIFY_APP_ID",
    "Contact",
    "Conversation",
    "Message",
    "ComplianceJob",
]
