"""Resolve a Shopify shop domain to the owning tenant account."""

from __future__ import annotations

import logging
import traceback

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.account import Account
from ..models.integration_hook import SHOPIFY_APP_ID, IntegrationHook

logger = logging.getLogger(__name__)

SHOPIFY_DOMAIN_SUFFIX = ".myshopify.com"
_DIAGNOSTIC_SAMPLE_SIZE = 5


def normalize_shop_domain(shop_domain: str) -> str:
    """Append the canonical ``.myshopify.com`` suffix when it is absent."""
    if SHOPIFY_DOMAIN_SUFFIX in shop_domain:
        return shop_domain
    return f"{shop_domain}{SHOPIFY_DOMAIN_SUFFIX}"


class AccountResolver:
    """Maps shop domains to accounts via their enabled Shopify hook.

    Resolution never raises: every failure is logged and reported as a miss.
    """

    def __init__(self, db: AsyncSession, *, log: logging.Logger | None = None) -> None:
        self.db = db
        self._log = log or logger

    async def resolve(self, shop_domain: str | None) -> Account | None:
        if not shop_domain or not shop_domain.strip():
            return None
        shop_domain = shop_domain.strip()

        try:
            hook = await self.find_hook(shop_domain)
            if hook is None:
                await self._log_available_hooks(shop_domain)
                return None

            account = await self.db.get(Account, hook.account_id)
            if account is None or not account.is_active:
                self._log.warning(
                    "Shopify hook %s found for %s but account %s is not active",
                    hook.id,
                    shop_domain,
                    hook.account_id,
                )
                return None
            return account
        except Exception as exc:
            trace = traceback.format_exception(type(exc), exc, exc.__traceback__)[-3:]
            self._log.error(
                "Account resolution failed for shop_domain=%s: %s\n%s",
                shop_domain,
                exc,
                "".join(trace),
            )
            return None

    async def find_hook(self, shop_domain: str) -> IntegrationHook | None:
        """Exact match first, then one retry with the normalized domain."""
        hook = await self._enabled_hook(shop_domain)
        if hook is not None:
            return hook

        normalized = normalize_shop_domain(shop_domain)
        if normalized != shop_domain:
            hook = await self._enabled_hook(normalized)
            if hook is not None:
                self._log.info("Resolved %s via normalized domain %s", shop_domain, normalized)
        return hook

    async def _enabled_hook(self, reference_id: str) -> IntegrationHook | None:
        stmt = (
            select(IntegrationHook)
            .where(
                IntegrationHook.app_id == SHOPIFY_APP_ID,
                IntegrationHook.status == "enabled",
                IntegrationHook.reference_id == reference_id,
            )
            .order_by(IntegrationHook.id.asc())
            .limit(1)
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def _log_available_hooks(self, shop_domain: str) -> None:
        try:
            base = select(IntegrationHook).where(IntegrationHook.app_id == SHOPIFY_APP_ID)
            total = (
                await self.db.execute(select(func.count()).select_from(base.subquery()))
            ).scalar() or 0
            sample = (
                await self.db.execute(
                    base.order_by(IntegrationHook.id.asc()).limit(_DIAGNOSTIC_SAMPLE_SIZE)
                )
            ).scalars().all()
            self._log.info(
                "No Shopify account for shop_domain=%s; %d hooks exist, sample=%s",
                shop_domain,
                total,
                [f"{h.reference_id}({h.status})" for h in sample],
            )
        except Exception as exc:
            self._log.warning("Could not list Shopify hooks for diagnostics: %s", exc)
